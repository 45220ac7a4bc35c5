"""
Incentive Engine - Value Type Tests

Unit tests for Money, Percentage, DateRange and Target.
"""

import pytest
from datetime import date
from decimal import Decimal
from unittest.mock import patch

from app.models.incentive_enums import AchievementType
from app.schemas.incentive import (
    DateRange,
    DeductionPolicy,
    EmployeeFacts,
    IncentivePlan,
    Money,
    Percentage,
    Slab,
    Target,
)
from app.utils.error_handling import (
    CurrencyMismatchException,
    ErrorCode,
    InvalidDateRangeException,
    ValidationException,
)
from tests.fixtures.incentive_factories import inr, make_settings


class TestMoney:
    """Test currency-aware money arithmetic."""

    def test_amount_rounded_to_cents(self):
        assert Money(amount=Decimal("10.005"), currency="INR").amount == Decimal("10.01")

    def test_currency_normalized_to_upper_case(self):
        assert Money(amount=Decimal("1"), currency="usd").currency == "USD"

    def test_invalid_currency_code_rejected(self):
        with pytest.raises(ValidationException):
            Money(amount=Decimal("1"), currency="RUPEE")

    def test_add_and_subtract(self):
        assert inr("100.50") + inr("0.50") == inr("101.00")
        assert inr("100.00") - inr("40.25") == inr("59.75")

    def test_cross_currency_arithmetic_rejected(self):
        """Amounts in different currencies never combine."""
        with pytest.raises(CurrencyMismatchException) as exc_info:
            inr("1.00") + Money(amount=Decimal("1"), currency="USD")

        assert exc_info.value.code == ErrorCode.CURRENCY_MISMATCH

    def test_cross_currency_comparison_rejected(self):
        with pytest.raises(CurrencyMismatchException):
            assert inr("1.00") < Money(amount=Decimal("2"), currency="USD")

    def test_apply_percentage(self):
        assert inr("1000.00").apply(Percentage(value=Decimal("50"))) == inr("500.00")

    def test_zero_and_sign_checks(self):
        zero = Money.zero("INR")
        assert zero.is_zero()
        assert not zero.is_positive()
        assert inr("0.01").is_positive()

    def test_string_format(self):
        assert str(inr("1000")) == "INR 1,000.00"


class TestPercentage:
    """Test percentage construction and arithmetic."""

    def test_of_computes_ratio(self):
        assert Percentage.of(Decimal("120000"), Decimal("100000")).value == Decimal("120.0000")

    def test_of_zero_target_is_error(self):
        with pytest.raises(ValidationException):
            Percentage.of(Decimal("10"), Decimal("0"))

    def test_negative_rejected(self):
        with pytest.raises(ValidationException):
            Percentage(value=Decimal("-1"))

    def test_above_hundred_allowed(self):
        pct = Percentage(value=Decimal("150"))
        assert pct.exceeds_target()
        assert pct.cap(Decimal("100")).value == Decimal("100")

    def test_fraction_round_trip(self):
        assert Percentage.from_fraction(Decimal("0.5")).value == Decimal("50")
        assert Percentage(value=Decimal("25")).to_fraction() == Decimal("0.25")


class TestDateRange:
    """Test inclusive date ranges."""

    def test_start_after_end_rejected(self):
        with pytest.raises(InvalidDateRangeException):
            DateRange(start=date(2024, 6, 30), end=date(2024, 6, 1))

    def test_single_day_range(self):
        day = DateRange(start=date(2024, 6, 1), end=date(2024, 6, 1))
        assert day.total_days == 1

    def test_month_factory_handles_leap_year(self):
        feb = DateRange.for_month(2024, 2)
        assert feb.end == date(2024, 2, 29)
        assert feb.total_days == 29

    def test_quarter_and_financial_year(self):
        q2 = DateRange.for_quarter(2024, 2)
        assert (q2.start, q2.end) == (date(2024, 4, 1), date(2024, 6, 30))

        fy = DateRange.for_financial_year(2024)
        assert (fy.start, fy.end) == (date(2024, 4, 1), date(2025, 3, 31))

    def test_invalid_quarter_rejected(self):
        with pytest.raises(ValidationException):
            DateRange.for_quarter(2024, 5)

    def test_overlap_and_containment(self):
        june = DateRange.for_month(2024, 6)
        fy = DateRange.for_financial_year(2024)
        july = DateRange.for_month(2024, 7)

        assert june.is_within(fy)
        assert not fy.is_within(june)
        assert not june.overlaps(july)
        assert june.overlap_days(fy) == 30
        assert june.contains(date(2024, 6, 30))


class TestTarget:
    """Test target configuration and incremental measurement."""

    def test_negative_target_rejected(self):
        with pytest.raises(ValidationException):
            Target(target_value=Decimal("-1"))

    def test_zero_target_is_loadable(self):
        assert Target(target_value=Decimal("0")).target_value == 0

    def test_minimum_threshold(self):
        target = Target(target_value=Decimal("100000"), minimum_threshold=Decimal("50000"))
        assert target.meets_minimum_threshold(Decimal("50000"))
        assert not target.meets_minimum_threshold(Decimal("49999.99"))

    def test_incremental_measures_growth_over_baseline(self):
        facts = EmployeeFacts(actual_value=Decimal("150000"), baseline_value=Decimal("100000"))
        assert facts.measured_value(AchievementType.INCREMENTAL) == Decimal("50000")
        assert facts.measured_value(AchievementType.ABSOLUTE) == Decimal("150000")

    def test_incremental_never_negative(self):
        facts = EmployeeFacts(actual_value=Decimal("80000"), baseline_value=Decimal("100000"))
        assert facts.measured_value(AchievementType.INCREMENTAL) == Decimal("0")


class TestSlabAndDeduction:
    """Test slab bounds and deduction policies."""

    def test_slab_is_half_open(self):
        slab = Slab(lower_bound_pct=Decimal("80"), upper_bound_pct=Decimal("100"), payout_rate=Decimal("0.5"))
        assert slab.contains(Decimal("80"))
        assert slab.contains(Decimal("99.9999"))
        assert not slab.contains(Decimal("100"))

    def test_slab_upper_must_exceed_lower(self):
        with pytest.raises(ValidationException):
            Slab(lower_bound_pct=Decimal("50"), upper_bound_pct=Decimal("50"), payout_rate=Decimal("1"))

    def test_rate_deduction(self):
        assert DeductionPolicy.of_rate(Decimal("10"))(inr("1000.00")) == inr("100.00")

    def test_fixed_deduction_never_exceeds_gross(self):
        policy = DeductionPolicy.of_fixed(inr("500.00"))
        assert policy(inr("200.00")) == inr("200.00")

    def test_no_deduction(self):
        assert DeductionPolicy.none()(inr("1000.00")).is_zero()

    def test_rate_out_of_range_rejected(self):
        with pytest.raises(ValidationException):
            DeductionPolicy.of_rate(Decimal("101"))


class TestIncentivePlan:
    """Test plan defaults."""

    def test_currency_defaults_to_configured_currency(self):
        with patch(
            "app.schemas.incentive.get_settings",
            return_value=make_settings(default_currency="usd"),
        ):
            plan = IncentivePlan(
                code="SALES-US",
                name="US Sales",
                effective_period=DateRange.for_financial_year(2024),
                target=Target(target_value=Decimal("50000")),
            )

        assert plan.currency == "USD"

    def test_explicit_currency_wins(self):
        plan = IncentivePlan(
            code="SALES-EU",
            name="EU Sales",
            effective_period=DateRange.for_financial_year(2024),
            target=Target(target_value=Decimal("50000")),
            currency="eur",
        )
        assert plan.currency == "EUR"
