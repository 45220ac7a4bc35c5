"""
Incentive Engine - Incentive Calculator Tests

Unit tests for gross and net incentive calculation.
"""

import pytest
from datetime import datetime
from decimal import Decimal
from uuid import uuid4

from app.models.incentive_enums import AchievementType, CalculationStatus, PlanStatus
from app.schemas.incentive import (
    DateRange,
    DeductionPolicy,
    EmployeeFacts,
    Money,
    Slab,
    Target,
)
from app.services.incentive_calculator import IncentiveCalculator
from app.utils.error_handling import (
    InvalidStateException,
    NoApplicableSlabException,
    ValidationException,
)
from tests.fixtures.incentive_factories import inr, make_plan


NOW = datetime(2024, 7, 1, 9, 0, 0)
JUNE = DateRange.for_month(2024, 6)
EMPLOYEE = uuid4()


def calculate(plan, actual, tenure_days=None, deduction=None, **facts):
    return IncentiveCalculator.calculate(
        plan,
        EMPLOYEE,
        EmployeeFacts(actual_value=Decimal(actual), tenure_days=tenure_days, **facts),
        JUNE,
        None,
        NOW,
        deduction,
    )


class TestGrossIncentive:
    """Test the payout formula."""

    def test_over_achievement_pays_top_slab_rate(self):
        """Target 100000, actual 120000 -> 120% in the 1.0% slab -> 1000."""
        calc = calculate(make_plan(), "120000")

        assert calc.status == CalculationStatus.CALCULATED
        assert calc.achievement_percentage.value == Decimal("120")
        assert calc.gross_incentive == inr("1000.00")
        assert calc.net_incentive == inr("1000.00")

    def test_mid_slab_scales_with_achievement(self):
        """90% in the 0.5% slab -> 100000 * 0.5% * 90% = 450."""
        calc = calculate(make_plan(), "90000")
        assert calc.gross_incentive == inr("450.00")

    def test_zero_rate_slab_pays_nothing(self):
        calc = calculate(make_plan(), "50000")

        assert calc.status == CalculationStatus.CALCULATED
        assert calc.gross_incentive.is_zero()

    def test_flat_slab_pays_fixed_amount(self):
        plan = make_plan(slabs=(
            Slab(lower_bound_pct=Decimal("0"), upper_bound_pct=Decimal("100"), payout_rate=Decimal("0")),
            Slab(lower_bound_pct=Decimal("100"), payout_rate=Decimal("2500"), is_flat=True),
        ))
        assert calculate(plan, "130000").gross_incentive == inr("2500.00")

    def test_applied_slab_is_recorded(self):
        plan = make_plan()
        calc = calculate(plan, "120000")

        assert plan.slab_by_id(calc.applied_slab_id).lower_bound_pct == Decimal("100")


class TestProrationAndLimits:
    """Test proration and payout clamping."""

    def test_half_month_tenure_halves_payout(self):
        plan = make_plan(proratable=True)
        calc = calculate(plan, "120000", tenure_days=15)

        assert calc.prorata_factor.value == Decimal("50")
        assert calc.gross_incentive == inr("500.00")

    def test_maximum_payout_caps_gross(self):
        plan = make_plan(maximum_payout=inr("800.00"))
        calc = calculate(plan, "120000")

        assert calc.gross_incentive == inr("800.00")
        assert calc.adjustment_reason == "Capped at maximum payout INR 800.00 (was INR 1,000.00)"

    def test_minimum_payout_raises_gross(self):
        plan = make_plan(minimum_payout=inr("300.00"))
        calc = calculate(plan, "82000")

        # 100000 * 0.5% * 82% = 410 stays above the minimum
        assert calc.gross_incentive == inr("410.00")
        assert calc.adjustment_reason is None

        calc = calculate(plan, "50000")
        assert calc.gross_incentive == inr("300.00")
        assert calc.adjustment_reason.startswith("Raised to minimum payout")

    def test_proration_applied_before_cap(self):
        plan = make_plan(proratable=True, maximum_payout=inr("400.00"))
        calc = calculate(plan, "120000", tenure_days=15)

        assert calc.gross_incentive == inr("400.00")


class TestNetIncentive:
    """Test deductions from gross to net."""

    def test_rate_deduction(self):
        calc = calculate(make_plan(), "120000", deduction=DeductionPolicy.of_rate(Decimal("10")))
        assert calc.net_incentive == inr("900.00")

    def test_deduction_from_facts(self):
        calc = IncentiveCalculator.calculate(
            make_plan(), EMPLOYEE,
            EmployeeFacts(actual_value=Decimal("120000"), deduction=DeductionPolicy.of_fixed(inr("250.00"))),
            JUNE, None, NOW,
        )
        assert calc.net_incentive == inr("750.00")

    def test_net_never_negative(self):
        calc = calculate(make_plan(), "120000", deduction=lambda gross: gross + inr("1.00"))
        assert calc.net_incentive.is_zero()


class TestEligibilityAndErrors:
    """Test ineligible results and rejected inputs."""

    def test_below_threshold_is_ineligible_with_zero_payout(self):
        plan = make_plan(target=Target(target_value=Decimal("100000"), minimum_threshold=Decimal("60000")))
        calc = calculate(plan, "55000")

        assert calc.status == CalculationStatus.INELIGIBLE
        assert not calc.is_eligible
        assert calc.gross_incentive.is_zero()
        assert calc.net_incentive.is_zero()
        assert calc.applied_slab_id is None
        assert "below minimum threshold" in calc.adjustment_reason

    def test_incremental_target(self):
        plan = make_plan(target=Target(
            target_value=Decimal("50000"),
            achievement_type=AchievementType.INCREMENTAL,
        ))
        calc = calculate(plan, "160000", baseline_value=Decimal("100000"))

        # growth of 60000 on a 50000 target -> 120%, paid at 1.0% of 50000
        assert calc.actual_value == Decimal("60000")
        assert calc.achievement_percentage.value == Decimal("120")
        assert calc.gross_incentive == inr("500.00")

    def test_inactive_plan_rejected(self):
        with pytest.raises(InvalidStateException):
            calculate(make_plan(status=PlanStatus.DRAFT), "100000")

    def test_period_outside_plan_rejected(self):
        with pytest.raises(ValidationException):
            IncentiveCalculator.calculate(
                make_plan(), EMPLOYEE, EmployeeFacts(actual_value=Decimal("1")),
                DateRange.for_month(2025, 6), None, NOW,
            )

    def test_slab_gap_raises(self):
        plan = make_plan(slabs=(
            Slab(lower_bound_pct=Decimal("0"), upper_bound_pct=Decimal("80"), payout_rate=Decimal("0")),
            Slab(lower_bound_pct=Decimal("100"), payout_rate=Decimal("1")),
        ))
        with pytest.raises(NoApplicableSlabException):
            calculate(plan, "90000")

    def test_currency_follows_plan(self):
        plan = make_plan(currency="usd")
        assert calculate(plan, "120000").gross_incentive == Money(amount=Decimal("1000"), currency="USD")


class TestDeterminism:
    """Identical inputs produce identical outcomes."""

    def test_same_inputs_same_fingerprint(self):
        plan = make_plan(proratable=True, maximum_payout=inr("800.00"))
        first = calculate(plan, "120000", tenure_days=20)
        second = calculate(plan, "120000", tenure_days=20)

        assert first.id != second.id
        assert first.outcome_fingerprint() == second.outcome_fingerprint()
