"""
Incentive Engine - Achievement Calculator Tests
"""

import pytest
from decimal import Decimal

from app.schemas.incentive import Target
from app.services.achievement_calculator import AchievementCalculator
from app.utils.error_handling import ValidationException


TARGET = Target(target_value=Decimal("100000"), minimum_threshold=Decimal("50000"))


class TestAchievement:
    """Test achievement percentage and eligibility."""

    def test_over_achievement(self):
        result = AchievementCalculator.compute(TARGET, Decimal("120000"), None, 30, proratable=False)

        assert result.achievement_pct.value == Decimal("120")
        assert result.is_eligible
        assert result.prorata_factor is None
        assert result.effective_prorata.value == Decimal("100")

    def test_below_threshold_is_ineligible(self):
        result = AchievementCalculator.compute(TARGET, Decimal("40000"), None, 30, proratable=False)

        assert result.achievement_pct.value == Decimal("40")
        assert not result.is_eligible

    def test_threshold_is_inclusive(self):
        result = AchievementCalculator.compute(TARGET, Decimal("50000"), None, 30, proratable=False)
        assert result.is_eligible

    def test_zero_target_rejected(self):
        with pytest.raises(ValidationException):
            AchievementCalculator.compute(Target(target_value=Decimal("0")), Decimal("1"), None, 30, False)

    def test_negative_actual_rejected(self):
        with pytest.raises(ValidationException):
            AchievementCalculator.compute(TARGET, Decimal("-1"), None, 30, False)


class TestProration:
    """Test proration of partial periods."""

    def test_half_period(self):
        result = AchievementCalculator.compute(TARGET, Decimal("100000"), 15, 30, proratable=True)

        assert result.prorata_factor.value == Decimal("50")
        # Proration never touches achievement
        assert result.achievement_pct.value == Decimal("100")

    def test_full_period_when_tenure_unknown(self):
        result = AchievementCalculator.compute(TARGET, Decimal("100000"), None, 30, proratable=True)
        assert result.prorata_factor.value == Decimal("100")

    def test_tenure_longer_than_period_is_capped(self):
        result = AchievementCalculator.compute(TARGET, Decimal("100000"), 45, 30, proratable=True)
        assert result.prorata_factor.value == Decimal("100")

    def test_non_proratable_plan_ignores_tenure(self):
        result = AchievementCalculator.compute(TARGET, Decimal("100000"), 10, 30, proratable=False)
        assert result.prorata_factor is None

    def test_negative_tenure_rejected(self):
        with pytest.raises(ValidationException):
            AchievementCalculator.compute(TARGET, Decimal("1"), -1, 30, True)
