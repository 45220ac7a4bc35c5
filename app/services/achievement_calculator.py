"""
Incentive Engine - Achievement Calculator

Computes achievement percentage, eligibility and proration factor.

Proration scales the payout, never the achievement percentage:
achievement reflects actual performance, proration reflects the share of
the period the employee was entitled to.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from app.schemas.incentive import Percentage, Target
from app.utils.error_handling import ValidationException


@dataclass(frozen=True)
class AchievementResult:
    """Achievement of one employee against a target."""
    achievement_pct: Percentage
    prorata_factor: Optional[Percentage]
    is_eligible: bool

    @property
    def effective_prorata(self) -> Percentage:
        """Factor applied to the payout; 100% when the plan does not prorate."""
        return self.prorata_factor if self.prorata_factor is not None else Percentage.full()


class AchievementCalculator:
    """Pure achievement arithmetic."""

    @staticmethod
    def compute(
        target: Target,
        actual: Decimal,
        tenure_days: Optional[int],
        period_days: int,
        proratable: bool,
    ) -> AchievementResult:
        """
        Compute achievement for one employee.

        Args:
            target: Plan target
            actual: Measured performance value
            tenure_days: Days worked in the period; None means the full period
            period_days: Length of the calculation period in days
            proratable: Whether the plan prorates partial periods

        Raises:
            ValidationException: zero target, negative actual or bad day counts
        """
        if actual < 0:
            raise ValidationException("Actual value cannot be negative", field="actual_value")
        if period_days <= 0:
            raise ValidationException("Period must span at least one day", field="period_days")
        if tenure_days is not None and tenure_days < 0:
            raise ValidationException("Tenure days cannot be negative", field="tenure_days")

        achievement = Percentage.of(actual, target.target_value)
        is_eligible = target.meets_minimum_threshold(actual)

        prorata_factor = None
        if proratable:
            worked = period_days if tenure_days is None else min(tenure_days, period_days)
            prorata_factor = Percentage.from_fraction(Decimal(worked) / Decimal(period_days))

        return AchievementResult(
            achievement_pct=achievement,
            prorata_factor=prorata_factor,
            is_eligible=is_eligible,
        )
