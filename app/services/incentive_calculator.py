"""
Incentive Engine - Incentive Calculator

Turns a plan and an employee's performance facts into a Calculation.

Payout formula:
- Flat slab: gross = slab payout rate, in plan currency
- Rate slab: gross = target value * rate% * min(achievement, 100)%
  (over-achievement is rewarded through the higher slab rate)
- Gross is then prorated, clamped to [minimum_payout, maximum_payout],
  and net = gross - deduction(gross), never negative.

The calculator is pure: identical inputs and clock produce an identical
calculation body. Persistence and superseding live in the engine.
"""

from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional, Tuple
from uuid import UUID

from app.models.incentive_enums import CalculationStatus
from app.schemas.incentive import (
    Calculation,
    DateRange,
    EmployeeFacts,
    IncentivePlan,
    Money,
    Percentage,
    Slab,
)
from app.services.achievement_calculator import AchievementCalculator
from app.services.slab_resolver import SlabResolver
from app.utils.error_handling import InvalidStateException, ValidationException

Deduction = Callable[[Money], Money]

FULL_ACHIEVEMENT = Decimal("100")


class IncentiveCalculator:
    """Computes gross and net incentive for one employee, plan and period."""

    @classmethod
    def calculate(
        cls,
        plan: IncentivePlan,
        employee_id: UUID,
        facts: EmployeeFacts,
        period: DateRange,
        calculated_by: Optional[UUID],
        now: datetime,
        deduction: Optional[Deduction] = None,
    ) -> Calculation:
        """
        Produce a new Calculation with status CALCULATED or INELIGIBLE.

        Raises:
            InvalidStateException: plan is not active
            ValidationException: period outside the plan or bad facts
            NoApplicableSlabException: slab table does not cover the achievement
        """
        if not plan.is_active:
            raise InvalidStateException(
                f"Plan {plan.code} is not active",
                current_status=plan.status.value,
                action="calculate",
            )
        if not plan.is_effective_for(period):
            raise ValidationException(
                f"Period {period} is outside plan {plan.code} effective period {plan.effective_period}",
                field="period",
            )

        measured = facts.measured_value(plan.target.achievement_type)
        achievement = AchievementCalculator.compute(
            target=plan.target,
            actual=measured,
            tenure_days=facts.tenure_days,
            period_days=period.total_days,
            proratable=plan.proratable,
        )
        zero = Money.zero(plan.currency)

        base = dict(
            employee_id=employee_id,
            incentive_plan_id=plan.id,
            calculation_period=period,
            target_value=plan.target.target_value,
            actual_value=measured,
            achievement_percentage=achievement.achievement_pct,
            prorata_factor=achievement.prorata_factor,
            calculated_at=now,
            calculated_by=calculated_by,
        )

        if not achievement.is_eligible:
            return Calculation(
                **base,
                gross_incentive=zero,
                net_incentive=zero,
                status=CalculationStatus.INELIGIBLE,
                is_eligible=False,
                adjustment_reason=(
                    f"Actual value {measured} is below minimum threshold "
                    f"{plan.target.minimum_threshold}"
                ),
            )

        slab = SlabResolver.resolve(plan.slabs, achievement.achievement_pct, plan.id)
        gross = cls.gross_for_slab(plan, slab, achievement.achievement_pct)
        if achievement.prorata_factor is not None:
            gross = gross.apply(achievement.prorata_factor)
        gross, adjustment_reason = cls.clamp(plan, gross)

        deduct = deduction or facts.deduction
        net = gross - deduct(gross)
        if net.amount < 0:
            net = zero

        return Calculation(
            **base,
            applied_slab_id=slab.id,
            gross_incentive=gross,
            net_incentive=net,
            status=CalculationStatus.CALCULATED,
            is_eligible=True,
            adjustment_reason=adjustment_reason,
        )

    @staticmethod
    def gross_for_slab(plan: IncentivePlan, slab: Slab, achievement_pct: Percentage) -> Money:
        if slab.is_flat:
            return Money(amount=slab.payout_rate, currency=plan.currency)
        paid_achievement = min(achievement_pct.value, FULL_ACHIEVEMENT)
        amount = plan.target.target_value * (slab.payout_rate / 100) * (paid_achievement / 100)
        return Money(amount=amount, currency=plan.currency)

    @staticmethod
    def clamp(plan: IncentivePlan, gross: Money) -> Tuple[Money, Optional[str]]:
        """Clamp gross to the plan's payout limits, reporting any adjustment."""
        if plan.maximum_payout is not None and gross > plan.maximum_payout:
            return plan.maximum_payout, f"Capped at maximum payout {plan.maximum_payout} (was {gross})"
        if plan.minimum_payout is not None and gross < plan.minimum_payout:
            return plan.minimum_payout, f"Raised to minimum payout {plan.minimum_payout} (was {gross})"
        return gross, None
