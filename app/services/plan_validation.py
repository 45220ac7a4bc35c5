"""
Incentive Engine - Plan Validation Service

Checks an incentive plan's configuration before it is activated.

Errors block activation; warnings are advisory.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import List, Optional

from app.config import settings
from app.schemas.incentive import IncentivePlan
from app.services.slab_resolver import SlabResolver, ValidationIssue


SHORT_PERIOD_DAYS = 30
HIGH_THRESHOLD_PCT = Decimal("80")


@dataclass
class PlanValidationResult:
    """Outcome of validating one plan."""
    errors: List[ValidationIssue] = field(default_factory=list)
    warnings: List[ValidationIssue] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    @property
    def can_activate(self) -> bool:
        return self.is_valid

    def to_dict(self) -> dict:
        return {
            "is_valid": self.is_valid,
            "errors": [issue.__dict__ for issue in self.errors],
            "warnings": [issue.__dict__ for issue in self.warnings],
        }


class PlanValidationService:
    """Validates plan configuration against the activation rules."""

    def __init__(self, max_approval_levels: Optional[int] = None):
        self.max_approval_levels = (
            settings.max_approval_levels if max_approval_levels is None else max_approval_levels
        )

    def validate(self, plan: IncentivePlan, as_of: Optional[date] = None) -> PlanValidationResult:
        """
        Validate a plan.

        Args:
            plan: Plan to check
            as_of: Reference date for the expired-period check; skipped when None
        """
        result = PlanValidationResult()

        self._validate_basic_fields(plan, result)
        self._validate_effective_period(plan, result, as_of)
        self._validate_target(plan, result)
        self._validate_payout_limits(plan, result)
        result.errors.extend(SlabResolver.validate_table(plan.slabs))
        self._validate_approval_settings(plan, result)

        return result

    def can_activate(self, plan: IncentivePlan, as_of: Optional[date] = None) -> bool:
        return self.validate(plan, as_of).can_activate

    def _validate_basic_fields(self, plan: IncentivePlan, result: PlanValidationResult) -> None:
        if not plan.code or not plan.code.strip():
            result.errors.append(ValidationIssue("CODE_REQUIRED", "Plan code is required", "code"))
        if not plan.name or not plan.name.strip():
            result.errors.append(ValidationIssue("NAME_REQUIRED", "Plan name is required", "name"))

    def _validate_effective_period(
        self,
        plan: IncentivePlan,
        result: PlanValidationResult,
        as_of: Optional[date],
    ) -> None:
        period = plan.effective_period
        if as_of is not None and period.end < as_of:
            result.errors.append(ValidationIssue(
                "PERIOD_EXPIRED",
                "Plan effective period has already ended",
                "effective_period",
            ))
        if period.total_days < SHORT_PERIOD_DAYS:
            result.warnings.append(ValidationIssue(
                "SHORT_PERIOD",
                f"Plan effective period is only {period.total_days} days",
                "effective_period",
                is_warning=True,
            ))

    def _validate_target(self, plan: IncentivePlan, result: PlanValidationResult) -> None:
        target = plan.target
        if target.target_value <= 0:
            result.errors.append(ValidationIssue(
                "TARGET_REQUIRED",
                "Target value must be greater than zero",
                "target_value",
            ))
            return

        if target.minimum_threshold > target.target_value:
            result.errors.append(ValidationIssue(
                "INVALID_THRESHOLD",
                "Minimum threshold cannot exceed target value",
                "minimum_threshold",
            ))

        threshold_pct = target.minimum_threshold / target.target_value * 100
        if threshold_pct > HIGH_THRESHOLD_PCT:
            result.warnings.append(ValidationIssue(
                "HIGH_THRESHOLD",
                f"Minimum threshold is {threshold_pct:.0f}% of target. This may be difficult to achieve.",
                "minimum_threshold",
                is_warning=True,
            ))

    def _validate_payout_limits(self, plan: IncentivePlan, result: PlanValidationResult) -> None:
        limits = [m for m in (plan.minimum_payout, plan.maximum_payout) if m is not None]
        if any(m.currency != plan.currency for m in limits):
            result.errors.append(ValidationIssue(
                "INVALID_PAYOUT_CURRENCY",
                f"Payout limits must be in plan currency {plan.currency}",
                "maximum_payout",
            ))
            return

        if plan.maximum_payout is not None and plan.minimum_payout is not None:
            if plan.maximum_payout < plan.minimum_payout:
                result.errors.append(ValidationIssue(
                    "INVALID_PAYOUT_LIMITS",
                    "Maximum payout cannot be less than minimum payout",
                    "maximum_payout",
                ))

    def _validate_approval_settings(self, plan: IncentivePlan, result: PlanValidationResult) -> None:
        if plan.requires_approval and plan.approval_levels <= 0:
            result.errors.append(ValidationIssue(
                "INVALID_APPROVAL_LEVELS",
                "Approval levels must be greater than zero when approval is required",
                "approval_levels",
            ))
        if plan.approval_levels > self.max_approval_levels:
            result.errors.append(ValidationIssue(
                "TOO_MANY_APPROVALS",
                f"Approval levels cannot exceed {self.max_approval_levels}",
                "approval_levels",
            ))
