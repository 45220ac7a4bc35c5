"""
Incentive Engine - Domain Schemas

Immutable pydantic models for the value types (Money, Percentage,
DateRange, Target), the plan configuration (Slab, IncentivePlan) and the
Calculation aggregate with its Approval records.

Aggregates are never mutated in place: services produce updated copies
with model_copy(update=...) and bump the version.
"""

import calendar
from datetime import date, datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Literal, Optional, Tuple
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from app.config import get_settings
from app.models.incentive_enums import (
    AchievementType,
    ApprovalStatus,
    AuditAction,
    CalculationStatus,
    PlanStatus,
    TERMINAL_CALCULATION_STATUSES,
)
from app.utils.error_handling import (
    CurrencyMismatchException,
    InvalidAmountException,
    InvalidDateRangeException,
    ValidationException,
)


CENT = Decimal("0.01")
PERCENT_PRECISION = Decimal("0.0001")
HUNDRED = Decimal("100")


def normalize_currency_code(value: Any) -> str:
    """Upper-case a 3-letter ISO 4217 code or raise."""
    if not isinstance(value, str) or len(value.strip()) != 3 or not value.strip().isalpha():
        raise ValidationException(
            f"Currency code must be 3 letters (ISO 4217), got {value!r}",
            field="currency",
        )
    return value.strip().upper()


class DomainModel(BaseModel):
    """Frozen base for every domain value and aggregate."""
    model_config = ConfigDict(frozen=True)


# ===========================================
# VALUE TYPES
# ===========================================

class Money(DomainModel):
    """Monetary amount in a single ISO 4217 currency, rounded to cents."""

    amount: Decimal
    currency: str

    @field_validator("currency", mode="before")
    @classmethod
    def _normalize_currency(cls, value: Any) -> str:
        return normalize_currency_code(value)

    @field_validator("amount")
    @classmethod
    def _round_amount(cls, value: Decimal) -> Decimal:
        if not value.is_finite():
            raise InvalidAmountException(value)
        return value.quantize(CENT, rounding=ROUND_HALF_UP)

    @classmethod
    def zero(cls, currency: str) -> "Money":
        return cls(amount=Decimal("0"), currency=currency)

    def _ensure_same_currency(self, other: "Money") -> None:
        if self.currency != other.currency:
            raise CurrencyMismatchException(self.currency, other.currency)

    def add(self, other: "Money") -> "Money":
        self._ensure_same_currency(other)
        return Money(amount=self.amount + other.amount, currency=self.currency)

    def subtract(self, other: "Money") -> "Money":
        self._ensure_same_currency(other)
        return Money(amount=self.amount - other.amount, currency=self.currency)

    def multiply(self, factor: Decimal) -> "Money":
        return Money(amount=self.amount * Decimal(factor), currency=self.currency)

    def apply(self, percentage: "Percentage") -> "Money":
        """Scale by a percentage (50% halves the amount)."""
        return Money(amount=self.amount * percentage.to_fraction(), currency=self.currency)

    def is_zero(self) -> bool:
        return self.amount == 0

    def is_positive(self) -> bool:
        return self.amount > 0

    def __add__(self, other: "Money") -> "Money":
        return self.add(other)

    def __sub__(self, other: "Money") -> "Money":
        return self.subtract(other)

    def __lt__(self, other: "Money") -> bool:
        self._ensure_same_currency(other)
        return self.amount < other.amount

    def __le__(self, other: "Money") -> bool:
        self._ensure_same_currency(other)
        return self.amount <= other.amount

    def __gt__(self, other: "Money") -> bool:
        self._ensure_same_currency(other)
        return self.amount > other.amount

    def __ge__(self, other: "Money") -> bool:
        self._ensure_same_currency(other)
        return self.amount >= other.amount

    def __str__(self) -> str:
        return f"{self.currency} {self.amount:,.2f}"


class Percentage(DomainModel):
    """Non-negative percentage; 100 means 100%, values above 100 are allowed."""

    value: Decimal

    @field_validator("value")
    @classmethod
    def _non_negative(cls, value: Decimal) -> Decimal:
        if not value.is_finite() or value < 0:
            raise ValidationException(f"Percentage cannot be negative, got {value}", field="percentage")
        return value.quantize(PERCENT_PRECISION, rounding=ROUND_HALF_UP)

    @classmethod
    def zero(cls) -> "Percentage":
        return cls(value=Decimal("0"))

    @classmethod
    def full(cls) -> "Percentage":
        return cls(value=HUNDRED)

    @classmethod
    def from_fraction(cls, fraction: Decimal) -> "Percentage":
        """0.5 -> 50%."""
        return cls(value=Decimal(fraction) * HUNDRED)

    @classmethod
    def of(cls, actual: Decimal, target: Decimal) -> "Percentage":
        """actual / target * 100; a zero target is a configuration error."""
        if target == 0:
            raise ValidationException(
                "Target value is zero; achievement cannot be computed",
                field="target_value",
            )
        return cls(value=Decimal(actual) / Decimal(target) * HUNDRED)

    def to_fraction(self) -> Decimal:
        return self.value / HUNDRED

    def exceeds_target(self) -> bool:
        return self.value > HUNDRED

    def cap(self, max_value: Decimal) -> "Percentage":
        return Percentage(value=max_value) if self.value > max_value else self

    def __lt__(self, other: "Percentage") -> bool:
        return self.value < other.value

    def __le__(self, other: "Percentage") -> bool:
        return self.value <= other.value

    def __gt__(self, other: "Percentage") -> bool:
        return self.value > other.value

    def __ge__(self, other: "Percentage") -> bool:
        return self.value >= other.value

    def __str__(self) -> str:
        return f"{self.value:.2f}%"


class DateRange(DomainModel):
    """Inclusive date range."""

    start: date
    end: date

    @model_validator(mode="after")
    def _ordered(self) -> "DateRange":
        if self.start > self.end:
            raise InvalidDateRangeException(self.start.isoformat(), self.end.isoformat())
        return self

    @classmethod
    def for_month(cls, year: int, month: int) -> "DateRange":
        last_day = calendar.monthrange(year, month)[1]
        return cls(start=date(year, month, 1), end=date(year, month, last_day))

    @classmethod
    def for_quarter(cls, year: int, quarter: int) -> "DateRange":
        if quarter < 1 or quarter > 4:
            raise ValidationException("Quarter must be between 1 and 4", field="quarter")
        start_month = (quarter - 1) * 3 + 1
        end_month = start_month + 2
        return cls(
            start=date(year, start_month, 1),
            end=date(year, end_month, calendar.monthrange(year, end_month)[1]),
        )

    @classmethod
    def for_year(cls, year: int) -> "DateRange":
        return cls(start=date(year, 1, 1), end=date(year, 12, 31))

    @classmethod
    def for_financial_year(cls, start_year: int) -> "DateRange":
        """April 1 to March 31."""
        return cls(start=date(start_year, 4, 1), end=date(start_year + 1, 3, 31))

    @property
    def total_days(self) -> int:
        return (self.end - self.start).days + 1

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end

    def overlaps(self, other: "DateRange") -> bool:
        return self.start <= other.end and self.end >= other.start

    def is_within(self, other: "DateRange") -> bool:
        return self.start >= other.start and self.end <= other.end

    def overlap_days(self, other: "DateRange") -> int:
        if not self.overlaps(other):
            return 0
        return (min(self.end, other.end) - max(self.start, other.start)).days + 1

    def __str__(self) -> str:
        return f"{self.start.isoformat()} to {self.end.isoformat()}"


class Target(DomainModel):
    """Performance target of a plan."""

    target_value: Decimal
    minimum_threshold: Decimal = Decimal("0")
    achievement_type: AchievementType = AchievementType.ABSOLUTE
    metric_unit: Optional[str] = None

    @model_validator(mode="after")
    def _non_negative(self) -> "Target":
        # A zero target is loadable; computing achievement on it fails later
        if self.target_value < 0:
            raise ValidationException("Target value cannot be negative", field="target_value")
        if self.minimum_threshold < 0:
            raise ValidationException("Minimum threshold cannot be negative", field="minimum_threshold")
        return self

    def meets_minimum_threshold(self, actual_value: Decimal) -> bool:
        return actual_value >= self.minimum_threshold


# ===========================================
# PLAN CONFIGURATION
# ===========================================

class Slab(DomainModel):
    """
    Payout bracket keyed by achievement percentage, half-open [lower, upper).

    payout_rate is a percentage of the target value (1.0 means 1%), or the
    fixed payout amount in plan currency when is_flat is set.
    """

    id: UUID = Field(default_factory=uuid4)
    lower_bound_pct: Decimal
    upper_bound_pct: Optional[Decimal] = None
    payout_rate: Decimal
    is_flat: bool = False
    description: Optional[str] = None

    @model_validator(mode="after")
    def _valid_bounds(self) -> "Slab":
        if self.lower_bound_pct < 0:
            raise ValidationException("Slab lower bound cannot be negative", field="lower_bound_pct")
        if self.upper_bound_pct is not None and self.upper_bound_pct <= self.lower_bound_pct:
            raise ValidationException(
                f"Slab upper bound {self.upper_bound_pct} must exceed lower bound {self.lower_bound_pct}",
                field="upper_bound_pct",
            )
        if self.payout_rate < 0:
            raise ValidationException("Payout rate cannot be negative", field="payout_rate")
        return self

    @property
    def is_open_ended(self) -> bool:
        return self.upper_bound_pct is None

    def contains(self, achievement_pct: Decimal) -> bool:
        if achievement_pct < self.lower_bound_pct:
            return False
        return self.upper_bound_pct is None or achievement_pct < self.upper_bound_pct

    def __str__(self) -> str:
        upper = "inf" if self.upper_bound_pct is None else f"{self.upper_bound_pct}"
        kind = "flat" if self.is_flat else "rate"
        return f"[{self.lower_bound_pct}, {upper}) {kind} {self.payout_rate}"


class IncentivePlan(DomainModel):
    """Incentive plan with its owned slab table."""

    id: UUID = Field(default_factory=uuid4)
    code: str
    name: str
    status: PlanStatus = PlanStatus.DRAFT
    effective_period: DateRange
    target: Target
    slabs: Tuple[Slab, ...] = ()
    currency: str = Field(default_factory=lambda: get_settings().default_currency)
    maximum_payout: Optional[Money] = None
    minimum_payout: Optional[Money] = None
    requires_approval: bool = True
    approval_levels: int = Field(default=1, ge=0)
    proratable: bool = False

    @field_validator("currency", mode="before")
    @classmethod
    def _normalize_currency(cls, value: Any) -> str:
        return normalize_currency_code(value)

    @property
    def is_active(self) -> bool:
        return self.status == PlanStatus.ACTIVE

    def is_effective_for(self, period: DateRange) -> bool:
        return period.is_within(self.effective_period)

    def sorted_slabs(self) -> List[Slab]:
        return sorted(self.slabs, key=lambda s: s.lower_bound_pct)

    def slab_by_id(self, slab_id: UUID) -> Optional[Slab]:
        return next((s for s in self.slabs if s.id == slab_id), None)


# ===========================================
# PERFORMANCE FACTS
# ===========================================

class DeductionPolicy(DomainModel):
    """
    Pre-computed deduction applied to gross incentive to obtain net.

    The policy is a pure function of the gross amount. The deduction never
    exceeds the gross, so net incentive is never negative.
    """

    kind: Literal["none", "rate", "fixed"] = "none"
    rate: Optional[Decimal] = None
    amount: Optional[Money] = None

    @model_validator(mode="after")
    def _consistent(self) -> "DeductionPolicy":
        if self.kind == "rate" and (self.rate is None or self.rate < 0 or self.rate > HUNDRED):
            raise ValidationException("Deduction rate must be between 0 and 100", field="rate")
        if self.kind == "fixed" and (self.amount is None or self.amount.amount < 0):
            raise ValidationException("Fixed deduction must be a non-negative amount", field="amount")
        return self

    @classmethod
    def none(cls) -> "DeductionPolicy":
        return cls()

    @classmethod
    def of_rate(cls, rate: Decimal) -> "DeductionPolicy":
        return cls(kind="rate", rate=Decimal(rate))

    @classmethod
    def of_fixed(cls, amount: Money) -> "DeductionPolicy":
        return cls(kind="fixed", amount=amount)

    def __call__(self, gross: Money) -> Money:
        if self.kind == "rate":
            deduction = gross.multiply(self.rate / HUNDRED)
        elif self.kind == "fixed":
            deduction = self.amount
        else:
            return Money.zero(gross.currency)
        return deduction if deduction <= gross else gross


class EmployeeFacts(DomainModel):
    """Raw performance facts for one employee in one period."""

    actual_value: Decimal
    baseline_value: Decimal = Decimal("0")
    tenure_days: Optional[int] = None
    deduction: DeductionPolicy = Field(default_factory=DeductionPolicy)

    def measured_value(self, achievement_type: AchievementType) -> Decimal:
        """Incremental targets measure growth over the baseline."""
        if achievement_type == AchievementType.INCREMENTAL:
            return max(self.actual_value - self.baseline_value, Decimal("0"))
        return self.actual_value


# ===========================================
# CALCULATION AGGREGATE
# ===========================================

class Approval(DomainModel):
    """One approval record of a calculation's approval chain."""

    id: UUID = Field(default_factory=uuid4)
    calculation_id: UUID
    level: int = Field(ge=1)
    approver_id: UUID
    status: ApprovalStatus = ApprovalStatus.PENDING
    created_at: datetime
    decided_at: Optional[datetime] = None
    delegated_to_id: Optional[UUID] = None
    delegated_from_id: Optional[UUID] = None
    escalated_from_id: Optional[UUID] = None
    comments: Optional[str] = None
    expires_at: Optional[datetime] = None
    version: int = 1

    @property
    def is_pending(self) -> bool:
        return self.status == ApprovalStatus.PENDING

    def pending_hours(self, now: datetime) -> float:
        return (now - self.created_at) / timedelta(hours=1)

    def can_be_decided_by(self, actor_id: UUID) -> bool:
        return actor_id == self.approver_id


class Calculation(DomainModel):
    """Incentive calculation for one employee, plan and period."""

    id: UUID = Field(default_factory=uuid4)
    employee_id: UUID
    incentive_plan_id: UUID
    calculation_period: DateRange
    target_value: Decimal
    actual_value: Decimal
    achievement_percentage: Percentage
    applied_slab_id: Optional[UUID] = None
    gross_incentive: Money
    net_incentive: Money
    prorata_factor: Optional[Percentage] = None
    status: CalculationStatus = CalculationStatus.CALCULATED
    is_eligible: bool = True
    calculated_at: datetime
    calculated_by: Optional[UUID] = None
    rejection_reason: Optional[str] = None
    adjustment_reason: Optional[str] = None
    cancellation_reason: Optional[str] = None
    payment_batch_reference: Optional[str] = None
    previous_version_id: Optional[UUID] = None
    superseded_by_id: Optional[UUID] = None
    version: int = 1

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_CALCULATION_STATUSES

    @property
    def is_live(self) -> bool:
        return self.superseded_by_id is None

    def outcome_fingerprint(self) -> Dict[str, Any]:
        """Fields that must be identical when the same inputs are recalculated."""
        return self.model_dump(
            include={
                "employee_id", "incentive_plan_id", "calculation_period",
                "target_value", "actual_value", "achievement_percentage",
                "applied_slab_id", "gross_incentive", "net_incentive",
                "prorata_factor", "status", "is_eligible", "adjustment_reason",
            },
        )


class ChangeRecord(DomainModel):
    """Domain event emitted by every committed transition."""

    entity_type: str
    entity_id: UUID
    action: AuditAction
    actor_id: Optional[UUID] = None
    old_status: Optional[str] = None
    new_status: Optional[str] = None
    reason: Optional[str] = None
    occurred_at: datetime


class EscalationReport(DomainModel):
    """Outcome of one escalation scan."""

    scanned_at: datetime
    sla_hours: float
    warning_hours: float
    breached: Tuple[UUID, ...] = ()
    warnings: Tuple[UUID, ...] = ()
    escalated: Tuple[UUID, ...] = ()
    alerted: Tuple[UUID, ...] = ()
    failed: Tuple[Tuple[UUID, str], ...] = ()

    @property
    def breach_count(self) -> int:
        return len(self.breached)
