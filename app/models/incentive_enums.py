"""
Incentive Engine - Enums

Status and policy enumerations shared by the ORM models, the domain
schemas and the services.
"""

from enum import Enum


class PlanStatus(str, Enum):
    """Incentive plan lifecycle."""
    DRAFT = "draft"
    ACTIVE = "active"
    INACTIVE = "inactive"
    ARCHIVED = "archived"


class AchievementType(str, Enum):
    """How the actual value is measured against the target."""
    ABSOLUTE = "absolute"
    INCREMENTAL = "incremental"


class CalculationStatus(str, Enum):
    """Calculation lifecycle."""
    CALCULATED = "calculated"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    REJECTED = "rejected"
    PAID = "paid"
    CANCELLED = "cancelled"
    INELIGIBLE = "ineligible"


TERMINAL_CALCULATION_STATUSES = frozenset({
    CalculationStatus.PAID,
    CalculationStatus.REJECTED,
    CalculationStatus.CANCELLED,
    CalculationStatus.INELIGIBLE,
})


class ApprovalStatus(str, Enum):
    """Status of a single approval record."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    ESCALATED = "escalated"
    EXPIRED = "expired"
    DELEGATED = "delegated"


class EscalationPolicy(str, Enum):
    """What the scanner does with an approval past its SLA."""
    AUTO = "auto"
    ALERT_ONLY = "alert_only"


class NotificationEventType(str, Enum):
    """Events pushed to the notification dispatcher."""
    APPROVAL_PENDING = "approval_pending"
    APPROVAL_APPROVED = "approval_approved"
    APPROVAL_REJECTED = "approval_rejected"
    SLA_WARNING = "sla_warning"
    SLA_BREACH = "sla_breach"
    PAYMENT_PROCESSED = "payment_processed"


class AuditAction(str, Enum):
    """Audit action types recorded for calculation and approval changes."""
    CREATE = "create"
    SUPERSEDE = "supersede"
    SUBMIT = "submit"
    APPROVE = "approve"
    REJECT = "reject"
    DELEGATE = "delegate"
    ESCALATE = "escalate"
    EXPIRE = "expire"
    MARK_PAID = "mark_paid"
    CANCEL = "cancel"
    ADJUST = "adjust"
