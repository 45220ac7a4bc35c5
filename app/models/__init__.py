"""
Incentive Engine - SQLAlchemy Models Package

This package contains all database models for the application.
"""

from app.models.base import BaseModel, TimestampMixin
from app.models.incentive_enums import (
    AchievementType,
    ApprovalStatus,
    AuditAction,
    CalculationStatus,
    EscalationPolicy,
    NotificationEventType,
    PlanStatus,
    TERMINAL_CALCULATION_STATUSES,
)
from app.models.incentive import (
    IncentivePlanModel,
    SlabModel,
    CalculationModel,
    ApprovalModel,
)
from app.models.audit import AuditLog
from app.models.notification import Notification, NotificationPriority

__all__ = [
    "BaseModel",
    "TimestampMixin",
    "AchievementType",
    "ApprovalStatus",
    "AuditAction",
    "CalculationStatus",
    "EscalationPolicy",
    "NotificationEventType",
    "PlanStatus",
    "TERMINAL_CALCULATION_STATUSES",
    "IncentivePlanModel",
    "SlabModel",
    "CalculationModel",
    "ApprovalModel",
    "AuditLog",
    "Notification",
    "NotificationPriority",
]
