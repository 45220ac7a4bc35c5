"""
Incentive Engine - Services Package

Calculation, approval workflow and escalation services.
"""

from app.services.slab_resolver import SlabResolver, ValidationIssue
from app.services.achievement_calculator import AchievementCalculator, AchievementResult
from app.services.incentive_calculator import IncentiveCalculator
from app.services.plan_validation import PlanValidationService, PlanValidationResult
from app.services.approval_chain import ApprovalChain, StaticApproverResolver
from app.services.calculation_state_machine import CalculationAction, CalculationStateMachine, Transition
from app.services.escalation_scanner import EscalationScanner, EscalationScan
from app.services.store import IncentiveStore, InMemoryIncentiveStore, SQLAlchemyIncentiveStore
from app.services.audit_service import AuditService, AuditSink
from app.services.notification_service import (
    CeleryNotificationDispatcher,
    LoggingNotificationDispatcher,
    NotificationDispatcher,
    NotificationService,
)
from app.services.incentive_engine import BatchOutcome, IncentiveEngine

__all__ = [
    "SlabResolver",
    "ValidationIssue",
    "AchievementCalculator",
    "AchievementResult",
    "IncentiveCalculator",
    "PlanValidationService",
    "PlanValidationResult",
    "ApprovalChain",
    "StaticApproverResolver",
    "CalculationAction",
    "CalculationStateMachine",
    "Transition",
    "EscalationScanner",
    "EscalationScan",
    "IncentiveStore",
    "InMemoryIncentiveStore",
    "SQLAlchemyIncentiveStore",
    "AuditService",
    "AuditSink",
    "CeleryNotificationDispatcher",
    "LoggingNotificationDispatcher",
    "NotificationDispatcher",
    "NotificationService",
    "BatchOutcome",
    "IncentiveEngine",
]
