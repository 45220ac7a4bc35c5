"""
Incentive Engine - Celery Tasks

Background tasks for the escalation scan and notification delivery.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

from celery import shared_task
from sqlalchemy.exc import SQLAlchemyError

from app.config import settings
from app.database import async_session_factory

logger = logging.getLogger(__name__)


def run_async(coro):
    """Helper to run async functions in Celery tasks."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def build_incentive_engine(session_factory=None, notifier=None):
    """Engine wired to the database and the Celery notification dispatcher."""
    from app.services.approval_chain import StaticApproverResolver
    from app.services.audit_service import AuditService
    from app.services.incentive_engine import IncentiveEngine
    from app.services.notification_service import CeleryNotificationDispatcher
    from app.services.store import SQLAlchemyIncentiveStore

    session_factory = session_factory or async_session_factory
    return IncentiveEngine(
        store=SQLAlchemyIncentiveStore(session_factory),
        audit=AuditService(session_factory),
        notifier=notifier or CeleryNotificationDispatcher(),
        approver_resolver=StaticApproverResolver(
            settings.approver_ids_by_level,
            default_approver=settings.escalation_approver_id,
        ),
        settings=settings,
    )


# ===========================================
# ESCALATION TASKS
# ===========================================

@shared_task(name='app.tasks.celery_tasks.scan_for_escalation_task')
def scan_for_escalation_task(sla_hours: Optional[float] = None) -> Dict[str, Any]:
    """Escalate or alert on pending approvals past their SLA."""
    return run_async(_scan_for_escalation(sla_hours))


async def _scan_for_escalation(sla_hours: Optional[float] = None, engine=None) -> Dict[str, Any]:
    """Async implementation of the escalation scan."""
    engine = engine or build_incentive_engine()
    result = await engine.scan_for_escalation(sla_hours=sla_hours)

    if not result.ok:
        logger.error(f"Escalation scan failed: {result.error.message}")
        return result.to_dict()

    report = result.value
    logger.info(
        f"Escalation scan at {report.scanned_at.isoformat()}: {len(report.breached)} breached, "
        f"{len(report.warnings)} warnings, {len(report.escalated)} escalated"
    )
    return {
        "ok": True,
        "scanned_at": report.scanned_at.isoformat(),
        "sla_hours": report.sla_hours,
        "breached": len(report.breached),
        "warnings": len(report.warnings),
        "escalated": [str(a) for a in report.escalated],
        "alerted": [str(a) for a in report.alerted],
        "failed": {str(a): code for a, code in report.failed},
    }


# ===========================================
# NOTIFICATION TASKS
# ===========================================

@shared_task(name='app.tasks.celery_tasks.deliver_incentive_notification_task', bind=True, max_retries=3)
def deliver_incentive_notification_task(self, event_type: str, payload: Dict[str, Any]) -> int:
    """Persist the in-app notifications for one incentive event."""
    try:
        return run_async(_deliver_notification(event_type, payload))
    except SQLAlchemyError as exc:
        logger.warning(f"Notification delivery failed, retrying: {exc}")
        raise self.retry(exc=exc)


async def _deliver_notification(event_type: str, payload: Dict[str, Any], session_factory=None) -> int:
    """Async notification delivery."""
    from app.models.incentive_enums import NotificationEventType
    from app.services.notification_service import NotificationService

    async with (session_factory or async_session_factory)() as db:
        notification_service = NotificationService(db)
        created = await notification_service.deliver_event(NotificationEventType(event_type), payload)
        return len(created)
