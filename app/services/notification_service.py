"""
Incentive Engine - Notification Service

Dispatches approval and escalation events, and stores the resulting
in-app notifications.

Dispatchers are fire-and-forget from the engine's point of view:
- CeleryNotificationDispatcher enqueues delivery on the worker
- LoggingNotificationDispatcher only logs (local runs)
"""

import uuid
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.incentive_enums import NotificationEventType
from app.models.notification import (
    Notification as NotificationModel,
    NotificationPriority,
)

logger = logging.getLogger(__name__)


EVENT_TEMPLATES = {
    NotificationEventType.APPROVAL_PENDING: (
        "Incentive approval required",
        "Calculation {calculation_id} is waiting for your level {level} approval.",
        NotificationPriority.NORMAL,
    ),
    NotificationEventType.APPROVAL_APPROVED: (
        "Incentive approved",
        "Calculation {calculation_id} has been approved.",
        NotificationPriority.NORMAL,
    ),
    NotificationEventType.APPROVAL_REJECTED: (
        "Incentive rejected",
        "Calculation {calculation_id} was rejected: {reason}",
        NotificationPriority.HIGH,
    ),
    NotificationEventType.SLA_WARNING: (
        "Approval SLA approaching",
        "Approval {approval_id} for calculation {calculation_id} has been pending {pending_hours} hours.",
        NotificationPriority.HIGH,
    ),
    NotificationEventType.SLA_BREACH: (
        "Approval SLA breached",
        "Approval {approval_id} for calculation {calculation_id} has exceeded its SLA ({pending_hours} hours pending).",
        NotificationPriority.URGENT,
    ),
    NotificationEventType.PAYMENT_PROCESSED: (
        "Incentive paid",
        "Calculation {calculation_id} was paid in batch {batch_reference}.",
        NotificationPriority.NORMAL,
    ),
}


class _Defaulting(dict):
    def __missing__(self, key: str) -> str:
        return "-"


def render_event(event_type: NotificationEventType, payload: Dict[str, Any]) -> tuple:
    """Return (title, message, priority) for an event payload."""
    title, template, priority = EVENT_TEMPLATES[event_type]
    return title, template.format_map(_Defaulting(payload)), priority


class NotificationDispatcher(ABC):
    """Receives approval and escalation events."""

    @abstractmethod
    async def notify(self, event_type: NotificationEventType, payload: Dict[str, Any]) -> None:
        ...


class LoggingNotificationDispatcher(NotificationDispatcher):
    """Writes events to the log only."""

    async def notify(self, event_type: NotificationEventType, payload: Dict[str, Any]) -> None:
        title, message, _ = render_event(event_type, payload)
        logger.info(f"[{event_type.value}] {title}: {message}")


class CeleryNotificationDispatcher(NotificationDispatcher):
    """Enqueues notification delivery on the Celery worker."""

    async def notify(self, event_type: NotificationEventType, payload: Dict[str, Any]) -> None:
        from app.tasks.celery_tasks import deliver_incentive_notification_task

        deliver_incentive_notification_task.delay(event_type.value, payload)
        logger.debug(f"Queued {event_type.value} notification for calculation {payload.get('calculation_id')}")


class NotificationService:
    """Service for persisting in-app notifications."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_notification(
        self,
        user_id: uuid.UUID,
        title: str,
        message: str,
        notification_type: NotificationEventType,
        priority: NotificationPriority = NotificationPriority.NORMAL,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> NotificationModel:
        """
        Create a new notification for a user.

        Args:
            user_id: The user to notify
            title: Notification title
            message: Notification message
            notification_type: Event that triggered the notification
            priority: Priority level
            metadata: Additional data to store
        """
        notification = NotificationModel(
            user_id=user_id,
            title=title,
            message=message,
            notification_type=notification_type,
            priority=priority,
            extra_data=metadata,
            is_read=False,
        )

        self.db.add(notification)
        await self.db.flush()

        logger.info(f"Notification created for user {user_id}: {title}")
        return notification

    async def deliver_event(
        self,
        event_type: NotificationEventType,
        payload: Dict[str, Any],
    ) -> List[NotificationModel]:
        """Create one notification per recipient listed in the payload."""
        title, message, priority = render_event(event_type, payload)
        created = []
        for recipient in payload.get("recipient_ids", []):
            created.append(await self.create_notification(
                user_id=uuid.UUID(str(recipient)),
                title=title,
                message=message,
                notification_type=event_type,
                priority=priority,
                metadata=payload,
            ))

        if not created:
            logger.warning(f"{event_type.value} notification has no recipients: {payload}")

        await self.db.commit()
        return created

    async def get_user_notifications(
        self,
        user_id: uuid.UUID,
        unread_only: bool = False,
        limit: int = 50,
    ) -> List[NotificationModel]:
        """Get notifications for a user, newest first."""
        query = select(NotificationModel).where(NotificationModel.user_id == user_id)
        if unread_only:
            query = query.where(NotificationModel.is_read == False)  # noqa: E712
        query = query.order_by(NotificationModel.created_at.desc()).limit(limit)

        result = await self.db.execute(query)
        return list(result.scalars().all())
