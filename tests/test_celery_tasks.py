"""
Incentive Engine - Celery Task Tests

Tests the task bodies without a broker.
"""

import logging
import pytest
from datetime import datetime
from unittest.mock import AsyncMock, patch
from uuid import uuid4

from app.celery_app import celery_app
from app.models.incentive_enums import NotificationEventType
from app.schemas.incentive import EscalationReport
from app.services.notification_service import (
    CeleryNotificationDispatcher,
    LoggingNotificationDispatcher,
    render_event,
)
from app.tasks.celery_tasks import (
    _deliver_notification,
    _scan_for_escalation,
    build_incentive_engine,
)
from app.utils.error_handling import Result, ValidationException
from app.utils.logging_config import LOG_FORMAT, configure_logging


class TestEscalationTask:
    """Test the periodic escalation scan task."""

    @pytest.mark.asyncio
    async def test_scan_summary(self):
        breached, warned = uuid4(), uuid4()
        engine = AsyncMock()
        engine.scan_for_escalation.return_value = Result.success(EscalationReport(
            scanned_at=datetime(2024, 7, 4, 9, 0),
            sla_hours=72.0,
            warning_hours=54.0,
            breached=(breached,),
            warnings=(warned,),
            escalated=(breached,),
        ))

        summary = await _scan_for_escalation(sla_hours=72.0, engine=engine)

        engine.scan_for_escalation.assert_awaited_once_with(sla_hours=72.0)
        assert summary["ok"] is True
        assert summary["breached"] == 1
        assert summary["warnings"] == 1
        assert summary["escalated"] == [str(breached)]
        assert summary["failed"] == {}

    @pytest.mark.asyncio
    async def test_scan_failure_is_reported(self):
        engine = AsyncMock()
        engine.scan_for_escalation.return_value = Result.failure(
            ValidationException("SLA hours must be positive", field="sla_hours")
        )

        summary = await _scan_for_escalation(sla_hours=0, engine=engine)

        assert summary["ok"] is False
        assert summary["error"]["code"] == "VALIDATION_ERROR"

    def test_beat_schedule_registered(self):
        schedule = celery_app.conf.beat_schedule["scan-approval-escalations"]
        assert schedule["task"] == "app.tasks.celery_tasks.scan_for_escalation_task"

    def test_engine_wiring(self, session_factory):
        engine = build_incentive_engine(session_factory=session_factory)
        assert isinstance(engine.notifier, CeleryNotificationDispatcher)


class TestNotificationDelivery:
    """Test dispatchers and the delivery task body."""

    @pytest.mark.asyncio
    async def test_celery_dispatcher_enqueues(self):
        payload = {"calculation_id": "c-1", "recipient_ids": []}

        with patch("app.tasks.celery_tasks.deliver_incentive_notification_task.delay") as delay:
            await CeleryNotificationDispatcher().notify(NotificationEventType.SLA_BREACH, payload)

        delay.assert_called_once_with("sla_breach", payload)

    @pytest.mark.asyncio
    async def test_logging_dispatcher(self, caplog):
        with caplog.at_level(logging.INFO, logger="app.services.notification_service"):
            await LoggingNotificationDispatcher().notify(
                NotificationEventType.PAYMENT_PROCESSED,
                {"calculation_id": "c-9", "batch_reference": "B-1"},
            )

        assert "Calculation c-9 was paid in batch B-1." in caplog.text

    def test_missing_template_fields_render_as_dash(self):
        title, message, _ = render_event(NotificationEventType.APPROVAL_REJECTED, {"calculation_id": "c-2"})

        assert title == "Incentive rejected"
        assert message == "Calculation c-2 was rejected: -"

    @pytest.mark.asyncio
    async def test_deliver_notification(self, session_factory):
        recipient = uuid4()

        created = await _deliver_notification(
            "approval_pending",
            {"calculation_id": "c-3", "level": 2, "recipient_ids": [str(recipient)]},
            session_factory=session_factory,
        )

        assert created == 1


def test_configure_logging_uses_app_format():
    configure_logging(logging.INFO)
    assert "%(levelname)s" in LOG_FORMAT
    assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING
