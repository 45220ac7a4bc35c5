"""
Incentive Engine - Background Tasks Package

Celery background tasks.
"""

from app.tasks.celery_tasks import (
    deliver_incentive_notification_task,
    scan_for_escalation_task,
    run_async,
)

__all__ = [
    "deliver_incentive_notification_task",
    "scan_for_escalation_task",
    "run_async",
]
