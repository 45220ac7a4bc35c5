"""
Incentive Engine - Celery Configuration

Celery configuration for background task processing.
Uses Redis as the message broker and result backend.
"""

from celery import Celery

from app.config import settings
from app.utils.logging_config import configure_logging


configure_logging()

# Create Celery app
celery_app = Celery(
    'incentive_engine',
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=['app.tasks.celery_tasks'],
)

# Celery configuration
celery_app.conf.update(
    # Serialization
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',

    # Timezone
    timezone=settings.celery_timezone,
    enable_utc=True,

    # Task execution settings
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_time_limit=300,  # 5 minutes
    task_soft_time_limit=240,  # 4 minutes (warning before hard limit)

    # Worker settings
    worker_prefetch_multiplier=1,
    worker_hijack_root_logger=False,

    # Result backend settings
    result_expires=86400,  # 24 hours

    # Retry settings
    task_default_retry_delay=60,  # 1 minute

    # Beat schedule for periodic tasks
    beat_schedule={
        # Escalate or alert on approvals past their SLA
        'scan-approval-escalations': {
            'task': 'app.tasks.celery_tasks.scan_for_escalation_task',
            'schedule': settings.escalation_scan_interval_minutes * 60.0,
        },
    },
)


# Task routing
celery_app.conf.task_routes = {
    'app.tasks.celery_tasks.deliver_*': {'queue': 'notifications'},
    'app.tasks.celery_tasks.*': {'queue': 'default'},
}
