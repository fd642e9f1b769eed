"""
Celery application configuration for Menu Sync.

This module configures Celery for:
- Deferred webhook entry processing
- Background catalog synchronization
- Scheduled daily catalog syncs (Celery Beat)
"""

from celery import Celery
from celery.schedules import crontab
from kombu import Queue

from menu_sync.utils.config import get_config

_config = get_config()

REDIS_URL = _config.redis_url
CELERY_RESULT_BACKEND = _config.celery_result_backend or REDIS_URL

celery_app = Celery(
    "menu_sync",
    broker=REDIS_URL,
    backend=CELERY_RESULT_BACKEND,
    include=["menu_sync.workers.tasks"]
)

celery_app.conf.update(
    task_routes={
        "menu_sync.workers.tasks.process_webhook_entry": {"queue": "webhooks"},
        "menu_sync.workers.tasks.sync_tenant_catalog": {"queue": "catalog"},
        "menu_sync.workers.tasks.run_daily_catalog_syncs": {"queue": "catalog"},
    },

    task_queues=(
        Queue("webhooks", routing_key="webhooks"),
        Queue("catalog", routing_key="catalog"),
        Queue("default", routing_key="default"),
    ),
    task_default_queue="default",
    task_default_routing_key="default",

    # Acknowledge after completion so a lost worker redelivers the message
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_time_limit=600,
    task_soft_time_limit=540,
    worker_prefetch_multiplier=1,

    result_expires=3600,

    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],

    timezone="UTC",
    enable_utc=True,

    beat_schedule={
        "daily-catalog-sync": {
            "task": "menu_sync.workers.tasks.run_daily_catalog_syncs",
            "schedule": crontab(hour=_config.catalog.daily_sync_hour, minute=0),
            "options": {"queue": "catalog"},
        },
    },

    worker_max_tasks_per_child=1000,
    worker_hijack_root_logger=False,
)
