"""
Celery Configuration

Configures Celery with the Redis broker, task routing and the beat
schedule for the storage maintenance tasks.
"""

import os

from celery import Celery
from celery.schedules import crontab
from kombu import Queue


class CeleryConfig:
    """Celery configuration settings."""

    # Broker settings
    broker_url = os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/0")
    result_backend = os.getenv("CELERY_RESULT_BACKEND", "redis://localhost:6379/0")

    # Task settings
    task_serializer = "json"
    accept_content = ["json"]
    result_serializer = "json"
    timezone = "UTC"
    enable_utc = True

    # Worker settings
    worker_prefetch_multiplier = 1
    task_acks_late = True
    worker_max_tasks_per_child = 50

    # Task routing
    task_routes = {
        "docvault.cleanup_orphaned_files": {"queue": "maintenance_queue"},
        "docvault.send_daily_notification_summary": {"queue": "notification_queue"},
    }

    # Queue definitions
    task_default_queue = "default"
    task_queues = (
        Queue("default", routing_key="default"),
        Queue("maintenance_queue", routing_key="maintenance"),
        Queue("notification_queue", routing_key="notification"),
    )

    # Beat schedule for periodic tasks
    beat_schedule = {
        "cleanup-orphaned-files": {
            "task": "docvault.cleanup_orphaned_files",
            "schedule": float(os.getenv("SWEEP_INTERVAL_SECONDS", 3600)),
        },
        "daily-notification-summary": {
            "task": "docvault.send_daily_notification_summary",
            "schedule": crontab(hour=0, minute=0),
        },
    }

    # Task time limits (in seconds)
    task_soft_time_limit = int(os.getenv("CELERY_TASK_SOFT_TIME_LIMIT", 1800))
    task_time_limit = int(os.getenv("CELERY_TASK_TIME_LIMIT", 2100))

    # Result backend settings
    result_expires = 86400

    worker_concurrency = int(os.getenv("CELERY_WORKER_CONCURRENCY", 2))


def make_celery(name: str = "docvault") -> Celery:
    """
    Create the Celery instance.

    Args:
        name: Main module name of the application

    Returns:
        Configured Celery instance
    """
    celery = Celery(
        name,
        backend=CeleryConfig.result_backend,
        broker=CeleryConfig.broker_url,
    )

    # Update Celery config from our config class
    celery.config_from_object(CeleryConfig)
    return celery
