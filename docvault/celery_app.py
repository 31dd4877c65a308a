"""
Celery Application Instance

Creates the Celery app instance for use by workers and the beat scheduler.
Storage services are built lazily on first use so importing this module
never touches Redis, the database or a storage backend.
"""

import threading
from typing import Optional

from docvault.application.dependency_container import DependencyContainer
from docvault.config.celery_config import make_celery

celery_app = make_celery("docvault")

# Task modules are imported by name when the worker starts, once
# `celery_app` exists for the task decorators.
celery_app.conf.imports = (
    "docvault.tasks.cleanup_task",
    "docvault.tasks.notification_task",
)

_container: Optional[DependencyContainer] = None
_container_lock = threading.Lock()


def get_container() -> DependencyContainer:
    """Return the process-wide container, building it on first call."""
    global _container

    with _container_lock:
        if _container is None:
            from docvault.bootstrap import create_container

            _container = create_container()
        return _container


def set_container(container: Optional[DependencyContainer]) -> None:
    """Replace the process-wide container (tests, embedding applications)."""
    global _container

    with _container_lock:
        _container = container
