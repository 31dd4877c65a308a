"""
Dependency Injection Container

Holds the storage services built at startup. Web processes and Celery
workers each own one container; components are looked up by the
interface they were registered under.
"""

import logging
import threading
from typing import Any, Callable, Dict, List, Optional, Type, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')

AUDIT_LOGGER_NAME = "docvault.audit"


class DependencyNotFoundError(Exception):
    """No component is registered under the requested interface."""


class DependencyContainer:
    """
    Registry of process-wide components keyed by interface.

    Lookup order is override, then singleton, then transient factory.
    Factories run outside the lock so they may resolve other components.
    """

    def __init__(self):
        self._overrides: Dict[Type, Any] = {}
        self._singletons: Dict[Type, Any] = {}
        self._factories: Dict[Type, Callable[[], Any]] = {}
        self._lock = threading.Lock()

    def register_singleton(self, interface: Type[T], implementation: T) -> None:
        """
        Register one shared instance.

        Example:
            container.register_singleton(FileCatalog, catalog)
        """
        with self._lock:
            self._singletons[interface] = implementation
        logger.debug(f"Registered singleton {interface.__name__}")

    def register_transient(self, interface: Type[T], factory: Callable[[], T]) -> None:
        """Register a factory called on every resolve()."""
        with self._lock:
            self._factories[interface] = factory
        logger.debug(f"Registered factory {interface.__name__}")

    def resolve(self, interface: Type[T]) -> T:
        """
        Return the component registered under interface.

        Raises:
            DependencyNotFoundError: If nothing is registered for it

        Example:
            service = container.resolve(FileUploadService)
        """
        with self._lock:
            for registry in (self._overrides, self._singletons):
                if interface in registry:
                    return registry[interface]
            factory = self._factories.get(interface)

        if factory is None:
            raise DependencyNotFoundError(f"Nothing registered for {interface.__name__}")
        return factory()

    def override(self, interface: Type[T], implementation: T) -> None:
        """Shadow a registration, typically with a test double."""
        with self._lock:
            self._overrides[interface] = implementation
        logger.debug(f"Overrode {interface.__name__}")

    def clear_overrides(self) -> None:
        with self._lock:
            self._overrides.clear()

    def is_registered(self, interface: Type) -> bool:
        return self.get_registration_type(interface) != 'not_registered'

    def get_registration_type(self, interface: Type) -> str:
        """Return 'override', 'singleton', 'transient' or 'not_registered'."""
        with self._lock:
            if interface in self._overrides:
                return 'override'
            if interface in self._singletons:
                return 'singleton'
            if interface in self._factories:
                return 'transient'
        return 'not_registered'

    def setup_event_handlers(self, event_publisher, event_handler_classes: Optional[List[Type]] = None) -> None:
        """
        Subscribe audit handlers to every storage event.

        Args:
            event_publisher: EventPublisher the handlers attach to
            event_handler_classes: Handler classes taking a logger;
                defaults to [LoggingEventHandler]
        """
        from docvault.domain.events import DomainEvent
        from docvault.infrastructure.event_handlers.logging_handler import LoggingEventHandler

        audit_logger = logging.getLogger(AUDIT_LOGGER_NAME)
        for handler_class in event_handler_classes or [LoggingEventHandler]:
            try:
                handler = handler_class(audit_logger)
            except Exception as e:
                logger.error(f"Could not create event handler {handler_class.__name__}: {e}")
                continue
            event_publisher.subscribe(DomainEvent, handler.handle)
            logger.debug(f"Subscribed {handler_class.__name__} to storage events")

    def shutdown(self) -> None:
        """Close every singleton that exposes close(): sessions, pools, refresh timers."""
        with self._lock:
            instances = list(self._singletons.values())

        for instance in instances:
            close = getattr(instance, "close", None)
            if not callable(close):
                continue
            try:
                close()
            except Exception as e:
                logger.warning(f"Error closing {type(instance).__name__}: {e}")
