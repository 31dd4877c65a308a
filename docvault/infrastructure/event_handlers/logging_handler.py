"""
Logging Event Handler

Infrastructure event handler for logging storage domain events.
Domain layer remains unaware of logging infrastructure.
"""

import logging

from docvault.domain.events import (
    DomainEvent,
    FileDeletedEvent,
    FileStoredEvent,
    OrphanRemovedEvent,
    UploadFailedEvent,
)


class LoggingEventHandler:
    """Logs storage domain events as an audit trail."""

    def __init__(self, logger: logging.Logger):
        """
        Initialize with logger instance.

        Args:
            logger: Python logging.Logger instance
        """
        self.logger = logger

    def handle(self, event: DomainEvent) -> None:
        """
        Handle domain event by logging it.

        Args:
            event: Domain event to log
        """
        try:
            if isinstance(event, FileStoredEvent):
                self._handle_file_stored(event)
            elif isinstance(event, FileDeletedEvent):
                self._handle_file_deleted(event)
            elif isinstance(event, UploadFailedEvent):
                self._handle_upload_failed(event)
            elif isinstance(event, OrphanRemovedEvent):
                self._handle_orphan_removed(event)
            else:
                self.logger.debug(
                    f"Unhandled event: {event.__class__.__name__} "
                    f"(aggregate_id={event.aggregate_id})"
                )
        except Exception as e:
            # Log handler errors but don't fail the operation
            self.logger.error(
                f"Error in logging event handler for {event.__class__.__name__}: {e}",
                exc_info=True,
            )

    def _handle_file_stored(self, event: FileStoredEvent) -> None:
        self.logger.info(
            f"[{event.correlation_id}] File stored: file_id={event.aggregate_id}, "
            f"backend={event.storage_type}, path={event.path}, sensitive={event.is_sensitive}"
        )

    def _handle_file_deleted(self, event: FileDeletedEvent) -> None:
        self.logger.info(
            f"[{event.correlation_id}] File deleted: file_id={event.aggregate_id}, "
            f"backend={event.storage_type}, path={event.path}"
        )

    def _handle_upload_failed(self, event: UploadFailedEvent) -> None:
        self.logger.error(
            f"[{event.correlation_id}] Upload failed: name={event.aggregate_id}, "
            f"backend={event.storage_type}, fallback={event.fallback_path}, error={event.error}"
        )

    def _handle_orphan_removed(self, event: OrphanRemovedEvent) -> None:
        self.logger.warning(
            f"Orphaned catalog row removed: file_id={event.aggregate_id}, "
            f"backend={event.storage_type}, path={event.path}"
        )
