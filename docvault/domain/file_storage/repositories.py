"""
File Storage Repository Interfaces

Abstract collaborators the storage services depend on: the metadata
catalog, the hot metadata cache, the owner lookup, the notification
queue and the outbound notification sender.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Mapping, Optional

from docvault.domain.file_storage.entities import FileMetadata, NewFileRecord

NOTIFICATION_KINDS = ("sensitive", "failure", "deletion")


class FileCatalog(ABC):
    """
    Persisted relational catalog of FileMetadata rows.

    The catalog is the source of truth for which objects exist. Rows are
    inserted and deleted, never updated.
    """

    @abstractmethod
    async def create(self, record: NewFileRecord) -> FileMetadata:
        """
        Insert a row.

        Args:
            record: Attributes of the new row

        Returns:
            The stored FileMetadata with its assigned id
        """
        pass

    @abstractmethod
    async def get(self, file_id: int) -> Optional[FileMetadata]:
        pass

    @abstractmethod
    async def get_by_path(self, path: str) -> Optional[FileMetadata]:
        pass

    @abstractmethod
    async def delete(self, file_id: int) -> bool:
        """
        Remove a row.

        Returns:
            True if a row was removed, False if none existed
        """
        pass

    @abstractmethod
    async def list_batch(self, after_id: int, limit: int) -> List[FileMetadata]:
        """
        Page through rows in id order.

        Args:
            after_id: Return rows with id strictly greater than this
            limit: Maximum number of rows to return
        """
        pass

    @abstractmethod
    async def count(self) -> int:
        pass

    @abstractmethod
    async def ping(self) -> bool:
        pass


class MetadataCache(ABC):
    """
    Bounded TTL cache mapping file id to FileMetadata.

    Purely an optimization. Implementations must never raise on backend
    failure; a failed lookup is a miss.
    """

    @abstractmethod
    async def get(self, file_id: int) -> Optional[FileMetadata]:
        pass

    @abstractmethod
    async def set(self, metadata: FileMetadata) -> None:
        pass

    @abstractmethod
    async def evict(self, file_id: int) -> None:
        pass

    @abstractmethod
    async def ping(self) -> bool:
        pass


class OwnerDirectory(ABC):
    """Lookup answering whether the entity owning a document exists."""

    @abstractmethod
    async def exists(self, owner_key: str) -> bool:
        pass


class NotificationQueue(ABC):
    """
    Accumulating queues of notification events, one per kind.

    Kinds are "sensitive", "failure" and "deletion".
    """

    @abstractmethod
    def push(self, kind: str, event: Dict[str, Any]) -> bool:
        """
        Append an event.

        Returns:
            True if stored, False if the queue for the kind is full
        """
        pass

    @abstractmethod
    def snapshot(self) -> Dict[str, List[Dict[str, Any]]]:
        """Return the queued events of every kind without removing them."""
        pass

    @abstractmethod
    def acknowledge(self, counts: Mapping[str, int]) -> None:
        """Remove the first counts[kind] events of each kind."""
        pass


class NotificationSender(ABC):
    """Outbound notification channel (mail, chat, ...)."""

    @abstractmethod
    async def send(self, subject: str, template: str, context: Dict[str, Any]) -> None:
        """
        Deliver one templated notification.

        Args:
            subject: Notification subject line
            template: Template name the channel renders
            context: Values available to the template

        Raises:
            Exception: Delivery failures propagate to the caller
        """
        pass
