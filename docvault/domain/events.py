"""
Domain Events

Immutable records of significant state changes in the storage domain.
Events decouple side effects (logging, auditing) from core storage logic.
"""

from abc import ABC
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class DomainEvent(ABC):
    """
    Base class for all domain events.

    Attributes:
        aggregate_id: ID of the aggregate that generated the event (file id or path)
        occurred_at: Timestamp when the event occurred
        correlation_id: Correlation id of the originating request
    """
    aggregate_id: str
    occurred_at: datetime
    correlation_id: Optional[str]

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert event to dictionary for serialization.

        Returns:
            Dictionary representation of the event
        """
        return {
            "event_type": self.__class__.__name__,
            "aggregate_id": self.aggregate_id,
            "occurred_at": self.occurred_at.isoformat(),
            "correlation_id": self.correlation_id,
        }


@dataclass(frozen=True)
class FileStoredEvent(DomainEvent):
    """
    Event emitted after a file is written to a backend and catalogued.

    Attributes:
        path: Physical path returned by the backend
        storage_type: Backend that holds the object
        is_sensitive: Whether the stored bytes are encrypted
    """
    path: str
    storage_type: str
    is_sensitive: bool

    def to_dict(self) -> Dict[str, Any]:
        base_dict = super().to_dict()
        base_dict.update({
            "path": self.path,
            "storage_type": self.storage_type,
            "is_sensitive": self.is_sensitive,
        })
        return base_dict


@dataclass(frozen=True)
class FileDeletedEvent(DomainEvent):
    """Event emitted after a file and its catalog row are removed."""
    path: str
    storage_type: str

    def to_dict(self) -> Dict[str, Any]:
        base_dict = super().to_dict()
        base_dict.update({"path": self.path, "storage_type": self.storage_type})
        return base_dict


@dataclass(frozen=True)
class UploadFailedEvent(DomainEvent):
    """
    Event emitted when the primary backend rejected an upload.

    Attributes:
        storage_type: Primary backend that failed
        error: Error description
        fallback_path: Path of the forensic local copy, None if that failed too
    """
    storage_type: str
    error: str
    fallback_path: Optional[str]

    def to_dict(self) -> Dict[str, Any]:
        base_dict = super().to_dict()
        base_dict.update({
            "storage_type": self.storage_type,
            "error": self.error,
            "fallback_path": self.fallback_path,
        })
        return base_dict


@dataclass(frozen=True)
class OrphanRemovedEvent(DomainEvent):
    """Event emitted when the sweeper drops a row whose object is missing."""
    path: str
    storage_type: str

    def to_dict(self) -> Dict[str, Any]:
        base_dict = super().to_dict()
        base_dict.update({"path": self.path, "storage_type": self.storage_type})
        return base_dict
