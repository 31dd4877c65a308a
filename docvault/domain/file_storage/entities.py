"""
File Storage Entities

Domain entities for stored documents and the results of storage operations.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class StorageType(str, Enum):
    """Storage backends a catalog row can point at."""

    LOCAL = "local"
    NAS = "nas"
    GCP = "gcp"
    AWS = "aws"
    ALIBABA = "alibaba"

    @classmethod
    def values(cls) -> List[str]:
        return [member.value for member in cls]

    @classmethod
    def is_known(cls, value: str) -> bool:
        return value in cls.values()


@dataclass(frozen=True)
class OwnerLink:
    """
    Back-reference from a stored file to the document slot that owns it.

    Attributes:
        slot: Document slot of the owning entity (e.g. identity_card, qr_code)
        owner_key: Key of the owning entity
    """
    slot: str
    owner_key: str


@dataclass(frozen=True)
class UploadedFile:
    """Bytes handed in by a caller together with what the caller claims about them."""
    content: bytes
    original_name: str
    mime_type: str
    size: Optional[int] = None

    def __post_init__(self):
        if self.size is None and self.content is not None:
            object.__setattr__(self, "size", len(self.content))


@dataclass(frozen=True)
class NewFileRecord:
    """Attributes of a catalog row before the catalog assigns an id."""
    path: str
    file_name: str
    mime_type: str
    file_size: int
    storage_type: str
    is_sensitive: bool
    iv: Optional[str] = None
    owner_link: Optional[OwnerLink] = None

    def __post_init__(self):
        if self.is_sensitive and not self.iv:
            raise ValueError("Sensitive files require an IV")
        if not self.is_sensitive and self.iv:
            raise ValueError("IV is only stored for sensitive files")


@dataclass(frozen=True)
class FileMetadata:
    """
    Entity describing one stored object.

    Rows are created once after a successful backend write and removed by
    the delete path or the orphan sweeper. They are never updated in place.
    """
    id: int
    path: str
    file_name: str
    mime_type: str
    file_size: int
    storage_type: str
    is_sensitive: bool
    iv: Optional[str] = None
    owner_link: Optional[OwnerLink] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_record(cls, file_id: int, record: NewFileRecord,
                    created_at: Optional[datetime] = None) -> 'FileMetadata':
        return cls(
            id=file_id,
            path=record.path,
            file_name=record.file_name,
            mime_type=record.mime_type,
            file_size=record.file_size,
            storage_type=record.storage_type,
            is_sensitive=record.is_sensitive,
            iv=record.iv,
            owner_link=record.owner_link,
            created_at=created_at or datetime.now(timezone.utc),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for caching."""
        return {
            "id": self.id,
            "path": self.path,
            "file_name": self.file_name,
            "mime_type": self.mime_type,
            "file_size": self.file_size,
            "storage_type": self.storage_type,
            "is_sensitive": self.is_sensitive,
            "iv": self.iv,
            "owner_slot": self.owner_link.slot if self.owner_link else None,
            "owner_key": self.owner_link.owner_key if self.owner_link else None,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'FileMetadata':
        """Rebuild an entity serialized with to_dict()."""
        owner_link = None
        if data.get("owner_slot") and data.get("owner_key"):
            owner_link = OwnerLink(slot=data["owner_slot"], owner_key=data["owner_key"])
        return cls(
            id=int(data["id"]),
            path=data["path"],
            file_name=data["file_name"],
            mime_type=data["mime_type"],
            file_size=int(data["file_size"]),
            storage_type=data["storage_type"],
            is_sensitive=bool(data["is_sensitive"]),
            iv=data.get("iv"),
            owner_link=owner_link,
            created_at=datetime.fromisoformat(data["created_at"]),
        )


@dataclass(frozen=True)
class DownloadedObject:
    """Raw bytes returned by a storage provider."""
    content: bytes
    mime_type: str


@dataclass(frozen=True)
class UploadResult:
    file_id: int
    path: str


@dataclass(frozen=True)
class FileContent:
    """Plaintext bytes of a stored file as returned to callers."""
    content: bytes
    mime_type: str
    file_name: str


@dataclass
class SweepReport:
    """Outcome of one orphan reconciliation run."""
    scanned: int = 0
    removed: int = 0
    skipped_unknown_backend: int = 0
    probe_failures: int = 0
    removed_ids: List[int] = field(default_factory=list)
    skipped: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scanned": self.scanned,
            "removed": self.removed,
            "skipped_unknown_backend": self.skipped_unknown_backend,
            "probe_failures": self.probe_failures,
            "removed_ids": list(self.removed_ids),
            "skipped": self.skipped,
        }


@dataclass
class HealthReport:
    providers: Dict[str, bool] = field(default_factory=dict)
    catalog: bool = False
    cache: bool = False

    @property
    def healthy(self) -> bool:
        return self.catalog and all(self.providers.values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "providers": dict(self.providers),
            "catalog": self.catalog,
            "cache": self.cache,
            "healthy": self.healthy,
        }
