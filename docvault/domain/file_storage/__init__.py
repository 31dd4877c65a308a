"""
File Storage Domain

Entities, value objects and collaborator interfaces for stored documents.
"""

from .entities import (
    DownloadedObject,
    FileContent,
    FileMetadata,
    HealthReport,
    NewFileRecord,
    OwnerLink,
    StorageType,
    SweepReport,
    UploadedFile,
    UploadResult,
)
from .repositories import (
    FileCatalog,
    MetadataCache,
    NotificationQueue,
    NotificationSender,
    OwnerDirectory,
)
from .storage_provider import IStorageProvider
from .value_objects import OwnerKey, StorageName

__all__ = [
    "DownloadedObject",
    "FileCatalog",
    "FileContent",
    "FileMetadata",
    "HealthReport",
    "IStorageProvider",
    "MetadataCache",
    "NewFileRecord",
    "NotificationQueue",
    "NotificationSender",
    "OwnerDirectory",
    "OwnerKey",
    "OwnerLink",
    "StorageName",
    "StorageType",
    "SweepReport",
    "UploadedFile",
    "UploadResult",
]
