"""
File Upload Service

Application service that orchestrates storing, retrieving and deleting
documents. Coordinates validation, encryption, the storage backends, the
metadata catalog and cache, and publishes domain events and notifications
for every state change.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, Mapping, Optional

from docvault.application.event_publisher import EventPublisher
from docvault.application.notification_batcher import NotificationBatcher
from docvault.application.orphan_sweeper import OrphanSweeper
from docvault.config.logging_config import new_correlation_id
from docvault.domain.errors import (
    DomainError,
    ErrorCategory,
    FileValidationError,
    StorageErrorKind,
    StorageNotFoundError,
    StorageOperationError,
)
from docvault.domain.events import FileDeletedEvent, FileStoredEvent, UploadFailedEvent
from docvault.domain.file_storage.entities import (
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
from docvault.domain.file_storage.repositories import FileCatalog, MetadataCache, OwnerDirectory
from docvault.domain.file_storage.storage_provider import IStorageProvider
from docvault.domain.file_storage.value_objects import (
    OwnerKey,
    build_fallback_name,
    build_logical_name,
)

logger = logging.getLogger(__name__)


class FileUploadService:
    """
    Application service for the document storage workflow.

    The primary provider receives every new upload; rows written under any
    other registered backend stay readable and deletable through the
    dispatch table. A catalog row exists only for objects that were
    written successfully.
    """

    def __init__(
        self,
        providers: Mapping[str, IStorageProvider],
        primary_storage_type: str,
        catalog: FileCatalog,
        cache: MetadataCache,
        owner_directory: OwnerDirectory,
        codec,
        notification_batcher: NotificationBatcher,
        orphan_sweeper: OrphanSweeper,
        event_publisher: EventPublisher,
        category_slots: Mapping[str, str],
        allowed_mime_types: Iterable[str],
        max_file_size: int,
        fallback_provider: Optional[IStorageProvider] = None,
        mime_sniffer: Optional[Callable[[bytes], Optional[str]]] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize File Upload Service with dependencies.

        Args:
            providers: Dispatch table from storage_type to wrapped provider
            primary_storage_type: Backend that receives new uploads
            catalog: Metadata catalog (source of truth)
            cache: Hot metadata cache
            owner_directory: Lookup for the entity owning a document
            codec: EncryptionCodec for sensitive files
            notification_batcher: Collector for digest notifications
            orphan_sweeper: Catalog/backend reconciliation
            event_publisher: Application service for event publishing
            category_slots: Upload category -> owner document slot
            allowed_mime_types: MIME types accepted on upload
            max_file_size: Maximum accepted size in bytes
            fallback_provider: Single-attempt local provider for forensic copies
            mime_sniffer: Detects the MIME type from content
            clock: Returns the current time in seconds
        """
        if primary_storage_type not in providers:
            raise ValueError(f"No provider registered for primary storage '{primary_storage_type}'")

        self.providers = providers
        self.primary = providers[primary_storage_type]
        self.catalog = catalog
        self.cache = cache
        self.owner_directory = owner_directory
        self.codec = codec
        self.notification_batcher = notification_batcher
        self.orphan_sweeper = orphan_sweeper
        self.event_publisher = event_publisher
        self.category_slots = dict(category_slots)
        self.allowed_mime_types = frozenset(m.lower() for m in allowed_mime_types)
        self.max_file_size = max_file_size
        self.fallback_provider = fallback_provider
        self.mime_sniffer = mime_sniffer
        self._clock = clock

    async def upload_file(
        self,
        file: Optional[UploadedFile],
        owner_key: str,
        category: str,
        sensitive: bool = False,
        correlation_id: Optional[str] = None,
    ) -> UploadResult:
        """
        Validate, optionally encrypt, store and catalogue a document.

        Workflow:
        1. Validate the file, category and owner
        2. Encrypt if sensitive
        3. Upload to the primary backend
        4. Create the catalog row and populate the cache
        5. On backend failure: forensic local copy, failure notification

        Args:
            file: Uploaded bytes with the caller's name and declared type
            owner_key: Key of the owning entity
            category: Upload category, one of the configured categories
            sensitive: Whether to encrypt the stored bytes
            correlation_id: Optional id carried through logs

        Returns:
            UploadResult with the new file id and physical path

        Raises:
            FileValidationError: If the input or owner is invalid
            StorageOperationError: If the backend or the catalog failed
        """
        correlation_id = new_correlation_id(correlation_id)
        mime_type = self._validate_upload(file, category)
        owner = OwnerKey(owner_key).value

        if not await self.owner_directory.exists(owner):
            raise FileValidationError(
                f"Owner not found: {owner}", ErrorCategory.OWNER_NOT_FOUND
            )

        iv = None
        payload = file.content
        if sensitive:
            encrypted = await self.codec.encrypt(file.content)
            payload, iv = encrypted.ciphertext, encrypted.iv

        timestamp_ms = int(self._clock() * 1000)
        logical_name = build_logical_name(category, owner, file.original_name, timestamp_ms)

        logger.info(
            f"[{correlation_id}] Uploading {file.original_name} ({len(file.content)} bytes, "
            f"sensitive={sensitive}) for {owner}/{category} to {self.primary.name}"
        )

        try:
            path = await self.primary.upload(payload, logical_name.value, correlation_id)
        except StorageOperationError as e:
            fallback_path = await self._write_fallback(payload, file.original_name, timestamp_ms, correlation_id)
            self._publish(UploadFailedEvent(
                aggregate_id=logical_name.value,
                occurred_at=datetime.now(timezone.utc),
                correlation_id=correlation_id,
                storage_type=self.primary.storage_type,
                error=str(e),
                fallback_path=fallback_path,
            ))
            await self.notification_batcher.enqueue_failure(self._failure_event(
                "upload", correlation_id, e,
                file_name=file.original_name, owner_key=owner, category=category,
                storage_type=self.primary.storage_type, fallback_path=fallback_path, iv=iv,
            ))
            raise

        record = NewFileRecord(
            path=path,
            file_name=file.original_name,
            mime_type=mime_type,
            file_size=len(file.content),
            storage_type=self.primary.storage_type,
            is_sensitive=sensitive,
            iv=iv,
            owner_link=OwnerLink(slot=self.category_slots[category], owner_key=owner),
        )

        try:
            metadata = await self.catalog.create(record)
        except StorageOperationError as e:
            await self._compensate(path, correlation_id)
            await self.notification_batcher.enqueue_failure(self._failure_event(
                "catalog_write", correlation_id, e,
                file_name=file.original_name, owner_key=owner, category=category,
                storage_type=self.primary.storage_type, path=path, iv=iv,
            ))
            raise StorageOperationError(
                f"Failed to record metadata for {path}: {e.message}",
                kind=e.kind,
                operation="catalog_write",
                backend="catalog",
                correlation_id=correlation_id,
                original_error=e,
            ) from e

        await self.cache.set(metadata)

        self._publish(FileStoredEvent(
            aggregate_id=str(metadata.id),
            occurred_at=datetime.now(timezone.utc),
            correlation_id=correlation_id,
            path=path,
            storage_type=metadata.storage_type,
            is_sensitive=sensitive,
        ))

        if sensitive:
            await self.notification_batcher.enqueue_sensitive(
                self._sensitive_event("upload", metadata, correlation_id)
            )

        return UploadResult(file_id=metadata.id, path=path)

    async def get_file(self, file_id: int, correlation_id: Optional[str] = None) -> FileContent:
        """
        Fetch a stored document, decrypting it if it was stored sensitive.

        Args:
            file_id: Catalog id returned by upload_file()
            correlation_id: Optional id carried through logs

        Returns:
            FileContent with plaintext bytes, MIME type and file name

        Raises:
            FileValidationError: If the id is invalid or no row exists
            StorageNotFoundError: If the row exists but the object is gone
            StorageOperationError: If the backend or decryption failed
        """
        correlation_id = new_correlation_id(correlation_id)
        self._validate_file_id(file_id)

        metadata = await self._lookup(file_id)
        if metadata is None:
            raise FileValidationError("File not found", ErrorCategory.FILE_NOT_FOUND)

        try:
            provider = self._provider_for(metadata, "download", correlation_id)
            downloaded = await provider.download(metadata.path, correlation_id)
            content = downloaded.content
            if metadata.is_sensitive:
                if not metadata.iv:
                    raise StorageOperationError(
                        f"Sensitive file {file_id} has no IV",
                        operation="decrypt",
                        backend="codec",
                        correlation_id=correlation_id,
                    )
                content = await self.codec.decrypt(content, metadata.iv)
        except StorageOperationError as e:
            await self.notification_batcher.enqueue_failure(self._failure_event(
                "download", correlation_id, e,
                file_id=file_id, file_name=metadata.file_name,
                storage_type=metadata.storage_type, path=metadata.path,
            ))
            raise

        if metadata.is_sensitive:
            await self.notification_batcher.enqueue_sensitive(
                self._sensitive_event("download", metadata, correlation_id)
            )

        return FileContent(content=content, mime_type=metadata.mime_type, file_name=metadata.file_name)

    async def delete_file(self, file_id: int, correlation_id: Optional[str] = None) -> None:
        """
        Delete a stored document and its catalog row.

        Deleting an id with no row is a no-op. An object already missing
        from its backend is tolerated and the row is still removed.

        Raises:
            FileValidationError: If the id is invalid
            StorageOperationError: If the backend failed; the row is kept
        """
        correlation_id = new_correlation_id(correlation_id)
        self._validate_file_id(file_id)

        metadata = await self._lookup(file_id)
        if metadata is None:
            logger.info(f"[{correlation_id}] File {file_id} not found, nothing to delete")
            return

        try:
            provider = self._provider_for(metadata, "delete", correlation_id)
            await provider.delete(metadata.path, correlation_id)
        except StorageNotFoundError:
            logger.warning(
                f"[{correlation_id}] Object for file {file_id} already missing from "
                f"{metadata.storage_type}, removing row"
            )
        except StorageOperationError as e:
            await self.notification_batcher.enqueue_failure(self._failure_event(
                "delete", correlation_id, e,
                file_id=file_id, file_name=metadata.file_name,
                storage_type=metadata.storage_type, path=metadata.path,
            ))
            raise

        await self.catalog.delete(file_id)
        await self.cache.evict(file_id)

        self._publish(FileDeletedEvent(
            aggregate_id=str(file_id),
            occurred_at=datetime.now(timezone.utc),
            correlation_id=correlation_id,
            path=metadata.path,
            storage_type=metadata.storage_type,
        ))
        await self.notification_batcher.enqueue_deletion({
            "file_id": file_id,
            "file_name": metadata.file_name,
            "path": metadata.path,
            "storage_type": metadata.storage_type,
            "correlation_id": correlation_id,
        })

    async def send_daily_notification_summary(self) -> bool:
        return await self.notification_batcher.send_daily_summary()

    async def cleanup_orphaned_files(self) -> SweepReport:
        return await self.orphan_sweeper.run()

    async def check_health(self) -> HealthReport:
        """Probe every registered backend, the catalog and the cache."""
        report = HealthReport()

        for storage_type, provider in self.providers.items():
            try:
                await provider.check_health()
                report.providers[storage_type] = True
            except Exception as e:
                logger.error(f"Health check failed for {storage_type} storage: {e}")
                report.providers[storage_type] = False

        try:
            report.catalog = await self.catalog.ping()
        except Exception as e:
            logger.error(f"Catalog health check failed: {e}")
            report.catalog = False

        report.cache = await self.cache.ping()
        return report

    def _validate_upload(self, file: Optional[UploadedFile], category: str) -> str:
        """Check the payload and category; return the MIME type to record."""
        if file is None or not file.content:
            raise FileValidationError("No file provided", ErrorCategory.INVALID_FILE)

        size = max(file.size or 0, len(file.content))
        if size > self.max_file_size:
            raise FileValidationError(
                f"File size {size} exceeds the limit of {self.max_file_size} bytes",
                ErrorCategory.FILE_TOO_LARGE,
            )

        sniffed = self.mime_sniffer(file.content) if self.mime_sniffer else None
        mime_type = (sniffed or file.mime_type or "").lower()
        if mime_type not in self.allowed_mime_types:
            raise FileValidationError(
                f"File type '{mime_type or 'unknown'}' is not allowed",
                ErrorCategory.UNSUPPORTED_MIME_TYPE,
            )

        if category not in self.category_slots:
            raise FileValidationError(
                f"Unknown upload category: {category!r}", ErrorCategory.INVALID_REQUEST
            )

        return mime_type

    @staticmethod
    def _validate_file_id(file_id: Any) -> None:
        if isinstance(file_id, bool) or not isinstance(file_id, int) or file_id <= 0:
            raise FileValidationError(
                f"Invalid file id: {file_id!r}", ErrorCategory.INVALID_REQUEST
            )

    async def _lookup(self, file_id: int) -> Optional[FileMetadata]:
        cached = await self.cache.get(file_id)
        if cached is not None:
            return cached

        metadata = await self.catalog.get(file_id)
        if metadata is not None:
            await self.cache.set(metadata)
        return metadata

    def _provider_for(self, metadata: FileMetadata, operation: str,
                      correlation_id: str) -> IStorageProvider:
        provider = self.providers.get(metadata.storage_type)
        if provider is None:
            raise StorageOperationError(
                f"No provider registered for storage type '{metadata.storage_type}'",
                kind=StorageErrorKind.UNKNOWN,
                operation=operation,
                backend=metadata.storage_type,
                correlation_id=correlation_id,
            )
        return provider

    async def _write_fallback(self, payload: bytes, original_name: str,
                              timestamp_ms: int, correlation_id: str) -> Optional[str]:
        """Keep a forensic local copy of an upload the primary rejected."""
        if self.fallback_provider is None or self.primary.storage_type == StorageType.LOCAL.value:
            return None

        name = build_fallback_name(original_name, timestamp_ms)
        try:
            path = await self.fallback_provider.upload(payload, name.value, correlation_id)
        except DomainError as e:
            logger.error(f"[{correlation_id}] Fallback write failed for {name.value}: {e}")
            return None

        logger.warning(f"[{correlation_id}] Primary upload failed, forensic copy kept at {path}")
        return path

    async def _compensate(self, path: str, correlation_id: str) -> None:
        """
        Remove an object whose catalog row could not be written.

        The object is left alone when another row already owns the path,
        or when the catalog cannot say whether one does.
        """
        try:
            owner_row = await self.catalog.get_by_path(path)
        except DomainError as e:
            logger.error(
                f"[{correlation_id}] Cannot check catalog for {path}, leaving object in place: {e}"
            )
            return

        if owner_row is not None:
            logger.warning(
                f"[{correlation_id}] {path} belongs to file {owner_row.id}, skipping compensating delete"
            )
            return

        try:
            await self.primary.delete(path, correlation_id)
            logger.warning(f"[{correlation_id}] Removed {path} after catalog write failure")
        except DomainError as e:
            logger.error(
                f"[{correlation_id}] Compensating delete of {path} failed, object is untracked: {e}"
            )

    def _publish(self, event) -> None:
        if self.event_publisher is not None:
            self.event_publisher.publish(event)

    @staticmethod
    def _failure_event(operation: str, correlation_id: str, error: Exception,
                       **details: Any) -> Dict[str, Any]:
        event = {"operation": operation, "error": str(error), "correlation_id": correlation_id}
        event.update(details)
        return event

    @staticmethod
    def _sensitive_event(action: str, metadata: FileMetadata, correlation_id: str) -> Dict[str, Any]:
        return {
            "action": action,
            "file_id": metadata.id,
            "file_name": metadata.file_name,
            "path": metadata.path,
            "storage_type": metadata.storage_type,
            "owner_key": metadata.owner_link.owner_key if metadata.owner_link else None,
            "correlation_id": correlation_id,
        }
