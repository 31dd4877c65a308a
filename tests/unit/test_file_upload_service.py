"""
Unit tests for FileUploadService

Covers the upload, download and delete workflows over in-memory backends:
validation, encryption, fallback copies, compensation, idempotent delete
and the notification events each path produces.
"""

import asyncio
from unittest.mock import Mock

import pytest

from docvault.domain.errors import (
    ErrorCategory,
    FileValidationError,
    StorageErrorKind,
    StorageNotFoundError,
    StorageOperationError,
)
from docvault.domain.events import (
    DomainEvent,
    FileDeletedEvent,
    FileStoredEvent,
    UploadFailedEvent,
)
from docvault.domain.file_storage.entities import UploadedFile
from docvault.domain.file_storage.value_objects import build_logical_name
from tests.fixtures.fakes import InMemoryStorageProvider


@pytest.fixture
def published(event_publisher):
    events = []
    event_publisher.subscribe(DomainEvent, events.append)
    return events


def _jpeg(content, name="photo.jpg"):
    return UploadedFile(content=content, original_name=name, mime_type="image/jpeg")


class TestUploadFile:
    """Test the upload workflow."""

    def test_sensitive_jpeg_round_trip(self, service_factory, local_backend, catalog, jpeg_bytes):
        service = service_factory({"local": local_backend}, "local")

        result = asyncio.run(service.upload_file(_jpeg(jpeg_bytes), "P1", "documents", sensitive=True))

        assert result.file_id == 1
        assert result.path.startswith("documents/P1/")
        assert result.path.endswith(".jpg")

        row = catalog.rows[1]
        assert row.is_sensitive is True
        assert row.iv is not None and len(row.iv) == 32
        assert row.file_size == len(jpeg_bytes)
        assert row.owner_link.slot == "document"
        assert row.owner_link.owner_key == "P1"
        assert local_backend.objects[result.path] != jpeg_bytes

        fetched = asyncio.run(service.get_file(1))
        assert fetched.content == jpeg_bytes
        assert fetched.mime_type == "image/jpeg"
        assert fetched.file_name == "photo.jpg"

    def test_plain_upload_stores_bytes_unchanged(self, service_factory, local_backend, catalog, cache, jpeg_bytes):
        service = service_factory({"local": local_backend}, "local")

        result = asyncio.run(service.upload_file(_jpeg(jpeg_bytes), "P2", "ktp"))

        assert local_backend.objects[result.path] == jpeg_bytes
        assert catalog.rows[result.file_id].iv is None
        assert catalog.rows[result.file_id].owner_link.slot == "identity_card"
        assert cache.entries[result.file_id].path == result.path

    def test_sensitive_upload_queues_access_notification(self, service_factory, local_backend,
                                                         notification_queue, jpeg_bytes):
        service = service_factory({"local": local_backend}, "local")

        asyncio.run(service.upload_file(_jpeg(jpeg_bytes), "P1", "documents", sensitive=True))

        sensitive = notification_queue.queues["sensitive"]
        assert len(sensitive) == 1
        assert sensitive[0]["action"] == "upload"
        assert sensitive[0]["owner_key"] == "P1"

    def test_publishes_file_stored_event(self, service_factory, local_backend, published, jpeg_bytes):
        service = service_factory({"local": local_backend}, "local")

        result = asyncio.run(service.upload_file(_jpeg(jpeg_bytes), "P1", "documents", correlation_id="cid-1"))

        stored = [e for e in published if isinstance(e, FileStoredEvent)]
        assert len(stored) == 1
        assert stored[0].path == result.path
        assert stored[0].correlation_id == "cid-1"

    def test_file_name_is_sanitized(self, service_factory, local_backend, jpeg_bytes):
        service = service_factory({"local": local_backend}, "local")

        result = asyncio.run(service.upload_file(_jpeg(jpeg_bytes, "../../my photo (1).jpg"), "P1", "foto"))

        assert ".." not in result.path
        assert result.path.startswith("foto/P1/")
        assert result.path.endswith("-my_photo_1_.jpg")


class TestUploadValidation:
    """Test that invalid uploads are rejected before any backend call."""

    def test_rejects_missing_file(self, service_factory, local_backend):
        service = service_factory({"local": local_backend}, "local")

        with pytest.raises(FileValidationError) as exc_info:
            asyncio.run(service.upload_file(None, "P1", "documents"))

        assert exc_info.value.category == ErrorCategory.INVALID_FILE
        assert local_backend.calls["upload"] == 0

    def test_rejects_empty_content(self, service_factory, local_backend):
        service = service_factory({"local": local_backend}, "local")

        with pytest.raises(FileValidationError):
            asyncio.run(service.upload_file(_jpeg(b""), "P1", "documents"))

    def test_rejects_oversized_file(self, service_factory, local_backend):
        service = service_factory({"local": local_backend}, "local")
        content = b"\xff\xd8" + b"0" * (5 * 1024 * 1024)

        with pytest.raises(FileValidationError) as exc_info:
            asyncio.run(service.upload_file(_jpeg(content), "P1", "documents"))

        assert exc_info.value.category == ErrorCategory.FILE_TOO_LARGE
        assert local_backend.calls["upload"] == 0

    def test_sniffed_type_wins_over_declared(self, service_factory, local_backend, jpeg_bytes):
        service = service_factory({"local": local_backend}, "local", mime_type="application/x-dosexec")

        with pytest.raises(FileValidationError) as exc_info:
            asyncio.run(service.upload_file(_jpeg(jpeg_bytes), "P1", "documents"))

        assert exc_info.value.category == ErrorCategory.UNSUPPORTED_MIME_TYPE

    def test_declared_type_used_when_sniffing_fails(self, service_factory, local_backend, catalog, jpeg_bytes):
        service = service_factory({"local": local_backend}, "local", mime_type=None)
        upload = UploadedFile(content=jpeg_bytes, original_name="scan.pdf", mime_type="application/pdf")

        result = asyncio.run(service.upload_file(upload, "P1", "documents"))

        assert catalog.rows[result.file_id].mime_type == "application/pdf"

    def test_rejects_unknown_category(self, service_factory, local_backend, jpeg_bytes):
        service = service_factory({"local": local_backend}, "local")

        with pytest.raises(FileValidationError):
            asyncio.run(service.upload_file(_jpeg(jpeg_bytes), "P1", "passport"))

    @pytest.mark.parametrize("owner_key", ["", "../P1", "P 1", "a" * 65])
    def test_rejects_malformed_owner_key(self, service_factory, local_backend, owner_directory,
                                         jpeg_bytes, owner_key):
        service = service_factory({"local": local_backend}, "local")

        with pytest.raises(FileValidationError):
            asyncio.run(service.upload_file(_jpeg(jpeg_bytes), owner_key, "documents"))

        assert owner_directory.lookups == []

    def test_rejects_unknown_owner(self, service_factory, local_backend, catalog, jpeg_bytes):
        service = service_factory({"local": local_backend}, "local")

        with pytest.raises(FileValidationError) as exc_info:
            asyncio.run(service.upload_file(_jpeg(jpeg_bytes), "P9", "documents"))

        assert exc_info.value.category == ErrorCategory.OWNER_NOT_FOUND
        assert local_backend.calls["upload"] == 0
        assert catalog.rows == {}


class TestUploadFailure:
    """Test fallback and notification behavior when the primary fails."""

    def test_exhausted_primary_writes_one_fallback_copy(self, service_factory, primary_backend, local_backend,
                                                        catalog, notification_queue, published, jpeg_bytes):
        primary_backend.fail_next("upload", *[ConnectionError("reset")] * 3)
        service = service_factory({"aws": primary_backend, "local": local_backend}, "aws",
                                  fallback=local_backend)

        with pytest.raises(StorageOperationError) as exc_info:
            asyncio.run(service.upload_file(_jpeg(jpeg_bytes), "P1", "documents"))

        assert exc_info.value.attempts == 3
        assert exc_info.value.kind == StorageErrorKind.IO_ERROR
        assert primary_backend.calls["upload"] == 3
        assert local_backend.calls["upload"] == 1
        fallback_paths = list(local_backend.objects)
        assert len(fallback_paths) == 1
        assert fallback_paths[0].startswith("fallback/")
        assert catalog.rows == {}

        failures = notification_queue.queues["failure"]
        assert len(failures) == 1
        assert failures[0]["operation"] == "upload"
        assert failures[0]["fallback_path"] == fallback_paths[0]
        assert failures[0]["owner_key"] == "P1"
        assert failures[0]["iv"] is None

        failed_events = [e for e in published if isinstance(e, UploadFailedEvent)]
        assert len(failed_events) == 1
        assert failed_events[0].fallback_path == fallback_paths[0]

    def test_sensitive_fallback_keeps_ciphertext_and_iv(self, service_factory, primary_backend, local_backend,
                                                        notification_queue, jpeg_bytes):
        primary_backend.fail_next("upload", *[ConnectionError("reset")] * 3)
        service = service_factory({"aws": primary_backend, "local": local_backend}, "aws",
                                  fallback=local_backend)

        with pytest.raises(StorageOperationError):
            asyncio.run(service.upload_file(_jpeg(jpeg_bytes), "P1", "documents", sensitive=True))

        (stored,) = local_backend.objects.values()
        assert stored != jpeg_bytes
        assert len(notification_queue.queues["failure"][0]["iv"]) == 32

    def test_failing_fallback_does_not_mask_primary_error(self, service_factory, primary_backend, local_backend,
                                                          notification_queue, jpeg_bytes):
        primary_backend.fail_next("upload", *[ConnectionError("reset")] * 3)
        local_backend.fail_next("upload", ConnectionError("disk gone"))
        service = service_factory({"aws": primary_backend, "local": local_backend}, "aws",
                                  fallback=local_backend)

        with pytest.raises(StorageOperationError) as exc_info:
            asyncio.run(service.upload_file(_jpeg(jpeg_bytes), "P1", "documents"))

        assert exc_info.value.backend == "aws"
        assert local_backend.calls["upload"] == 1
        assert notification_queue.queues["failure"][0]["fallback_path"] is None

    def test_local_primary_has_no_fallback_copy(self, service_factory, local_backend, notification_queue, jpeg_bytes):
        local_backend.fail_next("upload", *[ConnectionError("reset")] * 3)
        service = service_factory({"local": local_backend}, "local", fallback=local_backend)

        with pytest.raises(StorageOperationError):
            asyncio.run(service.upload_file(_jpeg(jpeg_bytes), "P1", "documents"))

        assert local_backend.calls["upload"] == 3
        assert local_backend.objects == {}
        assert notification_queue.queues["failure"][0]["fallback_path"] is None

    def test_permanent_error_is_not_retried(self, service_factory, primary_backend, local_backend, jpeg_bytes):
        primary_backend.fail_next("upload", RuntimeError("invalid credentials"))
        service = service_factory({"aws": primary_backend, "local": local_backend}, "aws",
                                  fallback=local_backend)

        with pytest.raises(StorageOperationError) as exc_info:
            asyncio.run(service.upload_file(_jpeg(jpeg_bytes), "P1", "documents"))

        assert exc_info.value.kind == StorageErrorKind.UNKNOWN
        assert exc_info.value.attempts == 1
        assert primary_backend.calls["upload"] == 1

    def test_transient_failures_below_budget_succeed(self, service_factory, primary_backend, local_backend,
                                                     catalog, jpeg_bytes):
        primary_backend.fail_next("upload", ConnectionError("reset"), PermissionError("locked"))
        service = service_factory({"aws": primary_backend, "local": local_backend}, "aws",
                                  fallback=local_backend)

        result = asyncio.run(service.upload_file(_jpeg(jpeg_bytes), "P1", "documents"))

        assert primary_backend.calls["upload"] == 3
        assert catalog.rows[result.file_id].storage_type == "aws"
        assert local_backend.objects == {}

    def test_catalog_failure_removes_written_object(self, service_factory, local_backend, catalog,
                                                    notification_queue, jpeg_bytes):
        catalog.fail_create = True
        service = service_factory({"local": local_backend}, "local")

        with pytest.raises(StorageOperationError) as exc_info:
            asyncio.run(service.upload_file(_jpeg(jpeg_bytes), "P1", "documents"))

        assert exc_info.value.operation == "catalog_write"
        assert local_backend.calls["delete"] == 1
        assert local_backend.objects == {}
        assert notification_queue.queues["failure"][0]["operation"] == "catalog_write"

    def test_catalog_failure_keeps_object_owned_by_another_row(self, service_factory, local_backend,
                                                               catalog, jpeg_bytes):
        path = build_logical_name("documents", "P1", "photo.jpg", 1700000000123).value
        local_backend.objects[path] = b"earlier upload"
        catalog.insert(7, path, "local")
        service = service_factory({"local": local_backend}, "local")

        with pytest.raises(StorageOperationError) as exc_info:
            asyncio.run(service.upload_file(_jpeg(jpeg_bytes), "P1", "documents"))

        assert exc_info.value.operation == "catalog_write"
        assert local_backend.calls["delete"] == 0
        assert path in local_backend.objects
        assert catalog.rows[7].path == path

    def test_catalog_failure_keeps_object_when_ownership_is_unknown(self, service_factory, local_backend,
                                                                    catalog, jpeg_bytes):
        catalog.fail_create = True
        catalog.fail_lookup = True
        service = service_factory({"local": local_backend}, "local")

        with pytest.raises(StorageOperationError):
            asyncio.run(service.upload_file(_jpeg(jpeg_bytes), "P1", "documents"))

        assert local_backend.calls["delete"] == 0
        assert len(local_backend.objects) == 1


class TestNotificationQueueFailure:
    """Test that a broken notification queue never fails a storage operation."""

    @pytest.fixture
    def broken_queue(self, batcher):
        queue = Mock(wraps=batcher.queue)
        queue.push.side_effect = ConnectionError("redis down")
        batcher.queue = queue
        batcher.metrics = Mock()
        return queue

    def test_sensitive_upload_succeeds(self, service_factory, local_backend, catalog, batcher,
                                       broken_queue, jpeg_bytes):
        service = service_factory({"local": local_backend}, "local")

        result = asyncio.run(service.upload_file(_jpeg(jpeg_bytes), "P1", "documents", sensitive=True))

        assert catalog.rows[result.file_id].is_sensitive
        broken_queue.push.assert_called_once()
        batcher.metrics.record_dropped_notification.assert_called_once_with("sensitive")

    def test_failed_upload_raises_the_storage_error(self, service_factory, primary_backend, local_backend,
                                                    batcher, broken_queue, jpeg_bytes):
        primary_backend.fail_next("upload", *[ConnectionError("reset")] * 3)
        service = service_factory({"aws": primary_backend, "local": local_backend}, "aws",
                                  fallback=local_backend)

        with pytest.raises(StorageOperationError) as exc_info:
            asyncio.run(service.upload_file(_jpeg(jpeg_bytes), "P1", "documents"))

        assert exc_info.value.operation == "upload"
        batcher.metrics.record_dropped_notification.assert_called_once_with("failure")

    def test_delete_succeeds(self, service_factory, local_backend, catalog, batcher, broken_queue, jpeg_bytes):
        service = service_factory({"local": local_backend}, "local")
        result = asyncio.run(service.upload_file(_jpeg(jpeg_bytes), "P1", "documents"))

        asyncio.run(service.delete_file(result.file_id))

        assert catalog.rows == {}
        batcher.metrics.record_dropped_notification.assert_called_once_with("deletion")


class TestGetFile:
    """Test the download workflow."""

    @pytest.mark.parametrize("file_id", [0, -1, True, "1", 1.5, None])
    def test_rejects_invalid_ids(self, service_factory, local_backend, file_id):
        service = service_factory({"local": local_backend}, "local")

        with pytest.raises(FileValidationError):
            asyncio.run(service.get_file(file_id))

    def test_missing_row_is_validation_error(self, service_factory, local_backend):
        service = service_factory({"local": local_backend}, "local")

        with pytest.raises(FileValidationError, match="File not found"):
            asyncio.run(service.get_file(42))

    def test_missing_object_raises_not_found_and_queues_failure(self, service_factory, local_backend,
                                                                catalog, notification_queue):
        catalog.insert(7, "documents/P1/1-gone.jpg", "local")
        service = service_factory({"local": local_backend}, "local")

        with pytest.raises(StorageNotFoundError):
            asyncio.run(service.get_file(7))

        assert local_backend.calls["download"] == 1
        assert notification_queue.queues["failure"][0]["operation"] == "download"

    def test_unmapped_storage_type_is_unknown_error(self, service_factory, local_backend, catalog):
        catalog.insert(3, "bucket/documents/x.jpg", "azure")
        service = service_factory({"local": local_backend}, "local")

        with pytest.raises(StorageOperationError) as exc_info:
            asyncio.run(service.get_file(3))

        assert exc_info.value.kind == StorageErrorKind.UNKNOWN

    def test_serves_rows_from_non_primary_backend(self, service_factory, primary_backend, local_backend, catalog):
        local_backend.objects["documents/P1/1-old.jpg"] = b"old bytes"
        catalog.insert(5, "documents/P1/1-old.jpg", "local")
        service = service_factory({"aws": primary_backend, "local": local_backend}, "aws")

        assert asyncio.run(service.get_file(5)).content == b"old bytes"

    def test_cache_is_populated_on_miss(self, service_factory, local_backend, catalog, cache):
        local_backend.objects["documents/P1/1-a.jpg"] = b"a"
        catalog.insert(9, "documents/P1/1-a.jpg", "local")
        service = service_factory({"local": local_backend}, "local")

        asyncio.run(service.get_file(9))

        assert 9 in cache.entries

    def test_sensitive_download_queues_access_notification(self, service_factory, local_backend,
                                                           notification_queue, jpeg_bytes):
        service = service_factory({"local": local_backend}, "local")
        result = asyncio.run(service.upload_file(_jpeg(jpeg_bytes), "P1", "documents", sensitive=True))

        asyncio.run(service.get_file(result.file_id))

        actions = [event["action"] for event in notification_queue.queues["sensitive"]]
        assert actions == ["upload", "download"]

    def test_sensitive_row_without_iv_is_rejected(self, service_factory, local_backend, catalog, cache):
        from dataclasses import replace

        local_backend.objects["documents/P1/1-s.jpg"] = b"cipher"
        row = catalog.insert(4, "documents/P1/1-s.jpg", "local")
        cache.entries[4] = replace(row, is_sensitive=True, iv=None)
        service = service_factory({"local": local_backend}, "local")

        with pytest.raises(StorageOperationError):
            asyncio.run(service.get_file(4))


class TestDeleteFile:
    """Test the delete workflow."""

    def test_delete_removes_object_row_and_cache(self, service_factory, local_backend, catalog, cache,
                                                 notification_queue, published, jpeg_bytes):
        service = service_factory({"local": local_backend}, "local")
        result = asyncio.run(service.upload_file(_jpeg(jpeg_bytes), "P1", "documents"))

        asyncio.run(service.delete_file(result.file_id))

        assert local_backend.objects == {}
        assert catalog.rows == {}
        assert result.file_id not in cache.entries
        assert notification_queue.queues["deletion"][0]["file_id"] == result.file_id
        assert any(isinstance(e, FileDeletedEvent) for e in published)

    def test_delete_is_idempotent(self, service_factory, local_backend, jpeg_bytes):
        service = service_factory({"local": local_backend}, "local")
        result = asyncio.run(service.upload_file(_jpeg(jpeg_bytes), "P1", "documents"))

        asyncio.run(service.delete_file(result.file_id))
        asyncio.run(service.delete_file(result.file_id))

        assert local_backend.calls["delete"] == 1

    def test_missing_object_still_removes_row(self, service_factory, local_backend, catalog):
        catalog.insert(2, "documents/P1/1-gone.jpg", "local")
        service = service_factory({"local": local_backend}, "local")

        asyncio.run(service.delete_file(2))

        assert catalog.rows == {}

    def test_backend_failure_keeps_row(self, service_factory, local_backend, catalog, notification_queue):
        local_backend.objects["documents/P1/1-a.jpg"] = b"a"
        catalog.insert(2, "documents/P1/1-a.jpg", "local")
        local_backend.fail_next("delete", *[ConnectionError("reset")] * 3)
        service = service_factory({"local": local_backend}, "local")

        with pytest.raises(StorageOperationError):
            asyncio.run(service.delete_file(2))

        assert 2 in catalog.rows
        assert notification_queue.queues["failure"][0]["operation"] == "delete"
        assert notification_queue.queues["deletion"] == []

    def test_rejects_non_positive_id(self, service_factory, local_backend):
        service = service_factory({"local": local_backend}, "local")

        with pytest.raises(FileValidationError):
            asyncio.run(service.delete_file(0))


class TestHealthAndDelegation:
    """Test health reporting and the maintenance entry points."""

    def test_check_health_reports_each_component(self, service_factory, primary_backend, local_backend):
        primary_backend.fail_next("check_health", *[RuntimeError("bucket missing")])
        service = service_factory({"aws": primary_backend, "local": local_backend}, "aws")

        report = asyncio.run(service.check_health())

        assert report.providers == {"aws": False, "local": True}
        assert report.catalog is True
        assert report.cache is True
        assert report.healthy is False

    def test_daily_summary_delegates_to_batcher(self, service_factory, local_backend, notification_sender):
        service = service_factory({"local": local_backend}, "local")

        assert asyncio.run(service.send_daily_notification_summary()) is False
        assert notification_sender.sent == []

    def test_cleanup_delegates_to_sweeper(self, service_factory, local_backend, catalog):
        catalog.insert(1, "documents/P1/1-gone.jpg", "local")
        service = service_factory({"local": local_backend}, "local")

        report = asyncio.run(service.cleanup_orphaned_files())

        assert report.removed_ids == [1]

    def test_unknown_primary_is_rejected(self, service_factory, local_backend):
        with pytest.raises(ValueError):
            service_factory({"local": local_backend}, "aws")
