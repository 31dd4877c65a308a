"""
Unit tests for GCSStorageProvider

The Google Cloud Storage client is mocked; tests check the calls issued
against the bucket and the classification of google-api-core errors.
"""

import asyncio
from unittest.mock import Mock

import pytest
from google.api_core import exceptions as gcs_exceptions
from google.auth import exceptions as auth_exceptions

from docvault.domain.errors import ErrorCategory, FileValidationError, StorageErrorKind
from docvault.infrastructure.storage.gcs_provider import RESUMABLE_CHUNK_SIZE, GCSStorageProvider

BUCKET = "docvault-test"


@pytest.fixture
def mock_client():
    client = Mock()
    client.bucket.return_value = Mock()
    return client


@pytest.fixture
def provider(mock_client):
    return GCSStorageProvider(BUCKET, project_id="test-project", multipart_threshold=1024,
                              client=mock_client)


class TestGCSOperations:
    """Test blob operations issued against the mocked bucket."""

    def test_init_binds_bucket(self, provider, mock_client):
        mock_client.bucket.assert_called_once_with(BUCKET)
        assert provider.bucket is mock_client.bucket.return_value

    def test_small_upload_is_single_request(self, provider):
        blob = provider.bucket.blob.return_value
        blob.chunk_size = None

        path = asyncio.run(provider.upload(b"%PDF-1.7", "documents/P1/1-a.pdf"))

        assert path == f"{BUCKET}/documents/P1/1-a.pdf"
        provider.bucket.blob.assert_called_with("documents/P1/1-a.pdf")
        assert blob.chunk_size is None
        _, kwargs = blob.upload_from_file.call_args
        assert kwargs["size"] == 8
        assert kwargs["content_type"] == "application/pdf"

    def test_upload_only_creates_new_objects(self, provider):
        blob = provider.bucket.blob.return_value

        asyncio.run(provider.upload(b"x", "documents/P1/1-a.pdf"))

        _, kwargs = blob.upload_from_file.call_args
        assert kwargs["if_generation_match"] == 0

    def test_existing_object_is_refused(self, provider):
        blob = provider.bucket.blob.return_value
        blob.upload_from_file.side_effect = gcs_exceptions.PreconditionFailed("exists")

        with pytest.raises(FileValidationError) as exc_info:
            asyncio.run(provider.upload(b"x", "documents/P1/1-a.pdf"))

        assert exc_info.value.category == ErrorCategory.FILE_EXISTS

    def test_large_upload_is_resumable(self, provider):
        blob = provider.bucket.blob.return_value

        asyncio.run(provider.upload(b"x" * 2048, "documents/big.jpg"))

        assert blob.chunk_size == RESUMABLE_CHUNK_SIZE
        assert RESUMABLE_CHUNK_SIZE % (256 * 1024) == 0

    def test_download(self, provider):
        blob = provider.bucket.blob.return_value
        blob.download_as_bytes.return_value = b"image bytes"

        downloaded = asyncio.run(provider.download(f"{BUCKET}/documents/a.png"))

        provider.bucket.blob.assert_called_with("documents/a.png")
        assert downloaded.content == b"image bytes"
        assert downloaded.mime_type == "image/png"

    def test_delete(self, provider):
        asyncio.run(provider.delete(f"{BUCKET}/documents/a.png"))

        provider.bucket.blob.return_value.delete.assert_called_once_with()

    def test_check_exists(self, provider):
        provider.bucket.blob.return_value.exists.return_value = False

        assert asyncio.run(provider.check_exists(f"{BUCKET}/documents/a.png")) is False

    def test_foreign_bucket_path_is_rejected(self, provider):
        with pytest.raises(FileValidationError):
            asyncio.run(provider.download("other/documents/a.png"))

    def test_health_raises_when_bucket_missing(self, provider):
        provider.bucket.exists.return_value = False

        with pytest.raises(gcs_exceptions.NotFound):
            asyncio.run(provider.check_health())

    def test_health_passes_when_bucket_exists(self, provider):
        provider.bucket.exists.return_value = True

        asyncio.run(provider.check_health())


class TestGCSClassification:
    """Test mapping of Google API errors onto storage error kinds."""

    @pytest.mark.parametrize("error, kind", [
        (gcs_exceptions.NotFound("gone"), StorageErrorKind.NOT_FOUND),
        (gcs_exceptions.Forbidden("no"), StorageErrorKind.PERMISSION_DENIED),
        (gcs_exceptions.Unauthorized("who"), StorageErrorKind.UNKNOWN),
        (auth_exceptions.RefreshError("expired"), StorageErrorKind.UNKNOWN),
        (gcs_exceptions.TooManyRequests("slow"), StorageErrorKind.RESOURCE_BUSY),
        (gcs_exceptions.ServiceUnavailable("busy"), StorageErrorKind.RESOURCE_BUSY),
        (gcs_exceptions.InternalServerError("oops"), StorageErrorKind.IO_ERROR),
        (gcs_exceptions.GatewayTimeout("late"), StorageErrorKind.IO_ERROR),
        (auth_exceptions.TransportError("reset"), StorageErrorKind.IO_ERROR),
        (ConnectionResetError(), StorageErrorKind.IO_ERROR),
        (ValueError("bad"), StorageErrorKind.UNKNOWN),
    ])
    def test_classification(self, provider, error, kind):
        assert provider.classify_error(error) == kind

    def test_other_status_codes_use_http_mapping(self, provider):
        error = gcs_exceptions.from_http_status(507, "full")

        assert provider.classify_error(error) == StorageErrorKind.CAPACITY_EXHAUSTED
