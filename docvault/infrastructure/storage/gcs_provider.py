"""
Google Cloud Storage Provider

Concrete IStorageProvider for Google Cloud Storage using the
google-cloud-storage library. Uploads above the multipart threshold use
chunked resumable uploads. Every write is conditional on generation 0,
so an existing object is never replaced.
"""

import asyncio
import io
from typing import Optional

from google.api_core import exceptions as gcs_exceptions
from google.auth import exceptions as auth_exceptions
from google.cloud import storage
from google.oauth2 import service_account

from docvault.domain.errors import StorageErrorKind
from docvault.domain.file_storage.entities import DownloadedObject, StorageType
from docvault.infrastructure.storage.error_classification import classify_http_status
from docvault.infrastructure.storage.local_provider import guess_mime_type
from docvault.infrastructure.storage.object_store import ObjectStoreProvider

# Resumable chunk size must be a multiple of 256 KiB
RESUMABLE_CHUNK_SIZE = 32 * 256 * 1024


class GCSStorageProvider(ObjectStoreProvider):
    """
    Google Cloud Storage implementation of IStorageProvider.

    Thread Safety:
        The GCS client handles concurrent operations safely; every blocking
        call is issued from a worker thread.

    Attributes:
        bucket_name: Name of the GCS bucket
        client: Google Cloud Storage client instance
        bucket: GCS bucket object
    """

    storage_type = StorageType.GCP.value
    name = "gcp"

    def __init__(
        self,
        bucket_name: str,
        project_id: Optional[str] = None,
        key_file: Optional[str] = None,
        multipart_threshold: int = 10 * 1024 * 1024,
        client: Optional[storage.Client] = None,
    ):
        """
        Initialize the GCS storage provider.

        Args:
            bucket_name: Name of the GCS bucket to use for storage
            project_id: GCP project owning the bucket
            key_file: Optional service-account JSON file; default credentials otherwise
            multipart_threshold: Size above which uploads are resumable
            client: Pre-built client (tests)
        """
        super().__init__(bucket_name, multipart_threshold)
        if client is None:
            if key_file:
                credentials = service_account.Credentials.from_service_account_file(key_file)
                client = storage.Client(project=project_id, credentials=credentials)
            else:
                client = storage.Client(project=project_id)
        self.client = client
        self.bucket = client.bucket(bucket_name)

    def classify_error(self, error: BaseException) -> StorageErrorKind:
        if isinstance(error, gcs_exceptions.NotFound):
            return StorageErrorKind.NOT_FOUND
        if isinstance(error, (gcs_exceptions.Unauthorized, auth_exceptions.RefreshError,
                              auth_exceptions.DefaultCredentialsError)):
            return StorageErrorKind.UNKNOWN
        if isinstance(error, gcs_exceptions.Forbidden):
            return StorageErrorKind.PERMISSION_DENIED
        if isinstance(error, (gcs_exceptions.TooManyRequests, gcs_exceptions.ServiceUnavailable,
                              gcs_exceptions.Conflict)):
            return StorageErrorKind.RESOURCE_BUSY
        if isinstance(error, (gcs_exceptions.InternalServerError, gcs_exceptions.BadGateway,
                              gcs_exceptions.GatewayTimeout, auth_exceptions.TransportError)):
            return StorageErrorKind.IO_ERROR
        if isinstance(error, gcs_exceptions.GoogleAPICallError):
            return classify_http_status(error.code)
        return self._classify_transport_error(error)

    async def upload(self, content: bytes, logical_name: str,
                     correlation_id: Optional[str] = None) -> str:
        await asyncio.to_thread(self._upload, logical_name, content)
        return self._qualify(logical_name)

    def _upload(self, key: str, content: bytes) -> None:
        blob = self.bucket.blob(key)
        if self._use_multipart(len(content)):
            blob.chunk_size = RESUMABLE_CHUNK_SIZE
        try:
            blob.upload_from_file(
                io.BytesIO(content),
                size=len(content),
                content_type=guess_mime_type(key),
                rewind=True,
                if_generation_match=0,
            )
        except gcs_exceptions.PreconditionFailed as e:
            raise self._refuse_overwrite(key) from e

    async def download(self, physical_path: str,
                       correlation_id: Optional[str] = None) -> DownloadedObject:
        key = self._key(physical_path)
        blob = self.bucket.blob(key)
        content = await asyncio.to_thread(blob.download_as_bytes)
        return DownloadedObject(content=content, mime_type=guess_mime_type(key))

    async def delete(self, physical_path: str,
                     correlation_id: Optional[str] = None) -> None:
        blob = self.bucket.blob(self._key(physical_path))
        await asyncio.to_thread(blob.delete)

    async def check_exists(self, physical_path: str) -> bool:
        blob = self.bucket.blob(self._key(physical_path))
        return await asyncio.to_thread(blob.exists)

    async def check_health(self) -> None:
        if not await asyncio.to_thread(self.bucket.exists):
            raise gcs_exceptions.NotFound(f"GCS bucket '{self.bucket_name}' does not exist")
