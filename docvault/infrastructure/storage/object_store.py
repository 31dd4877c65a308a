"""
Object Store Base

Common behaviour of the cloud object-store providers: physical paths are
bucket-qualified keys ("{bucket}/{key}") and transfers switch to
multipart or resumable mode above a size threshold. Uploads never
replace an existing object, matching the local and NAS providers.
"""

from docvault.domain.errors import ErrorCategory, FileValidationError, StorageErrorKind
from docvault.domain.file_storage.storage_provider import IStorageProvider
from docvault.infrastructure.storage.error_classification import classify_os_error


class ObjectStoreProvider(IStorageProvider):
    """Base class for bucket-backed providers."""

    def __init__(self, bucket_name: str, multipart_threshold: int = 10 * 1024 * 1024):
        if not bucket_name or not bucket_name.strip():
            raise ValueError("bucket_name cannot be empty")
        self.bucket_name = bucket_name
        self.multipart_threshold = multipart_threshold

    def _qualify(self, key: str) -> str:
        return f"{self.bucket_name}/{key}"

    def _key(self, physical_path: str) -> str:
        """Strip the bucket prefix from a physical path."""
        prefix = f"{self.bucket_name}/"
        if not physical_path.startswith(prefix) or len(physical_path) == len(prefix):
            raise FileValidationError(
                f"Path does not belong to bucket {self.bucket_name}: {physical_path}",
                ErrorCategory.INVALID_PATH,
            )
        return physical_path[len(prefix):]

    def physical_key(self, physical_path: str) -> str:
        return self._key(physical_path)

    def _use_multipart(self, size: int) -> bool:
        return size > self.multipart_threshold

    def _refuse_overwrite(self, key: str) -> FileValidationError:
        return FileValidationError(
            f"File already exists: {self._qualify(key)}", ErrorCategory.FILE_EXISTS
        )

    @staticmethod
    def _classify_transport_error(error: BaseException) -> StorageErrorKind:
        """Classify network-level failures raised below the SDK."""
        if isinstance(error, OSError):
            if error.errno is None:
                return StorageErrorKind.IO_ERROR
            return classify_os_error(error) or StorageErrorKind.UNKNOWN
        if isinstance(error, TimeoutError):
            return StorageErrorKind.IO_ERROR
        return StorageErrorKind.UNKNOWN
