"""
Storage Provider Interface

Abstract interface for the backends that hold document bytes.
Implementations handle local disk, SFTP-backed network storage and the
cloud object stores. Name validation, error classification and retries
are applied by a shared wrapper, so implementations only translate calls
to their SDK and map SDK exceptions onto StorageErrorKind.
"""

import time
from abc import ABC, abstractmethod
from typing import Optional

from docvault.domain.errors import StorageErrorKind, StorageNotFoundError
from docvault.domain.file_storage.entities import DownloadedObject

HEALTH_PROBE_PREFIX = ".health"


class IStorageProvider(ABC):
    """
    Abstract interface for storage backends.

    All operations are coroutines. Implementations backed by blocking SDKs
    offload each call to a worker thread so the event loop never blocks.

    Attributes:
        storage_type: Value recorded in FileMetadata.storage_type
        name: Human-readable backend identity used in logs and metrics
    """

    storage_type: str = ""
    name: str = ""

    @abstractmethod
    async def upload(self, content: bytes, logical_name: str,
                     correlation_id: Optional[str] = None) -> str:
        """
        Store bytes under a logical name.

        Args:
            content: Bytes to store
            logical_name: Validated logical name (e.g. 'documents/P1/123-scan.jpg')
            correlation_id: Correlation id for log tracing

        Returns:
            Backend-specific physical path of the stored object
        """
        pass

    @abstractmethod
    async def download(self, physical_path: str,
                       correlation_id: Optional[str] = None) -> DownloadedObject:
        """
        Read the bytes stored at a physical path.

        Args:
            physical_path: Path previously returned by upload()
            correlation_id: Correlation id for log tracing

        Returns:
            DownloadedObject with the bytes and a MIME type

        Raises:
            Exception: SDK-specific errors; a missing object must map to
                StorageErrorKind.NOT_FOUND through classify_error()
        """
        pass

    @abstractmethod
    async def delete(self, physical_path: str,
                     correlation_id: Optional[str] = None) -> None:
        """Remove the object stored at a physical path."""
        pass

    @abstractmethod
    def classify_error(self, error: BaseException) -> StorageErrorKind:
        """
        Map a backend-specific exception onto the fixed taxonomy.

        Args:
            error: Exception raised by the backend SDK

        Returns:
            StorageErrorKind for the exception
        """
        pass

    async def check_exists(self, physical_path: str) -> bool:
        """
        Check whether an object exists.

        The default downloads the object; backends with a cheaper existence
        probe override it.
        """
        try:
            await self.download(physical_path)
            return True
        except StorageNotFoundError:
            return False
        except Exception as e:
            if self.classify_error(e) is StorageErrorKind.NOT_FOUND:
                return False
            raise

    async def check_health(self) -> None:
        """
        Verify the backend is usable, raising on failure.

        The default writes and removes a small probe object.
        """
        probe_name = f"{HEALTH_PROBE_PREFIX}/probe-{int(time.time() * 1000)}.txt"
        path = await self.upload(b"health-check", probe_name)
        await self.delete(path)

    def physical_key(self, physical_path: str) -> str:
        """
        Return the part of a physical path that names the object.

        Bucket-backed providers strip their bucket prefix; path-based
        providers return the path unchanged.
        """
        return physical_path

    def close(self) -> None:
        """Release connections or timers held by the backend."""
        pass
