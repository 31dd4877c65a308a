"""
Resilient Storage Provider

Wrapper applied uniformly to every storage backend. It validates names
before any backend call, classifies backend errors through the wrapped
provider, retries transient failures, fails fast through a circuit
breaker on external backends and records metrics for each call.
"""

import logging
import time
from typing import Dict, Optional

from aiobreaker import CircuitBreaker, CircuitBreakerError

from docvault.application.retry_policy import RetryPolicy
from docvault.domain.errors import StorageErrorKind, StorageOperationError
from docvault.domain.file_storage.entities import DownloadedObject
from docvault.domain.file_storage.storage_provider import IStorageProvider
from docvault.domain.file_storage.value_objects import StorageName

logger = logging.getLogger(__name__)


class ResilientStorageProvider(IStorageProvider):
    """
    Decorates an IStorageProvider with validation, retries and metrics.

    Physical paths are validated on the part that names the object, so a
    bucket prefix never counts against the name length limit.

    Attributes:
        inner: The wrapped backend
        retry_policy: Policy used for every operation
        metrics: Optional MetricsRecorder
        breakers: Circuit breaker per guarded operation; empty for local
    """

    def __init__(self, inner: IStorageProvider, retry_policy: RetryPolicy, metrics=None,
                 breakers: Optional[Dict[str, CircuitBreaker]] = None):
        self.inner = inner
        self.retry_policy = retry_policy
        self.metrics = metrics
        self.breakers = dict(breakers or {})
        self.storage_type = inner.storage_type
        self.name = inner.name or inner.storage_type

    def classify_error(self, error: BaseException) -> StorageErrorKind:
        return self.inner.classify_error(error)

    def physical_key(self, physical_path: str) -> str:
        return self.inner.physical_key(physical_path)

    async def upload(self, content: bytes, logical_name: str,
                     correlation_id: Optional[str] = None) -> str:
        name = StorageName(logical_name).value
        path = await self._call(
            "upload", correlation_id,
            lambda: self.inner.upload(content, name, correlation_id),
        )
        logger.info(f"[{correlation_id}] Stored {len(content)} bytes on {self.name} at {path}")
        return path

    async def download(self, physical_path: str,
                       correlation_id: Optional[str] = None) -> DownloadedObject:
        self._validate_path(physical_path)
        return await self._call(
            "download", correlation_id,
            lambda: self.inner.download(physical_path, correlation_id),
        )

    async def delete(self, physical_path: str,
                     correlation_id: Optional[str] = None) -> None:
        self._validate_path(physical_path)
        await self._call(
            "delete", correlation_id,
            lambda: self.inner.delete(physical_path, correlation_id),
        )
        logger.info(f"[{correlation_id}] Deleted {physical_path} from {self.name}")

    async def check_exists(self, physical_path: str) -> bool:
        self._validate_path(physical_path)
        return await self._call("check_exists", None, lambda: self.inner.check_exists(physical_path))

    async def check_health(self) -> None:
        await self._call("check_health", None, self.inner.check_health)

    def close(self) -> None:
        self.inner.close()

    def _validate_path(self, physical_path: str) -> None:
        StorageName(self.inner.physical_key(physical_path))

    async def _call(self, operation: str, correlation_id: Optional[str], func):
        started = time.perf_counter()
        success = False
        try:
            result = await self._guarded(operation, correlation_id, func)
            success = True
            return result
        except StorageOperationError as e:
            log = logger.warning if e.kind is StorageErrorKind.NOT_FOUND else logger.error
            log(f"[{correlation_id}] {operation} on {self.name} failed: {e}")
            if self.metrics is not None:
                self.metrics.record_error(operation, self.name, e.kind.value)
            raise
        finally:
            if self.metrics is not None:
                self.metrics.observe_operation(
                    operation, self.name, time.perf_counter() - started, success
                )

    async def _guarded(self, operation: str, correlation_id: Optional[str], func):
        """Run func under the retry policy, behind the operation's breaker if any."""
        def retried():
            return self.retry_policy.run(
                func,
                classify=self.inner.classify_error,
                operation=operation,
                backend=self.name,
                correlation_id=correlation_id,
            )

        breaker = self.breakers.get(operation)
        if breaker is None:
            return await retried()

        try:
            return await breaker.call_async(retried)
        except CircuitBreakerError as e:
            # The call that trips the breaker carries the backend error
            tripping_error = e.__cause__ or e.__context__
            if isinstance(tripping_error, StorageOperationError):
                raise tripping_error
            raise StorageOperationError(
                f"Circuit open for {operation} on {self.name}",
                kind=StorageErrorKind.RESOURCE_BUSY,
                operation=operation,
                backend=self.name,
                correlation_id=correlation_id,
                attempts=0,
                original_error=e,
            ) from e
