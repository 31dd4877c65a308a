"""
Network-Attached Storage Provider

Concrete IStorageProvider for SFTP-backed network storage using paramiko.
Holds one long-lived SSH session and checks its health before every
operation, reconnecting through the retry policy when it has dropped.
"""

import asyncio
import errno
import io
import logging
import posixpath
import threading
from typing import Callable, Optional

import paramiko

from docvault.application.retry_policy import RetryPolicy
from docvault.domain.errors import ErrorCategory, FileValidationError, StorageErrorKind
from docvault.domain.file_storage.entities import DownloadedObject, StorageType
from docvault.domain.file_storage.storage_provider import IStorageProvider
from docvault.infrastructure.storage.error_classification import classify_os_error
from docvault.infrastructure.storage.local_provider import guess_mime_type

logger = logging.getLogger(__name__)

DIRECTORY_MODE = 0o700
FILE_MODE = 0o600


class NasStorageProvider(IStorageProvider):
    """
    SFTP implementation of IStorageProvider.

    Thread Safety:
        Session (re)creation is serialized by a lock. Individual SFTP
        requests are issued from worker threads; paramiko multiplexes them
        over the single channel.

    Attributes:
        base_path: Remote directory that holds every stored file
        retry_policy: Policy used when the session has to be re-established
    """

    storage_type = StorageType.NAS.value
    name = "nas"

    def __init__(
        self,
        host: str,
        username: str,
        password: str,
        port: int = 22,
        base_path: str = "/nas/uploads",
        retry_policy: Optional[RetryPolicy] = None,
        stream_threshold: int = 10 * 1024 * 1024,
        client_factory: Callable[[], paramiko.SSHClient] = paramiko.SSHClient,
    ):
        if not host or not username:
            raise ValueError("NAS host and username are required")
        self.host = host
        self.port = port
        self.username = username
        self._password = password
        self.base_path = base_path.rstrip("/") or "/"
        self.retry_policy = retry_policy or RetryPolicy()
        self.stream_threshold = stream_threshold
        self._client_factory = client_factory
        self._client: Optional[paramiko.SSHClient] = None
        self._sftp: Optional[paramiko.SFTPClient] = None
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Session management
    # ------------------------------------------------------------------

    def _is_healthy(self) -> bool:
        if self._client is None or self._sftp is None:
            return False
        transport = self._client.get_transport()
        if transport is None or not transport.is_active():
            return False
        try:
            self._sftp.stat(self.base_path)
            return True
        except (OSError, paramiko.SSHException, EOFError) as e:
            logger.warning(f"NAS session health check failed: {e}")
            return False

    def _connect_locked(self) -> None:
        with self._lock:
            if self._is_healthy():
                return
            self._close_locked()
            client = self._client_factory()
            client.load_system_host_keys()
            client.set_missing_host_key_policy(paramiko.WarningPolicy())
            client.connect(
                hostname=self.host,
                port=self.port,
                username=self.username,
                password=self._password,
                look_for_keys=False,
                allow_agent=False,
                timeout=30,
            )
            self._client = client
            self._sftp = client.open_sftp()
            self._makedirs(self.base_path)
            logger.info(f"Connected to NAS {self.host}:{self.port}{self.base_path}")

    async def _session(self, correlation_id: Optional[str] = None) -> paramiko.SFTPClient:
        """Return a healthy SFTP client, reconnecting if needed."""
        await self.retry_policy.run(
            lambda: asyncio.to_thread(self._connect_locked),
            classify=self.classify_error,
            operation="connect",
            backend=self.name,
            correlation_id=correlation_id,
        )
        return self._sftp

    def _close_locked(self) -> None:
        for resource in (self._sftp, self._client):
            if resource is not None:
                try:
                    resource.close()
                except Exception as e:
                    logger.debug(f"Ignoring error while closing NAS session: {e}")
        self._sftp = None
        self._client = None

    def close(self) -> None:
        with self._lock:
            self._close_locked()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _remote(self, key: str) -> str:
        """Map a key under base_path, refusing anything that escapes it."""
        remote = posixpath.normpath(posixpath.join(self.base_path, key))
        if not remote.startswith(self.base_path.rstrip("/") + "/"):
            raise FileValidationError(
                f"Path escapes the storage root: {key}", ErrorCategory.INVALID_PATH
            )
        return remote

    def _makedirs(self, remote_dir: str) -> None:
        parts = [part for part in remote_dir.split("/") if part]
        current = "/" if remote_dir.startswith("/") else ""
        for part in parts:
            current = posixpath.join(current, part) if current else part
            try:
                self._sftp.stat(current)
            except FileNotFoundError:
                self._sftp.mkdir(current, mode=DIRECTORY_MODE)

    def classify_error(self, error: BaseException) -> StorageErrorKind:
        if isinstance(error, (paramiko.AuthenticationException, paramiko.BadHostKeyException)):
            return StorageErrorKind.UNKNOWN
        if isinstance(error, (paramiko.SSHException, EOFError)):
            return StorageErrorKind.IO_ERROR
        if isinstance(error, OSError) and error.errno is None:
            # Generic SFTP status failures carry no errno
            return StorageErrorKind.IO_ERROR
        return classify_os_error(error) or StorageErrorKind.UNKNOWN

    # ------------------------------------------------------------------
    # IStorageProvider
    # ------------------------------------------------------------------

    async def upload(self, content: bytes, logical_name: str,
                     correlation_id: Optional[str] = None) -> str:
        sftp = await self._session(correlation_id)
        await asyncio.to_thread(self._put, sftp, self._remote(logical_name), content)
        return logical_name

    def _put(self, sftp: paramiko.SFTPClient, remote: str, content: bytes) -> None:
        try:
            sftp.stat(remote)
        except FileNotFoundError:
            pass
        else:
            raise FileValidationError(
                f"File already exists: {remote}", ErrorCategory.FILE_EXISTS
            )

        self._makedirs(posixpath.dirname(remote))
        if len(content) > self.stream_threshold:
            sftp.putfo(io.BytesIO(content), remote, file_size=len(content))
        else:
            with sftp.open(remote, "wb") as f:
                f.write(content)
        sftp.chmod(remote, FILE_MODE)

    async def download(self, physical_path: str,
                       correlation_id: Optional[str] = None) -> DownloadedObject:
        sftp = await self._session(correlation_id)
        content = await asyncio.to_thread(self._get, sftp, self._remote(physical_path))
        return DownloadedObject(content=content, mime_type=guess_mime_type(physical_path))

    @staticmethod
    def _get(sftp: paramiko.SFTPClient, remote: str) -> bytes:
        with sftp.open(remote, "rb") as f:
            f.prefetch()
            return f.read()

    async def delete(self, physical_path: str,
                     correlation_id: Optional[str] = None) -> None:
        sftp = await self._session(correlation_id)
        await asyncio.to_thread(self._remove, sftp, self._remote(physical_path))

    def _remove(self, sftp: paramiko.SFTPClient, remote: str) -> None:
        sftp.remove(remote)
        parent = posixpath.dirname(remote)
        while parent != self.base_path and parent.startswith(self.base_path + "/"):
            try:
                if sftp.listdir(parent):
                    break
                sftp.rmdir(parent)
            except OSError:
                break
            parent = posixpath.dirname(parent)

    async def check_exists(self, physical_path: str) -> bool:
        sftp = await self._session()
        return await asyncio.to_thread(self._exists, sftp, self._remote(physical_path))

    @staticmethod
    def _exists(sftp: paramiko.SFTPClient, remote: str) -> bool:
        try:
            sftp.stat(remote)
            return True
        except OSError as e:
            if isinstance(e, FileNotFoundError) or e.errno == errno.ENOENT:
                return False
            raise

    async def check_health(self) -> None:
        sftp = await self._session()
        await asyncio.to_thread(sftp.listdir, self.base_path)
