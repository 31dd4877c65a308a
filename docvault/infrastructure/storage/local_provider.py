"""
Local Filesystem Storage Provider

Concrete IStorageProvider for the local filesystem. Files live beneath a
configured root directory; the physical path returned for an object is
its key relative to that root.
"""

import asyncio
import errno
import mimetypes
import os
from pathlib import Path
from typing import Optional

from docvault.domain.errors import ErrorCategory, FileValidationError, StorageErrorKind
from docvault.domain.file_storage.entities import DownloadedObject, StorageType
from docvault.domain.file_storage.storage_provider import IStorageProvider
from docvault.infrastructure.storage.error_classification import classify_os_error

DIRECTORY_MODE = 0o700
FILE_MODE = 0o600
CHUNK_SIZE = 1024 * 1024
DEFAULT_MIME_TYPE = "application/octet-stream"


def guess_mime_type(path: str) -> str:
    """Infer a MIME type from a file extension."""
    mime_type, _ = mimetypes.guess_type(path)
    return mime_type or DEFAULT_MIME_TYPE


class LocalStorageProvider(IStorageProvider):
    """
    Local filesystem implementation of IStorageProvider.

    New directories are created with mode 0700 and new files with 0600.
    Uploads never overwrite: an existing file is rejected. Payloads above
    the streaming threshold are written in chunks.

    Attributes:
        root: Absolute root directory of the store
        stream_threshold: Size in bytes above which writes are chunked
    """

    storage_type = StorageType.LOCAL.value
    name = "local"

    def __init__(self, root: str, stream_threshold: int = 10 * 1024 * 1024):
        """
        Initialize the local storage provider.

        Args:
            root: Absolute directory that holds every stored file
            stream_threshold: Size in bytes above which writes are chunked

        Raises:
            ValueError: If root is not absolute
            OSError: If the root directory cannot be created
        """
        if not os.path.isabs(root):
            raise ValueError(f"Local storage root must be absolute: {root}")
        self.root = Path(root).resolve()
        self.stream_threshold = stream_threshold
        self.root.mkdir(mode=DIRECTORY_MODE, parents=True, exist_ok=True)

    def _resolve(self, key: str) -> Path:
        """Map a key onto the filesystem, refusing anything outside the root."""
        full_path = (self.root / key).resolve()
        if full_path != self.root and self.root not in full_path.parents:
            raise FileValidationError(
                f"Path escapes the storage root: {key}", ErrorCategory.INVALID_PATH
            )
        return full_path

    def classify_error(self, error: BaseException) -> StorageErrorKind:
        return classify_os_error(error) or StorageErrorKind.UNKNOWN

    async def upload(self, content: bytes, logical_name: str,
                     correlation_id: Optional[str] = None) -> str:
        full_path = self._resolve(logical_name)
        await asyncio.to_thread(self._write, full_path, content)
        return full_path.relative_to(self.root).as_posix()

    def _write(self, full_path: Path, content: bytes) -> None:
        self._make_dirs(full_path.parent)
        try:
            fd = os.open(full_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, FILE_MODE)
        except FileExistsError as e:
            raise FileValidationError(
                f"File already exists: {full_path.relative_to(self.root).as_posix()}",
                ErrorCategory.FILE_EXISTS,
                original_error=e,
            ) from e

        try:
            with os.fdopen(fd, "wb") as f:
                if len(content) > self.stream_threshold:
                    view = memoryview(content)
                    for offset in range(0, len(view), CHUNK_SIZE):
                        f.write(view[offset:offset + CHUNK_SIZE])
                else:
                    f.write(content)
        except OSError:
            # Do not leave a truncated file behind for the retry to trip over
            try:
                full_path.unlink()
            except OSError:
                pass
            raise

    def _make_dirs(self, directory: Path) -> None:
        """Create every missing level below the root with DIRECTORY_MODE."""
        for level in reversed([directory, *directory.parents]):
            if level == self.root or self.root not in level.parents:
                continue
            level.mkdir(mode=DIRECTORY_MODE, exist_ok=True)

    async def download(self, physical_path: str,
                       correlation_id: Optional[str] = None) -> DownloadedObject:
        full_path = self._resolve(physical_path)
        content = await asyncio.to_thread(full_path.read_bytes)
        return DownloadedObject(content=content, mime_type=guess_mime_type(physical_path))

    async def delete(self, physical_path: str,
                     correlation_id: Optional[str] = None) -> None:
        full_path = self._resolve(physical_path)
        await asyncio.to_thread(self._remove, full_path)

    def _remove(self, full_path: Path) -> None:
        full_path.unlink()
        parent = full_path.parent
        while parent != self.root and self.root in parent.parents:
            try:
                parent.rmdir()
            except OSError as e:
                if e.errno in (errno.ENOTEMPTY, errno.EEXIST, errno.ENOENT):
                    break
                raise
            parent = parent.parent

    async def check_exists(self, physical_path: str) -> bool:
        full_path = self._resolve(physical_path)
        return await asyncio.to_thread(full_path.is_file)

    async def check_health(self) -> None:
        if not self.root.is_dir():
            raise FileNotFoundError(errno.ENOENT, "Storage root is missing", str(self.root))
        if not os.access(self.root, os.W_OK | os.X_OK):
            raise PermissionError(errno.EACCES, "Storage root is not writable", str(self.root))
