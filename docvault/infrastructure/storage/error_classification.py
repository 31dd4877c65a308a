"""
Error Classification

Shared mapping of OS-level errors onto StorageErrorKind. Backends that
raise OSError (local disk, SFTP) use it directly; SDK backends fall back
to it for socket-level failures.
"""

import errno
import socket
from typing import Optional

from docvault.domain.errors import StorageErrorKind

ERRNO_KINDS = {
    errno.EACCES: StorageErrorKind.PERMISSION_DENIED,
    errno.EPERM: StorageErrorKind.PERMISSION_DENIED,
    errno.EROFS: StorageErrorKind.PERMISSION_DENIED,
    errno.ENOSPC: StorageErrorKind.CAPACITY_EXHAUSTED,
    errno.EDQUOT: StorageErrorKind.CAPACITY_EXHAUSTED,
    errno.EFBIG: StorageErrorKind.CAPACITY_EXHAUSTED,
    errno.EBUSY: StorageErrorKind.RESOURCE_BUSY,
    errno.ETXTBSY: StorageErrorKind.RESOURCE_BUSY,
    errno.EAGAIN: StorageErrorKind.RESOURCE_BUSY,
    errno.EIO: StorageErrorKind.IO_ERROR,
    errno.ETIMEDOUT: StorageErrorKind.IO_ERROR,
    errno.ECONNRESET: StorageErrorKind.IO_ERROR,
    errno.ECONNREFUSED: StorageErrorKind.IO_ERROR,
    errno.EPIPE: StorageErrorKind.IO_ERROR,
    errno.ENOENT: StorageErrorKind.NOT_FOUND,
}


def classify_os_error(error: BaseException) -> Optional[StorageErrorKind]:
    """
    Classify an OSError by errno.

    Args:
        error: Any exception

    Returns:
        StorageErrorKind, or None when error is not an OSError
    """
    if not isinstance(error, OSError):
        return None
    if isinstance(error, FileNotFoundError):
        return StorageErrorKind.NOT_FOUND
    if isinstance(error, PermissionError):
        return StorageErrorKind.PERMISSION_DENIED
    if error.errno in ERRNO_KINDS:
        return ERRNO_KINDS[error.errno]
    if isinstance(error, (socket.timeout, TimeoutError, ConnectionError)):
        return StorageErrorKind.IO_ERROR
    return StorageErrorKind.UNKNOWN


def classify_http_status(status: Optional[int]) -> StorageErrorKind:
    """Classify an HTTP status returned by an object store."""
    if status is None:
        return StorageErrorKind.UNKNOWN
    if status == 404:
        return StorageErrorKind.NOT_FOUND
    if status == 403:
        return StorageErrorKind.PERMISSION_DENIED
    if status in (409, 423, 429, 503):
        return StorageErrorKind.RESOURCE_BUSY
    if status == 507 or status == 413:
        return StorageErrorKind.CAPACITY_EXHAUSTED
    if status >= 500 or status == 408:
        return StorageErrorKind.IO_ERROR
    return StorageErrorKind.UNKNOWN
