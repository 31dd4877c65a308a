"""
Error Handling Module

Defines domain exceptions and error categories for the storage subsystem.
Domain exceptions are pure and have no external dependencies.

Taxonomy:
    FileValidationError   - bad input, never retried
    StorageOperationError - backend refused or failed, transient kinds retried
    StorageNotFoundError  - backend reports the object is gone
    ConfigurationError    - fatal, raised at startup only
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCategory(Enum):
    """Error category enumeration for structured error handling."""

    INVALID_FILE = "invalid_file"
    INVALID_PATH = "invalid_path"
    INVALID_REQUEST = "invalid_request"
    FILE_TOO_LARGE = "file_too_large"
    UNSUPPORTED_MIME_TYPE = "unsupported_mime_type"
    OWNER_NOT_FOUND = "owner_not_found"
    FILE_NOT_FOUND = "file_not_found"
    FILE_EXISTS = "file_exists"
    STORAGE_FAILURE = "storage_failure"
    SYSTEM_ERROR = "system_error"


# User-friendly error messages with actionable guidance
ERROR_MESSAGES: Dict[ErrorCategory, Dict[str, str]] = {
    ErrorCategory.INVALID_FILE: {
        "title": "Invalid File",
        "message": "The uploaded file is missing or empty.",
        "action": "Select a file and try again.",
    },
    ErrorCategory.INVALID_PATH: {
        "title": "Invalid File Name",
        "message": "The file name contains characters or segments that are not allowed.",
        "action": "Rename the file using letters, digits, dashes, underscores and dots.",
    },
    ErrorCategory.INVALID_REQUEST: {
        "title": "Invalid Request",
        "message": "The request is missing required information or contains invalid data.",
        "action": "Please check your input and try again.",
    },
    ErrorCategory.FILE_TOO_LARGE: {
        "title": "File Too Large",
        "message": "The uploaded file exceeds the maximum allowed size.",
        "action": "Compress the document or upload a smaller scan.",
    },
    ErrorCategory.UNSUPPORTED_MIME_TYPE: {
        "title": "File Type Not Allowed",
        "message": "This type of file cannot be stored.",
        "action": "Upload a JPEG, PNG or PDF document.",
    },
    ErrorCategory.OWNER_NOT_FOUND: {
        "title": "Owner Not Found",
        "message": "The record this document belongs to does not exist.",
        "action": "Check the owner reference and try again.",
    },
    ErrorCategory.FILE_NOT_FOUND: {
        "title": "File Not Found",
        "message": "The requested file could not be found or has been deleted.",
        "action": "Upload the document again.",
    },
    ErrorCategory.FILE_EXISTS: {
        "title": "File Already Exists",
        "message": "A file is already stored at this location.",
        "action": "Delete the existing document before replacing it.",
    },
    ErrorCategory.STORAGE_FAILURE: {
        "title": "Storage Unavailable",
        "message": "The document could not be stored or retrieved right now.",
        "action": "Please try again later. If the problem persists, contact support.",
    },
    ErrorCategory.SYSTEM_ERROR: {
        "title": "System Error",
        "message": "An unexpected error occurred while processing your request.",
        "action": "Please try again later. If the problem persists, contact support.",
    },
}


class StorageErrorKind(Enum):
    """Fixed classification applied to every backend failure."""

    PERMISSION_DENIED = "permission_denied"
    CAPACITY_EXHAUSTED = "capacity_exhausted"
    RESOURCE_BUSY = "resource_busy"
    IO_ERROR = "io_error"
    NOT_FOUND = "not_found"
    UNKNOWN = "unknown"


TRANSIENT_KINDS = frozenset({
    StorageErrorKind.PERMISSION_DENIED,
    StorageErrorKind.CAPACITY_EXHAUSTED,
    StorageErrorKind.RESOURCE_BUSY,
    StorageErrorKind.IO_ERROR,
})


def get_error_message(category: ErrorCategory) -> Dict[str, str]:
    """Return the user-facing message block for a category."""
    return ERROR_MESSAGES.get(category, ERROR_MESSAGES[ErrorCategory.SYSTEM_ERROR])


# ============================================================================
# Domain Exceptions (Pure - No External Dependencies)
# ============================================================================

class DomainError(Exception):
    """
    Base exception for all domain errors.

    Domain exceptions are pure and have no external dependencies.
    They can optionally wrap original errors for context.
    """

    category: ErrorCategory = ErrorCategory.SYSTEM_ERROR

    def __init__(self, message: str, original_error: Exception = None):
        """
        Initialize domain error.

        Args:
            message: Error message
            original_error: Optional original exception that caused this error
        """
        super().__init__(message)
        self.message = message
        self.original_error = original_error

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to a dictionary for upstream handlers."""
        info = get_error_message(self.category)
        return {
            "error": self.category.value,
            "title": info["title"],
            "message": info["message"],
            "action": info["action"],
            "technical_message": self.message,
        }


class FileValidationError(DomainError):
    """
    Raised when caller input is rejected.

    Covers empty files, disallowed MIME types, oversized files, unsafe
    names or paths, non-positive ids and unknown owners. Never retried.
    """

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.INVALID_REQUEST,
        original_error: Exception = None,
    ):
        super().__init__(message, original_error)
        self.category = category


ValidationError = FileValidationError


class StorageOperationError(DomainError):
    """
    Raised when a storage backend refuses or fails an operation.

    Carries the accumulated context of the failed call so callers and
    logs can tell which backend, which operation and which request
    produced it.

    Attributes:
        kind: Classification of the underlying failure
        operation: Operation name (upload, download, delete, ...)
        backend: Storage backend identity
        correlation_id: Correlation id of the request
        attempts: Number of attempts made before giving up
    """

    category = ErrorCategory.STORAGE_FAILURE

    def __init__(
        self,
        message: str,
        kind: StorageErrorKind = StorageErrorKind.UNKNOWN,
        operation: Optional[str] = None,
        backend: Optional[str] = None,
        correlation_id: Optional[str] = None,
        attempts: int = 1,
        original_error: Exception = None,
    ):
        super().__init__(message, original_error)
        self.kind = kind
        self.operation = operation
        self.backend = backend
        self.correlation_id = correlation_id
        self.attempts = attempts

    @property
    def transient(self) -> bool:
        """True when the failure kind is one that retrying may resolve."""
        return self.kind in TRANSIENT_KINDS

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({
            "kind": self.kind.value,
            "operation": self.operation,
            "backend": self.backend,
            "correlation_id": self.correlation_id,
            "attempts": self.attempts,
        })
        return data

    def __str__(self) -> str:
        context = ", ".join(
            f"{name}={value}"
            for name, value in (
                ("operation", self.operation),
                ("backend", self.backend),
                ("kind", self.kind.value),
                ("attempts", self.attempts),
                ("correlation_id", self.correlation_id),
            )
            if value is not None
        )
        return f"{self.message} ({context})" if context else self.message


class StorageNotFoundError(StorageOperationError):
    """Raised when the backend reports that the object does not exist."""

    category = ErrorCategory.FILE_NOT_FOUND

    def __init__(self, message: str, **kwargs):
        kwargs["kind"] = StorageErrorKind.NOT_FOUND
        super().__init__(message, **kwargs)


class CryptoOperationError(StorageOperationError):
    """Raised by the codec worker when encryption or decryption fails."""

    def __init__(self, message: str, operation: str = None, original_error: Exception = None):
        super().__init__(
            message,
            kind=StorageErrorKind.UNKNOWN,
            operation=operation,
            backend="codec",
            original_error=original_error,
        )


class ConfigurationError(DomainError):
    """
    Raised at startup when configuration is invalid or incomplete.

    Fatal: the process must not start serving with this configuration.
    """

    def __init__(self, message: str, problems: Optional[list] = None):
        super().__init__(message)
        self.problems = list(problems or [])


class NotificationDeliveryError(DomainError):
    """Raised when the batched digest could not be delivered."""
    pass
