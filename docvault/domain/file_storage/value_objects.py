"""
File Storage Value Objects

Immutable value objects for type safety and validation of names handed to
storage backends.
"""

import re
from dataclasses import dataclass
from pathlib import PurePosixPath

from docvault.domain.errors import ErrorCategory, FileValidationError

SAFE_NAME_PATTERN = re.compile(r"^[A-Za-z0-9\-_./]{1,255}$")
OWNER_KEY_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,64}$")
_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")
_REPEATED_UNDERSCORES = re.compile(r"_{2,}")

# Leaves room for the longest category, owner key and timestamp within 255
MAX_FILE_NAME_LENGTH = 100
MAX_EXTENSION_LENGTH = 10


@dataclass(frozen=True)
class StorageName:
    """
    Value object representing a validated logical name or physical path.

    Requirements:
    - Must not be empty
    - Must only contain letters, digits and "-_./" (at most 255 characters)
    - Must not begin with "/"
    - Must not contain ".."
    """
    value: str

    def __post_init__(self):
        value = self.value
        if not value or not isinstance(value, str):
            raise FileValidationError(
                "File name cannot be empty", ErrorCategory.INVALID_PATH
            )
        if value.startswith("/"):
            raise FileValidationError(
                f"Absolute paths are not allowed: {value}", ErrorCategory.INVALID_PATH
            )
        if ".." in value:
            raise FileValidationError(
                f"Path traversal is not allowed: {value}", ErrorCategory.INVALID_PATH
            )
        if not SAFE_NAME_PATTERN.match(value):
            raise FileValidationError(
                f"Invalid file name: {value}", ErrorCategory.INVALID_PATH
            )

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class OwnerKey:
    """Validated key of the entity that owns a document."""
    value: str

    def __post_init__(self):
        if not isinstance(self.value, str) or not OWNER_KEY_PATTERN.match(self.value):
            raise FileValidationError(
                f"Invalid owner key: {self.value!r}", ErrorCategory.INVALID_REQUEST
            )

    def __str__(self) -> str:
        return self.value


def sanitize_file_name(original_name: str) -> str:
    """
    Reduce a caller-supplied file name to the safe character set.

    Directory components are dropped, unsafe characters become "_",
    repeated underscores collapse and leading dots are stripped so the
    result can never be hidden or traverse upward.

    Args:
        original_name: File name as supplied by the caller

    Returns:
        Sanitized name, "file" when nothing usable remains
    """
    base = PurePosixPath((original_name or "").replace("\\", "/")).name
    cleaned = _UNSAFE_CHARS.sub("_", base)
    cleaned = _REPEATED_UNDERSCORES.sub("_", cleaned)
    cleaned = cleaned.lstrip(".")
    while ".." in cleaned:
        cleaned = cleaned.replace("..", ".")
    cleaned = _truncate(cleaned, MAX_FILE_NAME_LENGTH)
    if not cleaned.strip("._-"):
        return "file"
    return cleaned


def _truncate(name: str, limit: int) -> str:
    """Shorten a sanitized name, keeping a short extension intact."""
    if len(name) <= limit:
        return name
    stem, dot, extension = name.rpartition(".")
    if dot and stem and len(extension) <= MAX_EXTENSION_LENGTH:
        return stem[:limit - len(extension) - 1].rstrip(".") + "." + extension
    return name[:limit]


def build_logical_name(category: str, owner_key: str, original_name: str, timestamp_ms: int) -> StorageName:
    """Derive the logical name a document is uploaded under."""
    return StorageName(f"{category}/{owner_key}/{timestamp_ms}-{sanitize_file_name(original_name)}")


def build_fallback_name(original_name: str, timestamp_ms: int) -> StorageName:
    """Derive the name of the forensic local copy kept when an upload fails."""
    return StorageName(f"fallback/{timestamp_ms}-{sanitize_file_name(original_name)}")
