"""
MIME type detection from file content using libmagic.
"""

import logging
from typing import Optional

import magic

logger = logging.getLogger(__name__)

SNIFF_BYTES = 2048


def sniff_mime_type(content: bytes) -> Optional[str]:
    """
    Detect the MIME type of a payload from its leading bytes.

    Args:
        content: File content; only the first SNIFF_BYTES are inspected

    Returns:
        Lower-cased MIME type, or None if libmagic could not decide
    """
    if not content:
        return None
    try:
        mime_type = magic.from_buffer(content[:SNIFF_BYTES], mime=True)
    except magic.MagicException as e:
        logger.warning(f"MIME detection failed: {e}")
        return None
    if not mime_type:
        return None
    return mime_type.lower()
