"""
Logging Configuration

Configures the root logger for web and worker processes.
"""

import logging
import sys
import uuid
from typing import Optional

logger = logging.getLogger("docvault")

LOG_FORMAT = "%(asctime)s - %(name)s - [%(levelname)s] - %(message)s"


def setup_logging(level: str = "INFO") -> None:
    """
    Configures the root logger for the application.
    This function should be called once at process startup.
    """
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        stream=sys.stdout,
    )
    # Silence noisy libraries
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("boto3").setLevel(logging.WARNING)
    logging.getLogger("s3transfer").setLevel(logging.WARNING)
    logging.getLogger("paramiko").setLevel(logging.WARNING)
    logging.getLogger("oss2").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def new_correlation_id(correlation_id: Optional[str] = None) -> str:
    """Return the given correlation id, or a fresh one if none was passed."""
    return correlation_id or uuid.uuid4().hex
