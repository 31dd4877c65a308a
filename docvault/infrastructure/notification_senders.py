"""
Notification Senders

Outbound notification channels used for the daily digest.
"""

import logging
from typing import Any, Dict, Optional

from docvault.domain.file_storage.repositories import NotificationSender


class LoggingNotificationSender(NotificationSender):
    """
    Writes notifications to the log instead of delivering them.

    Default channel when the embedding application does not inject a mail
    or chat integration.
    """

    def __init__(self, recipient: Optional[str] = None, logger: Optional[logging.Logger] = None):
        self.recipient = recipient
        self.logger = logger or logging.getLogger("docvault.notifications")

    async def send(self, subject: str, template: str, context: Dict[str, Any]) -> None:
        self.logger.info(
            f"Notification to {self.recipient or 'admin'}: {subject} "
            f"(template={template}, sensitive={len(context.get('sensitive_files', []))}, "
            f"failures={len(context.get('failed_uploads', []))}, "
            f"deletions={len(context.get('deleted_files', []))})"
        )
        for section in ("sensitive_files", "failed_uploads", "deleted_files"):
            for entry in context.get(section, []):
                self.logger.info(f"  {section}: {entry}")
