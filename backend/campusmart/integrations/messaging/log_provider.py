from __future__ import annotations

import logging

from campusmart.integrations.messaging.base import MessagingProvider, MessageResult

logger = logging.getLogger(__name__)


class LogMessagingProvider(MessagingProvider):
    """Writes messages to the application log; the default until a real channel is wired."""

    name = "log"

    def send(self, *, to: str, message: str, reference: str = "") -> MessageResult:
        logger.info("notification_delivered to=%s reference=%s message=%s", to, reference, message[:200])
        return MessageResult(ok=True, code="OK", message="logged")
