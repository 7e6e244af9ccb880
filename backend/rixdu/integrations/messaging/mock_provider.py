from __future__ import annotations

import os

from rixdu.integrations.messaging.base import EmailContent, MessageResult, MessagingProvider


class MockMessagingProvider(MessagingProvider):
    name = "mock"

    def __init__(self):
        self.outbox: list[dict] = []

    def _force_failure(self, message: str) -> bool:
        msg = (message or "").lower()
        return "[fail]" in msg or (os.getenv("MOCK_NOTIFY_FORCE_FAIL") or "").strip() == "1"

    def send_sms(self, *, to: str, message: str, reference: str = "") -> MessageResult:
        if self._force_failure(message):
            return MessageResult(ok=False, code="SMS_PROVIDER_DOWN", message="mock forced failure")
        self.outbox.append({"channel": "sms", "to": to, "message": message, "reference": reference})
        return MessageResult(ok=True, code="OK", message="mock_sent", raw={"to": to, "reference": reference})

    def send_email(self, *, to: str, content: EmailContent, reference: str = "") -> MessageResult:
        if self._force_failure(content.subject):
            return MessageResult(ok=False, code="EMAIL_PROVIDER_DOWN", message="mock forced failure")
        self.outbox.append({"channel": "email", "to": to, "subject": content.subject, "reference": reference})
        return MessageResult(ok=True, code="OK", message="mock_sent", raw={"to": to, "reference": reference})
