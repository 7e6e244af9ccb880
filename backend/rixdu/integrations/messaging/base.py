from __future__ import annotations

from dataclasses import dataclass


@dataclass
class MessageResult:
    ok: bool
    code: str = ""
    message: str = ""
    raw: dict | None = None


@dataclass
class EmailContent:
    subject: str
    text: str
    html: str = ""


class MessagingProvider:
    name = "unknown"

    def send_sms(self, *, to: str, message: str, reference: str = "") -> MessageResult:
        raise NotImplementedError

    def send_email(self, *, to: str, content: EmailContent, reference: str = "") -> MessageResult:
        raise NotImplementedError
