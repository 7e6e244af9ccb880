from __future__ import annotations

import os
import smtplib
from email.message import EmailMessage

from rixdu.integrations.messaging.base import EmailContent, MessageResult, MessagingProvider


class SmtpEmailProvider(MessagingProvider):
    name = "smtp"

    def __init__(self, *, host: str, port: int, username: str, password: str, sender: str, use_tls: bool = True):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.sender = sender
        self.use_tls = use_tls

    def send_email(self, *, to: str, content: EmailContent, reference: str = "") -> MessageResult:
        msg = EmailMessage()
        msg["Subject"] = content.subject
        msg["From"] = self.sender
        msg["To"] = to
        if reference:
            msg["X-Rixdu-Reference"] = reference[:64]
        msg.set_content(content.text or "")
        if content.html:
            msg.add_alternative(content.html, subtype="html")
        try:
            with smtplib.SMTP(self.host, self.port, timeout=10) as server:
                if self.use_tls:
                    server.starttls()
                if self.username:
                    server.login(self.username, self.password)
                server.send_message(msg)
            return MessageResult(ok=True, code="OK", message="sent")
        except smtplib.SMTPRecipientsRefused as e:
            return MessageResult(ok=False, code="EMAIL_INVALID_RECIPIENT", message=str(e)[:200])
        except smtplib.SMTPAuthenticationError as e:
            return MessageResult(ok=False, code="EMAIL_AUTH_FAILED", message=str(e)[:200])
        except (smtplib.SMTPException, OSError) as e:
            return MessageResult(ok=False, code="EMAIL_PROVIDER_DOWN", message=str(e)[:200])

    def send_sms(self, *, to: str, message: str, reference: str = "") -> MessageResult:
        return MessageResult(ok=False, code="CHANNEL_UNSUPPORTED", message="smtp provider cannot send sms")


def smtp_health() -> dict:
    missing = []
    for key in ("SMTP_HOST", "SMTP_FROM"):
        if not (os.getenv(key) or "").strip():
            missing.append(key)
    return {"missing": missing}
