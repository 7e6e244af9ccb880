from __future__ import annotations

import os
import requests

from rixdu.integrations.messaging.base import EmailContent, MessageResult, MessagingProvider


TWILIO_BASE = "https://api.twilio.com/2010-04-01"


def _map_twilio_error(status: int, message: str) -> str:
    msg = (message or "").lower()
    if status == 401 or status == 403:
        return "SMS_AUTH_FAILED"
    if status == 429:
        return "SMS_RATE_LIMITED"
    if status >= 500:
        return "SMS_PROVIDER_DOWN"
    if status in (400, 404, 422):
        if "from" in msg or "sender" in msg:
            return "SMS_INVALID_SENDER"
        return "SMS_INVALID_RECIPIENT"
    return "SMS_PROVIDER_DOWN"


class TwilioSmsProvider(MessagingProvider):
    name = "twilio"

    def __init__(self, *, account_sid: str, auth_token: str, from_number: str):
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number

    def send_sms(self, *, to: str, message: str, reference: str = "") -> MessageResult:
        payload = {
            "To": (to or "").strip(),
            "From": self.from_number,
            "Body": message,
        }
        url = f"{TWILIO_BASE}/Accounts/{self.account_sid}/Messages.json"
        try:
            r = requests.post(url, data=payload, auth=(self.account_sid, self.auth_token), timeout=12)
            data = r.json() if r.content else {}
            if 200 <= r.status_code < 300:
                return MessageResult(ok=True, code="OK", message="sent", raw=data if isinstance(data, dict) else {"payload": data})
            detail = ""
            if isinstance(data, dict):
                detail = str(data.get("message") or "")
            return MessageResult(
                ok=False,
                code=_map_twilio_error(r.status_code, detail),
                message=(detail or f"http_{r.status_code}")[:200],
                raw=data if isinstance(data, dict) else {"payload": data},
            )
        except requests.Timeout:
            return MessageResult(ok=False, code="SMS_PROVIDER_DOWN", message="timeout")
        except requests.RequestException as e:
            return MessageResult(ok=False, code="SMS_PROVIDER_DOWN", message=str(e)[:200])

    def send_email(self, *, to: str, content: EmailContent, reference: str = "") -> MessageResult:
        return MessageResult(ok=False, code="CHANNEL_UNSUPPORTED", message="twilio provider cannot send email")


def twilio_health() -> dict:
    missing = []
    for key in ("TWILIO_ACCOUNT_SID", "TWILIO_AUTH_TOKEN", "TWILIO_FROM_NUMBER"):
        if not (os.getenv(key) or "").strip():
            missing.append(key)
    return {"missing": missing}
