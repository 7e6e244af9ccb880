from __future__ import annotations

import os

from rixdu.integrations.common import IntegrationDisabledError, IntegrationMisconfiguredError
from rixdu.integrations.messaging.base import MessagingProvider
from rixdu.integrations.messaging.mock_provider import MockMessagingProvider
from rixdu.integrations.messaging.smtp_provider import SmtpEmailProvider, smtp_health
from rixdu.integrations.messaging.twilio_provider import TwilioSmsProvider, twilio_health


def _env_port(default: int = 587) -> int:
    try:
        return int((os.getenv("SMTP_PORT") or str(default)).strip())
    except ValueError:
        return default


def build_messaging_provider(settings, *, channel: str) -> MessagingProvider:
    mode = (getattr(settings, "integrations_mode", "disabled") or "disabled").strip().lower()
    if mode == "disabled":
        raise IntegrationDisabledError(f"INTEGRATION_DISABLED:{channel}")

    ch = (channel or "").strip().lower()
    if ch == "email":
        provider = (getattr(settings, "email_provider", "mock") or "mock").strip().lower()
        if provider == "mock":
            return MockMessagingProvider()
        if provider != "smtp":
            raise IntegrationMisconfiguredError(f"INTEGRATION_MISCONFIGURED:email_provider={provider}")
        missing = smtp_health().get("missing", [])
        if missing:
            raise IntegrationMisconfiguredError(f"INTEGRATION_MISCONFIGURED:missing {', '.join(missing)}")
        return SmtpEmailProvider(
            host=(os.getenv("SMTP_HOST") or "").strip(),
            port=_env_port(),
            username=(os.getenv("SMTP_USER") or "").strip(),
            password=(os.getenv("SMTP_PASS") or "").strip(),
            sender=(os.getenv("SMTP_FROM") or "").strip(),
            use_tls=(os.getenv("SMTP_TLS") or "1").strip() != "0",
        )

    if ch == "sms":
        provider = (getattr(settings, "sms_provider", "mock") or "mock").strip().lower()
        if provider == "mock":
            return MockMessagingProvider()
        if provider != "twilio":
            raise IntegrationMisconfiguredError(f"INTEGRATION_MISCONFIGURED:sms_provider={provider}")
        missing = twilio_health().get("missing", [])
        if missing:
            raise IntegrationMisconfiguredError(f"INTEGRATION_MISCONFIGURED:missing {', '.join(missing)}")
        return TwilioSmsProvider(
            account_sid=(os.getenv("TWILIO_ACCOUNT_SID") or "").strip(),
            auth_token=(os.getenv("TWILIO_AUTH_TOKEN") or "").strip(),
            from_number=(os.getenv("TWILIO_FROM_NUMBER") or "").strip(),
        )

    raise IntegrationMisconfiguredError(f"INTEGRATION_MISCONFIGURED:channel={ch}")


def messaging_health(settings) -> dict:
    mode = (getattr(settings, "integrations_mode", "disabled") or "disabled").strip().lower()
    email_provider = (getattr(settings, "email_provider", "mock") or "mock").strip().lower()
    sms_provider = (getattr(settings, "sms_provider", "mock") or "mock").strip().lower()
    missing = []
    if email_provider == "smtp":
        missing.extend(smtp_health().get("missing", []))
    if sms_provider == "twilio":
        missing.extend(twilio_health().get("missing", []))
    if mode == "disabled":
        status = "disabled"
    elif missing:
        status = "misconfigured"
    else:
        status = "configured"
    return {
        "status": status,
        "mode": mode,
        "email_provider": email_provider,
        "sms_provider": sms_provider,
        "missing": missing,
    }
