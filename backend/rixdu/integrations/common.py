from __future__ import annotations

import os
from dataclasses import dataclass

from flask import current_app, has_app_context


@dataclass
class IntegrationResult:
    ok: bool
    code: str = ""
    message: str = ""
    raw: dict | None = None


class IntegrationDisabledError(RuntimeError):
    pass


class IntegrationMisconfiguredError(RuntimeError):
    pass


@dataclass
class IntegrationSettings:
    integrations_mode: str = "sandbox"
    payments_provider: str = "mock"
    push_provider: str = "mock"
    storage_provider: str = "local"
    email_provider: str = "mock"
    sms_provider: str = "mock"
    upload_dir: str = ""


def _config_value(key: str, default: str, *, lower: bool = True) -> str:
    value = None
    if has_app_context():
        value = current_app.config.get(key)
    if value in (None, ""):
        value = os.getenv(key)
    text = str(value or default).strip()
    return text.lower() if lower else text


def integration_settings() -> IntegrationSettings:
    return IntegrationSettings(
        integrations_mode=_config_value("INTEGRATIONS_MODE", "sandbox"),
        payments_provider=_config_value("PAYMENTS_PROVIDER", "mock"),
        push_provider=_config_value("PUSH_PROVIDER", "mock"),
        storage_provider=_config_value("STORAGE_PROVIDER", "local"),
        email_provider=_config_value("EMAIL_PROVIDER", "mock"),
        sms_provider=_config_value("SMS_PROVIDER", "mock"),
        upload_dir=_config_value("UPLOAD_DIR", "", lower=False),
    )
