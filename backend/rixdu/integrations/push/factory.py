from __future__ import annotations

import os

from rixdu.integrations.common import IntegrationDisabledError, IntegrationMisconfiguredError
from rixdu.integrations.push.base import PushProvider
from rixdu.integrations.push.fcm_provider import FcmPushProvider, fcm_health
from rixdu.integrations.push.mock_provider import MockPushProvider


def build_push_provider(settings) -> PushProvider:
    mode = (getattr(settings, "integrations_mode", "disabled") or "disabled").strip().lower()
    if mode == "disabled":
        raise IntegrationDisabledError("INTEGRATION_DISABLED:push")

    provider = (getattr(settings, "push_provider", "mock") or "mock").strip().lower()
    if provider == "mock":
        return MockPushProvider()
    if provider != "fcm":
        raise IntegrationMisconfiguredError(f"INTEGRATION_MISCONFIGURED:push_provider={provider}")

    server_key = (os.getenv("FCM_SERVER_KEY") or "").strip()
    if not server_key:
        raise IntegrationMisconfiguredError("INTEGRATION_MISCONFIGURED:missing FCM_SERVER_KEY")
    return FcmPushProvider(server_key=server_key)


def push_health(settings) -> dict:
    mode = (getattr(settings, "integrations_mode", "disabled") or "disabled").strip().lower()
    provider = (getattr(settings, "push_provider", "mock") or "mock").strip().lower()
    missing = fcm_health().get("missing", []) if provider == "fcm" else []
    if mode == "disabled":
        status = "disabled"
    elif missing:
        status = "misconfigured"
    else:
        status = "configured"
    return {"status": status, "mode": mode, "provider": provider, "missing": missing}
