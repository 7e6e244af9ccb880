from __future__ import annotations

import os

from rixdu.integrations.common import IntegrationDisabledError, IntegrationMisconfiguredError
from rixdu.integrations.storage.base import StorageProvider
from rixdu.integrations.storage.local_provider import LocalStorageProvider
from rixdu.integrations.storage.mock_provider import MockStorageProvider


def build_storage_provider(settings) -> StorageProvider:
    mode = (getattr(settings, "integrations_mode", "disabled") or "disabled").strip().lower()
    if mode == "disabled":
        raise IntegrationDisabledError("INTEGRATION_DISABLED:storage")

    provider = (getattr(settings, "storage_provider", "local") or "local").strip().lower()
    if provider == "mock":
        return MockStorageProvider()
    if provider != "local":
        raise IntegrationMisconfiguredError(f"INTEGRATION_MISCONFIGURED:storage_provider={provider}")

    root = (getattr(settings, "upload_dir", "") or "").strip()
    if not root:
        raise IntegrationMisconfiguredError("INTEGRATION_MISCONFIGURED:missing UPLOAD_DIR")
    base_url = (os.getenv("PUBLIC_UPLOAD_BASE_URL") or "/uploads").strip()
    return LocalStorageProvider(root=root, public_base_url=base_url)


def storage_health(settings) -> dict:
    mode = (getattr(settings, "integrations_mode", "disabled") or "disabled").strip().lower()
    provider = (getattr(settings, "storage_provider", "local") or "local").strip().lower()
    missing = []
    if mode != "disabled" and provider == "local" and not (getattr(settings, "upload_dir", "") or "").strip():
        missing.append("UPLOAD_DIR")
    if mode == "disabled":
        status = "disabled"
    elif missing:
        status = "misconfigured"
    else:
        status = "configured"
    return {"status": status, "mode": mode, "provider": provider, "missing": missing}
