from __future__ import annotations

import hashlib
import json
import os
import time
import uuid
from datetime import datetime

from flask import g, request


REQUEST_ID_HEADER = "X-Request-Id"

_SCRUBBED_HEADERS = ("authorization", "x-api-key", "cookie", "set-cookie", "stripe-signature")
_QUIET_PATHS = ("/api/health", "/")


def _hash_ip(ip: str, salt: str) -> str:
    raw = f"{salt}:{ip or ''}".encode("utf-8")
    return hashlib.sha256(raw).hexdigest()[:16]


def _float_env(name: str, default: float, *, minimum: float, maximum: float) -> float:
    try:
        value = float((os.getenv(name) or "").strip() or default)
    except ValueError:
        value = float(default)
    return max(minimum, min(value, maximum))


def get_request_id() -> str:
    return getattr(g, "request_id", "")


def init_sentry(app) -> None:
    """Enable Sentry for the web app and Celery workers when ``SENTRY_DSN`` is set."""
    dsn = (os.getenv("SENTRY_DSN") or "").strip()
    if not dsn:
        app.logger.info("sentry_disabled_no_dsn")
        return
    try:
        import sentry_sdk
        from sentry_sdk.integrations.celery import CeleryIntegration
        from sentry_sdk.integrations.flask import FlaskIntegration

        sentry_sdk.init(
            dsn=dsn,
            environment=(os.getenv("SENTRY_ENVIRONMENT") or os.getenv("RIXDU_ENV") or "dev"),
            release=(os.getenv("GIT_SHA") or os.getenv("SOURCE_VERSION") or "unknown"),
            integrations=[FlaskIntegration(), CeleryIntegration()],
            send_default_pii=False,
            traces_sample_rate=_float_env("SENTRY_TRACES_SAMPLE_RATE", 0.0, minimum=0.0, maximum=1.0),
            before_send=_before_send_scrub,
        )
        app.logger.info("sentry_enabled")
    except Exception as e:
        app.logger.warning("sentry_init_failed err=%s", e)


def _before_send_scrub(event, hint):
    req = event.get("request")
    if not isinstance(req, dict):
        return event
    headers = req.get("headers")
    if isinstance(headers, dict):
        req["headers"] = {
            key: ("[REDACTED]" if str(key).lower() in _SCRUBBED_HEADERS else value)
            for key, value in headers.items()
        }
    return event


def _request_log(response, rid: str, latency_ms, salt: str) -> dict:
    forwarded = (request.headers.get("X-Forwarded-For") or "").split(",")[0].strip()
    return {
        "ts": datetime.utcnow().isoformat(),
        "request_id": rid,
        "path": request.path,
        "method": request.method,
        "status": int(response.status_code),
        "latency_ms": latency_ms,
        "user_id": getattr(g, "auth_user_id", None),
        "role": getattr(g, "auth_role", None),
        "ip_hash": _hash_ip(forwarded or request.remote_addr or "", salt),
    }


def install_request_observers(app) -> None:
    """Tag every request with an id and emit one JSON log line per response.

    Requests slower than ``SLOW_REQUEST_MS`` are logged at warning level;
    health checks are not logged at all.
    """
    slow_ms = _float_env("SLOW_REQUEST_MS", 1500.0, minimum=1.0, maximum=600000.0)

    @app.before_request
    def _request_observer_begin():
        rid = (request.headers.get(REQUEST_ID_HEADER) or "").strip()[:64]
        g.request_id = rid or uuid.uuid4().hex
        g.request_started_at = time.perf_counter()

    @app.after_request
    def _request_observer_end(response):
        rid = get_request_id() or uuid.uuid4().hex
        response.headers[REQUEST_ID_HEADER] = rid
        if request.path in _QUIET_PATHS:
            return response
        started = getattr(g, "request_started_at", None)
        latency_ms = round((time.perf_counter() - float(started)) * 1000.0, 2) if started is not None else None
        payload = _request_log(response, rid, latency_ms, app.config.get("SECRET_KEY", "rixdu"))
        if latency_ms is not None and latency_ms >= slow_ms:
            payload["slow"] = True
            app.logger.warning(json.dumps(payload))
        else:
            app.logger.info(json.dumps(payload))
        return response
