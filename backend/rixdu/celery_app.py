from __future__ import annotations

import json
import os
from datetime import datetime

from celery import Celery
from celery.signals import task_failure, task_retry


TASK_ROUTES = {
    "rixdu.tasks.notification_tasks.send_email": {"queue": "email"},
    "rixdu.tasks.notification_tasks.send_sms": {"queue": "sms"},
    "rixdu.tasks.profile_tasks.attach_listing_to_profile": {"queue": "profile"},
    "rixdu.tasks.upload_tasks.process_listing_images": {"queue": "imageUpload"},
}

TASK_MODULES = [
    "rixdu.tasks.notification_tasks",
    "rixdu.tasks.profile_tasks",
    "rixdu.tasks.upload_tasks",
    "rixdu.tasks.maintenance_tasks",
]

_observers_bound = False


def _first_env(*names: str, default: str = "") -> str:
    for name in names:
        value = (os.getenv(name) or "").strip()
        if value:
            return value
    return default


def _seconds(name: str, default: int, minimum: int = 60) -> int:
    try:
        return max(minimum, int(_first_env(name, default=str(default))))
    except ValueError:
        return default


def _beat_schedule() -> dict:
    return {
        "expire-subscriptions": {
            "task": "rixdu.tasks.maintenance_tasks.expire_subscriptions",
            "schedule": float(_seconds("SUBSCRIPTION_EXPIRY_INTERVAL_SECONDS", 3600)),
        },
        "purge-pending-payments": {
            "task": "rixdu.tasks.maintenance_tasks.purge_pending_payments",
            "schedule": float(_seconds("PENDING_PAYMENT_PURGE_INTERVAL_SECONDS", 900)),
        },
    }


def _listing_ref(args, kwargs) -> str:
    """Best-effort listing/user reference for task log lines."""
    kwargs = kwargs if isinstance(kwargs, dict) else {}
    for key in ("listing_id", "user_id", "notification_id"):
        if kwargs.get(key) is not None:
            return f"{key}={kwargs[key]}"
    if isinstance(args, (list, tuple)) and args and isinstance(args[0], (int, str)):
        return f"arg0={args[0]}"
    return ""


def _task_event(event: str, name, task_id, args, kwargs, retries, detail, einfo) -> str:
    record = {
        "event": event,
        "task_name": str(name or ""),
        "task_id": str(task_id or ""),
        "trace_id": str((kwargs or {}).get("trace_id") or "") if isinstance(kwargs, dict) else "",
        "ref": _listing_ref(args, kwargs),
        "detail": str(detail or ""),
        "retry_count": int(retries or 0),
        "timestamp": datetime.utcnow().isoformat(),
    }
    if einfo is not None:
        record["einfo"] = str(einfo)
    return json.dumps(record)


def _bind_task_observers(flask_app) -> None:
    global _observers_bound
    if _observers_bound:
        return

    @task_failure.connect(weak=False)
    def _log_failure(sender=None, task_id=None, exception=None, args=None, kwargs=None, einfo=None, **extra):
        flask_app.logger.error(
            _task_event("celery_task_failure", getattr(sender, "name", ""), task_id, args, kwargs, extra.get("retries"), exception, einfo)
        )

    @task_retry.connect(weak=False)
    def _log_retry(request=None, reason=None, einfo=None, **extra):
        flask_app.logger.warning(
            _task_event(
                "celery_task_retry",
                getattr(request, "task", ""),
                getattr(request, "id", ""),
                getattr(request, "args", None),
                getattr(request, "kwargs", None),
                getattr(request, "retries", 0),
                reason,
                einfo,
            )
        )

    _observers_bound = True


def create_celery_app(flask_app) -> Celery:
    """Build the worker app; every task body runs inside ``flask_app``'s context."""
    broker = _first_env("CELERY_BROKER_URL", "REDIS_URL", default="redis://localhost:6379/0")
    backend = _first_env("CELERY_RESULT_BACKEND", "REDIS_URL", default=broker)
    celery = Celery(flask_app.import_name, broker=broker, backend=backend, include=TASK_MODULES)
    celery.conf.update(flask_app.config)
    celery.conf.update(
        task_serializer="json",
        result_serializer="json",
        accept_content=["json"],
        task_routes=TASK_ROUTES,
        task_acks_late=True,
        task_track_started=True,
        worker_prefetch_multiplier=1,
        worker_concurrency=_seconds("CELERY_WORKER_CONCURRENCY", 3, minimum=1),
        result_expires=_seconds("CELERY_RESULT_EXPIRES_SECONDS", 3600),
        broker_connection_retry_on_startup=True,
        enable_utc=True,
        timezone="UTC",
        beat_schedule=_beat_schedule(),
    )

    class AppContextTask(celery.Task):
        def __call__(self, *args, **kwargs):
            with flask_app.app_context():
                return self.run(*args, **kwargs)

    celery.Task = AppContextTask
    _bind_task_observers(flask_app)
    return celery
