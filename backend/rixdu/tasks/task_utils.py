from __future__ import annotations

import json
import time
from datetime import datetime

from flask import current_app


def retry_countdown(retries: int, base_seconds: float) -> float:
    return round(float(base_seconds) * (2 ** int(max(0, retries))), 3)


def can_retry(task) -> bool:
    return int(task.request.retries or 0) < int(task.max_retries or 0)


def task_log(task_name: str, *, status: str, started_at: float, trace_id: str = "", **extra):
    duration_ms = int(max(0.0, (time.perf_counter() - float(started_at))) * 1000.0)
    payload = {
        "task_name": task_name,
        "status": status,
        "duration_ms": duration_ms,
        "trace_id": str(trace_id or ""),
        "timestamp": datetime.utcnow().isoformat(),
    }
    payload.update(extra or {})
    try:
        current_app.logger.info(json.dumps(payload, default=str))
    except Exception:
        pass
