"""Deploy check: import the worker entrypoint and confirm every routed task is registered."""
from __future__ import annotations

import sys
from pathlib import Path

BACKEND_DIR = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(BACKEND_DIR))


def main() -> int:
    try:
        from celery_app import celery

        celery.loader.import_default_modules()
    except Exception as exc:
        print(f"error: worker entrypoint failed to load -> {exc}", file=sys.stderr)
        return 1
    routed = sorted(celery.conf.task_routes or {})
    missing = [name for name in routed if name not in celery.tasks]
    if missing:
        print("error: routed tasks not registered -> " + ", ".join(missing), file=sys.stderr)
        return 1
    print(f"ok: {len(routed)} routed tasks registered on broker {celery.conf.broker_url}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
