from __future__ import annotations

import time

from celery import shared_task

from rixdu.extensions import db
from rixdu.services.payment_drafts import purge_expired
from rixdu.services.subscription_service import expire_due
from rixdu.tasks.task_utils import task_log


@shared_task(bind=True, name="rixdu.tasks.maintenance_tasks.expire_subscriptions")
def expire_subscriptions(self, trace_id: str = ""):
    started = time.perf_counter()
    try:
        expired = expire_due()
    except Exception as exc:
        db.session.rollback()
        task_log("expire_subscriptions", status="failed", started_at=started, trace_id=trace_id, detail=str(exc))
        raise
    task_log("expire_subscriptions", status="ok", started_at=started, trace_id=trace_id, expired=expired)
    return {"ok": True, "expired": expired}


@shared_task(bind=True, name="rixdu.tasks.maintenance_tasks.purge_pending_payments")
def purge_pending_payments(self, trace_id: str = ""):
    started = time.perf_counter()
    try:
        purged = purge_expired()
    except Exception as exc:
        db.session.rollback()
        task_log("purge_pending_payments", status="failed", started_at=started, trace_id=trace_id, detail=str(exc))
        raise
    task_log("purge_pending_payments", status="ok", started_at=started, trace_id=trace_id, purged=purged)
    return {"ok": True, "purged": purged}
