from __future__ import annotations

import time

from celery import shared_task

from rixdu.extensions import db
from rixdu.services.profile_service import COLLECTION_ADS, attach_listing
from rixdu.tasks.task_utils import can_retry, retry_countdown, task_log


PROFILE_RETRY_BASE_SECONDS = 1.0


@shared_task(bind=True, name="rixdu.tasks.profile_tasks.attach_listing_to_profile", max_retries=4)
def attach_listing_to_profile(self, user_id: int, listing_id: int, collection: str = COLLECTION_ADS, trace_id: str = ""):
    started = time.perf_counter()
    try:
        added = attach_listing(int(user_id), int(listing_id), collection)
    except ValueError:
        task_log("attach_listing_to_profile", status="rejected", started_at=started, trace_id=trace_id, user_id=int(user_id), listing_id=int(listing_id), collection=collection)
        raise
    except Exception as exc:
        db.session.rollback()
        if can_retry(self):
            countdown = retry_countdown(int(self.request.retries or 0), PROFILE_RETRY_BASE_SECONDS)
            task_log("attach_listing_to_profile", status="retrying", started_at=started, trace_id=trace_id, user_id=int(user_id), listing_id=int(listing_id), countdown=countdown, detail=str(exc))
            raise self.retry(exc=exc, countdown=countdown)
        task_log("attach_listing_to_profile", status="failed", started_at=started, trace_id=trace_id, user_id=int(user_id), listing_id=int(listing_id), detail=str(exc))
        raise
    task_log("attach_listing_to_profile", status="attached" if added else "already_attached", started_at=started, trace_id=trace_id, user_id=int(user_id), listing_id=int(listing_id), collection=collection)
    return {"ok": True, "added": bool(added)}
