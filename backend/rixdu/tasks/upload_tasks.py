from __future__ import annotations

import time

from celery import shared_task

from rixdu.extensions import db
from rixdu.services.upload_queue import mark_upload_failed, process_upload_job
from rixdu.tasks.task_utils import can_retry, retry_countdown, task_log


UPLOAD_RETRY_BASE_SECONDS = 1.5


@shared_task(bind=True, name="rixdu.tasks.upload_tasks.process_listing_images", max_retries=2)
def process_listing_images(self, listing_id: int, images: list, file_field_mapping: dict | None = None, category_id: int | None = None, trace_id: str = ""):
    started = time.perf_counter()

    def _progress(value: int) -> None:
        if self.request.id:
            self.update_state(state="PROGRESS", meta={"progress": int(value), "listing_id": int(listing_id)})

    try:
        outcome = process_upload_job(
            listing_id,
            images,
            file_field_mapping=file_field_mapping,
            category_id=category_id,
            progress=_progress,
        )
    except Exception as exc:
        db.session.rollback()
        if can_retry(self):
            countdown = retry_countdown(int(self.request.retries or 0), UPLOAD_RETRY_BASE_SECONDS)
            task_log("process_listing_images", status="retrying", started_at=started, trace_id=trace_id, listing_id=int(listing_id), countdown=countdown, detail=str(exc))
            raise self.retry(exc=exc, countdown=countdown)
        mark_upload_failed(listing_id, str(exc))
        task_log("process_listing_images", status="failed", started_at=started, trace_id=trace_id, listing_id=int(listing_id), detail=str(exc))
        raise
    task_log("process_listing_images", status="completed", started_at=started, trace_id=trace_id, **outcome)
    return {"ok": True, **outcome}
