from __future__ import annotations

import time

from celery import shared_task

from rixdu.integrations.common import IntegrationDisabledError, integration_settings
from rixdu.integrations.messaging.base import EmailContent
from rixdu.integrations.messaging.factory import build_messaging_provider
from rixdu.tasks.task_utils import can_retry, retry_countdown, task_log


EMAIL_RETRY_BASE_SECONDS = 2.0
SMS_RETRY_BASE_SECONDS = 2.0


class DeliveryFailed(RuntimeError):
    pass


@shared_task(bind=True, name="rixdu.tasks.notification_tasks.send_email", max_retries=2)
def send_email(self, to: str, subject: str, text: str, html: str = "", reference: str = "", trace_id: str = ""):
    started = time.perf_counter()
    try:
        provider = build_messaging_provider(integration_settings(), channel="email")
    except IntegrationDisabledError:
        task_log("send_email", status="skipped_disabled", started_at=started, trace_id=trace_id, to=to)
        return {"ok": False, "skipped": "integrations_disabled"}

    try:
        result = provider.send_email(to=to, content=EmailContent(subject=subject, text=text, html=html), reference=reference)
        if not result.ok:
            raise DeliveryFailed(f"{result.code}:{result.message}")
    except Exception as exc:
        if can_retry(self):
            countdown = retry_countdown(int(self.request.retries or 0), EMAIL_RETRY_BASE_SECONDS)
            task_log("send_email", status="retrying", started_at=started, trace_id=trace_id, to=to, countdown=countdown, detail=str(exc))
            raise self.retry(exc=exc, countdown=countdown)
        task_log("send_email", status="failed", started_at=started, trace_id=trace_id, to=to, detail=str(exc))
        raise
    task_log("send_email", status="sent", started_at=started, trace_id=trace_id, to=to, provider=provider.name)
    return {"ok": True, "to": to}


@shared_task(bind=True, name="rixdu.tasks.notification_tasks.send_sms", max_retries=2)
def send_sms(self, to: str, message: str, reference: str = "", trace_id: str = ""):
    started = time.perf_counter()
    try:
        provider = build_messaging_provider(integration_settings(), channel="sms")
    except IntegrationDisabledError:
        task_log("send_sms", status="skipped_disabled", started_at=started, trace_id=trace_id, to=to)
        return {"ok": False, "skipped": "integrations_disabled"}

    try:
        result = provider.send_sms(to=to, message=message, reference=reference)
        if not result.ok:
            raise DeliveryFailed(f"{result.code}:{result.message}")
    except Exception as exc:
        if can_retry(self):
            countdown = retry_countdown(int(self.request.retries or 0), SMS_RETRY_BASE_SECONDS)
            task_log("send_sms", status="retrying", started_at=started, trace_id=trace_id, to=to, countdown=countdown, detail=str(exc))
            raise self.retry(exc=exc, countdown=countdown)
        task_log("send_sms", status="failed", started_at=started, trace_id=trace_id, to=to, detail=str(exc))
        raise
    task_log("send_sms", status="sent", started_at=started, trace_id=trace_id, to=to, provider=provider.name)
    return {"ok": True, "to": to}
