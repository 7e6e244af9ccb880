from __future__ import annotations

from datetime import datetime

from flask import Blueprint, current_app, jsonify, request
from sqlalchemy.exc import IntegrityError

from rixdu.extensions import db
from rixdu.integrations.common import IntegrationDisabledError, integration_settings
from rixdu.integrations.payments.base import WebhookSignatureError
from rixdu.integrations.payments.factory import build_payments_provider
from rixdu.models import WebhookEvent
from rixdu.services import subscription_service
from rixdu.utils.observability import get_request_id

webhooks_bp = Blueprint("webhooks_bp", __name__, url_prefix="/api/webhooks")

_DONE_STATUSES = ("processed", "ignored")


def _record_event(event: dict) -> tuple[WebhookEvent | None, bool]:
    """Returns ``(row, duplicate)`` for the event id."""
    event_id = str(event.get("id") or "").strip()
    if not event_id:
        return None, False
    row = WebhookEvent.query.filter_by(event_id=event_id).first()
    if row is not None:
        return row, row.status in _DONE_STATUSES
    row = WebhookEvent(
        provider="stripe",
        event_id=event_id,
        event_type=str(event.get("type") or ""),
        status="received",
        request_id=get_request_id() or None,
    )
    db.session.add(row)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        row = WebhookEvent.query.filter_by(event_id=event_id).first()
        return row, bool(row and row.status in _DONE_STATUSES)
    return row, False


@webhooks_bp.post("/stripe")
def stripe_webhook():
    raw = request.get_data() or b""
    signature = request.headers.get("Stripe-Signature", "")
    try:
        provider = build_payments_provider(integration_settings())
    except IntegrationDisabledError:
        return jsonify({"success": False, "error": "PAYMENTS_DISABLED", "message": "Payments are disabled"}), 503
    try:
        event = provider.construct_event(raw, signature)
    except WebhookSignatureError as e:
        current_app.logger.warning("stripe_webhook_signature_invalid err=%s", e)
        return jsonify({"success": False, "error": "INVALID_SIGNATURE", "message": f"Webhook Error: {e}"}), 400

    row, duplicate = _record_event(event)
    if duplicate:
        return jsonify({"received": True, "duplicate": True}), 200

    event_type = str(event.get("type") or "")
    try:
        subscription_service.apply_stripe_event(event)
        if row is not None:
            row.status = "processed" if event_type in subscription_service.handled_event_types() else "ignored"
            row.processed_at = datetime.utcnow()
            row.error = None
            db.session.commit()
        return jsonify({"received": True}), 200
    except Exception as e:
        db.session.rollback()
        current_app.logger.exception("stripe_webhook_handler_failed type=%s", event_type)
        if row is not None:
            try:
                row = db.session.get(WebhookEvent, int(row.id))
                row.status = "failed"
                row.error = str(e)[:1000]
                db.session.commit()
            except Exception:
                db.session.rollback()
                current_app.logger.exception("stripe_webhook_status_write_failed")
        return jsonify({"success": False, "received": True, "error": "WEBHOOK_HANDLER_FAILED", "message": str(e)}), 200
