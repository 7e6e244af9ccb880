from __future__ import annotations

import os
import secrets
from datetime import datetime, timedelta

from flask import current_app

from rixdu.extensions import db
from rixdu.integrations.common import integration_settings
from rixdu.integrations.payments.factory import build_payments_provider
from rixdu.models import Listing, PendingPayment, PricePlan, User
from rixdu.services import listing_service
from rixdu.services.errors import Forbidden, NotFound, ServiceError, ValidationFailed
from rixdu.services.listing_values import validate


def pending_ttl_seconds() -> int:
    raw = str(current_app.config.get("PENDING_PAYMENT_TTL_SECONDS") or os.getenv("PENDING_PAYMENT_TTL_SECONDS") or "1800").strip()
    try:
        value = int(raw)
    except Exception:
        value = 1800
    return max(60, min(value, 86400))


def get_plan(plan_id) -> PricePlan:
    try:
        ident = int(str(plan_id).strip())
    except (TypeError, ValueError):
        raise ValidationFailed(errors=[{"field": "planId", "message": "Field 'planId' is required"}])
    plan = db.session.get(PricePlan, ident)
    if plan is None or not plan.is_active:
        raise NotFound("Price plan not found")
    return plan


def _check_draft(draft: dict, plan: PricePlan) -> None:
    store, category = listing_service.resolve_leaf(draft)
    if int(store.id) != int(plan.store_id):
        raise ValidationFailed("Price plan does not belong to this store", [{"field": "planId", "message": "Price plan does not belong to this store"}])
    result = validate(category.field_list(), draft.get("values"))
    if not result.ok:
        raise ValidationFailed(errors=result.errors_json())


def create_listing_payment(user: User, data: dict):
    """Open a payment for a paid listing; returns ``(pending, intent)``."""
    plan = get_plan(data.get("plan_id", data.get("planId")))
    draft = {
        "store_id": data.get("store_id", data.get("storeId")),
        "category_id": data.get("category_id", data.get("categoryId")),
        "values": data.get("values") if isinstance(data.get("values"), dict) else {},
    }
    _check_draft(draft, plan)

    reference = f"lp_{secrets.token_hex(12)}"
    amount = plan.effective_price()
    intent = build_payments_provider(integration_settings()).create_payment_intent(
        amount=amount,
        currency=plan.currency or "AED",
        metadata={"user_id": int(user.id), "plan_id": int(plan.id), "reference": reference, "kind": "listing_plan"},
        receipt_email=user.email or "",
    )
    pending = PendingPayment(
        reference=reference,
        user_id=int(user.id),
        payment_intent_id=intent.id,
        plan_id=int(plan.id),
        listing_draft=draft,
        amount=amount,
        currency=plan.currency or "AED",
        expires_at=datetime.utcnow() + timedelta(seconds=pending_ttl_seconds()),
    )
    db.session.add(pending)
    db.session.commit()
    return pending, intent


def confirm_listing_payment(user: User, payment_intent_id: str) -> Listing:
    intent_id = str(payment_intent_id or "").strip()
    if not intent_id:
        raise ValidationFailed(errors=[{"field": "paymentIntentId", "message": "Field 'paymentIntentId' is required"}])
    existing = Listing.query.filter_by(payment_intent_id=intent_id).first()
    if existing is not None:
        if int(existing.user_id) != int(user.id):
            raise Forbidden("This payment belongs to another user")
        return existing

    pending = PendingPayment.query.filter_by(payment_intent_id=intent_id).with_for_update().first()
    if pending is None:
        raise NotFound("Payment session not found or expired")
    if int(pending.user_id) != int(user.id):
        raise Forbidden("This payment belongs to another user")
    if pending.is_expired():
        db.session.delete(pending)
        db.session.commit()
        raise ServiceError(message="Payment session has expired", code="PAYMENT_SESSION_EXPIRED", status=410)

    intent = build_payments_provider(integration_settings()).retrieve_payment_intent(intent_id)
    if str((intent.metadata or {}).get("user_id") or "") != str(int(user.id)):
        raise Forbidden("This payment belongs to another user")
    if not intent.succeeded:
        raise ServiceError(message="Payment has not been completed", code="PAYMENT_NOT_COMPLETED", status=402)

    plan = db.session.get(PricePlan, int(pending.plan_id)) if pending.plan_id is not None else None
    draft = dict(pending.listing_draft or {})
    db.session.delete(pending)
    listing = listing_service.create_listing(draft, user, enforce_entitlement=False, plan=plan, payment=intent)
    return listing


def purge_expired(now: datetime | None = None) -> int:
    stamp = now or datetime.utcnow()
    count = PendingPayment.query.filter(PendingPayment.expires_at <= stamp).delete(synchronize_session=False)
    db.session.commit()
    return int(count or 0)
