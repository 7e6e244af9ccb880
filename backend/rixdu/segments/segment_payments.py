from __future__ import annotations

from flask import Blueprint, request

from rixdu.extensions import db
from rixdu.models import PricePlan
from rixdu.models.price_plan import PLAN_TYPES
from rixdu.services import category_tree, payment_drafts
from rixdu.services.errors import ValidationFailed
from rixdu.utils.auth import is_admin, require_user
from rixdu.utils.http import forbidden, json_body, success

payments_bp = Blueprint("payments_bp", __name__, url_prefix="/api/payments")


@payments_bp.get("/plans")
def list_plans():
    q = PricePlan.query.filter_by(is_active=True)
    store_ref = request.args.get("storeId")
    if store_ref:
        q = q.filter_by(store_id=int(category_tree.get_store(store_ref).id))
    rows = q.order_by(PricePlan.store_id.asc(), PricePlan.price.asc()).all()
    return success([p.to_dict() for p in rows], count=len(rows))


def _plan_errors(body: dict) -> list[dict]:
    errors = []
    if str(body.get("plan_type") or body.get("planType") or "").strip().lower() not in PLAN_TYPES:
        errors.append({"field": "planType", "message": f"Field 'planType' must be one of the following values: {', '.join(PLAN_TYPES)}"})
    checks = (("price", body.get("price")), ("durationDays", body.get("duration_days", body.get("durationDays"))))
    for field, raw in checks:
        try:
            ok = float(raw) >= 0
        except (TypeError, ValueError):
            ok = False
        if not ok:
            errors.append({"field": field, "message": f"Field '{field}' must be a valid number"})
    return errors


@payments_bp.post("/plans")
def create_plan():
    user = require_user()
    if not is_admin(user):
        return forbidden("Admin access required")
    body = json_body()
    store = category_tree.get_store(body.get("storeId", body.get("store_id")))
    errors = _plan_errors(body)
    if errors:
        raise ValidationFailed(errors=errors)
    discounted = body.get("discounted_price", body.get("discountedPrice"))
    features = body.get("features")
    plan = PricePlan(
        store_id=int(store.id),
        plan_type=str(body.get("plan_type") or body.get("planType")).strip().lower(),
        duration_days=int(float(body.get("duration_days", body.get("durationDays")))),
        price=float(body.get("price")),
        discounted_price=float(discounted) if discounted not in (None, "") else None,
        currency=str(body.get("currency") or "AED").strip().upper(),
        features=list(features) if isinstance(features, list) else [],
        is_active=bool(body.get("is_active", True)),
    )
    db.session.add(plan)
    db.session.commit()
    return success(plan.to_dict(), message="Price plan created", status=201)


@payments_bp.post("/create-intent")
def create_intent():
    user = require_user()
    pending, intent = payment_drafts.create_listing_payment(user, json_body())
    return success(
        {
            "reference": pending.reference,
            "payment_intent_id": intent.id,
            "client_secret": intent.client_secret,
            "amount": pending.amount,
            "currency": pending.currency,
            "expires_at": pending.expires_at.isoformat(),
        },
        message="Payment intent created",
        status=201,
    )


@payments_bp.post("/confirm")
def confirm_payment():
    user = require_user()
    body = json_body()
    listing = payment_drafts.confirm_listing_payment(user, body.get("paymentIntentId") or body.get("payment_intent_id"))
    return success(listing.to_dict(), message="Payment confirmed and listing created", status=201)
