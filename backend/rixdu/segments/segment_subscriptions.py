from __future__ import annotations

import math

from flask import Blueprint, request

from rixdu.models import Subscription
from rixdu.services import subscription_service
from rixdu.services.errors import ValidationFailed
from rixdu.utils.auth import is_admin, require_user
from rixdu.utils.http import forbidden, json_body, success

subscriptions_bp = Blueprint("subscriptions_bp", __name__, url_prefix="/api/subscriptions")


@subscriptions_bp.get("/status")
def subscription_status():
    user = require_user()
    sub = subscription_service.find_active_subscription(int(user.id))
    return success(
        {
            "has_active_subscription": sub is not None,
            "subscription": sub.to_dict() if sub is not None else None,
        }
    )


@subscriptions_bp.get("/history")
def subscription_history():
    user = require_user()
    rows = subscription_service.history(int(user.id))
    return success([s.to_dict() for s in rows], count=len(rows))


@subscriptions_bp.get("/check-eligibility")
def check_eligibility():
    user = require_user()
    return success(subscription_service.can_create_listing(int(user.id)).to_dict())


@subscriptions_bp.post("/trial/start")
def start_trial():
    user = require_user()
    sub = subscription_service.start_trial(int(user.id))
    return success(sub.to_dict(), message="Free trial started", status=201)


@subscriptions_bp.post("/premium/create")
def create_premium():
    user = require_user()
    sub, intent = subscription_service.create_premium(user)
    return success(
        {
            "subscription": sub.to_dict(),
            "payment_intent_id": intent.id,
            "client_secret": intent.client_secret,
            "amount": intent.amount,
            "currency": intent.currency,
        },
        message="Premium checkout created",
        status=201,
    )


@subscriptions_bp.post("/premium/confirm")
def confirm_premium():
    user = require_user()
    body = json_body()
    intent_id = str(body.get("paymentIntentId") or body.get("payment_intent_id") or "").strip()
    if not intent_id:
        raise ValidationFailed(errors=[{"field": "paymentIntentId", "message": "Field 'paymentIntentId' is required"}])
    sub = subscription_service.confirm_premium(int(user.id), intent_id)
    return success(sub.to_dict(), message="Premium subscription activated")


@subscriptions_bp.patch("/cancel")
def cancel_subscription():
    user = require_user()
    sub = subscription_service.cancel(int(user.id))
    return success(sub.to_dict(), message="Subscription cancelled")


@subscriptions_bp.get("/admin/all")
def admin_all_subscriptions():
    user = require_user()
    if not is_admin(user):
        return forbidden("Admin access required")
    page = max(1, int(request.args.get("page") or 1))
    limit = max(1, min(int(request.args.get("limit") or 20), 100))
    q = Subscription.query
    for arg, column in (("status", Subscription.status), ("planType", Subscription.plan_type)):
        value = (request.args.get(arg) or "").strip().lower()
        if value:
            q = q.filter(column == value)
    total = q.count()
    rows = q.order_by(Subscription.created_at.desc()).offset((page - 1) * limit).limit(limit).all()
    return success(
        [s.to_dict() for s in rows],
        pagination={"page": page, "pages": int(math.ceil(total / limit)) if total else 0, "limit": limit, "total": total},
    )
