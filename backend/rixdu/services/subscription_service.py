from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime, timedelta

from flask import current_app

from rixdu.extensions import db
from rixdu.integrations.common import integration_settings
from rixdu.integrations.payments.factory import build_payments_provider
from rixdu.models import Subscription, User
from rixdu.models.subscription import (
    PLAN_PREMIUM,
    PLAN_TRIAL,
    STATUS_ACTIVE,
    STATUS_CANCELLED,
    STATUS_EXPIRED,
    STATUS_INCOMPLETE,
    STATUS_PENDING,
    UNLIMITED_LISTINGS,
)
from rixdu.services.errors import Conflict, NotFound, ServiceError


TRIAL_DAYS = 7
TRIAL_MAX_LISTINGS = 1
PREMIUM_DAYS = 30
PREMIUM_PRICE = 27.0
PREMIUM_CURRENCY = "AED"

REASON_NONE = "No active subscription"
REASON_PREMIUM = "Premium subscription - unlimited listings"
REASON_TRIAL_LIMIT = "Trial listing limit reached"
REASON_TRIAL_OK = "Trial subscription - within limit"

# Stripe subscription statuses mapped onto local ones.
_STRIPE_STATUS = {
    "active": STATUS_ACTIVE,
    "trialing": STATUS_ACTIVE,
    "past_due": STATUS_INCOMPLETE,
    "incomplete": STATUS_INCOMPLETE,
    "incomplete_expired": STATUS_EXPIRED,
    "unpaid": STATUS_INCOMPLETE,
    "canceled": STATUS_CANCELLED,
}


@dataclass
class Eligibility:
    can_create: bool
    reason: str
    subscription: Subscription | None = None

    def to_dict(self) -> dict:
        return {
            "can_create": bool(self.can_create),
            "reason": self.reason,
            "subscription": self.subscription.to_dict() if self.subscription is not None else None,
        }


def find_active_subscription(user_id: int, now: datetime | None = None) -> Subscription | None:
    stamp = now or datetime.utcnow()
    return (
        Subscription.query
        .filter(
            Subscription.user_id == int(user_id),
            Subscription.status == STATUS_ACTIVE,
            Subscription.end_date > stamp,
        )
        .order_by(Subscription.created_at.desc(), Subscription.id.desc())
        .first()
    )


def can_create_listing(user_id: int, now: datetime | None = None) -> Eligibility:
    sub = find_active_subscription(user_id, now=now)
    if sub is None:
        return Eligibility(False, REASON_NONE)
    if sub.plan_type == PLAN_PREMIUM or int(sub.max_listings) == UNLIMITED_LISTINGS:
        return Eligibility(True, REASON_PREMIUM, sub)
    if int(sub.listings_count or 0) >= int(sub.max_listings or 0):
        return Eligibility(False, REASON_TRIAL_LIMIT, sub)
    return Eligibility(True, REASON_TRIAL_OK, sub)


def history(user_id: int) -> list[Subscription]:
    return (
        Subscription.query
        .filter_by(user_id=int(user_id))
        .order_by(Subscription.created_at.desc(), Subscription.id.desc())
        .all()
    )


def start_trial(user_id: int) -> Subscription:
    if Subscription.query.filter_by(user_id=int(user_id), plan_type=PLAN_TRIAL).first() is not None:
        raise Conflict("User has already used their free trial", code="TRIAL_ALREADY_USED")
    if find_active_subscription(user_id) is not None:
        raise Conflict("User already has an active subscription", code="SUBSCRIPTION_EXISTS")
    now = datetime.utcnow()
    sub = Subscription(
        user_id=int(user_id),
        plan_type=PLAN_TRIAL,
        status=STATUS_ACTIVE,
        start_date=now,
        end_date=now + timedelta(days=TRIAL_DAYS),
        price=0.0,
        currency=PREMIUM_CURRENCY,
        payment_status="free",
        listings_count=0,
        max_listings=TRIAL_MAX_LISTINGS,
    )
    db.session.add(sub)
    db.session.commit()
    return sub


def create_premium(user: User):
    """Open a premium checkout; returns ``(subscription, intent)``."""
    active = find_active_subscription(int(user.id))
    if active is not None and active.plan_type == PLAN_PREMIUM:
        raise Conflict("User already has an active premium subscription", code="SUBSCRIPTION_EXISTS")
    provider = build_payments_provider(integration_settings())
    intent = provider.create_payment_intent(
        amount=PREMIUM_PRICE,
        currency=PREMIUM_CURRENCY,
        metadata={"user_id": int(user.id), "kind": "premium_subscription"},
        receipt_email=user.email or "",
    )
    now = datetime.utcnow()
    sub = Subscription(
        user_id=int(user.id),
        plan_type=PLAN_PREMIUM,
        status=STATUS_PENDING,
        start_date=now,
        end_date=now + timedelta(days=PREMIUM_DAYS),
        price=PREMIUM_PRICE,
        currency=PREMIUM_CURRENCY,
        stripe_payment_intent_id=intent.id,
        payment_status="pending",
        max_listings=UNLIMITED_LISTINGS,
    )
    db.session.add(sub)
    db.session.commit()
    return sub, intent


def _activate_premium(sub: Subscription, now: datetime) -> None:
    superseded = (
        Subscription.query
        .filter(
            Subscription.user_id == int(sub.user_id),
            Subscription.status == STATUS_ACTIVE,
            Subscription.id != int(sub.id),
        )
        .all()
    )
    for row in superseded:
        row.status = STATUS_EXPIRED
    sub.status = STATUS_ACTIVE
    sub.payment_status = "paid"
    sub.start_date = now
    sub.end_date = now + timedelta(days=PREMIUM_DAYS)
    sub.max_listings = UNLIMITED_LISTINGS


def confirm_premium(user_id: int, payment_intent_id: str) -> Subscription:
    sub = (
        Subscription.query
        .filter_by(user_id=int(user_id), stripe_payment_intent_id=str(payment_intent_id or ""))
        .with_for_update()
        .first()
    )
    if sub is None:
        raise NotFound("Subscription not found for this payment")
    if sub.status == STATUS_ACTIVE:
        return sub
    intent = build_payments_provider(integration_settings()).retrieve_payment_intent(str(payment_intent_id))
    if not intent.succeeded:
        sub.payment_status = "failed" if intent.status in ("canceled", "requires_payment_method") else "pending"
        db.session.commit()
        raise ServiceError(message="Payment has not been completed", code="PAYMENT_NOT_COMPLETED", status=402)
    _activate_premium(sub, datetime.utcnow())
    db.session.commit()
    return sub


def cancel(user_id: int) -> Subscription:
    sub = find_active_subscription(user_id)
    if sub is None:
        raise NotFound(REASON_NONE)
    sub.status = STATUS_CANCELLED
    sub.auto_renew = False
    sub.cancelled_at = datetime.utcnow()
    db.session.commit()
    return sub


def renew(sub: Subscription, days: int = PREMIUM_DAYS) -> Subscription:
    now = datetime.utcnow()
    base = sub.end_date if sub.end_date is not None and sub.end_date > now else now
    sub.end_date = base + timedelta(days=int(days))
    sub.status = STATUS_ACTIVE
    return sub


def expire_due(now: datetime | None = None) -> int:
    stamp = now or datetime.utcnow()
    count = (
        Subscription.query
        .filter(Subscription.status == STATUS_ACTIVE, Subscription.end_date <= stamp)
        .update({Subscription.status: STATUS_EXPIRED}, synchronize_session=False)
    )
    db.session.commit()
    return int(count or 0)


def increment_listing_count(subscription_id: int) -> None:
    Subscription.query.filter(Subscription.id == int(subscription_id)).update(
        {Subscription.listings_count: Subscription.listings_count + 1},
        synchronize_session=False,
    )
    db.session.commit()


def decrement_listing_count(subscription_id: int) -> None:
    Subscription.query.filter(
        Subscription.id == int(subscription_id),
        Subscription.listings_count > 0,
    ).update(
        {Subscription.listings_count: Subscription.listings_count - 1},
        synchronize_session=False,
    )
    db.session.commit()


# Stripe webhook state machine


def _from_epoch(value) -> datetime | None:
    try:
        return datetime.utcfromtimestamp(int(value))
    except (TypeError, ValueError, OverflowError):
        return None


def _subscription_for_stripe(stripe_id: str) -> Subscription | None:
    if not stripe_id:
        return None
    return Subscription.query.filter_by(stripe_subscription_id=str(stripe_id)).first()


def _stripe_price(obj: dict) -> tuple[float | None, str | None]:
    try:
        price = obj["items"]["data"][0]["price"]
    except (KeyError, IndexError, TypeError):
        return None, None
    amount = price.get("unit_amount")
    currency = str(price.get("currency") or "").upper() or None
    return (float(amount) / 100.0 if amount is not None else None), currency


def _log_webhook(event_type: str, status: str, **extra) -> None:
    payload = {"event": "stripe_subscription_event", "type": event_type, "status": status}
    payload.update(extra)
    current_app.logger.info(json.dumps(payload, default=str))


def _sync_subscription(obj: dict, *, create: bool) -> Subscription | None:
    sub = _subscription_for_stripe(obj.get("id"))
    if sub is None:
        if not create:
            _log_webhook("customer.subscription.updated", "unknown_subscription", stripe_id=obj.get("id"))
            return None
        user_ref = (obj.get("metadata") or {}).get("userId") or (obj.get("metadata") or {}).get("user_id")
        try:
            user_id = int(user_ref)
        except (TypeError, ValueError):
            _log_webhook("customer.subscription.created", "missing_user", stripe_id=obj.get("id"))
            return None
        now = datetime.utcnow()
        sub = Subscription(
            user_id=user_id,
            plan_type=PLAN_PREMIUM,
            start_date=_from_epoch(obj.get("current_period_start")) or now,
            end_date=_from_epoch(obj.get("current_period_end")) or now + timedelta(days=PREMIUM_DAYS),
            stripe_subscription_id=str(obj.get("id")),
            stripe_customer_id=str(obj.get("customer") or "") or None,
            max_listings=UNLIMITED_LISTINGS,
        )
        db.session.add(sub)

    stripe_status = str(obj.get("status") or "")
    sub.status = _STRIPE_STATUS.get(stripe_status, sub.status or STATUS_PENDING)
    sub.auto_renew = not bool(obj.get("cancel_at_period_end"))
    amount, currency = _stripe_price(obj)
    if amount is not None and not sub.price:
        sub.price = amount
    if currency:
        sub.currency = currency
    if sub.status == STATUS_ACTIVE:
        sub.payment_status = "paid"
        period_end = _from_epoch(obj.get("current_period_end"))
        if period_end is not None:
            sub.end_date = period_end
    elif sub.status == STATUS_CANCELLED:
        sub.cancelled_at = sub.cancelled_at or datetime.utcnow()
        sub.payment_status = "failed"
    elif sub.status == STATUS_INCOMPLETE:
        sub.payment_status = "pending"
    return sub


def _on_subscription_deleted(obj: dict) -> Subscription | None:
    sub = _subscription_for_stripe(obj.get("id"))
    if sub is None:
        return None
    sub.status = STATUS_CANCELLED
    sub.cancelled_at = datetime.utcnow()
    sub.payment_status = "failed"
    sub.auto_renew = False
    return sub


def _on_payment_succeeded(invoice: dict) -> Subscription | None:
    sub = _subscription_for_stripe(invoice.get("subscription"))
    if sub is None:
        return None
    sub.payment_status = "paid"
    period_end = None
    try:
        period_end = _from_epoch(invoice["lines"]["data"][0]["period"]["end"])
    except (KeyError, IndexError, TypeError):
        period_end = None
    if period_end is not None:
        sub.status = STATUS_ACTIVE
        sub.end_date = period_end
    else:
        renew(sub)
    return sub


def _on_payment_failed(invoice: dict) -> Subscription | None:
    sub = _subscription_for_stripe(invoice.get("subscription"))
    if sub is None:
        return None
    sub.payment_status = "failed"
    sub.status = STATUS_INCOMPLETE
    return sub


def _on_trial_will_end(obj: dict) -> Subscription | None:
    from rixdu.services.notification_dispatcher import notify_user
    from rixdu.services.notification_preferences import Channels
    from rixdu.tasks.notification_tasks import send_sms

    sub = _subscription_for_stripe(obj.get("id"))
    if sub is None:
        return None
    ends = _from_epoch(obj.get("trial_end")) or sub.end_date
    when = ends.strftime("%Y-%m-%d") if ends else "soon"
    title = "Your trial is ending soon"
    message = f"Your free trial ends on {when}. Upgrade to premium to keep posting unlimited listings."
    notify_user(
        int(sub.user_id),
        title,
        message,
        type="subscription",
        channels=Channels(email=True, in_app=True, push=True),
        metadata={"subscription_id": int(sub.id), "trial_end": when},
    )
    user = db.session.get(User, int(sub.user_id))
    if user is not None and user.phone:
        try:
            send_sms.delay(to=user.phone, message=message, reference=f"trial_will_end:{sub.id}")
        except Exception:
            current_app.logger.exception("trial_reminder_sms_enqueue_failed subscription_id=%s", sub.id)
    return sub


_HANDLERS = {
    "customer.subscription.created": lambda obj: _sync_subscription(obj, create=True),
    "customer.subscription.updated": lambda obj: _sync_subscription(obj, create=False),
    "customer.subscription.deleted": _on_subscription_deleted,
    "invoice.payment_succeeded": _on_payment_succeeded,
    "invoice.payment_failed": _on_payment_failed,
    "customer.subscription.trial_will_end": _on_trial_will_end,
}


def handled_event_types() -> tuple:
    return tuple(_HANDLERS.keys())


def apply_stripe_event(event: dict) -> Subscription | None:
    """Apply one Stripe event; unknown types are ignored and return None."""
    event_type = str(event.get("type") or "")
    handler = _HANDLERS.get(event_type)
    if handler is None:
        _log_webhook(event_type, "ignored")
        return None
    obj = ((event.get("data") or {}).get("object")) or {}
    sub = handler(obj)
    db.session.commit()
    _log_webhook(event_type, "applied" if sub is not None else "no_match", subscription_id=getattr(sub, "id", None))
    return sub
