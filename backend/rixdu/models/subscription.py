from datetime import datetime

import sqlalchemy as sa

from rixdu.extensions import db


PLAN_TRIAL = "trial"
PLAN_PREMIUM = "premium"

STATUS_ACTIVE = "active"
STATUS_EXPIRED = "expired"
STATUS_CANCELLED = "cancelled"
STATUS_PENDING = "pending"
STATUS_INCOMPLETE = "incomplete"

UNLIMITED_LISTINGS = -1


class Subscription(db.Model):
    __tablename__ = "subscriptions"
    __table_args__ = (
        db.Index("ix_subscriptions_user_status_end", "user_id", "status", "end_date"),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    plan_type = db.Column(db.String(16), nullable=False)  # trial | premium
    status = db.Column(db.String(16), nullable=False, default=STATUS_PENDING)  # active | expired | cancelled | pending | incomplete
    start_date = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    end_date = db.Column(db.DateTime, nullable=False)

    price = db.Column(db.Float, nullable=False, default=0.0)
    currency = db.Column(db.String(8), nullable=False, default="AED", server_default="AED")

    stripe_subscription_id = db.Column(db.String(128), nullable=True, index=True)
    stripe_customer_id = db.Column(db.String(128), nullable=True)
    stripe_payment_intent_id = db.Column(db.String(128), nullable=True, index=True)

    auto_renew = db.Column(db.Boolean, nullable=False, default=False, server_default=sa.text("false"))
    payment_status = db.Column(db.String(16), nullable=False, default="pending")  # paid | pending | failed | free

    listings_count = db.Column(db.Integer, nullable=False, default=0, server_default="0")
    max_listings = db.Column(db.Integer, nullable=False, default=1, server_default="1")

    cancelled_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    def is_active(self, now: datetime | None = None) -> bool:
        stamp = now or datetime.utcnow()
        return self.status == STATUS_ACTIVE and self.end_date is not None and self.end_date > stamp

    def days_remaining(self, now: datetime | None = None) -> int:
        stamp = now or datetime.utcnow()
        if self.end_date is None or self.end_date <= stamp:
            return 0
        return int((self.end_date - stamp).total_seconds() // 86400)

    def to_dict(self) -> dict:
        return {
            "id": int(self.id),
            "user_id": int(self.user_id),
            "plan_type": self.plan_type,
            "status": self.status,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "price": float(self.price or 0.0),
            "currency": self.currency or "AED",
            "auto_renew": bool(self.auto_renew),
            "payment_status": self.payment_status,
            "listings_count": int(self.listings_count or 0),
            "max_listings": int(self.max_listings if self.max_listings is not None else 1),
            "days_remaining": self.days_remaining(),
            "cancelled_at": self.cancelled_at.isoformat() if self.cancelled_at else None,
        }
