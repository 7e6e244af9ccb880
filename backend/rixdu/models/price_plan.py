from datetime import datetime

import sqlalchemy as sa

from rixdu.extensions import db


PLAN_TYPES = ("basic", "premium", "featured")


class PricePlan(db.Model):
    __tablename__ = "price_plans"

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    plan_type = db.Column(db.String(16), nullable=False, default="basic")
    duration_days = db.Column(db.Integer, nullable=False, default=30)
    price = db.Column(db.Float, nullable=False, default=0.0)
    discounted_price = db.Column(db.Float, nullable=True)
    currency = db.Column(db.String(8), nullable=False, default="AED", server_default="AED")
    features = db.Column(db.JSON, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True, server_default=sa.text("true"))
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def effective_price(self) -> float:
        if self.discounted_price is not None and float(self.discounted_price) >= 0:
            return float(self.discounted_price)
        return float(self.price or 0.0)

    def to_dict(self) -> dict:
        return {
            "id": int(self.id),
            "store_id": int(self.store_id),
            "plan_type": self.plan_type,
            "duration_days": int(self.duration_days or 0),
            "price": float(self.price or 0.0),
            "discounted_price": float(self.discounted_price) if self.discounted_price is not None else None,
            "effective_price": self.effective_price(),
            "currency": self.currency or "AED",
            "features": list(self.features or []),
            "is_active": bool(self.is_active),
        }
