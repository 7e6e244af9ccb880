from datetime import datetime

from rixdu.extensions import db


class PendingPayment(db.Model):
    __tablename__ = "pending_payments"

    id = db.Column(db.Integer, primary_key=True)
    reference = db.Column(db.String(96), nullable=False, unique=True, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    payment_intent_id = db.Column(db.String(128), nullable=True, unique=True, index=True)
    plan_id = db.Column(db.Integer, db.ForeignKey("price_plans.id"), nullable=True)

    # Draft listing input replayed through create_listing on confirmation.
    listing_draft = db.Column(db.JSON, nullable=False, default=dict)

    amount = db.Column(db.Float, nullable=False, default=0.0)
    currency = db.Column(db.String(8), nullable=False, default="AED")
    expires_at = db.Column(db.DateTime, nullable=False, index=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def is_expired(self, now: datetime | None = None) -> bool:
        return self.expires_at <= (now or datetime.utcnow())
