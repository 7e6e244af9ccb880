from datetime import datetime

import sqlalchemy as sa

from rixdu.extensions import db


UPLOAD_STATUS_NONE = "none"
UPLOAD_STATUS_PENDING = "pending"
UPLOAD_STATUS_COMPLETED = "completed"
UPLOAD_STATUS_FAILED = "failed"


class Listing(db.Model):
    __tablename__ = "listings"
    __table_args__ = (
        db.Index("ix_listings_store_category", "store_id", "category_id"),
        db.Index("ix_listings_created_at", "created_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    category_id = db.Column(db.Integer, db.ForeignKey("categories.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    # Assigned on first save only.
    slug = db.Column(db.String(80), nullable=False, unique=True, index=True)

    values = db.Column(db.JSON, nullable=False, default=dict)
    status = db.Column(db.String(24), nullable=False, default="active", server_default="active", index=True)

    # Fast filter columns derived from values.
    title = db.Column(db.String(200), nullable=True)
    description = db.Column(db.Text, nullable=True)
    city = db.Column(db.String(80), nullable=True, index=True)
    latitude = db.Column(db.Float, nullable=True)
    longitude = db.Column(db.Float, nullable=True)

    upload_status = db.Column(db.String(16), nullable=False, default=UPLOAD_STATUS_NONE, server_default=UPLOAD_STATUS_NONE)
    upload_job_id = db.Column(db.String(64), nullable=True)
    upload_error = db.Column(db.Text, nullable=True)

    plan_type = db.Column(db.String(24), nullable=True)
    plan_duration_days = db.Column(db.Integer, nullable=True)
    plan_price = db.Column(db.Float, nullable=True)
    plan_expires_at = db.Column(db.DateTime, nullable=True)
    is_premium = db.Column(db.Boolean, nullable=False, default=False, server_default=sa.text("false"))
    is_featured = db.Column(db.Boolean, nullable=False, default=False, server_default=sa.text("false"))

    payment_status = db.Column(db.String(16), nullable=True)
    payment_intent_id = db.Column(db.String(128), nullable=True, index=True)
    payment_amount = db.Column(db.Float, nullable=True)
    payment_currency = db.Column(db.String(8), nullable=True)
    paid_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    path_rows = db.relationship(
        "ListingCategoryPath",
        order_by="ListingCategoryPath.depth",
        cascade="all, delete-orphan",
        lazy="select",
    )

    @property
    def category_path(self) -> list[int]:
        return [int(row.category_id) for row in self.path_rows]

    def set_category_path(self, ids: list[int]) -> None:
        existing = {int(row.category_id): row for row in self.path_rows}
        rows = []
        for idx, cid in enumerate(ids):
            row = existing.get(int(cid)) or ListingCategoryPath(category_id=int(cid))
            row.depth = idx
            rows.append(row)
        self.path_rows = rows

    def to_dict(self) -> dict:
        return {
            "id": int(self.id),
            "store_id": int(self.store_id),
            "category_id": int(self.category_id),
            "category_path": self.category_path,
            "user_id": int(self.user_id),
            "slug": self.slug or "",
            "values": dict(self.values or {}),
            "status": self.status or "active",
            "title": self.title or "",
            "city": self.city or "",
            "upload_status": self.upload_status or UPLOAD_STATUS_NONE,
            "upload_job_id": self.upload_job_id or None,
            "upload_error": self.upload_error or None,
            "plan_type": self.plan_type or None,
            "plan_expires_at": self.plan_expires_at.isoformat() if self.plan_expires_at else None,
            "is_premium": bool(self.is_premium),
            "is_featured": bool(self.is_featured),
            "payment_status": self.payment_status or None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class ListingCategoryPath(db.Model):
    __tablename__ = "listing_category_paths"

    listing_id = db.Column(db.Integer, db.ForeignKey("listings.id"), primary_key=True)
    category_id = db.Column(db.Integer, db.ForeignKey("categories.id"), primary_key=True, index=True)
    depth = db.Column(db.Integer, nullable=False, default=0)
