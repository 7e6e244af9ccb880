from datetime import datetime

import sqlalchemy as sa

from rixdu.extensions import db


STORE_KIND_GENERAL = "general"
STORE_KIND_JOBS = "jobs"
STORE_KIND_VEHICLES = "vehicles"
STORE_KIND_HEALTHCARE = "healthcare"
STORE_KIND_CLASSIFIEDS = "classifieds"
STORE_KIND_PROPERTY = "property"

STORE_KINDS = (
    STORE_KIND_GENERAL,
    STORE_KIND_JOBS,
    STORE_KIND_VEHICLES,
    STORE_KIND_HEALTHCARE,
    STORE_KIND_CLASSIFIEDS,
    STORE_KIND_PROPERTY,
)


class Store(db.Model):
    __tablename__ = "stores"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    slug = db.Column(db.String(140), nullable=False, unique=True, index=True)

    # Set once at creation; request paths never infer it from name or slug.
    kind = db.Column(db.String(24), nullable=False, default=STORE_KIND_GENERAL, server_default=STORE_KIND_GENERAL, index=True)

    icon_url = db.Column(db.String(1024), nullable=True)
    description = db.Column(db.Text, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True, server_default=sa.text("true"))
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self) -> dict:
        return {
            "id": int(self.id),
            "name": self.name or "",
            "slug": self.slug or "",
            "kind": self.kind or STORE_KIND_GENERAL,
            "icon_url": self.icon_url or "",
            "description": self.description or "",
            "is_active": bool(self.is_active),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
