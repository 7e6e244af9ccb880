from datetime import datetime

import sqlalchemy as sa

from rixdu.extensions import db


class Notification(db.Model):
    __tablename__ = "notifications"
    __table_args__ = (
        db.Index("ix_notifications_user_read_created", "user_id", "is_read", "created_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=True)
    listing_id = db.Column(db.Integer, nullable=True)

    type = db.Column(db.String(32), nullable=False, default="system")
    title = db.Column(db.String(200), nullable=False, default="")
    message = db.Column(db.Text, nullable=False, default="")

    # Snapshot of the resolved channels at creation time.
    channels = db.Column(db.JSON, nullable=False, default=dict)

    is_read = db.Column(db.Boolean, nullable=False, default=False, server_default=sa.text("false"))
    read_at = db.Column(db.DateTime, nullable=True)
    meta = db.Column("metadata", db.JSON, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def toggle_read(self, at: datetime | None = None) -> bool:
        self.is_read = not bool(self.is_read)
        self.read_at = (at or datetime.utcnow()) if self.is_read else None
        return bool(self.is_read)

    def to_dict(self):
        return {
            "id": int(self.id),
            "user_id": int(self.user_id),
            "store_id": int(self.store_id) if self.store_id is not None else None,
            "listing_id": int(self.listing_id) if self.listing_id is not None else None,
            "type": self.type or "system",
            "title": self.title or "",
            "message": self.message or "",
            "channels": dict(self.channels or {}),
            "is_read": bool(self.is_read),
            "read_at": self.read_at.isoformat() if self.read_at else None,
            "metadata": dict(self.meta or {}),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class NotificationPreference(db.Model):
    __tablename__ = "notification_preferences"
    __table_args__ = (
        db.UniqueConstraint("user_id", "store_id", name="uq_notification_preferences_user_store"),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    # NULL means "not set": resolution falls back to the caller default.
    email = db.Column(db.Boolean, nullable=True)
    in_app = db.Column(db.Boolean, nullable=True)
    push = db.Column(db.Boolean, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self):
        return {
            "id": int(self.id),
            "user_id": int(self.user_id),
            "store_id": int(self.store_id),
            "channels": {
                "email": self.email,
                "inApp": self.in_app,
                "push": self.push,
            },
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
