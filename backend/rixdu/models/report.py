from datetime import datetime

from rixdu.extensions import db


REPORT_REASONS = ("spam", "scam", "inappropriate", "duplicate", "wrong_category", "fraud", "other")
REPORT_STATUSES = ("pending", "reviewed", "resolved", "dismissed")


class Report(db.Model):
    __tablename__ = "reports"
    __table_args__ = (
        db.UniqueConstraint("listing_id", "reported_by_id", name="uq_reports_listing_reporter"),
        db.Index("ix_reports_status_created", "status", "created_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    listing_id = db.Column(db.Integer, db.ForeignKey("listings.id"), nullable=False, index=True)
    reported_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    reported_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    reason = db.Column(db.String(32), nullable=False)
    description = db.Column(db.String(500), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="pending")

    admin_note = db.Column(db.String(500), nullable=True)
    reviewed_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    reviewed_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self) -> dict:
        return {
            "id": int(self.id),
            "listing_id": int(self.listing_id),
            "reported_by": int(self.reported_by_id),
            "reported_user": int(self.reported_user_id),
            "reason": self.reason,
            "description": self.description or "",
            "status": self.status or "pending",
            "admin_note": self.admin_note or "",
            "reviewed_by": int(self.reviewed_by_id) if self.reviewed_by_id else None,
            "reviewed_at": self.reviewed_at.isoformat() if self.reviewed_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
