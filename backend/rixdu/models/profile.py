from datetime import datetime

from rixdu.extensions import db


APPLICATION_STATUSES = ("pending", "reviewed", "shortlisted", "rejected", "hired")


class Profile(db.Model):
    __tablename__ = "profiles"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, unique=True, index=True)

    bio = db.Column(db.String(500), nullable=True)
    avatar_url = db.Column(db.String(1024), nullable=True)
    location = db.Column(db.String(160), nullable=True)

    # Listing id collections, kept in insertion order.
    ad_ids = db.Column(db.JSON, nullable=False, default=list)
    job_post_ids = db.Column(db.JSON, nullable=False, default=list)
    favorite_listing_ids = db.Column(db.JSON, nullable=False, default=list)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self) -> dict:
        return {
            "id": int(self.id),
            "user_id": int(self.user_id),
            "bio": self.bio or "",
            "avatar_url": self.avatar_url or "",
            "location": self.location or "",
            "ads": list(self.ad_ids or []),
            "job_posts": list(self.job_post_ids or []),
            "favorites": list(self.favorite_listing_ids or []),
        }


class Application(db.Model):
    __tablename__ = "applications"
    __table_args__ = (
        db.UniqueConstraint("applicant_id", "listing_id", name="uq_applications_applicant_listing"),
        db.Index("ix_applications_listing_status", "listing_id", "status"),
    )

    id = db.Column(db.Integer, primary_key=True)
    applicant_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    listing_id = db.Column(db.Integer, db.ForeignKey("listings.id"), nullable=False, index=True)
    status = db.Column(db.String(24), nullable=False, default="pending")
    cover_letter = db.Column(db.Text, nullable=True)
    applicant_data = db.Column(db.JSON, nullable=True)
    applied_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    reviewed_at = db.Column(db.DateTime, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": int(self.id),
            "applicant_id": int(self.applicant_id),
            "listing_id": int(self.listing_id),
            "status": self.status or "pending",
            "cover_letter": self.cover_letter or "",
            "applicant_data": dict(self.applicant_data or {}),
            "applied_at": self.applied_at.isoformat() if self.applied_at else None,
            "reviewed_at": self.reviewed_at.isoformat() if self.reviewed_at else None,
        }
