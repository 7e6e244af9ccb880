from datetime import datetime

from rixdu.extensions import db


RATING_ATTRIBUTES = (
    "Good Dealer",
    "Best Communication",
    "Fast Response",
    "Honest Seller",
    "Fair Pricing",
    "Quality Product",
    "Reliable",
    "Professional",
)


class Rating(db.Model):
    __tablename__ = "ratings"
    __table_args__ = (
        db.UniqueConstraint("reviewer_id", "reviewee_id", "listing_id", name="uq_ratings_reviewer_reviewee_listing"),
        db.Index("ix_ratings_reviewee_created", "reviewee_id", "created_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    reviewer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    reviewee_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    # Cleared when the listing is deleted; the rating stays with the seller.
    listing_id = db.Column(db.Integer, db.ForeignKey("listings.id"), nullable=True, index=True)

    stars = db.Column(db.Integer, nullable=False)
    message = db.Column(db.String(500), nullable=False)
    attributes = db.Column(db.JSON, nullable=False, default=list)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self) -> dict:
        return {
            "id": int(self.id),
            "reviewer": int(self.reviewer_id),
            "reviewee": int(self.reviewee_id),
            "listing_id": int(self.listing_id) if self.listing_id else None,
            "stars": int(self.stars),
            "message": self.message or "",
            "attributes": list(self.attributes or []),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
