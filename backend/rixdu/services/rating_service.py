from __future__ import annotations

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from rixdu.extensions import db
from rixdu.models import Profile, Rating, User
from rixdu.models.rating import RATING_ATTRIBUTES
from rixdu.services.errors import Conflict, Forbidden, NotFound, ValidationFailed
from rixdu.services.listing_query import int_arg, page_meta


MESSAGE_MIN = 10
MESSAGE_MAX = 500
RATINGS_PAGE_LIMIT = 10


def _user_id(raw, field: str) -> int | None:
    if raw in (None, ""):
        return None
    try:
        return int(str(raw).strip())
    except (TypeError, ValueError):
        raise ValidationFailed(errors=[{"field": field, "message": f"Field '{field}' must be a valid id"}])


def _stars(raw) -> int:
    try:
        stars = int(str(raw).strip())
    except (TypeError, ValueError):
        stars = 0
    if stars < 1 or stars > 5:
        raise ValidationFailed(errors=[{"field": "stars", "message": "Field 'stars' must be between 1 and 5"}])
    return stars


def _attributes(raw) -> list[str]:
    if raw in (None, ""):
        return []
    if not isinstance(raw, list):
        raise ValidationFailed(errors=[{"field": "attributes", "message": "Field 'attributes' must be a list"}])
    unknown = [a for a in raw if a not in RATING_ATTRIBUTES]
    if unknown:
        raise ValidationFailed(errors=[{"field": "attributes", "message": f"Unknown attributes: {', '.join(map(str, unknown))}"}])
    # De-duplicated, first occurrence wins.
    return list(dict.fromkeys(raw))


def create_rating(reviewer: User, data: dict) -> Rating:
    """Record ``reviewer``'s rating of another user for one listing.

    The reviewee defaults to the listing's owner. A second rating for the same
    reviewer, reviewee and listing raises ``Conflict``.
    """
    from rixdu.services.listing_service import get_listing

    listing_ref = data.get("listing_id", data.get("listingId", data.get("listing")))
    if listing_ref in (None, ""):
        raise ValidationFailed(errors=[{"field": "listingId", "message": "Field 'listingId' is required"}])
    listing = get_listing(listing_ref)
    reviewee_id = _user_id(data.get("reviewee_id", data.get("revieweeId", data.get("reviewee"))), "reviewee")
    if reviewee_id is None:
        reviewee_id = int(listing.user_id)
    if reviewee_id == int(reviewer.id):
        raise ValidationFailed("You cannot rate yourself")
    if db.session.get(User, reviewee_id) is None:
        raise NotFound("User not found")

    stars = _stars(data.get("stars"))
    message = str(data.get("message") or "").strip()
    if len(message) < MESSAGE_MIN or len(message) > MESSAGE_MAX:
        raise ValidationFailed(errors=[{"field": "message", "message": f"Field 'message' must be between {MESSAGE_MIN} and {MESSAGE_MAX} characters"}])
    attributes = _attributes(data.get("attributes"))

    exists = Rating.query.filter_by(
        reviewer_id=int(reviewer.id), reviewee_id=reviewee_id, listing_id=int(listing.id)
    ).first()
    if exists is not None:
        raise Conflict("You have already rated this user for this listing", code="DUPLICATE_RATING")
    rating = Rating(
        reviewer_id=int(reviewer.id),
        reviewee_id=reviewee_id,
        listing_id=int(listing.id),
        stars=stars,
        message=message,
        attributes=attributes,
    )
    db.session.add(rating)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise Conflict("You have already rated this user for this listing", code="DUPLICATE_RATING")
    return rating


def ratings_for_user(user_id: int, args, listing_id: int | None = None) -> dict:
    page = int_arg(args, "page", 1)
    limit = int_arg(args, "limit", RATINGS_PAGE_LIMIT, maximum=100)
    query = Rating.query.filter(Rating.reviewee_id == int(user_id))
    if listing_id is not None:
        query = query.filter(Rating.listing_id == int(listing_id))

    average, total = query.with_entities(func.avg(Rating.stars), func.count(Rating.id)).one()
    rows = query.order_by(Rating.created_at.desc(), Rating.id.desc()).offset((page - 1) * limit).limit(limit).all()

    reviewer_ids = {int(r.reviewer_id) for r in rows}
    users = {int(u.id): u for u in User.query.filter(User.id.in_(reviewer_ids)).all()} if reviewer_ids else {}
    avatars = (
        {int(p.user_id): p.avatar_url or "" for p in Profile.query.filter(Profile.user_id.in_(reviewer_ids)).all()}
        if reviewer_ids
        else {}
    )
    items = []
    for rating in rows:
        item = rating.to_dict()
        reviewer = users.get(int(rating.reviewer_id))
        item["reviewer"] = {
            "id": int(rating.reviewer_id),
            "name": (reviewer.name or "") if reviewer else "",
            "avatar": avatars.get(int(rating.reviewer_id), ""),
        }
        items.append(item)
    return {
        "ratings": items,
        "average_rating": round(float(average or 0.0), 1),
        "total_ratings": int(total or 0),
        "pagination": page_meta(page, limit, int(total or 0)),
    }


def get_rating(rating_id) -> Rating:
    try:
        ident = int(str(rating_id).strip())
    except (TypeError, ValueError):
        raise NotFound("Rating not found")
    rating = db.session.get(Rating, ident)
    if rating is None:
        raise NotFound("Rating not found")
    return rating


def delete_rating(rating: Rating, user: User, *, admin: bool = False) -> None:
    if not admin and int(rating.reviewer_id) != int(user.id):
        raise Forbidden("You can only delete your own ratings")
    db.session.delete(rating)
    db.session.commit()
