from __future__ import annotations

from datetime import datetime

from sqlalchemy.exc import IntegrityError

from rixdu.extensions import db
from rixdu.models import Application, Listing, Profile, Store
from rixdu.models.profile import APPLICATION_STATUSES
from rixdu.models.store import STORE_KIND_JOBS
from rixdu.services.errors import Conflict, NotFound, ValidationFailed


COLLECTION_ADS = "ads"
COLLECTION_JOB_POSTS = "job_posts"

_COLLECTION_COLUMNS = {
    COLLECTION_ADS: "ad_ids",
    COLLECTION_JOB_POSTS: "job_post_ids",
}


def get_or_create_profile(user_id: int) -> Profile:
    profile = Profile.query.filter_by(user_id=int(user_id)).first()
    if profile is not None:
        return profile
    profile = Profile(user_id=int(user_id), ad_ids=[], job_post_ids=[], favorite_listing_ids=[])
    db.session.add(profile)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        profile = Profile.query.filter_by(user_id=int(user_id)).first()
    return profile


def collection_for_store(store: Store | None) -> str:
    if store is not None and store.kind == STORE_KIND_JOBS:
        return COLLECTION_JOB_POSTS
    return COLLECTION_ADS


def attach_listing(user_id: int, listing_id: int, collection: str = COLLECTION_ADS) -> bool:
    column = _COLLECTION_COLUMNS.get(collection)
    if column is None:
        raise ValueError(f"unknown profile collection '{collection}'")
    get_or_create_profile(user_id)
    profile = Profile.query.filter_by(user_id=int(user_id)).with_for_update().first()
    ids = list(getattr(profile, column) or [])
    if int(listing_id) in ids:
        db.session.rollback()
        return False
    ids.append(int(listing_id))
    setattr(profile, column, ids)
    db.session.commit()
    return True


def detach_listing(user_id: int, listing_id: int) -> None:
    profile = Profile.query.filter_by(user_id=int(user_id)).first()
    if profile is None:
        return
    for column in _COLLECTION_COLUMNS.values():
        ids = [i for i in (getattr(profile, column) or []) if int(i) != int(listing_id)]
        setattr(profile, column, ids)
    profile.favorite_listing_ids = [i for i in (profile.favorite_listing_ids or []) if int(i) != int(listing_id)]


def update_profile(user_id: int, data: dict) -> Profile:
    profile = get_or_create_profile(user_id)
    if "bio" in data:
        bio = str(data.get("bio") or "").strip()
        if len(bio) > 500:
            raise ValidationFailed(errors=[{"field": "bio", "message": "Field 'bio' must be at most 500 characters"}])
        profile.bio = bio or None
    for key in ("avatar_url", "location"):
        if key in data:
            setattr(profile, key, str(data.get(key) or "").strip() or None)
    db.session.commit()
    return profile


def apply_to_listing(applicant_id: int, listing: Listing, data: dict) -> Application:
    store = db.session.get(Store, int(listing.store_id))
    if store is None or store.kind != STORE_KIND_JOBS:
        raise ValidationFailed("Applications are only accepted for job listings")
    if int(listing.user_id) == int(applicant_id):
        raise ValidationFailed("You cannot apply to your own listing")
    if Application.query.filter_by(applicant_id=int(applicant_id), listing_id=int(listing.id)).first() is not None:
        raise Conflict("You have already applied to this listing", code="DUPLICATE_APPLICATION")
    applicant_data = data.get("applicant_data", data.get("applicantData"))
    application = Application(
        applicant_id=int(applicant_id),
        listing_id=int(listing.id),
        status="pending",
        cover_letter=str(data.get("cover_letter") or data.get("coverLetter") or "").strip() or None,
        applicant_data=applicant_data if isinstance(applicant_data, dict) else None,
    )
    db.session.add(application)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise Conflict("You have already applied to this listing", code="DUPLICATE_APPLICATION")
    return application


def set_application_status(application: Application, status: str) -> Application:
    value = str(status or "").strip().lower()
    if value not in APPLICATION_STATUSES:
        raise ValidationFailed(errors=[{"field": "status", "message": f"Field 'status' must be one of the following values: {', '.join(APPLICATION_STATUSES)}"}])
    application.status = value
    application.reviewed_at = datetime.utcnow() if value != "pending" else None
    db.session.commit()
    return application


def applications_for_listing(listing_id: int) -> list[Application]:
    return (
        Application.query.filter_by(listing_id=int(listing_id))
        .order_by(Application.applied_at.desc())
        .all()
    )


def applications_for_user(user_id: int) -> list[Application]:
    return (
        Application.query.filter_by(applicant_id=int(user_id))
        .order_by(Application.applied_at.desc())
        .all()
    )


def get_application(application_id: int) -> Application:
    application = db.session.get(Application, int(application_id))
    if application is None:
        raise NotFound("Application not found")
    return application
