from __future__ import annotations

from flask import Blueprint

from rixdu.models import Listing
from rixdu.services import profile_service
from rixdu.utils.auth import require_user
from rixdu.utils.http import json_body, success

profiles_bp = Blueprint("profiles_bp", __name__, url_prefix="/api/profiles")


@profiles_bp.get("/me")
def my_profile():
    user = require_user()
    profile = profile_service.get_or_create_profile(int(user.id))
    payload = profile.to_dict()
    payload["user"] = user.to_dict()
    return success(payload)


@profiles_bp.put("/me")
def update_my_profile():
    user = require_user()
    profile = profile_service.update_profile(int(user.id), json_body())
    return success(profile.to_dict(), message="Profile updated")


@profiles_bp.get("/me/applications")
def my_applications():
    user = require_user()
    rows = profile_service.applications_for_user(int(user.id))
    listing_ids = {int(a.listing_id) for a in rows}
    listings = {int(l.id): l for l in Listing.query.filter(Listing.id.in_(listing_ids)).all()} if listing_ids else {}
    items = []
    for application in rows:
        item = application.to_dict()
        listing = listings.get(int(application.listing_id))
        item["listing"] = {"id": int(listing.id), "slug": listing.slug, "title": listing.title or ""} if listing else None
        items.append(item)
    return success(items, count=len(items))
