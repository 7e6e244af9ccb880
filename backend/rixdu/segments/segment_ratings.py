from __future__ import annotations

from flask import Blueprint, request

from rixdu.services import rating_service
from rixdu.services.errors import NotFound
from rixdu.utils.auth import is_admin, require_user
from rixdu.utils.http import json_body, success

ratings_bp = Blueprint("ratings_bp", __name__, url_prefix="/api/ratings")


def _int_path(raw: str, label: str) -> int:
    try:
        return int(str(raw).strip())
    except (TypeError, ValueError):
        raise NotFound(f"{label} not found")


@ratings_bp.post("")
@ratings_bp.post("/")
def create_rating():
    user = require_user()
    rating = rating_service.create_rating(user, json_body())
    return success(rating.to_dict(), message="Rating created successfully", status=201)


@ratings_bp.get("/user/<user_id>")
@ratings_bp.get("/user/<user_id>/<listing_id>")
def user_ratings(user_id: str, listing_id: str | None = None):
    listing = _int_path(listing_id, "Listing") if listing_id is not None else None
    return success(rating_service.ratings_for_user(_int_path(user_id, "User"), request.args, listing_id=listing))


@ratings_bp.delete("/<rating_id>")
def delete_rating(rating_id: str):
    user = require_user()
    rating_service.delete_rating(rating_service.get_rating(rating_id), user, admin=is_admin(user))
    return success(message="Rating deleted successfully")
