from __future__ import annotations

import json

from flask import Blueprint, current_app, request

from rixdu.extensions import db
from rixdu.services import listing_query, listing_service, profile_service, upload_queue
from rixdu.services.errors import ServiceError, ValidationFailed
from rixdu.utils.auth import is_admin, require_user
from rixdu.utils.http import forbidden, json_body, success

listings_bp = Blueprint("listings_bp", __name__, url_prefix="/api/listings")

_LISTINGS_INIT_DONE = False


@listings_bp.before_app_request
def _ensure_tables_once():
    global _LISTINGS_INIT_DONE
    if _LISTINGS_INIT_DONE:
        return
    try:
        db.create_all()
    except Exception:
        db.session.rollback()
    _LISTINGS_INIT_DONE = True


def _truthy(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value or "").strip().lower() in ("1", "true", "yes", "on")


def _json_field(raw, field: str, default):
    if raw in (None, ""):
        return default
    if not isinstance(raw, str):
        return raw
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        raise ValidationFailed(errors=[{"field": field, "message": f"Field '{field}' must be valid JSON"}])


def _read_submission() -> tuple[dict, list[dict], object, bool]:
    """Normalize a JSON or multipart listing submission.

    Returns ``(data, images, file_field_mapping, use_queue)`` where images are
    already base64 encoded for the upload queue.
    """
    if request.mimetype == "multipart/form-data":
        form = request.form
        data = {
            "store_id": form.get("storeId") or form.get("store_id"),
            "category_id": form.get("categoryId") or form.get("category_id"),
            "values": _json_field(form.get("values"), "values", {}),
            "status": form.get("status"),
        }
        if data["status"] is None:
            data.pop("status")
        images = [
            upload_queue.encode_image(f.read(), f.filename or "", f.mimetype or "")
            for key in request.files
            for f in request.files.getlist(key)
            if f and f.filename
        ]
        mapping = _json_field(form.get("fileFieldMapping"), "fileFieldMapping", {})
        return data, images, mapping, _truthy(form.get("useQueue"))

    body = json_body()
    data = dict(body)
    if "values" in data and not isinstance(data.get("values"), dict):
        raise ValidationFailed(errors=[{"field": "values", "message": "Field 'values' must be an object"}])
    images = [img for img in (body.get("images") or []) if isinstance(img, dict)]
    return data, images, body.get("fileFieldMapping") or {}, _truthy(body.get("useQueue"))


def _inline_values(data: dict, images: list[dict], mapping, category) -> dict:
    try:
        patch = upload_queue.upload_inline(images, mapping, int(category.id))
    except ServiceError:
        raise
    except Exception as exc:
        current_app.logger.exception("listing_inline_upload_failed category_id=%s", category.id)
        raise ServiceError(message=f"Image upload failed: {exc}", code="UPLOAD_FAILED", status=502)
    values = dict(data.get("values") or {})
    values.update(patch)
    data["values"] = values
    return patch


def _write_with_inline_images(data: dict, images: list[dict], mapping, category, write):
    """Store images, then write; stored files are removed if the write fails."""
    patch = _inline_values(data, images, mapping, category)
    try:
        return write()
    except Exception:
        db.session.rollback()
        upload_queue.discard_files(upload_queue.file_public_ids(patch), context="inline_upload_rollback")
        raise


@listings_bp.post("")
@listings_bp.post("/")
def create_listing():
    user = require_user()
    data, images, mapping, use_queue = _read_submission()
    enforce = not is_admin(user)
    if images and not use_queue:
        category = listing_service.check_create(data, user, enforce_entitlement=enforce, pending_file_fields=True)
        listing = _write_with_inline_images(
            data, images, mapping, category,
            lambda: listing_service.create_listing(data, user, enforce_entitlement=enforce),
        )
    else:
        listing = listing_service.create_listing(
            data,
            user,
            enforce_entitlement=enforce,
            queued_images=images,
            file_field_mapping=mapping,
            use_queue=use_queue,
        )
    extra = {}
    if listing.upload_job_id:
        extra["upload_job_id"] = listing.upload_job_id
    return success(listing.to_dict(), message="Listing created", status=201, **extra)


@listings_bp.get("")
@listings_bp.get("/")
def list_listings():
    items, pagination = listing_query.search_listings(request.args)
    return success(items, pagination=pagination)


@listings_bp.get("/mine")
def my_listings():
    user = require_user()
    args = request.args.to_dict()
    args.setdefault("status", "all")
    items, pagination = listing_query.search_listings(args, user_id=int(user.id))
    return success(items, pagination=pagination)


@listings_bp.get("/upload-jobs/<job_id>")
def upload_job_status(job_id: str):
    require_user()
    return success(upload_queue.job_state(job_id))


@listings_bp.get("/slug/<slug>")
def get_listing_by_slug(slug: str):
    listing = listing_service.get_listing_by_slug(slug)
    return success(listing_service.listing_detail(listing))


@listings_bp.get("/<listing_id>")
def get_listing(listing_id: str):
    listing = listing_service.get_listing(listing_id)
    return success(listing_service.listing_detail(listing))


@listings_bp.put("/<listing_id>")
def update_listing(listing_id: str):
    user = require_user()
    current = listing_service.get_listing(listing_id)
    data, images, mapping, use_queue = _read_submission()
    if images and not use_queue:
        category = listing_service.check_update(current, data, user, pending_file_fields=True)
        listing = _write_with_inline_images(
            data, images, mapping, category,
            lambda: listing_service.update_listing(current, data, user),
        )
    else:
        listing = listing_service.update_listing(
            current,
            data,
            user,
            queued_images=images,
            file_field_mapping=mapping,
            use_queue=use_queue,
        )
    return success(listing.to_dict(), message="Listing updated")


@listings_bp.delete("/<listing_id>")
def delete_listing(listing_id: str):
    user = require_user()
    listing_service.delete_listing(listing_service.get_listing(listing_id), user)
    return success(message="Listing deleted")


@listings_bp.post("/<listing_id>/applications")
def apply_to_listing(listing_id: str):
    user = require_user()
    listing = listing_service.get_listing(listing_id)
    application = profile_service.apply_to_listing(int(user.id), listing, json_body())
    return success(application.to_dict(), message="Application submitted", status=201)


@listings_bp.get("/<listing_id>/applications")
def listing_applications(listing_id: str):
    user = require_user()
    listing = listing_service.get_listing(listing_id)
    if int(listing.user_id) != int(user.id) and not is_admin(user):
        return forbidden("Only the listing owner can view applications")
    rows = profile_service.applications_for_listing(int(listing.id))
    return success([a.to_dict() for a in rows], count=len(rows))


@listings_bp.patch("/<listing_id>/applications/<int:application_id>")
def review_application(listing_id: str, application_id: int):
    user = require_user()
    listing = listing_service.get_listing(listing_id)
    if int(listing.user_id) != int(user.id) and not is_admin(user):
        return forbidden("Only the listing owner can review applications")
    application = profile_service.get_application(application_id)
    if int(application.listing_id) != int(listing.id):
        return forbidden("Application does not belong to this listing")
    application = profile_service.set_application_status(application, json_body().get("status"))
    return success(application.to_dict(), message="Application updated")
