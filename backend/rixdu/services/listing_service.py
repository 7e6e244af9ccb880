from __future__ import annotations

import secrets
from datetime import datetime, timedelta

from flask import current_app

from rixdu.extensions import db
from rixdu.models import Application, Category, Listing, PricePlan, Rating, Report, Store, User
from rixdu.services import category_tree, subscription_service
from rixdu.services.errors import Forbidden, NotFound, ValidationFailed
from rixdu.services.listing_values import (
    parse_fields,
    required_file_fields,
    slugify,
    validate,
    validate_update,
)
from rixdu.services.profile_service import collection_for_store, detach_listing


SLUG_STEM_LENGTH = 30
TITLE_KEYS = ("title", "name")
LISTING_STATUSES = ("active", "inactive", "sold", "closed")
CITY_KEYS = ("city", "location", "emirate")


def generate_slug(values: dict | None) -> str:
    data = values or {}
    stem = ""
    for key in TITLE_KEYS:
        stem = slugify(str(data.get(key) or ""))[:SLUG_STEM_LENGTH].strip("-")
        if stem:
            break
    if not stem:
        return f"listing-{secrets.token_hex(8)}"
    return f"{stem}-{secrets.token_hex(4)}"


def _first_text(values: dict, keys: tuple) -> str | None:
    for key in keys:
        raw = values.get(key)
        if isinstance(raw, str) and raw.strip():
            return raw.strip()
    return None


def _denormalize(listing: Listing, category: Category) -> None:
    values = dict(listing.values or {})
    listing.title = (_first_text(values, TITLE_KEYS) or "")[:200] or None
    listing.description = _first_text(values, ("description",))
    listing.city = (_first_text(values, CITY_KEYS) or "")[:80] or None
    listing.latitude = None
    listing.longitude = None
    for schema in parse_fields(category.field_list()):
        if schema.type != "point":
            continue
        coords = (values.get(schema.name) or {}).get("coordinates") if isinstance(values.get(schema.name), dict) else None
        if isinstance(coords, dict) and coords.get("lat") is not None and coords.get("lng") is not None:
            listing.latitude = float(coords["lat"])
            listing.longitude = float(coords["lng"])
            address = (values.get(schema.name) or {}).get("address")
            if not listing.city and isinstance(address, str) and address.strip():
                listing.city = address.strip()[:80]
            break


def resolve_leaf(data: dict) -> tuple[Store, Category]:
    store_ref = data.get("store_id", data.get("storeId"))
    category_ref = data.get("category_id", data.get("categoryId"))
    errors = []
    if store_ref in (None, ""):
        errors.append({"field": "storeId", "message": "Field 'storeId' is required"})
    if category_ref in (None, ""):
        errors.append({"field": "categoryId", "message": "Field 'categoryId' is required"})
    if errors:
        raise ValidationFailed(errors=errors)
    store = category_tree.get_store(store_ref)
    try:
        category = category_tree.get_category(category_ref, store_id=int(store.id))
    except NotFound:
        raise ValidationFailed("Category not found", [{"field": "categoryId", "message": "Category not found"}])
    if int(category.store_id) != int(store.id):
        raise ValidationFailed("Category does not belong to this store", [{"field": "categoryId", "message": "Category does not belong to this store"}])
    if not category.is_leaf:
        raise ValidationFailed("Listings can only be created in leaf categories", [{"field": "categoryId", "message": "Category is not a leaf"}])
    return store, category


def _apply_plan(listing: Listing, plan: PricePlan | None, payment=None) -> None:
    now = datetime.utcnow()
    if plan is not None:
        listing.plan_type = plan.plan_type
        listing.plan_duration_days = int(plan.duration_days or 0)
        listing.plan_price = plan.effective_price()
        listing.plan_expires_at = now + timedelta(days=int(plan.duration_days or 0))
        listing.is_premium = plan.plan_type in ("premium", "featured")
        listing.is_featured = plan.plan_type == "featured"
    if payment is not None:
        listing.payment_status = "paid" if payment.succeeded else str(payment.status or "pending")
        listing.payment_intent_id = payment.id
        listing.payment_amount = float(payment.amount or 0.0)
        listing.payment_currency = (payment.currency or "AED").upper()
        listing.paid_at = now if payment.succeeded else None


def _queue_images(listing: Listing, queued_images, file_field_mapping, category_id: int) -> None:
    from rixdu.services.upload_queue import mark_upload_failed, queue_image_upload

    try:
        queue_image_upload(int(listing.id), list(queued_images), file_field_mapping, category_id)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("listing_image_enqueue_failed listing_id=%s", listing.id)
        mark_upload_failed(int(listing.id), "Failed to queue image upload")


def _attach_to_profile(listing: Listing, store: Store) -> None:
    from rixdu.tasks.profile_tasks import attach_listing_to_profile

    try:
        attach_listing_to_profile.apply_async(
            kwargs={
                "user_id": int(listing.user_id),
                "listing_id": int(listing.id),
                "collection": collection_for_store(store),
            },
            queue="profile",
        )
    except Exception:
        current_app.logger.exception("profile_attach_enqueue_failed listing_id=%s", listing.id)


def _notify_followers(listing: Listing, store: Store) -> None:
    from rixdu.services.notification_dispatcher import notify_store_subscribers_on_listing

    try:
        notify_store_subscribers_on_listing(int(store.id), listing)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("listing_fanout_failed listing_id=%s", listing.id)


def _check_entitlement(user: User):
    eligibility = subscription_service.can_create_listing(int(user.id))
    if not eligibility.can_create:
        raise Forbidden(
            "Active subscription required to create listings",
            code="SUBSCRIPTION_REQUIRED",
            extra={"reason": eligibility.reason},
        )
    return eligibility


def check_create(data: dict, user: User, *, enforce_entitlement: bool = True, pending_file_fields: bool = False) -> Category:
    """Apply every rejection ``create_listing`` would, without writing anything.

    With ``pending_file_fields`` the required check is waived for file fields
    whose images are uploaded after this passes.
    """
    if enforce_entitlement:
        _check_entitlement(user)
    _store, category = resolve_leaf(data)
    waive = required_file_fields(category.field_list()) if pending_file_fields else ()
    result = validate(category.field_list(), data.get("values"), skip_required_for=waive)
    if not result.ok:
        raise ValidationFailed(errors=result.errors_json())
    return category


def create_listing(
    data: dict,
    user: User,
    *,
    enforce_entitlement: bool = True,
    queued_images=None,
    file_field_mapping=None,
    use_queue: bool = False,
    plan: PricePlan | None = None,
    payment=None,
) -> Listing:
    """Validate and persist a listing, then run its best-effort side effects.

    Raises ``Forbidden`` when the user may not post, ``ValidationFailed`` on
    bad input. Side effects never undo the committed listing.
    """
    eligibility = _check_entitlement(user) if enforce_entitlement else None
    store, category = resolve_leaf(data)
    images = list(queued_images or [])
    waive = required_file_fields(category.field_list()) if use_queue and images else ()
    result = validate(category.field_list(), data.get("values"), skip_required_for=waive)
    if not result.ok:
        raise ValidationFailed(errors=result.errors_json())

    values = result.values_json()
    listing = Listing(
        store_id=int(store.id),
        category_id=int(category.id),
        user_id=int(user.id),
        slug=generate_slug(values),
        values=values,
        status="active",
    )
    listing.set_category_path(category_tree.listing_path_for(category))
    _denormalize(listing, category)
    _apply_plan(listing, plan, payment)
    db.session.add(listing)
    db.session.commit()

    if eligibility is not None and eligibility.subscription is not None:
        try:
            subscription_service.increment_listing_count(int(eligibility.subscription.id))
        except Exception:
            db.session.rollback()
            current_app.logger.exception("subscription_count_increment_failed listing_id=%s", listing.id)
    if use_queue and images:
        _queue_images(listing, images, file_field_mapping, int(category.id))
    _attach_to_profile(listing, store)
    _notify_followers(listing, store)
    return listing


def _is_admin(user: User | None) -> bool:
    return bool(user) and (user.role or "").strip().lower() == "admin"


def _assert_can_modify(listing: Listing, user: User) -> None:
    if _is_admin(user):
        return
    if user is None or int(listing.user_id) != int(user.id):
        raise Forbidden("You do not have permission to modify this listing")


def _status_from(data: dict) -> str | None:
    if "status" not in data:
        return None
    status = str(data.get("status") or "").strip().lower()
    if status not in LISTING_STATUSES:
        raise ValidationFailed(errors=[{"field": "status", "message": "Field 'status' must be one of the following values: " + ", ".join(LISTING_STATUSES)}])
    return status


def _category_of(listing: Listing) -> Category:
    category = db.session.get(Category, int(listing.category_id))
    if category is None:
        raise NotFound("Category not found")
    return category


def check_update(listing: Listing, data: dict, user: User, *, pending_file_fields: bool = False) -> Category:
    """Update counterpart of ``check_create``."""
    _assert_can_modify(listing, user)
    category = _category_of(listing)
    waive = required_file_fields(category.field_list()) if pending_file_fields else ()
    _merged, result = validate_update(category.field_list(), listing.values, data.get("values"), skip_required_for=waive)
    if not result.ok:
        raise ValidationFailed(errors=result.errors_json())
    _status_from(data)
    return category


def update_listing(listing: Listing, data: dict, user: User, *, queued_images=None, file_field_mapping=None, use_queue: bool = False) -> Listing:
    _assert_can_modify(listing, user)
    category = _category_of(listing)
    images = list(queued_images or [])
    waive = required_file_fields(category.field_list()) if use_queue and images else ()
    merged, result = validate_update(category.field_list(), listing.values, data.get("values"), skip_required_for=waive)
    if not result.ok:
        raise ValidationFailed(errors=result.errors_json())
    listing.values = merged
    status = _status_from(data)
    if status is not None:
        listing.status = status
    _denormalize(listing, category)
    listing.updated_at = datetime.utcnow()
    db.session.commit()
    if use_queue and images:
        _queue_images(listing, images, file_field_mapping, int(category.id))
    return listing


def _delete_assets(listing: Listing) -> None:
    from rixdu.services.upload_queue import discard_files, file_public_ids

    discard_files(file_public_ids(listing.values), context=f"listing_id={listing.id}")


def delete_listing(listing: Listing, user: User) -> None:
    _assert_can_modify(listing, user)
    listing_id = int(listing.id)
    owner_id = int(listing.user_id)
    created_at = listing.created_at
    _delete_assets(listing)
    detach_listing(owner_id, listing_id)
    Application.query.filter_by(listing_id=listing_id).delete(synchronize_session=False)
    Report.query.filter_by(listing_id=listing_id).delete(synchronize_session=False)
    Rating.query.filter_by(listing_id=listing_id).update({"listing_id": None}, synchronize_session=False)
    db.session.delete(listing)
    db.session.commit()

    sub = subscription_service.find_active_subscription(owner_id)
    if sub is not None and created_at is not None and sub.start_date is not None and created_at >= sub.start_date:
        subscription_service.decrement_listing_count(int(sub.id))


def get_listing(listing_id) -> Listing:
    try:
        ident = int(str(listing_id).strip())
    except (TypeError, ValueError):
        raise NotFound("Listing not found")
    listing = db.session.get(Listing, ident)
    if listing is None:
        raise NotFound("Listing not found")
    return listing


def get_listing_by_slug(slug: str) -> Listing:
    listing = Listing.query.filter_by(slug=str(slug or "").strip()).first()
    if listing is None:
        raise NotFound("Listing not found")
    return listing


def listing_detail(listing: Listing) -> dict:
    payload = listing.to_dict()
    payload["description"] = listing.description or ""
    category = db.session.get(Category, int(listing.category_id))
    if category is not None:
        payload["category"] = category.to_dict(include_fields=False)
        payload["breadcrumbs"] = [c.to_dict(include_fields=False) for c in category_tree.ancestors(category)] + [payload["category"]]
    store = db.session.get(Store, int(listing.store_id))
    if store is not None:
        payload["store"] = store.to_dict()
    return payload
