from __future__ import annotations

import math

from sqlalchemy import or_

from rixdu.models import Category, Listing, ListingCategoryPath
from rixdu.services import category_tree
from rixdu.services.errors import ValidationFailed


DEFAULT_LIMIT = 20
MAX_LIMIT = 100
GEO_CANDIDATE_CAP = 2000
EARTH_RADIUS_KM = 6371.0

SORTS = ("newest", "oldest", "price_asc", "price_desc")


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    p1 = math.radians(lat1)
    p2 = math.radians(lat2)
    dp = math.radians(lat2 - lat1)
    dl = math.radians(lng2 - lng1)
    a = math.sin(dp / 2) ** 2 + math.cos(p1) * math.cos(p2) * math.sin(dl / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(min(1.0, math.sqrt(a)))


def int_arg(args, key: str, default: int, minimum: int = 1, maximum: int | None = None) -> int:
    raw = args.get(key)
    try:
        value = int(str(raw).strip()) if raw not in (None, "") else int(default)
    except (TypeError, ValueError):
        raise ValidationFailed(errors=[{"field": key, "message": f"Field '{key}' must be a valid number"}])
    value = max(minimum, value)
    if maximum is not None:
        value = min(maximum, value)
    return value


def _float_arg(args, key: str) -> float | None:
    raw = args.get(key)
    if raw in (None, ""):
        return None
    try:
        value = float(str(raw).strip())
    except (TypeError, ValueError):
        raise ValidationFailed(errors=[{"field": key, "message": f"Field '{key}' must be a valid number"}])
    if math.isnan(value) or math.isinf(value):
        raise ValidationFailed(errors=[{"field": key, "message": f"Field '{key}' must be a valid number"}])
    return value


def _as_number(raw: str) -> float | None:
    try:
        value = float(str(raw).strip())
    except (TypeError, ValueError):
        return None
    return value if not (math.isnan(value) or math.isinf(value)) else None


def _field_types(category: Category | None) -> dict[str, str]:
    if category is None:
        return {}
    return {
        str(field.get("name")): str(field.get("type") or "text")
        for field in category_tree.dynamic_filter_fields(category)
        if field.get("name")
    }


def parse_value_filters(args) -> tuple[dict[str, str], dict[str, dict[str, float]]]:
    """Split ``values.<f>``, ``values.<f>.min`` and ``values.<f>.max`` args."""
    exact: dict[str, str] = {}
    ranges: dict[str, dict[str, float]] = {}
    for key in args.keys():
        if not key.startswith("values."):
            continue
        name = key[len("values."):]
        raw = args.get(key)
        if raw in (None, "") or not name:
            continue
        for bound in ("min", "max"):
            if name.endswith(f".{bound}"):
                field = name[: -len(bound) - 1]
                ranges.setdefault(field, {})[bound] = _float_arg(args, key)
                break
        else:
            exact[name] = str(raw)
    return exact, ranges


def _exact_clause(name: str, raw: str, field_type: str | None):
    column = Listing.values[name]
    if field_type == "number":
        number = _as_number(raw)
        if number is None:
            raise ValidationFailed(errors=[{"field": f"values.{name}", "message": f"Field '{name}' must be a valid number"}])
        return column.as_float() == number
    if field_type == "checkbox" and raw.strip().lower() in ("true", "false"):
        return column.as_boolean().is_(raw.strip().lower() == "true")
    options = [part.strip() for part in raw.split(",") if part.strip()]
    if len(options) > 1:
        return column.as_string().in_(options)
    number = _as_number(raw) if field_type is None else None
    if number is not None:
        return or_(column.as_string() == raw, column.as_float() == number)
    return column.as_string() == raw


def build_query(args, *, user_id: int | None = None):
    query = Listing.query
    status = str(args.get("status") or "active").strip().lower()
    if status != "all":
        query = query.filter(Listing.status == status)
    if user_id is not None:
        query = query.filter(Listing.user_id == int(user_id))

    store_ref = args.get("storeId") or args.get("store_id")
    store = category_tree.get_store(store_ref) if store_ref not in (None, "") else None
    if store is not None:
        query = query.filter(Listing.store_id == int(store.id))

    category = None
    category_ref = args.get("categoryId") or args.get("category_id")
    if category_ref not in (None, ""):
        category = category_tree.get_category(category_ref, store_id=int(store.id) if store is not None else None)
        query = query.join(ListingCategoryPath, ListingCategoryPath.listing_id == Listing.id).filter(
            ListingCategoryPath.category_id == int(category.id)
        )

    city = str(args.get("city") or "").strip()
    if city:
        query = query.filter(Listing.city.ilike(f"%{city}%"))
    q = str(args.get("q") or "").strip()
    if q:
        like = f"%{q}%"
        query = query.filter(or_(Listing.title.ilike(like), Listing.description.ilike(like)))

    types = _field_types(category)
    exact, ranges = parse_value_filters(args)
    for name, raw in exact.items():
        query = query.filter(_exact_clause(name, raw, types.get(name)))
    for name, bounds in ranges.items():
        column = Listing.values[name].as_float()
        if bounds.get("min") is not None:
            query = query.filter(column >= bounds["min"])
        if bounds.get("max") is not None:
            query = query.filter(column <= bounds["max"])
    return query


def _ordered(query, sort: str):
    if sort == "oldest":
        return query.order_by(Listing.created_at.asc(), Listing.id.asc())
    if sort in ("price_asc", "price_desc"):
        price = Listing.values["price"].as_float()
        return query.order_by(price.asc() if sort == "price_asc" else price.desc(), Listing.id.desc())
    return query.order_by(Listing.is_featured.desc(), Listing.created_at.desc(), Listing.id.desc())


def page_meta(page: int, limit: int, total: int) -> dict:
    return {"page": page, "pages": int(math.ceil(total / limit)) if total else 0, "limit": limit, "total": total}


def search_listings(args, *, user_id: int | None = None) -> tuple[list[dict], dict]:
    page = int_arg(args, "page", 1)
    limit = int_arg(args, "limit", DEFAULT_LIMIT, maximum=MAX_LIMIT)
    sort = str(args.get("sort") or "newest").strip().lower()
    if sort not in SORTS:
        sort = "newest"
    query = build_query(args, user_id=user_id)

    lat = _float_arg(args, "lat")
    lng = _float_arg(args, "lng")
    if lat is None or lng is None:
        total = query.order_by(None).count()
        rows = _ordered(query, sort).offset((page - 1) * limit).limit(limit).all()
        return [row.to_dict() for row in rows], page_meta(page, limit, total)

    radius = _float_arg(args, "radiusKm") or 10.0
    radius = max(0.1, min(radius, 500.0))
    lat_delta = radius / 111.0
    lng_delta = radius / max(1e-6, 111.0 * math.cos(math.radians(lat)))
    candidates = (
        query.filter(
            Listing.latitude.isnot(None),
            Listing.longitude.isnot(None),
            Listing.latitude.between(lat - lat_delta, lat + lat_delta),
            Listing.longitude.between(lng - lng_delta, lng + lng_delta),
        )
        .limit(GEO_CANDIDATE_CAP)
        .all()
    )
    scored = []
    for row in candidates:
        distance = haversine_km(lat, lng, float(row.latitude), float(row.longitude))
        if distance <= radius:
            scored.append((distance, row))
    scored.sort(key=lambda pair: (pair[0], -int(pair[1].id)))
    window = scored[(page - 1) * limit: page * limit]
    items = []
    for distance, row in window:
        item = row.to_dict()
        item["distance_km"] = round(distance, 3)
        items.append(item)
    return items, page_meta(page, limit, len(scored))
