from __future__ import annotations

from rixdu.extensions import db
from rixdu.models import Category, Store
from rixdu.models.store import STORE_KIND_GENERAL, STORE_KINDS
from rixdu.services import category_tree
from rixdu.services.errors import Conflict, ValidationFailed
from rixdu.services.listing_values import slugify


def _kind(value) -> str:
    kind = str(value or STORE_KIND_GENERAL).strip().lower()
    if kind not in STORE_KINDS:
        raise ValidationFailed(errors=[{"field": "kind", "message": f"Field 'kind' must be one of the following values: {', '.join(STORE_KINDS)}"}])
    return kind


def list_stores(include_inactive: bool = False) -> list[Store]:
    q = Store.query
    if not include_inactive:
        q = q.filter_by(is_active=True)
    return q.order_by(Store.name.asc()).all()


def create_store(data: dict) -> Store:
    name = str(data.get("name") or "").strip()
    if not name:
        raise ValidationFailed(errors=[{"field": "name", "message": "Field 'name' is required"}])
    slug = slugify(str(data.get("slug") or "")) or slugify(name)
    if Store.query.filter_by(slug=slug).first() is not None:
        raise Conflict(f"Store slug '{slug}' already exists")
    store = Store(
        name=name,
        slug=slug,
        kind=_kind(data.get("kind")),
        icon_url=str(data.get("icon_url") or data.get("icon") or "").strip() or None,
        description=str(data.get("description") or "").strip() or None,
        is_active=bool(data.get("is_active", True)),
    )
    db.session.add(store)
    db.session.commit()
    return store


def update_store(store: Store, data: dict) -> Store:
    if "name" in data:
        name = str(data.get("name") or "").strip()
        if not name:
            raise ValidationFailed(errors=[{"field": "name", "message": "Field 'name' is required"}])
        store.name = name
    if "slug" in data:
        slug = slugify(str(data.get("slug") or ""))
        if slug and slug != store.slug:
            clash = Store.query.filter_by(slug=slug).first()
            if clash is not None and int(clash.id) != int(store.id):
                raise Conflict(f"Store slug '{slug}' already exists")
            store.slug = slug
    if "kind" in data:
        store.kind = _kind(data.get("kind"))
    for key in ("icon_url", "description"):
        if key in data:
            setattr(store, key, str(data.get(key) or "").strip() or None)
    if "is_active" in data:
        store.is_active = bool(data.get("is_active"))
    db.session.commit()
    category_tree.invalidate_tree_cache(int(store.id))
    return store


def delete_store(store: Store) -> None:
    if Category.query.filter_by(store_id=int(store.id)).first() is not None:
        raise Conflict("Cannot delete a store that still has categories", code="STORE_HAS_CATEGORIES")
    store_id = int(store.id)
    db.session.delete(store)
    db.session.commit()
    category_tree.invalidate_tree_cache(store_id)
