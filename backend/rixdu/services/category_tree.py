from __future__ import annotations

from flask import current_app
from sqlalchemy import or_

from rixdu.extensions import db
from rixdu.models import Category, Listing, ListingCategoryPath, Store
from rixdu.services.errors import Conflict, NotFound, ValidationFailed
from rixdu.services.listing_values import normalize_field_definitions, slugify
from rixdu.utils import cache_layer


FILTER_TYPES = {
    "select": "dropdown",
    "radio": "radio",
    "checkbox": "checkbox",
    "number": "range",
    "date": "daterange",
    "text": "search",
    "input": "search",
}

_FILTER_EXCLUDED_FIELDS = ("title", "description")


def chain_for(category: Category) -> str:
    """Path value that every direct child of ``category`` carries."""
    if category.path:
        return f"{category.path},{int(category.id)}"
    return str(int(category.id))


def apply_parent(category: Category, parent: Category | None) -> None:
    if parent is None:
        category.parent_id = None
        category.level = 0
        category.path = ""
        return
    category.parent_id = int(parent.id)
    category.level = int(parent.level or 0) + 1
    category.path = chain_for(parent)


def invalidate_tree_cache(store_id: int) -> None:
    try:
        cache_layer.delete_prefix(cache_layer.store_prefix(store_id))
    except Exception:
        current_app.logger.exception("category_cache_invalidate_failed store_id=%s", store_id)


def get_store(identifier) -> Store:
    store = None
    raw = str(identifier or "").strip()
    if raw.isdigit():
        store = db.session.get(Store, int(raw))
    if store is None and raw:
        store = Store.query.filter_by(slug=raw).first()
    if store is None:
        raise NotFound("Store not found")
    return store


def get_category(identifier, store_id: int | None = None) -> Category:
    category = None
    raw = str(identifier or "").strip()
    if raw.isdigit():
        category = db.session.get(Category, int(raw))
    if category is None and raw:
        q = Category.query.filter_by(slug=raw)
        if store_id is not None:
            q = q.filter_by(store_id=int(store_id))
        category = q.first()
    if category is None:
        raise NotFound("Category not found")
    return category


def _normalized_fields(data: dict, is_leaf: bool) -> list[dict] | None:
    if "fields" not in data:
        return None
    fields, errors = normalize_field_definitions(data.get("fields"))
    if errors:
        raise ValidationFailed("Invalid field definitions", errors)
    # Only leaves carry a listing schema.
    return fields if is_leaf else []


def create_category(data: dict) -> Category:
    name = str(data.get("name") or "").strip()
    if not name:
        raise ValidationFailed("Category name is required", [{"field": "name", "message": "Field 'name' is required"}])
    store = get_store(data.get("store_id") or data.get("storeId"))

    parent = None
    parent_ref = data.get("parent_id", data.get("parentId"))
    if parent_ref not in (None, ""):
        parent = get_category(parent_ref, store_id=int(store.id))
        if int(parent.store_id) != int(store.id):
            raise ValidationFailed("Parent category belongs to a different store")
        if parent.is_leaf:
            raise ValidationFailed("Cannot add a child to a leaf category")

    slug = slugify(str(data.get("slug") or "")) or slugify(name)
    if not slug:
        raise ValidationFailed("Category slug could not be derived", [{"field": "slug", "message": "Field 'slug' is required"}])
    if Category.query.filter_by(store_id=int(store.id), slug=slug).first() is not None:
        raise Conflict(f"Category slug '{slug}' already exists in this store")

    is_leaf = bool(data.get("is_leaf", data.get("isLeaf", False)))
    category = Category(
        store_id=int(store.id),
        name=name,
        slug=slug,
        is_leaf=is_leaf,
        kind=str(data.get("kind") or "").strip().lower() or store.kind,
        icon_url=str(data.get("icon_url") or data.get("icon") or "").strip() or None,
        sort_order=int(data.get("sort_order") or 0),
        fields=_normalized_fields(data, is_leaf) or [],
    )
    apply_parent(category, parent)
    db.session.add(category)
    if parent is not None:
        parent.children.append(category)
        parent.children_count = int(parent.children_count or 0) + 1
    db.session.commit()
    invalidate_tree_cache(int(store.id))
    return category


def descendants_query(category: Category):
    chain = chain_for(category)
    return Category.query.filter(
        Category.store_id == int(category.store_id),
        or_(Category.path == chain, Category.path.like(f"{chain},%")),
    )


def descendant_ids(category: Category) -> list[int]:
    return [int(row.id) for row in descendants_query(category).with_entities(Category.id).all()]


def ancestors(category: Category) -> list[Category]:
    ids = category.path_ids()
    if not ids:
        return []
    rows = {int(c.id): c for c in Category.query.filter(Category.id.in_(ids)).all()}
    return [rows[cid] for cid in ids if cid in rows]


def listing_path_for(category: Category) -> list[int]:
    return category.path_ids() + [int(category.id)]


def _rebuild_listing_paths(category_ids: list[int]) -> int:
    if not category_ids:
        return 0
    categories = {int(c.id): c for c in Category.query.filter(Category.id.in_(category_ids)).all()}
    touched = 0
    for listing in Listing.query.filter(Listing.category_id.in_(category_ids)).all():
        category = categories.get(int(listing.category_id))
        if category is None:
            continue
        listing.set_category_path(listing_path_for(category))
        touched += 1
    return touched


def move_category(category: Category, new_parent: Category | None) -> Category:
    current_parent_id = int(category.parent_id) if category.parent_id is not None else None
    new_parent_id = int(new_parent.id) if new_parent is not None else None
    if current_parent_id == new_parent_id:
        return category
    if new_parent is not None:
        if int(new_parent.id) == int(category.id):
            raise ValidationFailed("A category cannot be its own parent")
        if int(new_parent.store_id) != int(category.store_id):
            raise ValidationFailed("Parent category belongs to a different store")
        if int(new_parent.id) in descendant_ids(category):
            raise ValidationFailed("A category cannot be moved under its own descendant")
        if new_parent.is_leaf:
            raise ValidationFailed("Cannot add a child to a leaf category")

    old_chain = chain_for(category)
    old_level = int(category.level or 0)
    subtree = descendants_query(category).all()

    if current_parent_id is not None:
        old_parent = db.session.get(Category, current_parent_id)
        if old_parent is not None:
            old_parent.children_count = max(0, int(old_parent.children_count or 0) - 1)
    apply_parent(category, new_parent)
    if new_parent is not None:
        new_parent.children_count = int(new_parent.children_count or 0) + 1

    new_chain = chain_for(category)
    delta = int(category.level or 0) - old_level
    for node in subtree:
        node.path = new_chain + (node.path or "")[len(old_chain):]
        node.level = int(node.level or 0) + delta

    _rebuild_listing_paths([int(category.id)] + [int(n.id) for n in subtree])
    return category


def update_category(category: Category, data: dict) -> Category:
    if "name" in data:
        name = str(data.get("name") or "").strip()
        if not name:
            raise ValidationFailed("Category name is required", [{"field": "name", "message": "Field 'name' is required"}])
        category.name = name
    if "slug" in data:
        slug = slugify(str(data.get("slug") or ""))
        if slug and slug != category.slug:
            clash = Category.query.filter_by(store_id=int(category.store_id), slug=slug).first()
            if clash is not None and int(clash.id) != int(category.id):
                raise Conflict(f"Category slug '{slug}' already exists in this store")
            category.slug = slug
    if "is_leaf" in data or "isLeaf" in data:
        is_leaf = bool(data.get("is_leaf", data.get("isLeaf")))
        if is_leaf and int(category.children_count or 0) > 0:
            raise ValidationFailed("A category with children cannot be a leaf")
        if not is_leaf and Listing.query.filter_by(category_id=int(category.id)).first() is not None:
            raise Conflict("Category still has listings and must remain a leaf")
        category.is_leaf = is_leaf
        if not is_leaf:
            category.fields = []
    fields = _normalized_fields(data, bool(category.is_leaf))
    if fields is not None:
        category.fields = fields
    for key in ("icon_url", "kind"):
        if key in data:
            setattr(category, key, str(data.get(key) or "").strip() or None)
    if "sort_order" in data:
        category.sort_order = int(data.get("sort_order") or 0)
    if "is_active" in data:
        category.is_active = bool(data.get("is_active"))
    if "parent_id" in data or "parentId" in data:
        parent_ref = data.get("parent_id", data.get("parentId"))
        new_parent = None
        if parent_ref not in (None, ""):
            new_parent = get_category(parent_ref, store_id=int(category.store_id))
        move_category(category, new_parent)
    db.session.commit()
    invalidate_tree_cache(int(category.store_id))
    return category


def delete_category(category: Category) -> None:
    if int(category.children_count or 0) > 0 or Category.query.filter_by(parent_id=int(category.id)).first() is not None:
        raise Conflict("Cannot delete a category that has subcategories", code="CATEGORY_HAS_CHILDREN")
    if ListingCategoryPath.query.filter_by(category_id=int(category.id)).first() is not None:
        raise Conflict("Cannot delete a category that has listings", code="CATEGORY_HAS_LISTINGS")
    store_id = int(category.store_id)
    if category.parent_id is not None:
        parent = db.session.get(Category, int(category.parent_id))
        if parent is not None:
            parent.children_count = max(0, int(parent.children_count or 0) - 1)
    db.session.delete(category)
    db.session.commit()
    invalidate_tree_cache(store_id)


def build_tree(store_id: int) -> list[dict]:
    key = cache_layer.category_tree_key(store_id)
    cached = cache_layer.get_json(key)
    if isinstance(cached, list):
        return cached
    rows = (
        Category.query.filter_by(store_id=int(store_id), is_active=True)
        .order_by(Category.level.asc(), Category.sort_order.asc(), Category.name.asc())
        .all()
    )
    nodes: dict[int, dict] = {}
    roots: list[dict] = []
    for row in rows:
        node = row.to_dict(include_fields=False)
        node["children"] = []
        nodes[int(row.id)] = node
    for row in rows:
        node = nodes[int(row.id)]
        parent = nodes.get(int(row.parent_id)) if row.parent_id is not None else None
        if parent is None:
            roots.append(node)
        else:
            parent["children"].append(node)
    cache_layer.set_json(key, roots, cache_layer.category_tree_cache_ttl_seconds())
    return roots


def dynamic_filter_fields(category: Category) -> list[dict]:
    key = cache_layer.category_filters_key(int(category.store_id), int(category.id))
    cached = cache_layer.get_json(key)
    if isinstance(cached, list):
        return cached
    if category.is_leaf:
        leaves = [category]
    else:
        leaves = descendants_query(category).filter(Category.is_leaf.is_(True)).all()
    merged: dict[str, dict] = {}
    for leaf in leaves:
        for field in leaf.field_list():
            name = str(field.get("name") or "")
            if not name or name.lower() in _FILTER_EXCLUDED_FIELDS:
                continue
            ref = {"id": int(leaf.id), "name": leaf.name, "slug": leaf.slug}
            entry = merged.get(name)
            if entry is None:
                entry = dict(field)
                entry["filter_type"] = FILTER_TYPES.get(str(field.get("type") or ""), "search")
                entry["categories"] = [ref]
                merged[name] = entry
                continue
            entry["categories"].append(ref)
            options = list(entry.get("options") or [])
            for option in field.get("options") or []:
                if option not in options:
                    options.append(option)
            entry["options"] = options
    fields = list(merged.values())
    cache_layer.set_json(key, fields, cache_layer.category_filters_cache_ttl_seconds())
    return fields
