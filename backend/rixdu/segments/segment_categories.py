from __future__ import annotations

from flask import Blueprint, request

from rixdu.extensions import db
from rixdu.models import Category
from rixdu.services import category_tree
from rixdu.utils.auth import current_user, is_admin
from rixdu.utils.cache_layer import etag_for
from rixdu.utils.http import bool_arg, forbidden, json_body, success, unauthorized

categories_bp = Blueprint("categories_bp", __name__, url_prefix="/api/categories")

_CATEGORIES_INIT_DONE = False


@categories_bp.before_app_request
def _ensure_tables_once():
    global _CATEGORIES_INIT_DONE
    if _CATEGORIES_INIT_DONE:
        return
    try:
        db.create_all()
    except Exception:
        db.session.rollback()
    _CATEGORIES_INIT_DONE = True


def _require_admin():
    user = current_user()
    if not user:
        return unauthorized()
    if not is_admin(user):
        return forbidden("Admin access required")
    return None


def _store_id_arg() -> int | None:
    ref = request.args.get("storeId") or request.args.get("store_id")
    if not ref:
        return None
    return int(category_tree.get_store(ref).id)


@categories_bp.get("")
@categories_bp.get("/")
def list_categories():
    q = Category.query.filter_by(is_active=True)
    store_id = _store_id_arg()
    if store_id is not None:
        q = q.filter_by(store_id=store_id)
    parent_ref = request.args.get("parentId")
    if parent_ref is not None:
        if parent_ref in ("", "null", "root"):
            q = q.filter(Category.parent_id.is_(None))
        else:
            q = q.filter_by(parent_id=int(category_tree.get_category(parent_ref, store_id=store_id).id))
    is_leaf = bool_arg("isLeaf")
    if is_leaf is not None:
        q = q.filter_by(is_leaf=is_leaf)
    rows = q.order_by(Category.level.asc(), Category.sort_order.asc(), Category.name.asc()).all()
    return success([c.to_dict(include_fields=False) for c in rows], count=len(rows))


@categories_bp.get("/tree/<store_ref>")
def category_tree_for_store(store_ref: str):
    store = category_tree.get_store(store_ref)
    tree = category_tree.build_tree(int(store.id))
    etag = etag_for(tree)
    if (request.headers.get("If-None-Match") or "").strip() == etag:
        return "", 304, {"ETag": etag}
    resp, status = success(tree, store=store.to_dict())
    resp.headers["ETag"] = etag
    resp.headers["Cache-Control"] = "public, max-age=60"
    return resp, status


@categories_bp.get("/search")
def search_categories():
    term = (request.args.get("q") or "").strip()
    if not term:
        return success([], count=0)
    q = Category.query.filter(Category.is_active.is_(True), Category.name.ilike(f"%{term}%"))
    store_id = _store_id_arg()
    if store_id is not None:
        q = q.filter_by(store_id=store_id)
    rows = q.order_by(Category.level.asc(), Category.name.asc()).limit(50).all()
    items = []
    for row in rows:
        item = row.to_dict(include_fields=False)
        item["breadcrumbs"] = [a.name for a in category_tree.ancestors(row)] + [row.name]
        items.append(item)
    return success(items, count=len(items))


@categories_bp.get("/<identifier>")
def get_category(identifier: str):
    category = category_tree.get_category(identifier, store_id=_store_id_arg())
    return success(category.to_dict(include_fields=True))


@categories_bp.get("/<identifier>/children")
def category_children(identifier: str):
    category = category_tree.get_category(identifier, store_id=_store_id_arg())
    rows = (
        Category.query.filter_by(parent_id=int(category.id), is_active=True)
        .order_by(Category.sort_order.asc(), Category.name.asc())
        .all()
    )
    return success([c.to_dict(include_fields=False) for c in rows], count=len(rows))


@categories_bp.get("/<identifier>/path")
def category_path(identifier: str):
    category = category_tree.get_category(identifier, store_id=_store_id_arg())
    chain = category_tree.ancestors(category) + [category]
    return success([c.to_dict(include_fields=False) for c in chain])


@categories_bp.get("/<identifier>/filters")
def category_filters(identifier: str):
    category = category_tree.get_category(identifier, store_id=_store_id_arg())
    return success(category_tree.dynamic_filter_fields(category))


@categories_bp.post("")
@categories_bp.post("/")
def create_category():
    err = _require_admin()
    if err:
        return err
    category = category_tree.create_category(json_body())
    return success(category.to_dict(), message="Category created", status=201)


@categories_bp.put("/<identifier>")
def update_category(identifier: str):
    err = _require_admin()
    if err:
        return err
    category = category_tree.update_category(category_tree.get_category(identifier), json_body())
    return success(category.to_dict(), message="Category updated")


@categories_bp.delete("/<identifier>")
def delete_category(identifier: str):
    err = _require_admin()
    if err:
        return err
    category_tree.delete_category(category_tree.get_category(identifier))
    return success(message="Category deleted")
