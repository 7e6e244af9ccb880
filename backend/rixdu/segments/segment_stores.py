from __future__ import annotations

from flask import Blueprint

from rixdu.extensions import db
from rixdu.services import category_tree, store_service
from rixdu.utils.auth import current_user, is_admin
from rixdu.utils.http import bool_arg, forbidden, json_body, success, unauthorized

stores_bp = Blueprint("stores_bp", __name__, url_prefix="/api/stores")

_STORES_INIT_DONE = False


@stores_bp.before_app_request
def _ensure_tables_once():
    global _STORES_INIT_DONE
    if _STORES_INIT_DONE:
        return
    try:
        db.create_all()
    except Exception:
        db.session.rollback()
    _STORES_INIT_DONE = True


def _require_admin():
    user = current_user()
    if not user:
        return None, unauthorized()
    if not is_admin(user):
        return None, forbidden("Admin access required")
    return user, None


@stores_bp.get("")
@stores_bp.get("/")
def list_stores():
    include_inactive = bool(bool_arg("includeInactive")) and is_admin(current_user())
    rows = store_service.list_stores(include_inactive=include_inactive)
    return success([s.to_dict() for s in rows], count=len(rows))


@stores_bp.get("/<identifier>")
def get_store(identifier: str):
    store = category_tree.get_store(identifier)
    return success(store.to_dict())


@stores_bp.post("")
@stores_bp.post("/")
def create_store():
    _user, err = _require_admin()
    if err:
        return err
    store = store_service.create_store(json_body())
    return success(store.to_dict(), message="Store created", status=201)


@stores_bp.put("/<identifier>")
def update_store(identifier: str):
    _user, err = _require_admin()
    if err:
        return err
    store = store_service.update_store(category_tree.get_store(identifier), json_body())
    return success(store.to_dict(), message="Store updated")


@stores_bp.delete("/<identifier>")
def delete_store(identifier: str):
    _user, err = _require_admin()
    if err:
        return err
    store_service.delete_store(category_tree.get_store(identifier))
    return success(message="Store deleted")
