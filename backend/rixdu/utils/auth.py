from __future__ import annotations

from flask import g, request

from rixdu.extensions import db
from rixdu.models import User
from rixdu.utils.jwt_utils import decode_token, get_bearer_token


def current_user() -> User | None:
    token = get_bearer_token(request.headers.get("Authorization", ""))
    if not token:
        return None
    payload = decode_token(token)
    if not payload:
        return None
    try:
        user_id = int(payload.get("sub"))
    except Exception:
        return None
    user = db.session.get(User, user_id)
    if user is not None:
        g.auth_user_id = int(user.id)
        g.auth_role = (user.role or "user").strip().lower()
    return user


def is_admin(user: User | None) -> bool:
    if not user:
        return False
    return (getattr(user, "role", "") or "").strip().lower() == "admin"


def require_user() -> User:
    from rixdu.services.errors import ServiceError

    user = current_user()
    if user is None:
        raise ServiceError(message="Authentication required", code="UNAUTHORIZED", status=401)
    return user
