from __future__ import annotations

import math
from datetime import datetime

from flask import Blueprint, request
from sqlalchemy.exc import IntegrityError

from rixdu.extensions import db
from rixdu.models import Notification, PushToken
from rixdu.services import category_tree
from rixdu.services.errors import NotFound, ValidationFailed
from rixdu.services.notification_dispatcher import NotificationPayload, dispatch
from rixdu.services.notification_preferences import (
    DEFAULT_CHANNELS,
    Channels,
    preferences_for_user,
    resolve_channels,
    upsert_preference,
)
from rixdu.utils.auth import require_user
from rixdu.utils.http import bool_arg, json_body, success

notifications_bp = Blueprint("notifications_bp", __name__, url_prefix="/api/notifications")

MAX_PAGE_SIZE = 100


def _own_notification(user, notification_id: int) -> Notification:
    row = Notification.query.filter_by(id=int(notification_id), user_id=int(user.id)).first()
    if row is None:
        raise NotFound("Notification not found")
    return row


@notifications_bp.get("")
@notifications_bp.get("/")
def list_notifications():
    user = require_user()
    try:
        page = max(1, int(request.args.get("page") or 1))
        limit = max(1, min(int(request.args.get("limit") or 20), MAX_PAGE_SIZE))
    except ValueError:
        raise ValidationFailed(errors=[{"field": "page", "message": "Field 'page' must be a valid number"}])
    q = Notification.query.filter_by(user_id=int(user.id))
    if bool_arg("unread"):
        q = q.filter_by(is_read=False)
    total = q.count()
    rows = (
        q.order_by(Notification.created_at.desc(), Notification.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    unread = Notification.query.filter_by(user_id=int(user.id), is_read=False).count()
    return success(
        [n.to_dict() for n in rows],
        pagination={"page": page, "pages": int(math.ceil(total / limit)) if total else 0, "limit": limit, "total": total},
        unread_count=unread,
    )


@notifications_bp.patch("/mark-all")
def mark_all_read():
    user = require_user()
    updated = (
        Notification.query.filter_by(user_id=int(user.id), is_read=False)
        .update({Notification.is_read: True, Notification.read_at: datetime.utcnow()}, synchronize_session=False)
    )
    db.session.commit()
    return success({"updated": int(updated or 0)}, message="All notifications marked as read")


@notifications_bp.patch("/<int:notification_id>/toggle")
def toggle_read(notification_id: int):
    user = require_user()
    row = _own_notification(user, notification_id)
    row.toggle_read()
    db.session.commit()
    return success(row.to_dict())


@notifications_bp.delete("/<int:notification_id>")
def delete_notification(notification_id: int):
    user = require_user()
    row = _own_notification(user, notification_id)
    db.session.delete(row)
    db.session.commit()
    return success(message="Notification deleted")


@notifications_bp.delete("")
@notifications_bp.delete("/")
def bulk_delete_notifications():
    user = require_user()
    body = json_body()
    q = Notification.query.filter_by(user_id=int(user.id))
    ids = body.get("ids")
    if isinstance(ids, list) and ids:
        try:
            q = q.filter(Notification.id.in_([int(i) for i in ids]))
        except (TypeError, ValueError):
            raise ValidationFailed(errors=[{"field": "ids", "message": "Field 'ids' must contain numeric ids"}])
    elif body.get("all") is True:
        pass
    elif bool_arg("read"):
        q = q.filter_by(is_read=True)
    else:
        raise ValidationFailed(errors=[{"field": "ids", "message": "Provide ids, all=true or ?read=true"}])
    deleted = q.delete(synchronize_session=False)
    db.session.commit()
    return success({"deleted": int(deleted or 0)}, message="Notifications deleted")


@notifications_bp.get("/preferences")
def get_preferences():
    user = require_user()
    store_ref = request.args.get("storeId")
    if store_ref:
        store = category_tree.get_store(store_ref)
        channels = resolve_channels(int(user.id), int(store.id))
        return success({"store_id": int(store.id), "channels": channels.to_dict()})
    rows = preferences_for_user(int(user.id))
    return success([r.to_dict() for r in rows], defaults=DEFAULT_CHANNELS.to_dict())


@notifications_bp.put("/preferences")
def put_preferences():
    user = require_user()
    body = json_body()
    store_ref = body.get("storeId", body.get("store_id"))
    if store_ref in (None, ""):
        raise ValidationFailed(errors=[{"field": "storeId", "message": "Field 'storeId' is required"}])
    store = category_tree.get_store(store_ref)
    flags = body.get("channels") if isinstance(body.get("channels"), dict) else body
    row = upsert_preference(
        int(user.id),
        int(store.id),
        email=flags.get("email"),
        in_app=flags.get("inApp", flags.get("in_app")),
        push=flags.get("push"),
    )
    return success(
        {"preference": row.to_dict(), "channels": resolve_channels(int(user.id), int(store.id)).to_dict()},
        message="Preferences updated",
    )


@notifications_bp.post("/push-tokens/register")
def register_push_token():
    user = require_user()
    body = json_body()
    token = str(body.get("token") or "").strip()
    if not token:
        raise ValidationFailed(errors=[{"field": "token", "message": "Field 'token' is required"}])
    row = PushToken.query.filter_by(user_id=int(user.id), token=token).first()
    created = row is None
    if row is None:
        row = PushToken(user_id=int(user.id), token=token)
        db.session.add(row)
    row.device_id = str(body.get("deviceId") or body.get("device_id") or "").strip() or row.device_id
    row.user_agent = (request.user_agent.string or "")[:255] or None
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        created = False
        row = PushToken.query.filter_by(user_id=int(user.id), token=token).first()
    return success(row.to_dict(), message="Push token registered", status=201 if created else 200)


@notifications_bp.post("/push-tokens/unregister")
def unregister_push_token():
    user = require_user()
    token = str(json_body().get("token") or "").strip()
    if not token:
        raise ValidationFailed(errors=[{"field": "token", "message": "Field 'token' is required"}])
    removed = PushToken.query.filter_by(user_id=int(user.id), token=token).delete(synchronize_session=False)
    db.session.commit()
    return success({"removed": int(removed or 0)}, message="Push token removed")


@notifications_bp.post("/test")
def send_test_notification():
    user = require_user()
    body = json_body()
    store_id = None
    channels: Channels = DEFAULT_CHANNELS
    if body.get("storeId"):
        store_id = int(category_tree.get_store(body.get("storeId")).id)
        channels = resolve_channels(int(user.id), store_id)
    outcome = dispatch(
        NotificationPayload(
            user_id=int(user.id),
            title=str(body.get("title") or "Test notification"),
            message=str(body.get("message") or "Notifications are working."),
            type="test",
            store_id=store_id,
            channels=channels,
        )
    )
    return success(
        {
            "notification": outcome.notification.to_dict() if outcome.notification is not None else None,
            "channels": channels.to_dict(),
            "email_queued": outcome.email_queued,
            "push_sent": outcome.push_sent,
        },
        message="Test notification sent",
    )
