from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError

from rixdu.extensions import db
from rixdu.models import NotificationPreference


@dataclass(frozen=True)
class Channels:
    email: bool = False
    in_app: bool = True
    push: bool = True

    def to_dict(self) -> dict:
        return {"email": bool(self.email), "inApp": bool(self.in_app), "push": bool(self.push)}

    @classmethod
    def from_dict(cls, raw: dict | None, fallback: "Channels | None" = None) -> "Channels":
        base = fallback or DEFAULT_CHANNELS
        data = raw or {}
        return cls(
            email=_pick(data, ("email",), base.email),
            in_app=_pick(data, ("inApp", "in_app"), base.in_app),
            push=_pick(data, ("push",), base.push),
        )


DEFAULT_CHANNELS = Channels(email=False, in_app=True, push=True)


def _pick(data: dict, keys: tuple, default: bool) -> bool:
    for key in keys:
        if key in data and data[key] is not None:
            return _as_bool(data[key], default)
    return bool(default)


def _as_bool(value, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("1", "true", "yes", "on"):
        return True
    if text in ("0", "false", "no", "off"):
        return False
    return bool(default)


def channels_from_row(row: NotificationPreference | None, fallback: Channels = DEFAULT_CHANNELS) -> Channels:
    if row is None:
        return fallback
    return Channels(
        email=fallback.email if row.email is None else bool(row.email),
        in_app=fallback.in_app if row.in_app is None else bool(row.in_app),
        push=fallback.push if row.push is None else bool(row.push),
    )


def resolve_channels(user_id: int, store_id: int | None, fallback: Channels = DEFAULT_CHANNELS) -> Channels:
    """Snapshot of a user's channels for one store; unset flags use ``fallback``."""
    if store_id is None:
        return fallback
    row = NotificationPreference.query.filter_by(user_id=int(user_id), store_id=int(store_id)).first()
    return channels_from_row(row, fallback)


def _apply_flags(row: NotificationPreference, email, in_app, push) -> None:
    if email is not None:
        row.email = bool(email)
    if in_app is not None:
        row.in_app = bool(in_app)
    if push is not None:
        row.push = bool(push)


def upsert_preference(user_id: int, store_id: int, *, email=None, in_app=None, push=None) -> NotificationPreference:
    row = NotificationPreference.query.filter_by(user_id=int(user_id), store_id=int(store_id)).first()
    if row is None:
        row = NotificationPreference(user_id=int(user_id), store_id=int(store_id))
        db.session.add(row)
    _apply_flags(row, email, in_app, push)
    try:
        db.session.commit()
    except IntegrityError:
        # Concurrent first write for the same pair; apply onto the winner.
        db.session.rollback()
        row = NotificationPreference.query.filter_by(user_id=int(user_id), store_id=int(store_id)).first()
        _apply_flags(row, email, in_app, push)
        db.session.commit()
    return row


def preferences_for_user(user_id: int) -> list[NotificationPreference]:
    return (
        NotificationPreference.query.filter_by(user_id=int(user_id))
        .order_by(NotificationPreference.store_id.asc())
        .all()
    )
