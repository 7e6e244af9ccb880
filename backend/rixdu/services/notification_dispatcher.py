from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime

from flask import current_app

from rixdu.extensions import db
from rixdu.integrations.common import IntegrationDisabledError, integration_settings
from rixdu.integrations.push.base import MAX_TOKENS_PER_SEND, PushMessage
from rixdu.integrations.push.factory import build_push_provider
from rixdu.models import Notification, NotificationPreference, PushToken, Store, User
from rixdu.services import notification_content as content
from rixdu.services.notification_preferences import DEFAULT_CHANNELS, Channels, channels_from_row
from rixdu.utils.realtime import NOTIFICATION_EVENT, get_emitter, user_room


NEW_LISTING_TYPE = "new_listing"


@dataclass
class NotificationPayload:
    user_id: int
    title: str
    message: str
    type: str = "system"
    store_id: int | None = None
    listing_id: int | None = None
    channels: Channels = DEFAULT_CHANNELS
    metadata: dict = field(default_factory=dict)


@dataclass
class DispatchOutcome:
    notification: Notification | None = None
    email_queued: bool = False
    push_sent: int = 0
    removed_tokens: list = field(default_factory=list)


@dataclass
class FanOutSummary:
    recipients: int = 0
    persisted: int = 0
    emails_queued: int = 0
    push_sent: int = 0
    removed_tokens: int = 0
    failures: int = 0


def _log_failure(kind: str, exc: Exception | None = None, **extra) -> None:
    payload = {
        "event": "notification_side_effect_failed",
        "kind": kind,
        "error": str(exc or ""),
        "timestamp": datetime.utcnow().isoformat(),
    }
    payload.update(extra)
    current_app.logger.error(json.dumps(payload, default=str))


def _row_for(payload: NotificationPayload) -> Notification:
    return Notification(
        user_id=int(payload.user_id),
        store_id=payload.store_id,
        listing_id=payload.listing_id,
        type=payload.type or "system",
        title=payload.title or "",
        message=payload.message or "",
        channels=payload.channels.to_dict(),
        meta=dict(payload.metadata or {}),
    )


def _emit(emitter, row: Notification) -> None:
    try:
        emitter.emit(user_room(int(row.user_id)), NOTIFICATION_EVENT, row.to_dict())
    except Exception as exc:
        _log_failure("realtime", exc, user_id=int(row.user_id), notification_id=int(row.id))


def _email_for(payload: NotificationPayload) -> str:
    explicit = str((payload.metadata or {}).get("to_email") or "").strip()
    if explicit:
        return explicit
    user = db.session.get(User, int(payload.user_id))
    return (user.email or "").strip() if user is not None else ""


def _queue_email(payload: NotificationPayload) -> bool:
    from rixdu.tasks.notification_tasks import send_email

    meta = payload.metadata or {}
    try:
        to = _email_for(payload)
        if not to:
            return False
        rendered = content.render_notification_email(
            title=payload.title,
            message=payload.message,
            image=str(meta.get("image") or ""),
            cta_url=str(meta.get("url") or ""),
        )
        send_email.delay(
            to=to,
            subject=rendered.subject,
            text=rendered.text,
            html=rendered.html,
            reference=f"notification:{payload.type}:{payload.user_id}",
        )
        return True
    except Exception as exc:
        _log_failure("email_enqueue", exc, user_id=int(payload.user_id), type=payload.type)
        return False


def remove_push_tokens(user_id: int, tokens) -> int:
    tokens = [t for t in (tokens or []) if t]
    if not tokens:
        return 0
    removed = (
        PushToken.query
        .filter(PushToken.user_id == int(user_id), PushToken.token.in_(tokens))
        .delete(synchronize_session=False)
    )
    db.session.commit()
    return int(removed or 0)


def send_push_to_users(user_ids, message: PushMessage) -> tuple[int, list[str]]:
    """Multicast ``message`` to every registered token of ``user_ids``.

    Tokens rejected as no longer registered are deleted from their owners.
    Returns ``(delivered, removed_tokens)``.
    """
    ids = sorted({int(uid) for uid in user_ids or []})
    if not ids:
        return 0, []
    owners: dict[str, set[int]] = {}
    for row in PushToken.query.filter(PushToken.user_id.in_(ids)).all():
        owners.setdefault(row.token, set()).add(int(row.user_id))
    tokens = list(owners.keys())
    if not tokens:
        return 0, []

    try:
        provider = build_push_provider(integration_settings())
    except IntegrationDisabledError:
        return 0, []
    except Exception as exc:
        _log_failure("push_provider", exc, users=len(ids))
        return 0, []

    delivered = 0
    invalid: list[str] = []
    for start in range(0, len(tokens), MAX_TOKENS_PER_SEND):
        chunk = tokens[start:start + MAX_TOKENS_PER_SEND]
        try:
            result = provider.send_multicast(chunk, message)
        except Exception as exc:
            _log_failure("push_send", exc, tokens=len(chunk))
            continue
        delivered += result.success_count
        invalid.extend(result.invalid_tokens)

    by_user: dict[int, list[str]] = {}
    for token in invalid:
        for uid in owners.get(token, ()):
            by_user.setdefault(uid, []).append(token)
    removed: list[str] = []
    for uid, user_tokens in by_user.items():
        try:
            remove_push_tokens(uid, user_tokens)
            removed.extend(user_tokens)
        except Exception as exc:
            db.session.rollback()
            _log_failure("push_token_cleanup", exc, user_id=uid, tokens=len(user_tokens))
    return delivered, removed


def _push_message(payload: NotificationPayload) -> PushMessage:
    meta = payload.metadata or {}
    data = {"type": payload.type or "system"}
    if payload.listing_id is not None:
        data["listing_id"] = str(payload.listing_id)
    if meta.get("url"):
        data["url"] = str(meta["url"])
    return PushMessage(title=payload.title, body=payload.message, image=str(meta.get("image") or ""), data=data)


def dispatch(payload: NotificationPayload, emitter=None) -> DispatchOutcome:
    """Deliver one notification over the channels resolved in ``payload``.

    The in-app row is persisted first and emitted to the user's room. Email
    and push run regardless of whether persisting succeeded.
    """
    outcome = DispatchOutcome()
    channels = payload.channels
    if channels.in_app:
        try:
            row = _row_for(payload)
            db.session.add(row)
            db.session.commit()
            outcome.notification = row
            _emit(emitter or get_emitter(), row)
        except Exception as exc:
            db.session.rollback()
            _log_failure("in_app_persist", exc, user_id=int(payload.user_id), type=payload.type)
    if channels.email:
        outcome.email_queued = _queue_email(payload)
    if channels.push:
        outcome.push_sent, outcome.removed_tokens = send_push_to_users([payload.user_id], _push_message(payload))
    return outcome


def notify_user(user_id: int, title: str, message: str, *, type: str = "system", store_id: int | None = None,
                listing_id: int | None = None, channels: Channels | None = None, metadata: dict | None = None,
                emitter=None) -> DispatchOutcome:
    return dispatch(
        NotificationPayload(
            user_id=int(user_id),
            title=title,
            message=message,
            type=type,
            store_id=store_id,
            listing_id=listing_id,
            channels=channels or DEFAULT_CHANNELS,
            metadata=dict(metadata or {}),
        ),
        emitter=emitter,
    )


def _listing_payloads(store: Store | None, listing, recipients: dict[int, Channels]) -> list[NotificationPayload]:
    values = dict(listing.values or {})
    title = content.listing_title(values)
    meta_line = content.listing_meta_line(values, listing.city)
    store_name = store.name if store is not None else "the marketplace"
    message = f"{title} was just posted in {store_name}."
    if meta_line:
        message = f"{message} {meta_line}"
    metadata = {
        "listing_slug": listing.slug,
        "image": content.primary_image(values),
        "url": content.listing_url(listing.slug, listing.id),
    }
    return [
        NotificationPayload(
            user_id=uid,
            title=f"New in {store_name}: {title}",
            message=message,
            type=NEW_LISTING_TYPE,
            store_id=int(listing.store_id),
            listing_id=int(listing.id),
            channels=channels,
            metadata=dict(metadata),
        )
        for uid, channels in sorted(recipients.items())
    ]


def notify_store_subscribers_on_listing(store_id: int, listing, extra_user_ids=(), emitter=None) -> FanOutSummary:
    """Fan a new-listing notification out to everyone following ``store_id``.

    Followers are the users holding a preference row for the store plus any
    ``extra_user_ids``; the listing owner never receives their own listing.
    """
    summary = FanOutSummary()
    recipients: dict[int, Channels] = {}
    for row in NotificationPreference.query.filter_by(store_id=int(store_id)).all():
        recipients[int(row.user_id)] = channels_from_row(row)
    for uid in extra_user_ids or ():
        recipients.setdefault(int(uid), DEFAULT_CHANNELS)
    if listing.user_id is not None:
        recipients.pop(int(listing.user_id), None)
    if not recipients:
        return summary

    store = db.session.get(Store, int(store_id))
    payloads = _listing_payloads(store, listing, recipients)
    summary.recipients = len(payloads)
    in_app = [p for p in payloads if p.channels.in_app]
    others = [p for p in payloads if not p.channels.in_app]

    inserted: list[Notification] = []
    for payload in in_app:
        try:
            with db.session.begin_nested():
                row = _row_for(payload)
                db.session.add(row)
            inserted.append(row)
        except Exception as exc:
            summary.failures += 1
            _log_failure("in_app_persist", exc, user_id=int(payload.user_id), listing_id=int(listing.id))
    try:
        db.session.commit()
    except Exception as exc:
        db.session.rollback()
        summary.failures += len(inserted)
        inserted = []
        _log_failure("in_app_commit", exc, listing_id=int(listing.id))
    summary.persisted = len(inserted)

    active_emitter = emitter or get_emitter()
    for row in inserted:
        _emit(active_emitter, row)
    for payload in in_app:
        if payload.channels.email and _queue_email(payload):
            summary.emails_queued += 1
    push_users = [p.user_id for p in in_app if p.channels.push]
    if push_users:
        sent, removed = send_push_to_users(push_users, _push_message(in_app[0]))
        summary.push_sent += sent
        summary.removed_tokens += len(removed)

    for payload in others:
        try:
            outcome = dispatch(payload, emitter=active_emitter)
        except Exception as exc:
            db.session.rollback()
            summary.failures += 1
            _log_failure("dispatch", exc, user_id=int(payload.user_id), listing_id=int(listing.id))
            continue
        summary.emails_queued += 1 if outcome.email_queued else 0
        summary.push_sent += outcome.push_sent
        summary.removed_tokens += len(outcome.removed_tokens)
    return summary
