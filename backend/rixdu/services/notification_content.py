from __future__ import annotations

import html
import os

from flask import current_app, has_app_context

from rixdu.integrations.messaging.base import EmailContent


TITLE_KEYS = ("title", "name")
PRICE_KEYS = ("price", "amount", "budget", "rent", "salary")
IMAGE_KEYS = ("images", "photos", "gallery", "image", "thumbnail", "cover", "banner", "files", "file")

DEFAULT_LISTING_TITLE = "New listing"


def client_url() -> str:
    value = ""
    if has_app_context():
        value = str(current_app.config.get("CLIENT_URL") or "")
    if not value:
        value = os.getenv("CLIENT_URL") or "http://localhost:3000"
    return value.strip().rstrip("/")


def listing_url(slug: str | None, listing_id: int | None) -> str:
    ref = (slug or "").strip() or (str(int(listing_id)) if listing_id is not None else "")
    return f"{client_url()}/ad/{ref}" if ref else client_url()


def listing_title(values: dict | None) -> str:
    data = values or {}
    for key in TITLE_KEYS:
        text = str(data.get(key) or "").strip()
        if text:
            return text
    return DEFAULT_LISTING_TITLE


def listing_meta_line(values: dict | None, city: str | None = None) -> str:
    data = values or {}
    price = None
    for key in PRICE_KEYS:
        raw = data.get(key)
        if raw not in (None, ""):
            price = raw
            break
    parts = []
    if price is not None:
        currency = str(data.get("currency") or "").strip()
        parts.append(f"{currency} {price}".strip())
    city_text = str(city or data.get("city") or "").strip()
    if city_text:
        parts.append(city_text)
    return " • ".join(parts)


def _first_url(value) -> str:
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, dict):
        return str(value.get("url") or value.get("secure_url") or "").strip()
    if isinstance(value, (list, tuple)):
        for item in value:
            url = _first_url(item)
            if url:
                return url
    return ""


def primary_image(values: dict | None) -> str:
    data = values or {}
    for key in IMAGE_KEYS:
        url = _first_url(data.get(key))
        if url:
            return url
    return ""


def render_notification_email(*, title: str, message: str, image: str = "", cta_url: str = "", cta_label: str = "View listing") -> EmailContent:
    text_lines = [title, "", message]
    if cta_url:
        text_lines.extend(["", f"{cta_label}: {cta_url}"])

    parts = [
        '<div style="font-family:Arial,sans-serif;max-width:560px;margin:0 auto;">',
        f"<h2>{html.escape(title)}</h2>",
    ]
    if image:
        parts.append(
            f'<img src="{html.escape(image, quote=True)}" alt="" style="max-width:100%;border-radius:8px;" />'
        )
    parts.append(f"<p>{html.escape(message)}</p>")
    if cta_url:
        parts.append(
            f'<p><a href="{html.escape(cta_url, quote=True)}" '
            'style="background:#111827;color:#fff;padding:10px 16px;border-radius:6px;text-decoration:none;">'
            f"{html.escape(cta_label)}</a></p>"
        )
    parts.append("</div>")
    return EmailContent(subject=title, text="\n".join(text_lines), html="".join(parts))
