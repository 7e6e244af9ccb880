"""Redis-backed JSON cache for category trees and filter schemas.

Disabled unless ``ENABLE_CACHE`` is truthy and a Redis URL is configured; every
read falls through to the database when Redis is unavailable.
"""
from __future__ import annotations

import hashlib
import json
import os
import threading
from typing import Any

try:
    import redis
except Exception:  # pragma: no cover - optional dependency safety
    redis = None


KEY_VERSION = "v1"

_state = {"client": None, "checked": False}
_state_lock = threading.Lock()


def _ttl(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    try:
        seconds = int(raw) if raw else default
    except ValueError:
        seconds = default
    return min(max(seconds, 1), 86400)


def cache_enabled() -> bool:
    return (os.getenv("ENABLE_CACHE") or "").strip().lower() in ("1", "true", "yes", "on")


def category_tree_cache_ttl_seconds() -> int:
    return _ttl("CATEGORY_TREE_CACHE_TTL_SECONDS", 300)


def category_filters_cache_ttl_seconds() -> int:
    return _ttl("CATEGORY_FILTERS_CACHE_TTL_SECONDS", 120)


def _connect():
    url = (os.getenv("CACHE_REDIS_URL") or os.getenv("REDIS_URL") or "").strip()
    if not url:
        return None
    conn = redis.Redis.from_url(url, decode_responses=True, socket_timeout=0.75, socket_connect_timeout=0.75)
    try:
        conn.ping()
    except redis.RedisError:
        return None
    return conn


def _redis():
    if redis is None or not cache_enabled():
        return None
    with _state_lock:
        if not _state["checked"]:
            _state["checked"] = True
            _state["client"] = _connect()
        return _state["client"]


def store_prefix(store_id: int) -> str:
    """Prefix shared by every cached entry derived from one store's categories."""
    return f"{KEY_VERSION}:store:{int(store_id)}:"


def category_tree_key(store_id: int) -> str:
    return f"{store_prefix(store_id)}tree"


def category_filters_key(store_id: int, category_id: int) -> str:
    return f"{store_prefix(store_id)}filters:{int(category_id)}"


def get_json(key: str) -> dict | list | None:
    conn = _redis()
    if conn is None:
        return None
    try:
        cached = conn.get(key)
    except redis.RedisError:
        return None
    return json.loads(cached) if cached else None


def set_json(key: str, value: Any, ttl_seconds: int) -> bool:
    conn = _redis()
    if conn is None:
        return False
    encoded = json.dumps(value, separators=(",", ":"), default=str)
    try:
        conn.setex(key, max(1, int(ttl_seconds)), encoded)
    except redis.RedisError:
        return False
    return True


def delete_prefix(prefix: str, *, scan_count: int = 200) -> int:
    """Remove every key under ``prefix``; raises on Redis errors so callers can log them."""
    conn = _redis()
    if conn is None:
        return 0
    removed = 0
    batch = []
    for key in conn.scan_iter(match=f"{prefix}*", count=int(scan_count)):
        batch.append(key)
        if len(batch) >= scan_count:
            removed += int(conn.delete(*batch) or 0)
            batch = []
    if batch:
        removed += int(conn.delete(*batch) or 0)
    return removed


def etag_for(value: Any) -> str:
    digest = hashlib.md5(json.dumps(value, sort_keys=True, separators=(",", ":"), default=str).encode("utf-8"))
    return f'"{digest.hexdigest()}"'
