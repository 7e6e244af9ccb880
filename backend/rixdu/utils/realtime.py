from __future__ import annotations

import json
import os
import threading

try:
    import redis
except Exception:  # pragma: no cover - optional dependency safety
    redis = None


NOTIFICATION_EVENT = "notification:new"

_LOCK = threading.Lock()
_EMITTER = None


def user_room(user_id: int) -> str:
    return f"user:{int(user_id)}"


def realtime_channel() -> str:
    return (os.getenv("REALTIME_CHANNEL") or "rixdu:realtime").strip()


class RealtimeEmitter:
    """Publishes room-scoped events for the socket gateway to fan out."""

    def emit(self, room: str, event: str, payload: dict) -> bool:
        raise NotImplementedError


class NullEmitter(RealtimeEmitter):
    def emit(self, room: str, event: str, payload: dict) -> bool:
        return False


class RedisEmitter(RealtimeEmitter):
    def __init__(self, client, channel: str):
        self.client = client
        self.channel = channel

    def emit(self, room: str, event: str, payload: dict) -> bool:
        message = json.dumps({"room": room, "event": event, "payload": payload}, separators=(",", ":"), default=str)
        self.client.publish(self.channel, message)
        return True


def get_emitter() -> RealtimeEmitter:
    global _EMITTER
    with _LOCK:
        if _EMITTER is not None:
            return _EMITTER
        url = (os.getenv("REALTIME_REDIS_URL") or os.getenv("REDIS_URL") or "").strip()
        if redis is None or not url:
            _EMITTER = NullEmitter()
        else:
            client = redis.Redis.from_url(url, socket_timeout=0.75, socket_connect_timeout=0.75)
            _EMITTER = RedisEmitter(client, realtime_channel())
        return _EMITTER

