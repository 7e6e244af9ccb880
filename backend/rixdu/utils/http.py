from __future__ import annotations

from flask import g, jsonify, request


def success(data=None, *, message: str | None = None, status: int = 200, **extra):
    payload = {"success": True}
    if data is not None:
        payload["data"] = data
    if message:
        payload["message"] = message
    payload.update(extra)
    return jsonify(payload), status


def failure(message: str, *, error: str, status: int, **extra):
    payload = {"success": False, "error": error, "message": message}
    payload.update(extra)
    rid = (getattr(g, "request_id", "") or "").strip()
    if rid:
        payload["trace_id"] = rid
    return jsonify(payload), status


def unauthorized():
    return failure("Authentication required", error="UNAUTHORIZED", status=401)


def forbidden(message: str = "Forbidden"):
    return failure(message, error="FORBIDDEN", status=403)


def json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def bool_arg(name: str) -> bool | None:
    raw = request.args.get(name)
    if raw is None or raw == "":
        return None
    return raw.strip().lower() in ("1", "true", "yes", "on")
