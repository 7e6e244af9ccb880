from __future__ import annotations

import os

import requests

from rixdu.integrations.push.base import MAX_TOKENS_PER_SEND, PushMessage, PushProvider, PushResult, TokenResult


FCM_SEND_URL = "https://fcm.googleapis.com/fcm/send"


class FcmPushProvider(PushProvider):
    name = "fcm"

    def __init__(self, *, server_key: str):
        self.server_key = server_key

    def send_multicast(self, tokens: list[str], message: PushMessage) -> PushResult:
        if not tokens:
            return PushResult()
        if len(tokens) > MAX_TOKENS_PER_SEND:
            raise ValueError(f"at most {MAX_TOKENS_PER_SEND} tokens per send")
        notification = {"title": message.title, "body": message.body}
        if message.image:
            notification["image"] = message.image
        payload = {
            "registration_ids": list(tokens),
            "notification": notification,
            "data": {str(k): str(v) for k, v in (message.data or {}).items()},
            "priority": "high",
        }
        headers = {
            "Authorization": f"key={self.server_key}",
            "Content-Type": "application/json",
        }
        r = requests.post(FCM_SEND_URL, json=payload, headers=headers, timeout=15)
        if r.status_code < 200 or r.status_code >= 300:
            raise RuntimeError(f"FCM_SEND_FAILED:http_{r.status_code}")
        data = r.json() if r.content else {}
        rows = data.get("results") or []
        results = []
        for idx, token in enumerate(tokens):
            row = rows[idx] if idx < len(rows) and isinstance(rows[idx], dict) else {}
            error = str(row.get("error") or "")
            results.append(TokenResult(token=token, ok=not error, code=error or "OK"))
        return PushResult(results=results)


def fcm_health() -> dict:
    missing = []
    if not (os.getenv("FCM_SERVER_KEY") or "").strip():
        missing.append("FCM_SERVER_KEY")
    return {"missing": missing}
