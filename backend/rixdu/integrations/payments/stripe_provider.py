from __future__ import annotations

import hashlib
import hmac
import json
import time

import requests

from rixdu.integrations.payments.base import PaymentIntentResult, PaymentsProvider, WebhookSignatureError


STRIPE_API = "https://api.stripe.com/v1"

# Currencies Stripe bills in whole units.
ZERO_DECIMAL_CURRENCIES = ("jpy", "krw", "vnd", "clp", "xof", "xaf", "ugx", "rwf")


def to_minor_units(amount: float, currency: str) -> int:
    if (currency or "").lower() in ZERO_DECIMAL_CURRENCIES:
        return int(round(float(amount)))
    return int(round(float(amount) * 100))


def from_minor_units(amount: int, currency: str) -> float:
    if (currency or "").lower() in ZERO_DECIMAL_CURRENCIES:
        return float(amount or 0)
    return float(amount or 0) / 100.0


def verify_stripe_signature(payload: bytes, header: str, secret: str, *, tolerance: int = 300, now: int | None = None) -> dict:
    if not header:
        raise WebhookSignatureError("missing signature header")
    timestamp = ""
    signatures = []
    for part in header.split(","):
        key, _, value = part.strip().partition("=")
        if key == "t":
            timestamp = value
        elif key == "v1":
            signatures.append(value)
    if not timestamp or not signatures:
        raise WebhookSignatureError("malformed signature header")
    try:
        ts = int(timestamp)
    except ValueError:
        raise WebhookSignatureError("malformed signature timestamp")
    if tolerance and abs(int(now or time.time()) - ts) > tolerance:
        raise WebhookSignatureError("signature timestamp outside tolerance")
    signed = f"{timestamp}.".encode("utf-8") + (payload or b"")
    expected = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    if not any(hmac.compare_digest(expected, sig) for sig in signatures):
        raise WebhookSignatureError("signature mismatch")
    try:
        event = json.loads((payload or b"{}").decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        raise WebhookSignatureError("payload is not valid json")
    if not isinstance(event, dict):
        raise WebhookSignatureError("payload is not an object")
    return event


def _intent_from_payload(data: dict) -> PaymentIntentResult:
    currency = str(data.get("currency") or "aed")
    return PaymentIntentResult(
        id=str(data.get("id") or ""),
        status=str(data.get("status") or "").lower(),
        amount=from_minor_units(int(data.get("amount") or 0), currency),
        currency=currency.upper(),
        client_secret=str(data.get("client_secret") or ""),
        metadata=dict(data.get("metadata") or {}),
        raw=data,
    )


class StripePaymentsProvider(PaymentsProvider):
    name = "stripe"

    def __init__(self, *, secret_key: str, webhook_secret: str = ""):
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret

    def _headers(self) -> dict:
        return {"Authorization": f"Bearer {self.secret_key}"}

    def create_payment_intent(self, *, amount: float, currency: str, metadata: dict | None = None, receipt_email: str = "") -> PaymentIntentResult:
        form = {
            "amount": to_minor_units(amount, currency),
            "currency": (currency or "aed").lower(),
            "automatic_payment_methods[enabled]": "true",
        }
        if receipt_email:
            form["receipt_email"] = receipt_email
        for key, value in (metadata or {}).items():
            form[f"metadata[{key}]"] = str(value)
        r = requests.post(f"{STRIPE_API}/payment_intents", headers=self._headers(), data=form, timeout=25)
        j = r.json() if r.content else {}
        if r.status_code < 200 or r.status_code >= 300:
            msg = str(((j.get("error") or {}).get("message")) or f"HTTP {r.status_code}")
            raise RuntimeError(f"STRIPE_INTENT_FAILED:{msg}")
        return _intent_from_payload(j)

    def retrieve_payment_intent(self, intent_id: str) -> PaymentIntentResult:
        ref = (intent_id or "").strip()
        r = requests.get(f"{STRIPE_API}/payment_intents/{ref}", headers=self._headers(), timeout=25)
        j = r.json() if r.content else {}
        if r.status_code < 200 or r.status_code >= 300:
            msg = str(((j.get("error") or {}).get("message")) or f"HTTP {r.status_code}")
            raise RuntimeError(f"STRIPE_RETRIEVE_FAILED:{msg}")
        return _intent_from_payload(j)

    def construct_event(self, payload: bytes, signature: str) -> dict:
        if not self.webhook_secret:
            raise WebhookSignatureError("webhook secret not configured")
        return verify_stripe_signature(payload, signature, self.webhook_secret)
