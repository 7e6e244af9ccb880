from __future__ import annotations

import json
import uuid

from rixdu.integrations.payments.base import PaymentIntentResult, PaymentsProvider, WebhookSignatureError
from rixdu.integrations.payments.stripe_provider import verify_stripe_signature


# Shared across provider instances so create and retrieve see the same intent.
_INTENTS: dict[str, PaymentIntentResult] = {}


def set_mock_intent_status(intent_id: str, status: str) -> None:
    intent = _INTENTS.get(intent_id)
    if intent is not None:
        intent.status = status


class MockPaymentsProvider(PaymentsProvider):
    name = "mock"

    def __init__(self, webhook_secret: str = ""):
        self.webhook_secret = webhook_secret

    def create_payment_intent(self, *, amount: float, currency: str, metadata: dict | None = None, receipt_email: str = "") -> PaymentIntentResult:
        intent_id = f"pi_mock_{uuid.uuid4().hex[:16]}"
        intent = PaymentIntentResult(
            id=intent_id,
            status="succeeded",
            amount=float(amount),
            currency=(currency or "AED").upper(),
            client_secret=f"{intent_id}_secret_mock",
            metadata={str(k): str(v) for k, v in (metadata or {}).items()},
            raw={"receipt_email": receipt_email, "provider": self.name},
        )
        _INTENTS[intent_id] = intent
        return intent

    def retrieve_payment_intent(self, intent_id: str) -> PaymentIntentResult:
        intent = _INTENTS.get(intent_id)
        if intent is None:
            raise RuntimeError(f"MOCK_INTENT_NOT_FOUND:{intent_id}")
        return intent

    def construct_event(self, payload: bytes, signature: str) -> dict:
        if self.webhook_secret:
            return verify_stripe_signature(payload, signature, self.webhook_secret)
        try:
            event = json.loads((payload or b"{}").decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            raise WebhookSignatureError("payload is not valid json")
        if not isinstance(event, dict):
            raise WebhookSignatureError("payload is not an object")
        return event
