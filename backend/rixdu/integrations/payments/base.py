from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class PaymentIntentResult:
    id: str
    status: str
    amount: float
    currency: str
    client_secret: str = ""
    metadata: dict = field(default_factory=dict)
    raw: dict | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == "succeeded"


class WebhookSignatureError(ValueError):
    pass


class PaymentsProvider:
    name = "unknown"

    def create_payment_intent(self, *, amount: float, currency: str, metadata: dict | None = None, receipt_email: str = "") -> PaymentIntentResult:
        raise NotImplementedError

    def retrieve_payment_intent(self, intent_id: str) -> PaymentIntentResult:
        raise NotImplementedError

    def construct_event(self, payload: bytes, signature: str) -> dict:
        raise NotImplementedError
