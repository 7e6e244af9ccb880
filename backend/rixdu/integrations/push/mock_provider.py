from __future__ import annotations

from rixdu.integrations.push.base import MAX_TOKENS_PER_SEND, PushMessage, PushProvider, PushResult, TokenResult


class MockPushProvider(PushProvider):
    """Deterministic provider: tokens starting with ``invalid`` are unregistered."""

    name = "mock"

    def __init__(self):
        self.sent: list[tuple[list[str], PushMessage]] = []

    def send_multicast(self, tokens: list[str], message: PushMessage) -> PushResult:
        if len(tokens) > MAX_TOKENS_PER_SEND:
            raise ValueError(f"at most {MAX_TOKENS_PER_SEND} tokens per send")
        self.sent.append((list(tokens), message))
        results = []
        for token in tokens:
            if str(token).startswith("invalid"):
                results.append(TokenResult(token=token, ok=False, code="messaging/registration-token-not-registered"))
            else:
                results.append(TokenResult(token=token, ok=True, code="OK"))
        return PushResult(results=results)
