from __future__ import annotations

from dataclasses import dataclass, field


# Provider error codes that mean the registration is gone for good.
INVALID_TOKEN_CODES = (
    "NotRegistered",
    "InvalidRegistration",
    "messaging/registration-token-not-registered",
    "messaging/invalid-registration-token",
)

MAX_TOKENS_PER_SEND = 500


@dataclass
class PushMessage:
    title: str
    body: str
    image: str = ""
    data: dict = field(default_factory=dict)


@dataclass
class TokenResult:
    token: str
    ok: bool
    code: str = ""


@dataclass
class PushResult:
    results: list[TokenResult] = field(default_factory=list)

    @property
    def success_count(self) -> int:
        return sum(1 for r in self.results if r.ok)

    @property
    def invalid_tokens(self) -> list[str]:
        return [r.token for r in self.results if not r.ok and r.code in INVALID_TOKEN_CODES]


class PushProvider:
    name = "unknown"

    def send_multicast(self, tokens: list[str], message: PushMessage) -> PushResult:
        raise NotImplementedError
