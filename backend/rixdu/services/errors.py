from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(eq=False)
class ServiceError(Exception):
    message: str
    code: str = "BAD_REQUEST"
    status: int = 400
    errors: list[dict] = field(default_factory=list)
    extra: dict = field(default_factory=dict)

    def __str__(self) -> str:
        return self.message

    def to_payload(self) -> dict:
        payload = {
            "success": False,
            "error": self.code,
            "message": self.message,
        }
        if self.errors:
            payload["errors"] = list(self.errors)
        if self.extra:
            payload.update(self.extra)
        return payload


class ValidationFailed(ServiceError):
    def __init__(self, message: str = "Validation failed", errors: list[dict] | None = None):
        super().__init__(message=message, code="VALIDATION_ERROR", status=400, errors=list(errors or []))


class NotFound(ServiceError):
    def __init__(self, message: str = "Not found"):
        super().__init__(message=message, code="NOT_FOUND", status=404)


class Forbidden(ServiceError):
    def __init__(self, message: str = "Forbidden", code: str = "FORBIDDEN", extra: dict | None = None):
        super().__init__(message=message, code=code, status=403, extra=dict(extra or {}))


class Conflict(ServiceError):
    def __init__(self, message: str, code: str = "CONFLICT"):
        super().__init__(message=message, code=code, status=409)
