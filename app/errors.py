# app/errors.py
from __future__ import annotations

from typing import Any


class SmartChangeError(Exception):
    """
    Base for every error a single request can raise.
    `code` is the stable machine-readable value surfaced to callers.
    """

    code = "ERROR"

    def __init__(self, message: str | None = None, **context: Any):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.context = context


class PolicyViolation(SmartChangeError):
    code = "AMOUNT_OUT_OF_POLICY"


class AuthenticationFailure(SmartChangeError):
    code = "INVALID_SIGNATURE"

    def __init__(self, code: str = "INVALID_SIGNATURE", message: str | None = None):
        super().__init__(message or code)
        self.code = code


class WebhookMisconfigured(SmartChangeError):
    code = "WEBHOOK_SECRET_NOT_CONFIGURED"


class MalformedPayload(SmartChangeError):
    code = "INVALID_JSON"

    def __init__(self, code: str = "INVALID_JSON", message: str | None = None):
        super().__init__(message or code)
        self.code = code


class NotFound(SmartChangeError):
    code = "TRANSACTION_NOT_FOUND"


class InvalidTransition(SmartChangeError):
    code = "INVALID_TRANSITION"


class NotActionable(InvalidTransition):
    code = "TRANSACTION_NOT_ACTIONABLE"


class LockConflict(InvalidTransition):
    code = "LOCK_CONFLICT"


class StaleProgress(InvalidTransition):
    code = "STALE_PROGRESS"


class IdempotencyConflict(SmartChangeError):
    code = "IDEMPOTENCY_CONFLICT"


class StoreUnavailable(SmartChangeError):
    code = "STORE_UNAVAILABLE"


class ProviderUnavailable(SmartChangeError):
    code = "PROVIDER_UNAVAILABLE"
