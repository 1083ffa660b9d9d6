# services/http_errors.py
from __future__ import annotations

from fastapi import HTTPException

from app.errors import (
    AuthenticationFailure,
    IdempotencyConflict,
    InvalidTransition,
    MalformedPayload,
    NotFound,
    PolicyViolation,
    ProviderUnavailable,
    SmartChangeError,
    StoreUnavailable,
    WebhookMisconfigured,
)

# most specific first: InvalidTransition subclasses share 409
DOMAIN_ERROR_HTTP_MAP: tuple[tuple[type[SmartChangeError], int], ...] = (
    (PolicyViolation, 400),
    (MalformedPayload, 400),
    (AuthenticationFailure, 401),
    (NotFound, 404),
    (InvalidTransition, 409),
    (IdempotencyConflict, 409),
    (ProviderUnavailable, 502),
    (StoreUnavailable, 503),
    (WebhookMisconfigured, 500),
)

STORE_RETRY_AFTER_SECONDS = 5


def http_status_for(exc: SmartChangeError) -> int:
    for cls, status in DOMAIN_ERROR_HTTP_MAP:
        if isinstance(exc, cls):
            return status
    return 500


def http_error_from_domain_error(exc: SmartChangeError) -> HTTPException:
    status = http_status_for(exc)
    detail: dict = {"error": exc.code, "message": exc.message}
    for key, value in exc.context.items():
        if key not in ("http_status", "retryable"):
            detail[key] = value

    headers = None
    if isinstance(exc, StoreUnavailable):
        # internal cause stays in the logs
        detail["message"] = "Transaction store unavailable, retry"
        headers = {"Retry-After": str(STORE_RETRY_AFTER_SECONDS)}
    elif isinstance(exc, ProviderUnavailable):
        detail["message"] = "Payment provider unavailable"
        headers = {"Retry-After": str(STORE_RETRY_AFTER_SECONDS)} if exc.context.get("retryable") else None
    elif status == 500:
        detail = {"error": exc.code}

    return HTTPException(status_code=status, detail=detail, headers=headers)


def raise_http_from_domain_error(exc: SmartChangeError) -> None:
    raise http_error_from_domain_error(exc) from exc
