from __future__ import annotations

import re
from typing import Any


_EMAIL_RE = re.compile(r"\b([A-Za-z0-9._%+-])([A-Za-z0-9._%+-]*)(@[A-Za-z0-9.-]+\.[A-Za-z]{2,})\b")
# +<country><number>, or a bare 10-digit Indian mobile number
_PHONE_RE = re.compile(r"\+\d{6,15}|\b[6-9]\d{9}\b")
# card / bank account numbers: 12-19 digits, optionally grouped by spaces or dashes
_PAN_RE = re.compile(r"\b(?:\d[ -]?){11,18}\d\b")
_TOKEN_MARKERS = ("access_token", "bearer", "x-client-secret")

_SENSITIVE_KEY_MARKERS = (
    "token",
    "authorization",
    "secret",
    "signature",
    "password",
    "card_number",
    "upi_id",
    "payment_session_id",
)


def _mask_email(match: re.Match) -> str:
    return f"{match.group(1)}***{match.group(3)}"


def _mask_phone(value: str) -> str:
    if len(value) <= 8:
        return value
    return f"{value[:6]}****{value[-2:]}"


def _mask_pan(match: re.Match) -> str:
    digits = re.sub(r"\D", "", match.group(0))
    return f"****{digits[-4:]}"


def redact_text(value: str) -> str:
    lowered = value.lower()
    if any(marker in lowered for marker in _TOKEN_MARKERS):
        return "[REDACTED]"

    masked = _EMAIL_RE.sub(_mask_email, value)
    masked = _PHONE_RE.sub(lambda m: _mask_phone(m.group(0)), masked)
    return _PAN_RE.sub(_mask_pan, masked)


def _is_sensitive_key(key: str) -> bool:
    key_l = (key or "").lower()
    return any(marker in key_l for marker in _SENSITIVE_KEY_MARKERS)


def redact_value(value: Any) -> Any:
    if isinstance(value, str):
        return redact_text(value)
    if isinstance(value, dict):
        return redact_dict(value)
    if isinstance(value, (list, tuple)):
        return [redact_value(v) for v in value]
    return value


def redact_dict(payload: dict[str, Any]) -> dict[str, Any]:
    """
    Copy of `payload` safe for logs. Amounts, ids and statuses pass through;
    credentials are dropped, contact details and card numbers are masked.
    """
    out: dict[str, Any] = {}
    for k, v in payload.items():
        if _is_sensitive_key(k):
            out[k] = "[REDACTED]"
        elif "phone" in (k or "").lower() and isinstance(v, (str, int)) and not isinstance(v, bool):
            out[k] = _mask_phone(str(v))
        else:
            out[k] = redact_value(v)
    return out
