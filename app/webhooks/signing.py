# app/webhooks/signing.py
from __future__ import annotations

import hashlib
import hmac


def compute_signature(secret: str, raw: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), raw, hashlib.sha256).hexdigest()


def verify_signature(*, raw: bytes, signature_header: str | None, secret: str | None) -> tuple[bool, str | None]:
    """
    HMAC-SHA256 over the exact request bytes. Must run before the body is parsed.
    Returns (ok, error_code).
    """
    if not secret or not secret.strip():
        return False, "WEBHOOK_SECRET_NOT_CONFIGURED"

    if not signature_header or not signature_header.strip():
        return False, "MISSING_SIGNATURE"

    sig = signature_header.strip()
    if sig.lower().startswith("sha256="):
        sig = sig.split("=", 1)[1].strip()

    expected = compute_signature(secret, raw)
    # bytes: compare_digest rejects non-ASCII str
    if not hmac.compare_digest(expected.encode("ascii"), sig.lower().encode("utf-8")):
        return False, "INVALID_SIGNATURE"

    return True, None
