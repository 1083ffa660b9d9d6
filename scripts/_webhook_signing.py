import hashlib
import hmac
import json


def canonical_json_bytes(payload) -> bytes:
    return json.dumps(
        payload,
        separators=(",", ":"),
        sort_keys=True,
        ensure_ascii=False,
    ).encode("utf-8")


def hmac_sha256_hex(secret: str, body_bytes: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), body_bytes, hashlib.sha256).hexdigest()


def signature_header(secret: str, body_bytes: bytes, *, prefixed: bool = True) -> dict[str, str]:
    digest = hmac_sha256_hex(secret, body_bytes)
    return {"X-Signature": ("sha256=" + digest) if prefixed else digest}


def cashfree_event(order_id: str, *, event_type: str = "PAYMENT_SUCCESS_WEBHOOK", amount: int | None = None) -> dict:
    order = {"order_id": order_id}
    if amount is not None:
        order["order_amount"] = amount
    return {
        "type": event_type,
        "event_time": "2026-01-01T00:00:00+05:30",
        "data": {
            "order": order,
            "payment": {"cf_payment_id": "cf-" + order_id, "payment_status": event_type},
        },
    }
