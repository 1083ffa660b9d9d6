# app/webhooks/normalize.py
from __future__ import annotations

import json
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Optional

from app.errors import MalformedPayload
from app.transactions import state_machine as sm


# provider vocabulary -> authoritative target status
_EVENT_MAP: dict[str, str] = {}
for _name in ("PAYMENT_SUCCESS_WEBHOOK", "PAYMENT_SUCCESS", "SUCCESS", "SUCCESSFUL", "PAID", "CAPTURED", "COMPLETED"):
    _EVENT_MAP[_name] = sm.CAPTURED
for _name in ("PAYMENT_FAILED_WEBHOOK", "PAYMENT_FAILED", "FAILED", "DECLINED", "REJECTED"):
    _EVENT_MAP[_name] = sm.FAILED
for _name in ("ORDER_EXPIRED_WEBHOOK", "ORDER_EXPIRED", "PAYMENT_EXPIRED", "EXPIRED"):
    _EVENT_MAP[_name] = sm.EXPIRED
for _name in ("PAYMENT_CANCELLED_WEBHOOK", "PAYMENT_CANCELLED", "CANCELLED", "CANCELED", "VOID"):
    _EVENT_MAP[_name] = sm.CANCELLED
for _name in ("PAYMENT_USER_DROPPED_WEBHOOK", "PAYMENT_USER_DROPPED", "USER_DROPPED", "DROPPED", "ABANDONED"):
    _EVENT_MAP[_name] = sm.DROPPED


@dataclass(frozen=True)
class NormalizedEvent:
    provider: str
    event_type: str
    target_status: Optional[str]
    transaction_id: Optional[str]
    amount: Optional[int]
    # True when the payload carried an amount field, even an unusable one
    amount_reported: bool
    provider_reference: Optional[str]
    status_detail: Optional[str]

    @property
    def is_success(self) -> bool:
        return self.target_status == sm.CAPTURED


def map_event_type(event_type: str | None) -> str | None:
    return _EVENT_MAP.get((event_type or "").strip().upper())


def parse_payload(raw: bytes) -> dict[str, Any]:
    try:
        parsed = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as exc:
        raise MalformedPayload("INVALID_JSON") from exc
    if not isinstance(parsed, dict):
        raise MalformedPayload("INVALID_JSON_OBJECT")
    return parsed


def _unwrap_payload(payload: dict[str, Any]) -> dict[str, Any]:
    """
    Cashfree wraps the body like {"type": ..., "data": {"order": {...}, "payment": {...}}}.
    """
    data = payload.get("data")
    if isinstance(data, dict):
        return data
    return payload


def _section(payload: dict[str, Any], key: str) -> dict[str, Any]:
    value = payload.get(key)
    return value if isinstance(value, dict) else {}


def _first_str(*values: Any) -> str | None:
    for value in values:
        if value is None or isinstance(value, (dict, list, bool)):
            continue
        text = str(value).strip()
        if text:
            return text
    return None


def _coerce_amount(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = Decimal(str(value).strip())
    except InvalidOperation:
        return None
    if not number.is_finite():
        return None
    # provider reports decimals like 50.00; smallest unit here is a whole rupee, halves round up
    return int(number.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def normalize_event(payload: dict[str, Any], *, provider: str) -> NormalizedEvent:
    body = _unwrap_payload(payload)
    order = _section(body, "order")
    payment = _section(body, "payment")

    event_type = _first_str(
        payload.get("type"),
        payload.get("event_type"),
        payload.get("event"),
        body.get("type"),
        body.get("event_type"),
        body.get("status"),
        payment.get("payment_status"),
    )
    if not event_type:
        raise MalformedPayload("MISSING_EVENT_TYPE")

    provider_reference = _first_str(
        payment.get("cf_payment_id"),
        order.get("cf_order_id"),
        body.get("cf_order_id"),
        body.get("provider_ref"),
        body.get("reference"),
    )

    transaction_id = _first_str(
        order.get("order_id"),
        body.get("order_id"),
        body.get("transaction_id"),
        body.get("txnid"),
        body.get("external_ref"),
    )
    if not transaction_id and provider_reference:
        # provider did not echo our id back; derive a stable one from theirs
        transaction_id = f"{provider.upper()}_{provider_reference}"

    amount_raw = None
    amount_reported = False
    for candidate in (order.get("order_amount"), payment.get("payment_amount"), body.get("amount")):
        if candidate is not None:
            amount_raw = candidate
            amount_reported = True
            break

    return NormalizedEvent(
        provider=provider.upper(),
        event_type=event_type.upper(),
        target_status=map_event_type(event_type),
        transaction_id=transaction_id,
        amount=_coerce_amount(amount_raw),
        amount_reported=amount_reported,
        provider_reference=provider_reference,
        status_detail=_first_str(payment.get("payment_message"), payment.get("payment_status"), body.get("status_detail")),
    )
