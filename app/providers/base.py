# app/providers/base.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Protocol


@dataclass(frozen=True)
class PaymentRequest:
    # provider-side order id (e.g. cf_order_id)
    reference: Optional[str]
    # payer-facing link to complete payment
    checkout_url: str
    response: Optional[dict[str, Any]] = None


class PaymentProvider(Protocol):
    name: str

    def create_payment_request(
        self,
        *,
        order_id: str,
        amount: int,
        metadata: dict[str, Any] | None = None,
    ) -> PaymentRequest: ...
