# app/providers/mock.py
from __future__ import annotations

from typing import Any

from app.errors import ProviderUnavailable
from app.providers.base import PaymentRequest


class MockProvider:
    """
    Test/dev provider.

    Returns a deterministic checkout link; `succeed=False` simulates the
    provider being down so callers exercise the PROVIDER_UNAVAILABLE path.
    """

    name = "MOCK"

    def __init__(self, *, succeed: bool = True, base_url: str = "https://checkout.mock.local/pay"):
        self.succeed = succeed
        self.base_url = base_url.rstrip("/")
        self.calls: list[dict[str, Any]] = []

    def create_payment_request(
        self,
        *,
        order_id: str,
        amount: int,
        metadata: dict[str, Any] | None = None,
    ) -> PaymentRequest:
        self.calls.append({"order_id": order_id, "amount": amount, "metadata": dict(metadata or {})})
        if not self.succeed:
            raise ProviderUnavailable("MOCK_PROVIDER_DOWN", http_status=504, retryable=True)
        return PaymentRequest(
            reference=f"mock-{order_id}",
            checkout_url=f"{self.base_url}/{order_id}",
            response={"http_status": 200, "mock": True},
        )
