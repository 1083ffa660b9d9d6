# app/providers/cashfree.py
from __future__ import annotations

import logging
from typing import Any, Dict

import httpx

from app.errors import ProviderUnavailable
from app.providers.base import PaymentRequest
from app.providers.http import HttpClient, is_retryable_http
from settings import settings


logger = logging.getLogger("smartchange.cashfree")


class CashfreeProvider:
    """
    Cashfree Payment Gateway (PG orders API).

    create_payment_request(order_id, amount) -> PaymentRequest(reference=cf_order_id, checkout_url=payment_link)
    Payment outcome arrives later on the notify_url webhook.
    """

    name = "CASHFREE"

    def __init__(self, http: HttpClient | None = None):
        self.mode = (settings.PAYMENT_MODE or "sandbox").strip().lower()

        base_url = (
            settings.CASHFREE_SANDBOX_BASE_URL
            if self.mode == "sandbox"
            else settings.CASHFREE_REAL_BASE_URL
        )
        self.base_url = (base_url or "").strip().rstrip("/")
        self.client_id = (settings.CASHFREE_CLIENT_ID or "").strip()
        self.client_secret = (settings.CASHFREE_CLIENT_SECRET or "").strip()
        self.api_version = (settings.CASHFREE_API_VERSION or "2023-08-01").strip()
        self.currency = (settings.CASHFREE_CURRENCY or "INR").strip().upper()
        self.notify_url = (settings.CASHFREE_NOTIFY_URL or "").strip()

        self.http = http or HttpClient(timeout_s=float(settings.PROVIDER_HTTP_TIMEOUT_S))

    def _headers(self) -> Dict[str, str]:
        return {
            "x-client-id": self.client_id,
            "x-client-secret": self.client_secret,
            "x-api-version": self.api_version,
            "Content-Type": "application/json",
        }

    def _order_body(self, order_id: str, amount: int, metadata: dict[str, Any]) -> dict[str, Any]:
        body: dict[str, Any] = {
            "order_id": order_id,
            "order_amount": amount,
            "order_currency": self.currency,
            "customer_details": {
                "customer_id": metadata.get("customer_id") or settings.CASHFREE_CUSTOMER_ID,
                "customer_phone": metadata.get("customer_phone") or settings.CASHFREE_CUSTOMER_PHONE,
            },
        }
        if self.notify_url:
            body["order_meta"] = {"notify_url": self.notify_url}
        tags = {k: str(v) for k, v in metadata.items() if k not in ("customer_id", "customer_phone")}
        if tags:
            body["order_tags"] = tags
        return body

    def create_payment_request(
        self,
        *,
        order_id: str,
        amount: int,
        metadata: dict[str, Any] | None = None,
    ) -> PaymentRequest:
        if not self.base_url:
            raise ProviderUnavailable("CASHFREE_BASE_URL_NOT_SET")
        if not (self.client_id and self.client_secret):
            raise ProviderUnavailable("CASHFREE_CLIENT_ID_OR_SECRET_NOT_SET")

        url = f"{self.base_url}/orders"
        try:
            resp = self.http.post(
                url,
                headers=self._headers(),
                json_body=self._order_body(order_id, amount, metadata or {}),
                debug=logger.isEnabledFor(logging.DEBUG),
            )
        except httpx.HTTPError as exc:
            logger.warning("cashfree_order_transport_error order_id=%s error=%s", order_id, type(exc).__name__)
            raise ProviderUnavailable(f"CASHFREE_TRANSPORT_ERROR: {type(exc).__name__}") from exc

        data = resp.json or {}
        if resp.status_code < 200 or resp.status_code >= 300:
            message = data.get("message") or data.get("code") or resp.text[:200]
            logger.warning(
                "cashfree_order_failed order_id=%s http_status=%s retryable=%s message=%s",
                order_id,
                resp.status_code,
                is_retryable_http(resp.status_code),
                message,
            )
            raise ProviderUnavailable(
                f"CASHFREE_HTTP_{resp.status_code}: {message}",
                http_status=resp.status_code,
                retryable=is_retryable_http(resp.status_code),
            )

        link = (data.get("payment_link") or "").strip()
        if not link:
            # 2023-08-01 API returns a session id instead of a hosted link
            session_id = (data.get("payment_session_id") or "").strip()
            if not session_id:
                raise ProviderUnavailable("CASHFREE_MISSING_PAYMENT_LINK")
            link = session_id

        logger.info("cashfree_order_created order_id=%s cf_order_id=%s", order_id, data.get("cf_order_id"))
        cf_order_id = data.get("cf_order_id")
        return PaymentRequest(
            reference=str(cf_order_id) if cf_order_id is not None else None,
            checkout_url=link,
            response=data,
        )
