# routes/orders.py
from __future__ import annotations

from fastapi import APIRouter, Depends, Header, HTTPException

from app.errors import SmartChangeError
from app.orders.service import OrderService
from deps.services import get_order_service
from schemas import CreateOrderRequest, CreateOrderResponse
from services.http_errors import raise_http_from_domain_error

router = APIRouter(tags=["orders"])


def optional_idempotency(idempotency_key: str | None) -> str | None:
    if idempotency_key is None or not idempotency_key.strip():
        return None
    if len(idempotency_key) > 128:
        raise HTTPException(status_code=400, detail="Idempotency-Key too long")
    return idempotency_key.strip()


def _create(body: CreateOrderRequest, idempotency_key: str | None, service: OrderService) -> CreateOrderResponse:
    idem = optional_idempotency(idempotency_key)
    metadata = {"customer_phone": body.customer_phone} if body.customer_phone else None
    try:
        order = service.create_order(body.amount, idempotency_key=idem, metadata=metadata)
    except SmartChangeError as e:
        raise_http_from_domain_error(e)

    return CreateOrderResponse(
        transaction_id=order.transaction_id,
        order_id=order.transaction_id,
        payment_link=order.payer_reference,
        checkout_reference=order.payer_reference,
        status=order.status,
        replayed=order.replayed,
    )


@router.post("/v1/orders", response_model=CreateOrderResponse)
def create_order(
    body: CreateOrderRequest,
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
    service: OrderService = Depends(get_order_service),
):
    return _create(body, idempotency_key, service)


@router.post("/create-order", response_model=CreateOrderResponse, include_in_schema=False)
def create_order_legacy(
    body: CreateOrderRequest,
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
    service: OrderService = Depends(get_order_service),
):
    return _create(body, idempotency_key, service)
