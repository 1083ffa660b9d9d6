# schemas.py
from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

TransactionStatus = Literal[
    "created", "captured", "dispensing", "dispensed",
    "failed", "expired", "cancelled", "dropped",
]


# -------- ORDERS --------
class CreateOrderRequest(BaseModel):
    # policy is checked in OrderService so the rejection reason stays uniform
    amount: Any = None
    customer_phone: Optional[str] = Field(default=None, max_length=20)


class CreateOrderResponse(BaseModel):
    success: bool = True
    transaction_id: str
    order_id: str
    payment_link: str
    checkout_reference: str
    status: TransactionStatus
    replayed: bool = False


# -------- DISPENSE (device) --------
class NextTransactionResponse(BaseModel):
    paid: bool
    transaction_id: Optional[str] = None
    txnid: Optional[str] = None
    amount: Optional[int] = None
    dispensed_count: Optional[int] = None
    status: Optional[TransactionStatus] = None


class ProgressRequest(BaseModel):
    dispensed_count: int = Field(ge=0)


class DispenseResult(BaseModel):
    ok: bool = True
    transaction_id: str
    status: TransactionStatus
    dispensed: bool
    dispensed_count: int
    locked_by: Optional[str] = None


class TransactionView(BaseModel):
    transaction_id: str
    amount: int
    status: TransactionStatus
    dispensed: bool
    dispensed_count: int
    provider: Optional[str] = None
    provider_reference: Optional[str] = None
    provider_event_type: Optional[str] = None
    failure_reason: Optional[str] = None
    created_at: datetime
    updated_at: datetime
