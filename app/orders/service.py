# app/orders/service.py
from __future__ import annotations

import hashlib
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any, Optional

from app.errors import IdempotencyConflict, PolicyViolation, ProviderUnavailable
from app.providers.base import PaymentProvider
from app.transactions import state_machine as sm
from app.transactions.amount_policy import AmountPolicy
from app.transactions.events import TransitionEmitter
from app.transactions.store import TransactionStore
from services.metrics import increment_order_created, increment_order_replay

logger = logging.getLogger("smartchange.orders")


@dataclass(frozen=True)
class OrderCreated:
    transaction_id: str
    payer_reference: str
    amount: int
    status: str
    replayed: bool = False


def new_transaction_id() -> str:
    return f"ORD_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"


def transaction_id_for_key(idempotency_key: str) -> str:
    digest = hashlib.sha256(idempotency_key.strip().encode("utf-8")).hexdigest()
    return f"ORD_{digest[:20]}"


class OrderService:
    def __init__(
        self,
        *,
        store: TransactionStore,
        provider: PaymentProvider,
        policy: AmountPolicy,
        emitter: TransitionEmitter,
    ):
        self.store = store
        self.provider = provider
        self.policy = policy
        self.emitter = emitter

    def create_order(
        self,
        amount: Any,
        *,
        idempotency_key: Optional[str] = None,
        metadata: dict[str, Any] | None = None,
    ) -> OrderCreated:
        if not self.policy.validate(amount):
            logger.warning("create_order_rejected reason=AMOUNT_OUT_OF_POLICY amount=%r", amount)
            raise PolicyViolation(
                self.policy.describe(),
                lower_bound=self.policy.lower_bound,
                upper_bound=self.policy.upper_bound,
            )

        if idempotency_key:
            transaction_id = transaction_id_for_key(idempotency_key)
            existing = self.store.get(transaction_id)
            if existing is not None:
                self._check_same_amount(existing.amount, amount, transaction_id)
            if existing is not None and existing.payer_reference:
                logger.info("create_order_replayed transaction_id=%s status=%s", transaction_id, existing.status)
                increment_order_replay(getattr(self.provider, "name", "UNKNOWN"))
                return OrderCreated(
                    transaction_id=existing.id,
                    payer_reference=existing.payer_reference,
                    amount=existing.amount,
                    status=existing.status,
                    replayed=True,
                )
        else:
            transaction_id = new_transaction_id()

        provider_name = getattr(self.provider, "name", "UNKNOWN")
        logger.info("create_order_requesting transaction_id=%s amount=%s provider=%s", transaction_id, amount, provider_name)

        try:
            request = self.provider.create_payment_request(
                order_id=transaction_id,
                amount=amount,
                metadata={"transaction_id": transaction_id, **(metadata or {})},
            )
        except ProviderUnavailable:
            increment_order_created(provider_name, "provider_unavailable")
            raise

        result = self.store.insert_created(
            transaction_id=transaction_id,
            amount=amount,
            provider=provider_name,
            provider_reference=request.reference,
            payer_reference=request.checkout_url,
        )
        tx = result.transaction
        if idempotency_key and tx is not None:
            # a concurrent request with the same key got there first
            self._check_same_amount(tx.amount, amount, transaction_id)
        if result.applied and result.previous_status is None:
            self.emitter.emit(
                transaction_id=transaction_id,
                from_status=None,
                to_status=sm.CREATED,
                cause="order_initiated",
                amount=amount,
                provider=provider_name,
            )

        increment_order_created(provider_name, "created")
        return OrderCreated(
            transaction_id=transaction_id,
            payer_reference=(tx.payer_reference if tx and tx.payer_reference else request.checkout_url),
            amount=tx.amount if tx else amount,
            status=tx.status if tx else sm.CREATED,
            replayed=not (result.applied and result.previous_status is None),
        )

    def _check_same_amount(self, stored: int, requested: int, transaction_id: str) -> None:
        if stored == requested:
            return
        logger.warning(
            "create_order_rejected reason=IDEMPOTENCY_CONFLICT transaction_id=%s stored_amount=%s requested_amount=%s",
            transaction_id,
            stored,
            requested,
        )
        raise IdempotencyConflict(
            "Idempotency-Key was already used for a different amount",
            transaction_id=transaction_id,
            amount=stored,
        )

