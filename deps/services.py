# deps/services.py
from __future__ import annotations

import os
from typing import Any, Dict

from fastapi import Depends

from app.dispense.controller import DispenseController
from app.orders.service import OrderService
from app.providers.factory import get_provider, normalize_provider
from app.transactions.amount_policy import AmountPolicy
from app.transactions.events import TransitionEmitter
from app.transactions.store import TransactionStore
from app.webhooks.ingestor import WebhookIngestor
from settings import settings

# one instance of each per process; tests swap them via app.dependency_overrides
_CACHE: Dict[str, Any] = {}

_ENV_SECRET_BY_PROVIDER = {
    "CASHFREE": "CASHFREE_WEBHOOK_SECRET",
    "MOCK": "MOCK_WEBHOOK_SECRET",
}


def reset_cache() -> None:
    _CACHE.clear()


def get_store() -> TransactionStore:
    if "store" not in _CACHE:
        if settings.TX_STORE_BACKEND == "memory":
            from app.transactions.memory import InMemoryTransactionStore
            _CACHE["store"] = InMemoryTransactionStore()
        else:
            from app.transactions.repository import PostgresTransactionStore
            _CACHE["store"] = PostgresTransactionStore()
    return _CACHE["store"]


def get_emitter() -> TransitionEmitter:
    if "emitter" not in _CACHE:
        _CACHE["emitter"] = TransitionEmitter()
    return _CACHE["emitter"]


def get_amount_policy() -> AmountPolicy:
    return AmountPolicy.from_settings()


def get_payment_provider():
    provider = get_provider(settings.PAYMENT_PROVIDER)
    if provider is None:
        raise RuntimeError(f"Unsupported PAYMENT_PROVIDER: {settings.PAYMENT_PROVIDER}")
    return provider


def get_webhook_secret(provider: str) -> str | None:
    key = _ENV_SECRET_BY_PROVIDER.get(normalize_provider(provider))
    if not key:
        return None
    value = os.getenv(key)
    if value and value.strip():
        return value
    return getattr(settings, key, None)


def supported_webhook_providers() -> set[str]:
    return set(_ENV_SECRET_BY_PROVIDER)


def get_order_service(
    store: TransactionStore = Depends(get_store),
    provider=Depends(get_payment_provider),
    policy: AmountPolicy = Depends(get_amount_policy),
    emitter: TransitionEmitter = Depends(get_emitter),
) -> OrderService:
    return OrderService(store=store, provider=provider, policy=policy, emitter=emitter)


def get_dispense_controller(
    store: TransactionStore = Depends(get_store),
    emitter: TransitionEmitter = Depends(get_emitter),
) -> DispenseController:
    return DispenseController(store=store, emitter=emitter)


def build_webhook_ingestor(
    provider: str,
    *,
    store: TransactionStore,
    policy: AmountPolicy,
    emitter: TransitionEmitter,
) -> WebhookIngestor:
    return WebhookIngestor(
        provider=normalize_provider(provider),
        secret=get_webhook_secret(provider),
        store=store,
        policy=policy,
        emitter=emitter,
    )
