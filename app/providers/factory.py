# app/providers/factory.py
from __future__ import annotations

from typing import Any, Dict

_PROVIDER_CACHE: Dict[str, Any] = {}


def normalize_provider(name: str | None) -> str:
    return (name or "").strip().upper().replace("-", "_").replace(" ", "_")


def get_provider(name: str):
    key = normalize_provider(name)
    if not key:
        return None

    if key in _PROVIDER_CACHE:
        return _PROVIDER_CACHE[key]

    provider = None

    if key == "CASHFREE":
        from app.providers.cashfree import CashfreeProvider
        provider = CashfreeProvider()

    elif key == "MOCK":
        from app.providers.mock import MockProvider
        provider = MockProvider()

    else:
        return None

    _PROVIDER_CACHE[key] = provider
    return provider


def clear_cache() -> None:
    _PROVIDER_CACHE.clear()
