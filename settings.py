# settings.py
from __future__ import annotations

import os
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    ENV: str = "dev"

    # -----------------------
    # Transaction store
    # -----------------------
    DATABASE_URL: str = ""
    TX_STORE_BACKEND: Literal["postgres", "memory"] = "postgres"
    DB_POOL_MIN: int = Field(default=1, ge=1)
    DB_POOL_MAX: int = Field(default=10, ge=1)
    DB_STATEMENT_TIMEOUT_MS: int = Field(default=5000, ge=100)

    # -----------------------
    # Amount policy (inclusive bounds, smallest unit of account)
    # -----------------------
    AMOUNT_MIN: int = Field(default=10, ge=1)
    AMOUNT_MAX: int = Field(default=101, ge=1)

    # -----------------------
    # Payment provider (Mode Switch)
    # -----------------------
    PAYMENT_PROVIDER: str = "CASHFREE"  # "CASHFREE" or "MOCK"
    PAYMENT_MODE: Literal["sandbox", "real"] = "sandbox"
    PROVIDER_HTTP_TIMEOUT_S: float = 20.0

    # -----------------------
    # CASHFREE (sandbox/real)
    # -----------------------
    CASHFREE_SANDBOX_BASE_URL: str = "https://sandbox.cashfree.com/pg"
    CASHFREE_REAL_BASE_URL: str = "https://api.cashfree.com/pg"
    CASHFREE_CLIENT_ID: str = ""
    CASHFREE_CLIENT_SECRET: str = ""
    CASHFREE_API_VERSION: str = "2023-08-01"
    CASHFREE_CURRENCY: str = "INR"
    CASHFREE_NOTIFY_URL: str = ""
    CASHFREE_CUSTOMER_ID: str = "customer_1"
    CASHFREE_CUSTOMER_PHONE: str = "9999999999"

    # -----------------------
    # Webhook secrets
    # -----------------------
    CASHFREE_WEBHOOK_SECRET: str = ""
    MOCK_WEBHOOK_SECRET: str = ""

    # -----------------------
    # Dispense sessions
    # -----------------------
    DISPENSE_STALE_SECONDS: int = Field(default=900, ge=1)
    RECLAIM_INTERVAL_SECONDS: int = Field(default=60, ge=1)

    CORS_ALLOW_ORIGINS: str = "*"


settings = Settings()


def _env_name() -> str:
    return (os.getenv("ENV") or settings.ENV or "dev").strip().lower()


def validate_env_settings() -> None:
    """
    Fail fast on deploy misconfig. dev stays permissive so local runs work
    with the in-memory store and the mock provider.
    """
    env = _env_name()
    if env not in ("staging", "prod", "production"):
        return

    missing: list[str] = []

    if settings.TX_STORE_BACKEND == "postgres" and not (settings.DATABASE_URL or "").strip():
        missing.append("DATABASE_URL")

    if settings.AMOUNT_MIN > settings.AMOUNT_MAX:
        missing.append("AMOUNT_MIN<=AMOUNT_MAX")

    if (settings.PAYMENT_PROVIDER or "").strip().upper() == "CASHFREE":
        for key in ("CASHFREE_CLIENT_ID", "CASHFREE_CLIENT_SECRET", "CASHFREE_NOTIFY_URL"):
            if not (getattr(settings, key, "") or "").strip():
                missing.append(key)
        secret = os.getenv("CASHFREE_WEBHOOK_SECRET") or settings.CASHFREE_WEBHOOK_SECRET
        if not (secret or "").strip():
            missing.append("CASHFREE_WEBHOOK_SECRET")

    if missing:
        raise RuntimeError(f"Missing or invalid settings for ENV={env}: {', '.join(missing)}")
