from __future__ import annotations

import os

import psycopg2
from fastapi import APIRouter, Depends

from app.transactions.store import TransactionStore
from db import get_conn
from deps.services import get_store
from settings import settings

router = APIRouter(tags=["health"])

MIGRATION_REVISION = "0001_transactions"


def _check_migrations() -> bool:
    if settings.TX_STORE_BACKEND == "memory":
        return True
    try:
        with get_conn() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT to_regclass('public.alembic_version');")
                exists = cur.fetchone()[0]
                if not exists:
                    return False
                cur.execute("SELECT version_num FROM alembic_version LIMIT 1;")
                row = cur.fetchone()
                return bool(row and row[0])
    except psycopg2.Error:
        return False


def _resolve_git_sha() -> str | None:
    return (os.getenv("GIT_SHA") or "").strip() or None


@router.get("/health")
def health():
    return {
        "ok": True,
        "env": settings.ENV,
        "provider": settings.PAYMENT_PROVIDER,
        "payment_mode": settings.PAYMENT_MODE,
        "git_sha": _resolve_git_sha(),
    }


@router.get("/healthz")
def healthz(store: TransactionStore = Depends(get_store)):
    store_ok, store_error = store.ping()
    return {
        "ok": True,
        "version": os.getenv("APP_VERSION", "1.0.0"),
        "git_sha": _resolve_git_sha(),
        "store_backend": settings.TX_STORE_BACKEND,
        "store_ok": store_ok,
        "store_error": store_error,
    }


@router.get("/readyz")
def readyz(store: TransactionStore = Depends(get_store)):
    store_ok, store_error = store.ping()
    migrations_ok = _check_migrations() if store_ok else False
    return {
        "ready": bool(store_ok and migrations_ok),
        "version": os.getenv("APP_VERSION", "1.0.0"),
        "store_ok": store_ok,
        "store_error": store_error,
        "migrations_ok": migrations_ok,
        "migration_revision": MIGRATION_REVISION,
    }
