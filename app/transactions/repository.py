# app/transactions/repository.py
from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from typing import Any, Callable, Optional

import psycopg2
import psycopg2.pool
from psycopg2.extras import RealDictCursor

from app.errors import StoreUnavailable
from app.transactions import state_machine as sm
from app.transactions.model import Transaction
from app.transactions.store import UpdateResult
from db import get_conn

# connection-level failures are retryable by the caller; anything else is a bug
_UNAVAILABLE_ERRORS = (psycopg2.OperationalError, psycopg2.InterfaceError, psycopg2.pool.PoolError)

_COLUMNS = """
  id, amount, status, dispensed, dispensed_count,
  provider, provider_reference, provider_event_type,
  payer_reference, locked_by, failure_reason,
  created_at, updated_at
"""
_T_COLUMNS = ", ".join("t." + c.strip() for c in _COLUMNS.split(","))


def _row_to_tx(row: Optional[dict[str, Any]]) -> Transaction | None:
    return Transaction.from_row(dict(row)) if row else None


# ==========================================================
# Reads
# ==========================================================

def get_transaction(conn, transaction_id: str) -> Transaction | None:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"SELECT {_COLUMNS} FROM app.transactions WHERE id = %s",
            (transaction_id,),
        )
        return _row_to_tx(cur.fetchone())


def fetch_next_actionable(conn) -> Transaction | None:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            SELECT {_COLUMNS}
            FROM app.transactions
            WHERE status IN ('captured', 'dispensing')
              AND dispensed = false
            ORDER BY created_at ASC, id ASC
            LIMIT 1
            """
        )
        return _row_to_tx(cur.fetchone())


def list_stale_dispensing(conn, *, older_than: datetime, limit: int) -> list[Transaction]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            SELECT {_COLUMNS}
            FROM app.transactions
            WHERE status = 'dispensing'
              AND updated_at < %s
            ORDER BY updated_at ASC
            LIMIT %s
            """,
            (older_than, limit),
        )
        return [Transaction.from_row(dict(r)) for r in cur.fetchall()]


# ==========================================================
# Upserts
# ==========================================================

def upsert_created(
    conn,
    *,
    transaction_id: str,
    amount: int,
    provider: str | None,
    provider_reference: str | None,
    payer_reference: str | None,
) -> UpdateResult:
    """
    Insert a `created` row, or refresh the references of one still in
    `created` for the same amount. Rows that already moved on, or carry
    another amount, are left untouched.
    """
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            INSERT INTO app.transactions (
              id, amount, status, dispensed, dispensed_count,
              provider, provider_reference, payer_reference,
              created_at, updated_at
            )
            VALUES (%s, %s, 'created', false, 0, %s, %s, %s, now(), now())
            ON CONFLICT (id) DO UPDATE SET
              provider_reference = COALESCE(EXCLUDED.provider_reference, app.transactions.provider_reference),
              payer_reference = COALESCE(EXCLUDED.payer_reference, app.transactions.payer_reference),
              updated_at = now()
            WHERE app.transactions.status = 'created'
              AND app.transactions.amount = EXCLUDED.amount
            RETURNING {_COLUMNS}, (xmax = 0) AS inserted
            """,
            (transaction_id, amount, provider, provider_reference, payer_reference),
        )
        row = cur.fetchone()

    if row:
        return UpdateResult(
            transaction=_row_to_tx(row),
            applied=True,
            previous_status=None if row["inserted"] else sm.CREATED,
        )

    current = get_transaction(conn, transaction_id)
    return UpdateResult(transaction=current, applied=False, previous_status=current.status if current else None)


def upsert_captured(
    conn,
    *,
    transaction_id: str,
    amount: int | None,
    provider: str | None,
    provider_reference: str | None,
    provider_event_type: str | None,
) -> UpdateResult:
    """
    created -> captured, or (none) -> captured on first sight.
    Without an amount a missing row cannot be originated, so only the
    conditional UPDATE runs.
    """
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        if amount is None:
            cur.execute(
                f"""
                UPDATE app.transactions
                SET
                  status = 'captured',
                  provider = COALESCE(%s, provider),
                  provider_reference = COALESCE(%s, provider_reference),
                  provider_event_type = %s,
                  updated_at = now()
                WHERE id = %s
                  AND status = 'created'
                RETURNING {_COLUMNS}, false AS inserted
                """,
                (provider, provider_reference, provider_event_type, transaction_id),
            )
        else:
            cur.execute(
                f"""
                INSERT INTO app.transactions (
                  id, amount, status, dispensed, dispensed_count,
                  provider, provider_reference, provider_event_type,
                  created_at, updated_at
                )
                VALUES (%s, %s, 'captured', false, 0, %s, %s, %s, now(), now())
                ON CONFLICT (id) DO UPDATE SET
                  status = 'captured',
                  amount = EXCLUDED.amount,
                  provider = COALESCE(EXCLUDED.provider, app.transactions.provider),
                  provider_reference = COALESCE(EXCLUDED.provider_reference, app.transactions.provider_reference),
                  provider_event_type = EXCLUDED.provider_event_type,
                  updated_at = now()
                WHERE app.transactions.status = 'created'
                RETURNING {_COLUMNS}, (xmax = 0) AS inserted
                """,
                (transaction_id, amount, provider, provider_reference, provider_event_type),
            )
        row = cur.fetchone()

    if row:
        return UpdateResult(
            transaction=_row_to_tx(row),
            applied=True,
            previous_status=None if row["inserted"] else sm.CREATED,
        )

    current = get_transaction(conn, transaction_id)
    return UpdateResult(transaction=current, applied=False, previous_status=current.status if current else None)


# ==========================================================
# Guarded updates
# ==========================================================

def update_status(
    conn,
    *,
    transaction_id: str,
    from_statuses: tuple[str, ...],
    to_status: str,
    provider: str | None = None,
    provider_reference: str | None = None,
    provider_event_type: str | None = None,
    locked_by: str | None = None,
    failure_reason: str | None = None,
    updated_before: datetime | None = None,
) -> UpdateResult:
    guard = list(sm.guard_statuses(from_statuses, to_status))

    stale_guard_sql = ""
    if updated_before is not None:
        stale_guard_sql = "AND updated_at < %(updated_before)s"

    params = {
        "id": transaction_id,
        "guard": guard,
        "updated_before": updated_before,
        "to_status": to_status,
        "set_dispensed": to_status == sm.DISPENSED,
        "provider": provider,
        "provider_reference": provider_reference,
        "provider_event_type": provider_event_type,
        "locked_by": locked_by,
        "failure_reason": failure_reason,
    }

    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            WITH prev AS (
              SELECT id, status
              FROM app.transactions
              WHERE id = %(id)s
                AND status = ANY(%(guard)s)
                {stale_guard_sql}
              FOR UPDATE
            )
            UPDATE app.transactions t
            SET
              status = %(to_status)s,
              dispensed = t.dispensed OR %(set_dispensed)s,
              provider = COALESCE(%(provider)s, t.provider),
              provider_reference = COALESCE(%(provider_reference)s, t.provider_reference),
              provider_event_type = COALESCE(%(provider_event_type)s, t.provider_event_type),
              locked_by = COALESCE(%(locked_by)s, t.locked_by),
              failure_reason = COALESCE(%(failure_reason)s, t.failure_reason),
              updated_at = now()
            FROM prev
            WHERE t.id = prev.id
            RETURNING {_T_COLUMNS}, prev.status AS previous_status
            """,
            params,
        )
        row = cur.fetchone()

    if row:
        return UpdateResult(transaction=_row_to_tx(row), applied=True, previous_status=row["previous_status"])

    current = get_transaction(conn, transaction_id)
    return UpdateResult(transaction=current, applied=False, previous_status=current.status if current else None)


def update_progress(conn, *, transaction_id: str, dispensed_count: int) -> UpdateResult:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            UPDATE app.transactions
            SET
              dispensed_count = %s,
              updated_at = now()
            WHERE id = %s
              AND status = 'dispensing'
              AND dispensed_count <= %s
            RETURNING {_COLUMNS}
            """,
            (dispensed_count, transaction_id, dispensed_count),
        )
        row = cur.fetchone()

    if row:
        return UpdateResult(transaction=_row_to_tx(row), applied=True, previous_status=sm.DISPENSING)

    current = get_transaction(conn, transaction_id)
    return UpdateResult(transaction=current, applied=False, previous_status=current.status if current else None)


# ==========================================================
# Store object handed to components
# ==========================================================

class PostgresTransactionStore:
    def __init__(self, connect: Callable = get_conn):
        self._connect = connect

    @contextmanager
    def _conn(self):
        try:
            with self._connect() as conn:
                yield conn
        except _UNAVAILABLE_ERRORS as exc:
            raise StoreUnavailable(f"{type(exc).__name__}: {exc}") from exc

    def ping(self) -> tuple[bool, str | None]:
        try:
            with self._conn() as conn:
                with conn.cursor() as cur:
                    cur.execute("SELECT 1;")
                    cur.fetchone()
            return True, None
        except StoreUnavailable as exc:
            return False, str(exc)

    def get(self, transaction_id: str) -> Transaction | None:
        with self._conn() as conn:
            return get_transaction(conn, transaction_id)

    def insert_created(self, **kwargs) -> UpdateResult:
        with self._conn() as conn:
            return upsert_created(conn, **kwargs)

    def capture(self, **kwargs) -> UpdateResult:
        with self._conn() as conn:
            return upsert_captured(conn, **kwargs)

    def transition(self, transaction_id: str, **kwargs) -> UpdateResult:
        with self._conn() as conn:
            return update_status(conn, transaction_id=transaction_id, **kwargs)

    def record_progress(self, transaction_id: str, *, dispensed_count: int) -> UpdateResult:
        with self._conn() as conn:
            return update_progress(conn, transaction_id=transaction_id, dispensed_count=dispensed_count)

    def fetch_next(self) -> Transaction | None:
        with self._conn() as conn:
            return fetch_next_actionable(conn)

    def list_stale_dispensing(self, *, older_than: datetime, limit: int = 100) -> list[Transaction]:
        with self._conn() as conn:
            return list_stale_dispensing(conn, older_than=older_than, limit=limit)
