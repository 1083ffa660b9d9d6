# app/transactions/memory.py
from __future__ import annotations

import itertools
from dataclasses import replace
from datetime import datetime, timezone
from threading import Lock
from typing import Callable

from app.transactions import state_machine as sm
from app.transactions.model import Transaction
from app.transactions.store import UpdateResult


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryTransactionStore:
    """
    Process-local store with the same atomicity contract as the Postgres one:
    every method is one critical section keyed by transaction id.

    Used by the test-suite and by `TX_STORE_BACKEND=memory` local runs.
    """

    def __init__(self, *, clock: Callable[[], datetime] = _utcnow):
        self._rows: dict[str, Transaction] = {}
        self._order: dict[str, int] = {}
        self._seq = itertools.count()
        self._lock = Lock()
        self._clock = clock

    def ping(self) -> tuple[bool, str | None]:
        return True, None

    def get(self, transaction_id: str) -> Transaction | None:
        with self._lock:
            return self._rows.get(transaction_id)

    def all(self) -> list[Transaction]:
        with self._lock:
            return sorted(self._rows.values(), key=self._sort_key)

    def _sort_key(self, tx: Transaction):
        return (tx.created_at, self._order[tx.id])

    def _put(self, tx: Transaction) -> Transaction:
        if tx.id not in self._order:
            self._order[tx.id] = next(self._seq)
        self._rows[tx.id] = tx
        return tx

    def insert_created(
        self,
        *,
        transaction_id: str,
        amount: int,
        provider: str | None,
        provider_reference: str | None,
        payer_reference: str | None,
    ) -> UpdateResult:
        with self._lock:
            existing = self._rows.get(transaction_id)
            now = self._clock()
            if existing is None:
                tx = self._put(
                    Transaction(
                        id=transaction_id,
                        amount=amount,
                        status=sm.CREATED,
                        dispensed=False,
                        dispensed_count=0,
                        created_at=now,
                        updated_at=now,
                        provider=provider,
                        provider_reference=provider_reference,
                        payer_reference=payer_reference,
                    )
                )
                return UpdateResult(transaction=tx, applied=True, previous_status=None)

            # a row for another amount is not ours to refresh
            if existing.status != sm.CREATED or existing.amount != amount:
                return UpdateResult(transaction=existing, applied=False, previous_status=existing.status)

            tx = self._put(
                replace(
                    existing,
                    provider_reference=provider_reference or existing.provider_reference,
                    payer_reference=payer_reference or existing.payer_reference,
                    updated_at=now,
                )
            )
            return UpdateResult(transaction=tx, applied=True, previous_status=sm.CREATED)

    def capture(
        self,
        *,
        transaction_id: str,
        amount: int | None,
        provider: str | None,
        provider_reference: str | None,
        provider_event_type: str | None,
    ) -> UpdateResult:
        with self._lock:
            existing = self._rows.get(transaction_id)
            now = self._clock()

            if existing is None:
                if amount is None:
                    return UpdateResult(transaction=None, applied=False)
                tx = self._put(
                    Transaction(
                        id=transaction_id,
                        amount=amount,
                        status=sm.CAPTURED,
                        dispensed=False,
                        dispensed_count=0,
                        created_at=now,
                        updated_at=now,
                        provider=provider,
                        provider_reference=provider_reference,
                        provider_event_type=provider_event_type,
                    )
                )
                return UpdateResult(transaction=tx, applied=True, previous_status=None)

            if existing.status != sm.CREATED:
                return UpdateResult(transaction=existing, applied=False, previous_status=existing.status)

            tx = self._put(
                replace(
                    existing,
                    status=sm.CAPTURED,
                    amount=amount if amount is not None else existing.amount,
                    provider=provider or existing.provider,
                    provider_reference=provider_reference or existing.provider_reference,
                    provider_event_type=provider_event_type,
                    updated_at=now,
                )
            )
            return UpdateResult(transaction=tx, applied=True, previous_status=sm.CREATED)

    def transition(
        self,
        transaction_id: str,
        *,
        from_statuses: tuple[str, ...],
        to_status: str,
        provider: str | None = None,
        provider_reference: str | None = None,
        provider_event_type: str | None = None,
        locked_by: str | None = None,
        failure_reason: str | None = None,
        updated_before: datetime | None = None,
    ) -> UpdateResult:
        guard = sm.guard_statuses(from_statuses, to_status)
        with self._lock:
            existing = self._rows.get(transaction_id)
            if existing is None:
                return UpdateResult(transaction=None, applied=False)
            if existing.status not in guard:
                return UpdateResult(transaction=existing, applied=False, previous_status=existing.status)
            if updated_before is not None and existing.updated_at >= updated_before:
                return UpdateResult(transaction=existing, applied=False, previous_status=existing.status)

            tx = self._put(
                replace(
                    existing,
                    status=to_status,
                    dispensed=existing.dispensed or to_status == sm.DISPENSED,
                    provider=provider or existing.provider,
                    provider_reference=provider_reference or existing.provider_reference,
                    provider_event_type=provider_event_type or existing.provider_event_type,
                    locked_by=locked_by or existing.locked_by,
                    failure_reason=failure_reason or existing.failure_reason,
                    updated_at=self._clock(),
                )
            )
            return UpdateResult(transaction=tx, applied=True, previous_status=existing.status)

    def record_progress(self, transaction_id: str, *, dispensed_count: int) -> UpdateResult:
        with self._lock:
            existing = self._rows.get(transaction_id)
            if existing is None:
                return UpdateResult(transaction=None, applied=False)
            if existing.status != sm.DISPENSING or dispensed_count < existing.dispensed_count:
                return UpdateResult(transaction=existing, applied=False, previous_status=existing.status)

            tx = self._put(replace(existing, dispensed_count=dispensed_count, updated_at=self._clock()))
            return UpdateResult(transaction=tx, applied=True, previous_status=sm.DISPENSING)

    def fetch_next(self) -> Transaction | None:
        with self._lock:
            candidates = [
                tx
                for tx in self._rows.values()
                if tx.status in sm.ACTIONABLE_STATUSES and not tx.dispensed
            ]
            if not candidates:
                return None
            return min(candidates, key=self._sort_key)

    def list_stale_dispensing(self, *, older_than: datetime, limit: int = 100) -> list[Transaction]:
        with self._lock:
            stale = [
                tx
                for tx in self._rows.values()
                if tx.status == sm.DISPENSING and tx.updated_at < older_than
            ]
        return sorted(stale, key=lambda tx: tx.updated_at)[:limit]
