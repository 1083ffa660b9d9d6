# app/transactions/store.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Protocol

from app.transactions.model import Transaction


@dataclass(frozen=True)
class UpdateResult:
    """
    Outcome of one atomic store mutation.

    transaction: the row after the call; when nothing was applied this is
    the current row (or None if the id is unknown).
    """

    transaction: Optional[Transaction]
    applied: bool
    previous_status: Optional[str] = None


class TransactionStore(Protocol):
    def ping(self) -> tuple[bool, str | None]: ...

    def get(self, transaction_id: str) -> Transaction | None: ...

    def insert_created(
        self,
        *,
        transaction_id: str,
        amount: int,
        provider: str | None,
        provider_reference: str | None,
        payer_reference: str | None,
    ) -> UpdateResult: ...

    def capture(
        self,
        *,
        transaction_id: str,
        amount: int | None,
        provider: str | None,
        provider_reference: str | None,
        provider_event_type: str | None,
    ) -> UpdateResult: ...

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
    ) -> UpdateResult: ...

    def record_progress(self, transaction_id: str, *, dispensed_count: int) -> UpdateResult: ...

    def fetch_next(self) -> Transaction | None: ...

    def list_stale_dispensing(self, *, older_than: datetime, limit: int = 100) -> list[Transaction]: ...
