from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from app.transactions import state_machine as sm
from app.transactions.events import TransitionEmitter
from app.transactions.store import TransactionStore


logger = logging.getLogger("smartchange.reclaim")

DISPENSE_TIMEOUT = "DISPENSE_TIMEOUT"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def reclaim_stale_dispenses(
    store: TransactionStore,
    emitter: TransitionEmitter,
    *,
    stale_after_seconds: int,
    limit: int = 100,
    now: Callable[[], datetime] = _utcnow,
) -> dict[str, Any]:
    """
    Fail `dispensing` rows that have had no lock/progress for `stale_after_seconds`,
    so a dead device cannot hold the head of the FIFO queue forever.

    The update re-checks status and updated_at, so a device that reports
    progress between the scan and the update keeps its transaction.
    """
    cutoff = now() - timedelta(seconds=stale_after_seconds)
    candidates = store.list_stale_dispensing(older_than=cutoff, limit=limit)

    reclaimed: list[str] = []
    skipped: list[str] = []
    for tx in candidates:
        result = store.transition(
            tx.id,
            from_statuses=(sm.DISPENSING,),
            to_status=sm.FAILED,
            failure_reason=DISPENSE_TIMEOUT,
            updated_before=cutoff,
        )
        if not result.applied:
            skipped.append(tx.id)
            continue

        reclaimed.append(tx.id)
        emitter.emit(
            transaction_id=tx.id,
            from_status=result.previous_status,
            to_status=sm.FAILED,
            cause="dispense_timeout",
            dispensed_count=result.transaction.dispensed_count,
            amount=result.transaction.amount,
            locked_by=result.transaction.locked_by,
        )
        logger.warning(
            "dispense_reclaimed transaction_id=%s dispensed_count=%s amount=%s locked_by=%s",
            tx.id,
            result.transaction.dispensed_count,
            result.transaction.amount,
            result.transaction.locked_by,
        )

    return {
        "cutoff": cutoff.isoformat(),
        "checked": len(candidates),
        "reclaimed": reclaimed,
        "skipped": skipped,
    }
