# app/dispense/controller.py
from __future__ import annotations

import logging
from typing import Optional

from app.errors import InvalidTransition, LockConflict, NotActionable, NotFound, StaleProgress
from app.transactions import state_machine as sm
from app.transactions.events import TransitionEmitter
from app.transactions.model import Transaction
from app.transactions.store import TransactionStore, UpdateResult
from services.metrics import increment_dispense_rejection

logger = logging.getLogger("smartchange.dispense")

DEFAULT_DEVICE_ID = "default"


class DispenseController:
    """
    Polling API for the dispenser. The device keeps no state between calls:
    fetch_next tells it what to work on, lock is the only exclusive step.
    """

    def __init__(self, *, store: TransactionStore, emitter: TransitionEmitter):
        self.store = store
        self.emitter = emitter

    def fetch_next(self) -> Optional[Transaction]:
        return self.store.fetch_next()

    def lock(self, transaction_id: str, *, device_id: str = DEFAULT_DEVICE_ID) -> Transaction:
        tx = self._load(transaction_id, "lock")

        if tx.status == sm.DISPENSING:
            return self._resume(tx, device_id)
        self._require(tx, (sm.CAPTURED,), "lock")

        result = self.store.transition(
            transaction_id,
            from_statuses=(sm.CAPTURED,),
            to_status=sm.DISPENSING,
            locked_by=device_id,
        )
        if result.applied:
            return self._emitted(result, cause="device_lock", device_id=device_id)

        # lost the race: somebody moved it between our read and the conditional update.
        # A caller sharing our device id is still somebody else.
        current = result.transaction
        raise self._rejected("lock", LockConflict(
            f"Transaction {transaction_id} was locked by another caller",
            transaction_id=transaction_id,
            status=current.status if current else None,
        ))

    def report_progress(self, transaction_id: str, dispensed_count: int, *, device_id: str | None = None) -> Transaction:
        if isinstance(dispensed_count, bool) or not isinstance(dispensed_count, int) or dispensed_count < 0:
            raise self._rejected("progress", StaleProgress(
                "dispensed_count must be a non-negative integer",
                transaction_id=transaction_id,
            ))

        tx = self._load(transaction_id, "progress")
        self._require(tx, (sm.DISPENSING,), "progress")
        self._check_holder(tx, device_id, "progress")

        if dispensed_count < tx.dispensed_count:
            raise self._rejected("progress", StaleProgress(
                f"dispensed_count {dispensed_count} is below stored {tx.dispensed_count}",
                transaction_id=transaction_id,
                dispensed_count=tx.dispensed_count,
            ))

        result = self.store.record_progress(transaction_id, dispensed_count=dispensed_count)
        if result.applied:
            logger.info(
                "dispense_progress transaction_id=%s dispensed_count=%s previous=%s",
                transaction_id,
                dispensed_count,
                tx.dispensed_count,
            )
            return result.transaction

        current = result.transaction
        if current is None:
            raise self._rejected("progress", NotFound(f"Transaction {transaction_id} not found", transaction_id=transaction_id))
        self._require(current, (sm.DISPENSING,), "progress")
        raise self._rejected("progress", StaleProgress(
            f"dispensed_count {dispensed_count} is below stored {current.dispensed_count}",
            transaction_id=transaction_id,
            dispensed_count=current.dispensed_count,
        ))

    def complete(self, transaction_id: str, *, device_id: str | None = None) -> Transaction:
        tx = self._load(transaction_id, "complete")

        if tx.status == sm.DISPENSED:
            return tx
        self._require(tx, (sm.DISPENSING,), "complete")
        self._check_holder(tx, device_id, "complete")

        result = self.store.transition(
            transaction_id,
            from_statuses=(sm.DISPENSING,),
            to_status=sm.DISPENSED,
        )
        if result.applied:
            return self._emitted(result, cause="device_complete", dispensed_count=result.transaction.dispensed_count)

        current = result.transaction
        if current is not None and current.status == sm.DISPENSED:
            return current
        return self._after_lost_race(transaction_id, current, "complete")

    def report_failure(self, transaction_id: str, *, device_id: str | None = None) -> Transaction:
        tx = self._load(transaction_id, "fail")
        self._require(tx, (sm.CAPTURED, sm.DISPENSING), "fail")
        self._check_holder(tx, device_id, "fail")

        result = self.store.transition(
            transaction_id,
            from_statuses=(sm.CAPTURED, sm.DISPENSING),
            to_status=sm.FAILED,
            failure_reason="DEVICE_REPORTED",
        )
        if result.applied:
            return self._emitted(result, cause="device_failure", dispensed_count=result.transaction.dispensed_count)
        return self._after_lost_race(transaction_id, result.transaction, "fail")

    # ---------------------------------------------

    def _load(self, transaction_id: str, operation: str) -> Transaction:
        tx = self.store.get(transaction_id)
        if tx is None:
            raise self._rejected(operation, NotFound(f"Transaction {transaction_id} not found", transaction_id=transaction_id))
        return tx

    def _require(self, tx: Transaction, allowed: tuple[str, ...], operation: str) -> None:
        if tx.status in allowed:
            return
        if sm.is_terminal(tx.status):
            raise self._rejected(operation, NotActionable(
                f"Transaction {tx.id} is {tx.status}",
                transaction_id=tx.id,
                status=tx.status,
            ))
        raise self._rejected(operation, InvalidTransition(
            f"Cannot {operation} transaction {tx.id} in status {tx.status}",
            transaction_id=tx.id,
            status=tx.status,
        ))

    def _check_holder(self, tx: Transaction, device_id: str | None, operation: str) -> None:
        if device_id and tx.locked_by and tx.locked_by != device_id:
            raise self._rejected(operation, LockConflict(
                f"Transaction {tx.id} is locked by another device",
                transaction_id=tx.id,
                status=tx.status,
            ))

    def _resume(self, tx: Transaction, device_id: str) -> Transaction:
        self._check_holder(tx, device_id, "lock")
        logger.info(
            "dispense_resumed transaction_id=%s device_id=%s dispensed_count=%s",
            tx.id,
            device_id,
            tx.dispensed_count,
        )
        return tx

    def _after_lost_race(self, transaction_id: str, current: Transaction | None, operation: str) -> Transaction:
        if current is None:
            raise self._rejected(operation, NotFound(f"Transaction {transaction_id} not found", transaction_id=transaction_id))
        error_cls = NotActionable if sm.is_terminal(current.status) else InvalidTransition
        raise self._rejected(operation, error_cls(
            f"Transaction {transaction_id} moved to {current.status} during {operation}",
            transaction_id=transaction_id,
            status=current.status,
        ))

    def _emitted(self, result: UpdateResult, *, cause: str, **detail) -> Transaction:
        tx = result.transaction
        self.emitter.emit(
            transaction_id=tx.id,
            from_status=result.previous_status,
            to_status=tx.status,
            cause=cause,
            **detail,
        )
        return tx

    def _rejected(self, operation: str, exc: Exception) -> Exception:
        increment_dispense_rejection(operation, getattr(exc, "code", type(exc).__name__))
        logger.info("dispense_rejected operation=%s code=%s message=%s", operation, getattr(exc, "code", None), exc)
        return exc
