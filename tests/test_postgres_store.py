import os
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone

import pytest

from app.dispense.controller import DispenseController
from app.errors import LockConflict
from app.transactions import state_machine as sm

psycopg2 = pytest.importorskip("psycopg2")

TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL")

pytestmark = pytest.mark.skipif(not TEST_DATABASE_URL, reason="TEST_DATABASE_URL not set")


@pytest.fixture(scope="module")
def migrated():
    from alembic import command
    from alembic.config import Config

    root = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
    cfg = Config(os.path.join(root, "alembic.ini"))
    cfg.set_main_option("script_location", os.path.join(root, "alembic"))
    cfg.set_main_option("sqlalchemy.url", TEST_DATABASE_URL)
    command.upgrade(cfg, "head")
    return TEST_DATABASE_URL


@pytest.fixture()
def pg_store(migrated):
    from app.transactions.repository import PostgresTransactionStore

    @contextmanager
    def connect():
        conn = psycopg2.connect(migrated)
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    return PostgresTransactionStore(connect=connect)


def _tx_id() -> str:
    return "PGTEST_" + uuid.uuid4().hex[:12]


def _paid(store, tx_id):
    store.insert_created(
        transaction_id=tx_id, amount=50, provider="MOCK", provider_reference=None, payer_reference="x"
    )
    return store.capture(
        transaction_id=tx_id,
        amount=50,
        provider="MOCK",
        provider_reference="ref",
        provider_event_type="SUCCESS",
    )


def test_insert_and_capture_are_idempotent(pg_store):
    tx_id = _tx_id()
    first = pg_store.insert_created(
        transaction_id=tx_id, amount=50, provider="MOCK", provider_reference=None, payer_reference="x"
    )
    assert first.applied and first.previous_status is None

    captured = pg_store.capture(
        transaction_id=tx_id, amount=50, provider="MOCK", provider_reference="r", provider_event_type="SUCCESS"
    )
    assert captured.applied and captured.previous_status == sm.CREATED

    again = pg_store.capture(
        transaction_id=tx_id, amount=50, provider="MOCK", provider_reference="r", provider_event_type="SUCCESS"
    )
    assert not again.applied
    assert again.transaction.status == sm.CAPTURED


def test_capture_without_amount_on_unknown_row(pg_store):
    result = pg_store.capture(
        transaction_id=_tx_id(), amount=None, provider="MOCK", provider_reference=None, provider_event_type="SUCCESS"
    )
    assert not result.applied
    assert result.transaction is None


def test_progress_and_completion(pg_store):
    tx_id = _tx_id()
    _paid(pg_store, tx_id)
    assert pg_store.transition(tx_id, from_statuses=(sm.CAPTURED,), to_status=sm.DISPENSING, locked_by="d").applied
    assert pg_store.record_progress(tx_id, dispensed_count=2).applied
    assert not pg_store.record_progress(tx_id, dispensed_count=1).applied

    done = pg_store.transition(tx_id, from_statuses=(sm.DISPENSING,), to_status=sm.DISPENSED)
    assert done.applied
    assert done.previous_status == sm.DISPENSING
    assert done.transaction.dispensed is True
    assert done.transaction.dispensed_count == 2


def test_stale_listing_and_guarded_reclaim(pg_store):
    tx_id = _tx_id()
    _paid(pg_store, tx_id)
    pg_store.transition(tx_id, from_statuses=(sm.CAPTURED,), to_status=sm.DISPENSING)

    future = datetime.now(timezone.utc) + timedelta(minutes=5)
    assert tx_id in [tx.id for tx in pg_store.list_stale_dispensing(older_than=future, limit=1000)]

    past = datetime.now(timezone.utc) - timedelta(hours=1)
    blocked = pg_store.transition(
        tx_id, from_statuses=(sm.DISPENSING,), to_status=sm.FAILED, updated_before=past
    )
    assert not blocked.applied


def test_concurrent_lock_single_winner(pg_store):
    from app.transactions.events import TransitionEmitter

    tx_id = _tx_id()
    _paid(pg_store, tx_id)
    controller = DispenseController(store=pg_store, emitter=TransitionEmitter())

    barrier = threading.Barrier(5)
    wins: list[str] = []

    def attempt(device_id):
        barrier.wait()
        try:
            controller.lock(tx_id, device_id=device_id)
            wins.append(device_id)
        except LockConflict:
            pass

    threads = [threading.Thread(target=attempt, args=(f"d{i}",)) for i in range(5)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(wins) == 1
    assert pg_store.get(tx_id).locked_by == wins[0]
