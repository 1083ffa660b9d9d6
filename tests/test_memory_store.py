from app.transactions import state_machine as sm


def _created(store, tx_id="ORD_1", amount=50):
    return store.insert_created(
        transaction_id=tx_id,
        amount=amount,
        provider="MOCK",
        provider_reference=f"mock-{tx_id}",
        payer_reference=f"https://pay/{tx_id}",
    )


def _capture(store, tx_id="ORD_1", amount=50):
    return store.capture(
        transaction_id=tx_id,
        amount=amount,
        provider="CASHFREE",
        provider_reference="cf-1",
        provider_event_type="PAYMENT_SUCCESS_WEBHOOK",
    )


def test_insert_created_is_idempotent(store):
    first = _created(store)
    second = _created(store)
    assert first.applied and first.previous_status is None
    assert second.applied and second.previous_status == sm.CREATED
    assert len(store.all()) == 1
    assert store.get("ORD_1").status == sm.CREATED


def test_insert_created_never_downgrades_paid_row(store):
    _created(store)
    _capture(store)
    again = _created(store)
    assert not again.applied
    assert store.get("ORD_1").status == sm.CAPTURED


def test_capture_corrects_amount_and_is_not_reapplied(store):
    _created(store, amount=50)
    result = _capture(store, amount=60)
    assert result.applied
    assert result.previous_status == sm.CREATED
    assert result.transaction.amount == 60

    replay = _capture(store, amount=60)
    assert not replay.applied
    assert replay.transaction.status == sm.CAPTURED


def test_capture_without_row_needs_amount(store):
    result = _capture(store, tx_id="ORD_X", amount=None)
    assert not result.applied
    assert result.transaction is None
    assert store.get("ORD_X") is None

    result = _capture(store, tx_id="ORD_X", amount=30)
    assert result.applied
    assert result.previous_status is None
    assert result.transaction.status == sm.CAPTURED


def test_transition_respects_guard(store):
    _created(store)
    result = store.transition("ORD_1", from_statuses=(sm.CAPTURED,), to_status=sm.DISPENSING)
    assert not result.applied
    assert result.transaction.status == sm.CREATED

    missing = store.transition("nope", from_statuses=(sm.CREATED,), to_status=sm.EXPIRED)
    assert not missing.applied and missing.transaction is None


def test_dispensed_flag_only_set_on_dispensed(store):
    _created(store)
    _capture(store)
    store.transition("ORD_1", from_statuses=(sm.CAPTURED,), to_status=sm.DISPENSING, locked_by="d1")
    tx = store.get("ORD_1")
    assert tx.dispensed is False
    assert tx.locked_by == "d1"

    store.transition("ORD_1", from_statuses=(sm.DISPENSING,), to_status=sm.DISPENSED)
    tx = store.get("ORD_1")
    assert tx.status == sm.DISPENSED
    assert tx.dispensed is True


def test_record_progress_is_monotonic(store):
    _created(store)
    _capture(store)
    store.transition("ORD_1", from_statuses=(sm.CAPTURED,), to_status=sm.DISPENSING)

    assert store.record_progress("ORD_1", dispensed_count=2).applied
    assert store.record_progress("ORD_1", dispensed_count=2).applied
    lower = store.record_progress("ORD_1", dispensed_count=1)
    assert not lower.applied
    assert store.get("ORD_1").dispensed_count == 2


def test_record_progress_requires_dispensing(store):
    _created(store)
    _capture(store)
    result = store.record_progress("ORD_1", dispensed_count=1)
    assert not result.applied
    assert store.get("ORD_1").dispensed_count == 0


def test_fetch_next_is_oldest_actionable(store):
    for tx_id in ("ORD_A", "ORD_B", "ORD_C"):
        _created(store, tx_id)
    assert store.fetch_next() is None

    _capture(store, "ORD_C")
    _capture(store, "ORD_B")
    assert store.fetch_next().id == "ORD_B"

    store.transition("ORD_B", from_statuses=(sm.CAPTURED,), to_status=sm.DISPENSING)
    assert store.fetch_next().id == "ORD_B"

    store.transition("ORD_B", from_statuses=(sm.DISPENSING,), to_status=sm.DISPENSED)
    assert store.fetch_next().id == "ORD_C"


def test_list_stale_dispensing(store, clock):
    _created(store)
    _capture(store)
    store.transition("ORD_1", from_statuses=(sm.CAPTURED,), to_status=sm.DISPENSING)
    assert store.list_stale_dispensing(older_than=clock.now) == []

    clock.advance(60)
    stale = store.list_stale_dispensing(older_than=clock.now)
    assert [tx.id for tx in stale] == ["ORD_1"]
