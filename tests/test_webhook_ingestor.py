import pytest

from app.errors import AuthenticationFailure, MalformedPayload, WebhookMisconfigured
from app.transactions import state_machine as sm
from app.webhooks.ingestor import WebhookIngestor
from app.webhooks.normalize import normalize_event
from app.webhooks.signing import compute_signature
from services.metrics import get_counter

from conftest import WEBHOOK_SECRET, raw, success_event


@pytest.fixture()
def ingestor(store, policy, emitter):
    return WebhookIngestor(provider="CASHFREE", secret=WEBHOOK_SECRET, store=store, policy=policy, emitter=emitter)


def _deliver(ingestor, payload):
    body = raw(payload)
    return ingestor.ingest(body, compute_signature(WEBHOOK_SECRET, body))


def _created(store, tx_id="ORD_1", amount=50):
    store.insert_created(
        transaction_id=tx_id,
        amount=amount,
        provider="CASHFREE",
        provider_reference=None,
        payer_reference="https://pay/" + tx_id,
    )


def test_success_captures_created_transaction(ingestor, store, transitions):
    _created(store)
    ack = _deliver(ingestor, success_event("ORD_1", amount=50))

    assert ack.applied is True
    assert ack.status == sm.CAPTURED
    tx = store.get("ORD_1")
    assert tx.status == sm.CAPTURED
    assert tx.provider_reference == "cf-ORD_1"
    assert tx.provider_event_type == "PAYMENT_SUCCESS_WEBHOOK"
    assert [(e.from_status, e.to_status, e.cause) for e in transitions] == [
        (sm.CREATED, sm.CAPTURED, "webhook:PAYMENT_SUCCESS_WEBHOOK")
    ]


def test_duplicate_success_is_acknowledged_not_reapplied(ingestor, store, transitions):
    _created(store)
    first = _deliver(ingestor, success_event("ORD_1", amount=50))
    second = _deliver(ingestor, success_event("ORD_1", amount=50))

    assert first.applied is True
    assert second.applied is False
    assert second.reason == "ALREADY_CAPTURED"
    assert second.to_response()["ok"] is True
    assert len(transitions) == 1
    assert get_counter("webhook_conflicts_total", {"provider": "CASHFREE", "reason": "ALREADY_CAPTURED"}) == 0


def test_success_after_dispense_started_does_not_reset(ingestor, store):
    _created(store)
    _deliver(ingestor, success_event("ORD_1", amount=50))
    store.transition("ORD_1", from_statuses=(sm.CAPTURED,), to_status=sm.DISPENSING)
    store.record_progress("ORD_1", dispensed_count=3)

    ack = _deliver(ingestor, success_event("ORD_1", amount=50))
    assert ack.applied is False
    tx = store.get("ORD_1")
    assert tx.status == sm.DISPENSING
    assert tx.dispensed_count == 3


def test_first_sighting_success_creates_captured_row(ingestor, store, transitions):
    ack = _deliver(ingestor, success_event("ORD_NEW", amount=40))
    assert ack.applied is True
    tx = store.get("ORD_NEW")
    assert tx.status == sm.CAPTURED
    assert tx.amount == 40
    assert transitions[0].from_status is None


def test_first_sighting_without_amount_is_ignored(ingestor, store):
    ack = _deliver(ingestor, success_event("ORD_NEW"))
    assert ack.applied is False
    assert ack.reason == "MISSING_AMOUNT"
    assert store.get("ORD_NEW") is None


@pytest.mark.parametrize("amount", [5, 500, "abc"])
def test_out_of_policy_amount_is_not_captured(ingestor, store, amount):
    _created(store)
    ack = _deliver(ingestor, success_event("ORD_1", amount=amount))
    assert ack.applied is False
    assert ack.reason == "AMOUNT_OUT_OF_POLICY"
    assert store.get("ORD_1").status == sm.CREATED


def test_decimal_amount_is_rounded(ingestor, store):
    _created(store, amount=50)
    payload = success_event("ORD_1")
    payload["data"]["order"]["order_amount"] = "50.00"
    ack = _deliver(ingestor, payload)
    assert ack.applied is True
    assert store.get("ORD_1").amount == 50


@pytest.mark.parametrize(
    "reported, amount",
    [(10.5, 11), (100.5, 101), ("100.50", 101), (10.49, 10), ("50.00", 50), ("abc", None), ("NaN", None)],
)
def test_reported_amount_halves_round_up(reported, amount):
    payload = success_event("ORD_1")
    payload["data"]["order"]["order_amount"] = reported
    event = normalize_event(payload, provider="CASHFREE")
    assert event.amount == amount
    assert event.amount_reported is True


@pytest.mark.parametrize(
    "event_type, status",
    [
        ("PAYMENT_FAILED_WEBHOOK", sm.FAILED),
        ("ORDER_EXPIRED_WEBHOOK", sm.EXPIRED),
        ("PAYMENT_CANCELLED_WEBHOOK", sm.CANCELLED),
        ("PAYMENT_USER_DROPPED_WEBHOOK", sm.DROPPED),
    ],
)
def test_non_success_outcomes_close_created(ingestor, store, event_type, status):
    _created(store)
    ack = _deliver(ingestor, success_event("ORD_1", event_type=event_type))
    assert ack.applied is True
    tx = store.get("ORD_1")
    assert tx.status == status
    assert sm.is_terminal(tx.status)


def test_failure_reason_recorded_for_provider_failure(ingestor, store):
    _created(store)
    _deliver(ingestor, success_event("ORD_1", event_type="PAYMENT_FAILED_WEBHOOK"))
    assert store.get("ORD_1").failure_reason == "PROVIDER_FAILED"


def test_failed_after_success_keeps_capture(ingestor, store):
    _created(store)
    _deliver(ingestor, success_event("ORD_1", amount=50))
    ack = _deliver(ingestor, success_event("ORD_1", event_type="PAYMENT_FAILED_WEBHOOK"))

    assert ack.applied is False
    assert ack.reason == "ALREADY_CAPTURED"
    assert store.get("ORD_1").status == sm.CAPTURED
    assert get_counter("webhook_conflicts_total", {"provider": "CASHFREE", "reason": "ALREADY_CAPTURED"}) == 1


def test_success_after_failed_stays_failed(ingestor, store, caplog):
    _created(store)
    _deliver(ingestor, success_event("ORD_1", event_type="PAYMENT_FAILED_WEBHOOK"))
    caplog.set_level("WARNING", logger="smartchange.webhooks")

    ack = _deliver(ingestor, success_event("ORD_1", amount=50))

    assert ack.applied is False
    assert ack.reason == "ALREADY_FAILED"
    assert store.get("ORD_1").status == sm.FAILED
    assert any("webhook_conflict" in r.message for r in caplog.records)


def test_outcome_for_unknown_transaction_is_ignored(ingestor, store):
    ack = _deliver(ingestor, success_event("ORD_GHOST", event_type="ORDER_EXPIRED_WEBHOOK"))
    assert ack.applied is False
    assert ack.reason == "TRANSACTION_NOT_FOUND"
    assert store.get("ORD_GHOST") is None


def test_unmapped_event_is_acknowledged(ingestor, store):
    _created(store)
    ack = _deliver(ingestor, success_event("ORD_1", event_type="REFUND_STATUS_WEBHOOK"))
    assert ack.applied is False
    assert ack.reason == "UNMAPPED_EVENT"
    assert store.get("ORD_1").status == sm.CREATED


def test_transaction_id_derived_from_provider_reference(ingestor, store):
    payload = {"type": "SUCCESS", "data": {"payment": {"cf_payment_id": "998877", "payment_amount": 20}}}
    ack = _deliver(ingestor, payload)
    assert ack.transaction_id == "CASHFREE_998877"
    assert store.get("CASHFREE_998877").status == sm.CAPTURED


def test_missing_transaction_id_is_malformed(ingestor):
    with pytest.raises(MalformedPayload) as exc:
        _deliver(ingestor, {"type": "SUCCESS", "data": {}})
    assert exc.value.code == "MISSING_TRANSACTION_ID"


def test_bad_signature_touches_nothing(ingestor, store):
    _created(store)
    body = raw(success_event("ORD_1", amount=50))
    with pytest.raises(AuthenticationFailure) as exc:
        ingestor.ingest(body, "sha256=" + "0" * 64)
    assert exc.value.code == "INVALID_SIGNATURE"

    with pytest.raises(AuthenticationFailure) as exc:
        ingestor.ingest(body, None)
    assert exc.value.code == "MISSING_SIGNATURE"
    assert store.get("ORD_1").status == sm.CREATED


def test_signature_covers_raw_bytes(ingestor, store):
    _created(store)
    body = raw(success_event("ORD_1", amount=50))
    sig = compute_signature(WEBHOOK_SECRET, body)
    reformatted = body.replace(b'", "', b'","')
    assert reformatted != body
    with pytest.raises(AuthenticationFailure):
        ingestor.ingest(reformatted, sig)


def test_invalid_json_with_valid_signature(ingestor):
    body = b"{not json"
    with pytest.raises(MalformedPayload) as exc:
        ingestor.ingest(body, compute_signature(WEBHOOK_SECRET, body))
    assert exc.value.code == "INVALID_JSON"


def test_missing_secret_is_misconfiguration(store, policy, emitter):
    ingestor = WebhookIngestor(provider="CASHFREE", secret="", store=store, policy=policy, emitter=emitter)
    with pytest.raises(WebhookMisconfigured):
        ingestor.ingest(b"{}", "sha256=abc")
