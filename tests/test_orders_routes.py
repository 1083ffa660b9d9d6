from app.providers.mock import MockProvider
from deps import services as deps


def test_create_order_returns_link(client, store):
    r = client.post("/v1/orders", json={"amount": 50})
    assert r.status_code == 200, r.text
    data = r.json()
    assert data["success"] is True
    assert data["status"] == "created"
    assert data["payment_link"].endswith(data["transaction_id"])
    assert store.get(data["transaction_id"]).amount == 50


def test_legacy_create_order_path(client):
    r = client.post("/create-order", json={"amount": 10})
    assert r.status_code == 200, r.text
    assert r.json()["order_id"] == r.json()["transaction_id"]


def test_amount_out_of_policy_is_400(client, store, mock_provider):
    for amount in (9, 102, "fifty", None, 25.5):
        r = client.post("/v1/orders", json={"amount": amount})
        assert r.status_code == 400, r.text
        detail = r.json()["detail"]
        assert detail["error"] == "AMOUNT_OUT_OF_POLICY"
        assert detail["message"] == "Amount must be 10-101"
    assert mock_provider.calls == []
    assert store.all() == []


def test_provider_down_is_502(app, client, store):
    app.dependency_overrides[deps.get_payment_provider] = lambda: MockProvider(succeed=False)
    r = client.post("/v1/orders", json={"amount": 50})
    assert r.status_code == 502, r.text
    assert r.json()["detail"]["error"] == "PROVIDER_UNAVAILABLE"
    assert r.headers.get("Retry-After")
    assert store.all() == []


def test_idempotency_key_replays(client, mock_provider):
    headers = {"Idempotency-Key": "kiosk-1-order-7"}
    first = client.post("/v1/orders", json={"amount": 50}, headers=headers)
    second = client.post("/v1/orders", json={"amount": 50}, headers=headers)
    assert first.status_code == second.status_code == 200
    assert first.json()["transaction_id"] == second.json()["transaction_id"]
    assert second.json()["replayed"] is True
    assert len(mock_provider.calls) == 1


def test_idempotency_key_too_long(client):
    r = client.post("/v1/orders", json={"amount": 50}, headers={"Idempotency-Key": "k" * 200})
    assert r.status_code == 400, r.text


def test_idempotency_key_with_other_amount_is_409(client, mock_provider):
    headers = {"Idempotency-Key": "kiosk-1-order-8"}
    assert client.post("/v1/orders", json={"amount": 50}, headers=headers).status_code == 200

    r = client.post("/v1/orders", json={"amount": 90}, headers=headers)
    assert r.status_code == 409, r.text
    assert r.json()["detail"]["error"] == "IDEMPOTENCY_CONFLICT"
    assert r.json()["detail"]["amount"] == 50
    assert len(mock_provider.calls) == 1
