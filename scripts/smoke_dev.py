"""
End-to-end smoke run against a dev server:
create order -> signed success webhook -> lock -> progress -> complete.

    BASE_URL=http://127.0.0.1:8001 CASHFREE_WEBHOOK_SECRET=... python -m scripts.smoke_dev
"""
import os
import sys
import uuid

import requests

from scripts._webhook_signing import canonical_json_bytes, cashfree_event, signature_header


def die(message, code=1):
    print(message)
    sys.exit(code)


def step(message):
    print("\n==> " + message)


def request(method, url, headers=None, json_body=None, data=None, allow_failure=False):
    try:
        resp = requests.request(method, url, headers=headers, json=json_body, data=data, timeout=15)
    except requests.RequestException as exc:
        die("Request failed: %s" % exc)
    if resp.status_code < 200 or resp.status_code >= 300:
        if not allow_failure:
            print("HTTP %s %s" % (resp.status_code, resp.reason))
            print(resp.text)
            sys.exit(1)
    return resp


def _safe_json(resp):
    try:
        return resp.json()
    except ValueError:
        return {}


def main():
    base_url = os.getenv("BASE_URL", "http://127.0.0.1:8001").rstrip("/")
    webhook_secret = os.getenv("CASHFREE_WEBHOOK_SECRET")
    amount = int(os.getenv("SMOKE_AMOUNT", "20"))
    device_id = os.getenv("DEVICE_ID", "smoke-device")

    if not webhook_secret:
        die("Missing env vars: CASHFREE_WEBHOOK_SECRET", code=2)

    step("Health")
    print(_safe_json(request("GET", base_url + "/healthz")))

    step("Create order")
    idem = "smoke-" + uuid.uuid4().hex
    order = _safe_json(request(
        "POST",
        base_url + "/v1/orders",
        headers={"Idempotency-Key": idem},
        json_body={"amount": amount},
    ))
    tx_id = order.get("transaction_id")
    if not tx_id:
        die("No transaction_id in response: %s" % order)
    print("transaction_id:", tx_id, "payment_link:", order.get("payment_link"))

    step("Signed success webhook")
    body = canonical_json_bytes(cashfree_event(tx_id, amount=amount))
    headers = {"Content-Type": "application/json"}
    headers.update(signature_header(webhook_secret, body))
    ack = _safe_json(request("POST", base_url + "/cashfree-webhook", headers=headers, data=body))
    print(ack)

    step("Replay webhook (expect applied=false)")
    replay = _safe_json(request("POST", base_url + "/cashfree-webhook", headers=headers, data=body))
    if replay.get("applied"):
        die("Replay was applied twice")

    step("Poll next")
    nxt = _safe_json(request("GET", base_url + "/v1/dispense/next"))
    print(nxt)
    if nxt.get("transaction_id") != tx_id:
        print("Note: another transaction is ahead in the queue")

    device = {"X-Device-Id": device_id}
    step("Lock")
    print(_safe_json(request("POST", base_url + f"/v1/dispense/{tx_id}/lock", headers=device)))

    for count in range(1, amount // 10 + 1):
        request("POST", base_url + f"/v1/dispense/{tx_id}/progress", headers=device, json_body={"dispensed_count": count})
    step("Complete")
    done = _safe_json(request("POST", base_url + f"/v1/dispense/{tx_id}/complete", headers=device))
    print(done)
    if done.get("status") != "dispensed":
        die("Unexpected final status: %s" % done.get("status"))

    print("\nSmoke OK")


if __name__ == "__main__":
    main()
