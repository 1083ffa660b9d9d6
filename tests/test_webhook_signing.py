from __future__ import annotations

import json

from app.webhooks.signing import compute_signature, verify_signature

from _webhook_signing import canonical_json_bytes, hmac_sha256_hex, signature_header


def test_script_helper_matches_server_signature():
    body = canonical_json_bytes({"type": "SUCCESS", "data": {"order": {"order_id": "ORD_1"}}})
    assert hmac_sha256_hex("s3cret", body) == compute_signature("s3cret", body)
    header = signature_header("s3cret", body)["X-Signature"]
    assert verify_signature(raw=body, signature_header=header, secret="s3cret") == (True, None)


def test_prefix_is_optional():
    body = b'{"a":1}'
    bare = signature_header("k", body, prefixed=False)["X-Signature"]
    assert verify_signature(raw=body, signature_header=bare, secret="k") == (True, None)
    assert verify_signature(raw=body, signature_header=bare.upper(), secret="k") == (True, None)


def test_canonical_json_is_stable():
    a = canonical_json_bytes({"b": 1, "a": "é"})
    b = canonical_json_bytes(json.loads(a.decode("utf-8")))
    assert a == b == '{"a":"é","b":1}'.encode("utf-8")


def test_verify_rejects_garbage():
    body = b"{}"
    assert verify_signature(raw=body, signature_header="sha256=zzé", secret="k") == (False, "INVALID_SIGNATURE")
    assert verify_signature(raw=body, signature_header="", secret="k") == (False, "MISSING_SIGNATURE")
    assert verify_signature(raw=body, signature_header="abc", secret=None) == (False, "WEBHOOK_SECRET_NOT_CONFIGURED")
