import pytest

from identity_sync.exceptions import CanonicalizationError
from identity_sync.services.signing import CryptoSignature, canonical_stringify, sign_canonical, verify_canonical

SECRET = "s3cret"
NOW = 1_700_000_000


def test_canonical_sorts_keys_recursively():
    a = {"userId": "u1", "op": "delete", "nested": {"b": 1, "a": [3, {"y": None, "x": True}]}}
    b = {"nested": {"a": [3, {"x": True, "y": None}], "b": 1}, "op": "delete", "userId": "u1"}
    assert canonical_stringify(a) == canonical_stringify(b)
    assert canonical_stringify(a) == '{"nested":{"a":[3,{"x":true,"y":null}],"b":1},"op":"delete","userId":"u1"}'


def test_canonical_keeps_list_order():
    assert canonical_stringify([2, 1]) != canonical_stringify([1, 2])


def test_canonical_rejects_cycles():
    body: dict = {"op": "create"}
    body["self"] = body
    with pytest.raises(CanonicalizationError):
        canonical_stringify(body)


def test_canonical_allows_shared_non_cyclic_references():
    shared = {"k": "v"}
    assert canonical_stringify({"a": shared, "b": shared}) == '{"a":{"k":"v"},"b":{"k":"v"}}'


def test_canonical_rejects_unsupported_values():
    with pytest.raises(CanonicalizationError):
        canonical_stringify({"when": object()})
    with pytest.raises(CanonicalizationError):
        canonical_stringify({"n": float("nan")})


def test_sign_then_verify_roundtrip():
    body = {"op": "delete", "userId": "u1"}
    sig = sign_canonical(body, SECRET, now=NOW)
    assert sig.timestamp == str(NOW)
    assert len(sig.mac) == 64
    assert verify_canonical(body, sig, SECRET, now=NOW + 10)
    assert verify_canonical(body, sig.to_dict(), SECRET, now=NOW + 10)


def test_sign_requires_secret():
    with pytest.raises(ValueError):
        sign_canonical({"op": "create"}, "")


def test_each_signature_gets_fresh_nonce():
    a = sign_canonical({"op": "create"}, SECRET, now=NOW)
    b = sign_canonical({"op": "create"}, SECRET, now=NOW)
    assert a.nonce != b.nonce
    assert a.mac != b.mac


@pytest.mark.parametrize(
    "mutate",
    [
        lambda body, sig: ({**body, "userId": "u2"}, sig),
        lambda body, sig: (body, {**sig.to_dict(), "mac": "0" * 64}),
        lambda body, sig: (body, {**sig.to_dict(), "nonce": "other"}),
        lambda body, sig: (body, {"timestamp": sig.timestamp, "nonce": sig.nonce}),
        lambda body, sig: (body, {**sig.to_dict(), "timestamp": "not-a-number"}),
        lambda body, sig: (body, {**sig.to_dict(), "mac": 123}),
        lambda body, sig: (body, "garbage"),
    ],
)
def test_verify_rejects_tampering_and_malformed_signatures(mutate):
    body = {"op": "delete", "userId": "u1"}
    sig = sign_canonical(body, SECRET, now=NOW)
    bad_body, bad_sig = mutate(body, sig)
    assert verify_canonical(bad_body, bad_sig, SECRET, now=NOW) is False


def test_verify_rejects_wrong_or_empty_secret():
    body = {"op": "delete", "userId": "u1"}
    sig = sign_canonical(body, SECRET, now=NOW)
    assert verify_canonical(body, sig, "other", now=NOW) is False
    assert verify_canonical(body, sig, "", now=NOW) is False


def test_verify_enforces_skew_window():
    body = {"op": "create", "userId": "u1"}
    sig = sign_canonical(body, SECRET, now=NOW)
    assert verify_canonical(body, sig, SECRET, now=NOW + 300)
    assert verify_canonical(body, sig, SECRET, now=NOW + 301) is False
    assert verify_canonical(body, sig, SECRET, now=NOW - 301) is False
    assert verify_canonical(body, sig, SECRET, max_skew_seconds=10, now=NOW + 11) is False


def test_verify_never_raises_on_uncanonicalizable_body():
    sig = sign_canonical({"op": "x"}, SECRET, now=NOW)
    cyclic: list = []
    cyclic.append(cyclic)
    assert verify_canonical(cyclic, sig, SECRET, now=NOW) is False


def test_signature_from_any():
    sig = CryptoSignature(timestamp="1", nonce="n", mac="m")
    assert CryptoSignature.from_any(sig) is sig
    assert CryptoSignature.from_any({"timestamp": "1", "nonce": "n", "mac": "m"}) == sig
    assert CryptoSignature.from_any({"timestamp": "1", "nonce": "", "mac": "m"}) is None
    assert CryptoSignature.from_any(None) is None
