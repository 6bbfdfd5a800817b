"""Canonical serialization + HMAC signing of sync-agent mutation bodies.

A signature binds a specific body (e.g. ``{"op": "delete", "userId": ...}``)
to a timestamp and a single-use nonce:

    mac = HMAC-SHA256(secret, f"{timestamp}.{nonce}.{canonical(body)}")

``canonical`` sorts object keys recursively so two structurally-equal bodies
always produce the same bytes regardless of construction order. Verification
fails closed: it returns False for anything it cannot positively confirm.
Nonce bookkeeping lives in ``identity_sync.services.authorization``.
"""
from __future__ import annotations

import hashlib
import hmac
import json
import time
import uuid
from dataclasses import asdict, dataclass
from typing import Any, Mapping, Optional

from identity_sync.config import SIGNING_SETTINGS
from identity_sync.exceptions import CanonicalizationError


@dataclass(frozen=True, slots=True)
class CryptoSignature:
    timestamp: str  # unix seconds
    nonce: str
    mac: str  # hex HMAC-SHA256

    def to_dict(self) -> dict[str, str]:
        return asdict(self)

    @classmethod
    def from_any(cls, value: Any) -> Optional["CryptoSignature"]:
        """Coerce a signature or a mapping into a signature; None if malformed."""
        if isinstance(value, CryptoSignature):
            candidate = value
        elif isinstance(value, Mapping):
            try:
                candidate = cls(timestamp=value["timestamp"], nonce=value["nonce"], mac=value["mac"])
            except KeyError:
                return None
        else:
            return None
        fields = (candidate.timestamp, candidate.nonce, candidate.mac)
        if not all(isinstance(f, str) and f for f in fields):
            return None
        return candidate


def canonical_stringify(value: Any) -> str:
    """Deterministic JSON-like serialization with sorted keys.

    Raises CanonicalizationError on reference cycles and on values that have
    no JSON representation.
    """
    ancestors: set[int] = set()

    def walk(v: Any) -> str:
        if isinstance(v, Mapping) or isinstance(v, (list, tuple)):
            marker = id(v)
            if marker in ancestors:
                raise CanonicalizationError("Circular reference detected in object")
            ancestors.add(marker)
            try:
                if isinstance(v, Mapping):
                    items = []
                    for key in sorted(v.keys(), key=_key_text):
                        items.append(f"{_scalar(_key_text(key))}:{walk(v[key])}")
                    return "{" + ",".join(items) + "}"
                return "[" + ",".join(walk(item) for item in v) + "]"
            finally:
                ancestors.discard(marker)
        return _scalar(v)

    return walk(value)


def _key_text(key: Any) -> str:
    if not isinstance(key, str):
        raise CanonicalizationError(f"Object keys must be strings, got {type(key).__name__}")
    return key


def _scalar(v: Any) -> str:
    if v is not None and not isinstance(v, (str, int, float, bool)):
        raise CanonicalizationError(f"Unsupported value type {type(v).__name__}")
    try:
        return json.dumps(v, ensure_ascii=False, allow_nan=False)
    except ValueError as e:
        raise CanonicalizationError(str(e)) from e


def _mac(secret: str, timestamp: str, nonce: str, payload: str) -> str:
    message = f"{timestamp}.{nonce}.{payload}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def sign_canonical(body: Any, secret: str, *, now: Optional[float] = None) -> CryptoSignature:
    """Sign ``body`` with a fresh timestamp and nonce."""
    if not secret or not isinstance(secret, str):
        raise ValueError("Secret must be a non-empty string")
    timestamp = str(int(now if now is not None else time.time()))
    nonce = str(uuid.uuid4())
    payload = canonical_stringify(body)
    return CryptoSignature(timestamp=timestamp, nonce=nonce, mac=_mac(secret, timestamp, nonce, payload))


def verify_canonical(
    body: Any,
    signature: Any,
    secret: str,
    max_skew_seconds: Optional[int] = None,
    *,
    now: Optional[float] = None,
) -> bool:
    """True only if ``signature`` is a fresh, valid MAC of ``body`` under ``secret``."""
    if not secret or not isinstance(secret, str):
        return False
    sig = CryptoSignature.from_any(signature)
    if sig is None:
        return False
    if max_skew_seconds is None:
        max_skew_seconds = int(SIGNING_SETTINGS["max_skew_seconds"])
    try:
        signed_at = int(sig.timestamp)
    except ValueError:
        return False
    current = int(now if now is not None else time.time())
    if abs(current - signed_at) > max_skew_seconds:
        return False
    try:
        payload = canonical_stringify(body)
    except CanonicalizationError:
        return False
    expected = _mac(secret, sig.timestamp, sig.nonce, payload)
    return hmac.compare_digest(sig.mac.encode("utf-8"), expected.encode("utf-8"))


__all__ = ["CryptoSignature", "canonical_stringify", "sign_canonical", "verify_canonical"]
