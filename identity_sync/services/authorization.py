"""Record-store side gate for sync-agent writes: signature + single-use nonce.

Usage inside a guarded mutation:

    guard.require(expected_body, signature)   # raises AuthorizationError
    ... perform and commit the write ...
    guard.mark_used(signature)                # only after the commit

Marking after commit means a write that fails midway leaves the nonce
unconsumed; the sync agent re-signs on retry anyway.
"""
from __future__ import annotations

from typing import Any, Optional

from identity_sync.config import SIGNING_SETTINGS
from identity_sync.exceptions import AuthorizationError
from identity_sync.services.signing import CryptoSignature, verify_canonical
from identity_sync.storage.base import SecondaryStorage
from identity_sync.storage.keys import nonce_key
from identity_sync.utils import get_logger

logger = get_logger(__name__)


class SignatureGuard:
    def __init__(
        self,
        storage: SecondaryStorage,
        secret: str,
        *,
        max_skew_seconds: Optional[int] = None,
        nonce_ttl_seconds: Optional[int] = None,
    ) -> None:
        self._storage = storage
        self._secret = secret
        self._max_skew = int(max_skew_seconds if max_skew_seconds is not None else SIGNING_SETTINGS["max_skew_seconds"])
        self._nonce_ttl = int(nonce_ttl_seconds if nonce_ttl_seconds is not None else SIGNING_SETTINGS["nonce_ttl_seconds"])

    def verify(self, body: Any, signature: Any) -> bool:
        """MAC/timestamp check plus nonce-not-yet-consumed check. Never raises."""
        if body is None or signature is None:
            return False
        if not verify_canonical(body, signature, self._secret, self._max_skew):
            return False
        sig = CryptoSignature.from_any(signature)
        if sig is None:
            return False
        try:
            already_used = self._storage.get(nonce_key(sig.nonce))
        except Exception as e:
            # Fail closed when the nonce store is unreachable.
            logger.error("Nonce lookup failed", error=str(e))
            return False
        if already_used is not None:
            logger.warning("Replayed signature rejected", nonce=sig.nonce)
            return False
        return True

    def require(self, body: Any, signature: Any) -> CryptoSignature:
        """Like ``verify`` but raises AuthorizationError; returns the parsed signature."""
        if not self.verify(body, signature):
            op = body.get("op") if isinstance(body, dict) else None
            subject = body.get("userId") if isinstance(body, dict) else None
            raise AuthorizationError("Invalid or replayed sync signature", op=op, subject_id=subject)
        sig = CryptoSignature.from_any(signature)
        assert sig is not None  # verify() already parsed it
        return sig

    def mark_used(self, signature: Any) -> None:
        sig = CryptoSignature.from_any(signature)
        if sig is None:
            return
        self._storage.set(nonce_key(sig.nonce), "1", self._nonce_ttl)


__all__ = ["SignatureGuard"]
