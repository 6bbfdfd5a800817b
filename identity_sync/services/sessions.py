"""Session validation against sessions the identity service keeps in secondary storage.

The identity service writes each session under its bare token as JSON:

    {"session": {"id": ..., "userId": ..., "expiresAt": "<ISO-8601>"}, "user": {...}}

Cookies carry ``<token>.<signature>``; only the token part is looked up.
"""
from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import unquote

from identity_sync.config import DEFAULT_SESSION_COOKIE_NAME
from identity_sync.storage.base import SecondaryStorage
from identity_sync.storage.keys import SESSION_COOKIE_NAME_KEY
from identity_sync.utils import get_logger

logger = get_logger(__name__)


def session_cookie_name(storage: SecondaryStorage) -> str:
    return storage.get(SESSION_COOKIE_NAME_KEY) or DEFAULT_SESSION_COOKIE_NAME


def extract_session_tokens(cookie_header: Optional[str], cookie_name: str) -> list[str]:
    """Every value of ``cookie_name`` in a Cookie header, duplicates included, in order."""
    tokens: list[str] = []
    if not cookie_header:
        return tokens
    for part in cookie_header.split(";"):
        name, sep, value = part.strip().partition("=")
        if not sep or name != cookie_name or not value:
            continue
        tokens.append(unquote(value))
    return tokens


def _parse_expiry(value) -> Optional[datetime]:
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def validate_session_token(full_token: str, storage: SecondaryStorage, *, now: Optional[datetime] = None) -> Optional[str]:
    """Return the session's user id if the token maps to a live session, else None."""
    token = (full_token or "").split(".")[0]
    if not token:
        return None
    cached = storage.get(token)
    if not cached:
        return None
    try:
        stored = json.loads(cached)
        session = stored["session"]
        user_id = session["userId"]
        expires_at = _parse_expiry(session.get("expiresAt"))
    except (ValueError, KeyError, TypeError):
        logger.debug("Unreadable session entry in storage")
        return None
    if expires_at is None or not user_id:
        return None
    if expires_at <= (now or datetime.now(timezone.utc)):
        return None
    return str(user_id)


__all__ = ["session_cookie_name", "extract_session_tokens", "validate_session_token"]
