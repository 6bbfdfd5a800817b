"""Shared secondary storage key constants."""

# Timestamp-based coordination between services: timestamp:<service> -> unix millis
TIMESTAMP_PREFIX = "timestamp:"

# Replay protection: nonce:<nonce> -> "1"
NONCE_PREFIX = "nonce:"

# Session cookie name written by the identity service, read by the record store
SESSION_COOKIE_NAME_KEY = "config:sessionCookieName"

# Deduplicated log messages: log:msg:<key> -> last message hash
LOG_KEY_PREFIX = "log:msg:"


def timestamp_key(service_name: str) -> str:
    return TIMESTAMP_PREFIX + service_name


def nonce_key(nonce: str) -> str:
    return NONCE_PREFIX + nonce


__all__ = [
    "TIMESTAMP_PREFIX",
    "NONCE_PREFIX",
    "SESSION_COOKIE_NAME_KEY",
    "LOG_KEY_PREFIX",
    "timestamp_key",
    "nonce_key",
]
