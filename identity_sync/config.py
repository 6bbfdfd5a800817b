"""Core configuration & tunable sync rules.

Everything that may need tuning per deployment (tick cadence, page size,
backoff, signature skew, storage / event bus backends, coordination names)
is centralized here. Values come from environment variables with sensible
defaults; tests monkeypatch the module dicts directly.
"""
from __future__ import annotations

import os


def _env_bool(name: str, default: bool) -> bool:
	raw = os.getenv(name)
	if raw is None or not raw.strip():
		return default
	return raw.strip().lower() in {"1", "true", "yes", "on"}


# ------------------------------ Secrets ----------------------------------- #
# Shared HMAC secret between the sync agent and the record store.
SYNC_SECRET: str = os.getenv("SYNC_SECRET", "")

# Header token for the admin reconcile endpoints. Empty disables the check.
RECONCILE_TOKEN: str = os.getenv("RECONCILE_TOKEN", "")
RECONCILE_TOKEN_HEADER: str = "X-Reconcile-Token"

# ------------------------------ Databases --------------------------------- #
IDENTITY_DATABASE_URL: str = os.getenv("IDENTITY_DATABASE_URL", "sqlite+pysqlite:///./identity.db")
RECORDS_DATABASE_URL: str = os.getenv("RECORDS_DATABASE_URL", "sqlite+pysqlite:///./records.db")

# --------------------------------- Queue ---------------------------------- #
QUEUE_SETTINGS: dict[str, float | int | bool] = {
	"tick_seconds": float(os.getenv("SYNC_TICK_SECONDS", "1.0")),
	"reconcile_every_seconds": float(os.getenv("SYNC_RECONCILE_EVERY_SECONDS", str(30 * 60))),
	"page_size": int(os.getenv("SYNC_PAGE_SIZE", "500")),
	# Destructive; off unless explicitly enabled.
	"prune_orphans": _env_bool("SYNC_PRUNE_ORPHANS", False),
	"run_on_boot": _env_bool("SYNC_RUN_ON_BOOT", False),
	"boot_delay_seconds": float(os.getenv("SYNC_BOOT_DELAY_SECONDS", "2.0")),
	"status_sample_size": 50,
}

# --------------------------------- Backoff -------------------------------- #
BACKOFF_POLICY: dict[str, float] = {
	"base_seconds": 1,
	"factor": 2,          # Exponential factor
	"max_seconds": 60,
	"jitter_seconds": 0.5,  # uniform(0, jitter) added on top of the capped delay
}

# -------------------------------- Signing --------------------------------- #
SIGNING_SETTINGS: dict[str, int] = {
	"max_skew_seconds": 300,
	"nonce_ttl_seconds": 5 * 60,
}

# -------------------------- Storage / Event bus --------------------------- #
STORAGE_SETTINGS: dict[str, str] = {
	"backend": os.getenv("SYNC_STORAGE_BACKEND", "memory"),  # memory | sql | redis
	"sql_url": os.getenv("SYNC_STORAGE_SQL_URL", "sqlite+pysqlite:///./.sync-state.db"),
	"redis_url": os.getenv("SYNC_REDIS_URL", "redis://localhost:6379/0"),
	"redis_prefix": os.getenv("SYNC_REDIS_PREFIX", "sync:"),
}

EVENT_BUS_SETTINGS: dict[str, str | float] = {
	"backend": os.getenv("SYNC_EVENT_BUS_BACKEND", "memory"),  # memory | sql | redis
	"sql_url": os.getenv("SYNC_EVENT_BUS_SQL_URL", "sqlite+pysqlite:///./.event-bus.db"),
	"redis_url": os.getenv("SYNC_REDIS_URL", "redis://localhost:6379/0"),
	"channel_prefix": "eventbus:",
	"poll_interval_seconds": float(os.getenv("SYNC_EVENT_BUS_POLL_SECONDS", "0.1")),
	"cleanup_age_seconds": 60.0,
	"cleanup_interval_seconds": 60.0,
}

# ------------------------------ Coordination ------------------------------ #
COORDINATION_SETTINGS: dict[str, str | bool] = {
	"service_name": os.getenv("SYNC_SERVICE_NAME", "identity"),
	"peer_name": os.getenv("SYNC_PEER_NAME", "records"),
	# The record store runs in this process and announces itself on boot.
	"host_record_store": _env_bool("SYNC_HOST_RECORD_STORE", True),
}

# Storage key holding the identity service's session cookie name.
DEFAULT_SESSION_COOKIE_NAME: str = "identity.session_token"

__all__ = [
	"SYNC_SECRET",
	"RECONCILE_TOKEN",
	"RECONCILE_TOKEN_HEADER",
	"IDENTITY_DATABASE_URL",
	"RECORDS_DATABASE_URL",
	# Rule groups
	"QUEUE_SETTINGS",
	"BACKOFF_POLICY",
	"SIGNING_SETTINGS",
	"STORAGE_SETTINGS",
	"EVENT_BUS_SETTINGS",
	"COORDINATION_SETTINGS",
	"DEFAULT_SESSION_COOKIE_NAME",
]
