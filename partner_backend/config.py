"""Core application configuration & tunable business rules.

Everything that may need adjusting per deployment (Tapfiliate credentials,
commission and fee constants, queue / retry behaviour, admin lockout) lives
here as module constants read from the environment once at import time.
Rule groups are plain dicts so tests can monkeypatch individual values.
"""
from __future__ import annotations

import os

# ------------------------------- Tapfiliate ------------------------------- #
TAPFILIATE_SETTINGS: dict[str, str | float | None] = {
	"api_key": os.getenv("TAPFILIATE_API_KEY") or None,
	"program_id": os.getenv("TAPFILIATE_PROGRAM_ID") or None,
	"api_base": os.getenv("TAPFILIATE_API_BASE", "https://api.tapfiliate.com/1.6"),
	"timeout_seconds": float(os.getenv("TAPFILIATE_TIMEOUT_SECONDS", "30")),
}

# ----------------------------- Earnings Ledger ---------------------------- #
# Monetary values are kept as strings and parsed into Decimal by the service
# so that fee / commission arithmetic stays exact.
EARNINGS_SETTINGS: dict[str, str | int] = {
	"commission_rate": os.getenv("EARNINGS_COMMISSION_RATE", "0.35"),
	# Estimated payment-processor fee: gross * fee_percent + fee_fixed
	"fee_percent": os.getenv("EARNINGS_FEE_PERCENT", "0.029"),
	"fee_fixed": os.getenv("EARNINGS_FEE_FIXED", "0.30"),
	# Tapfiliate returns 25 conversions per page unless told otherwise
	"page_size": int(os.getenv("TAPFILIATE_PAGE_SIZE", "25")),
	"max_pages": int(os.getenv("TAPFILIATE_MAX_PAGES", "40")),
	"default_currency": "usd",
	"source_tag": "tapfiliate",
}

# ------------------------------ Admin Access ------------------------------ #
ADMIN_API_TOKEN: str | None = os.getenv("ADMIN_API_TOKEN") or None
# Key the lockout on the first X-Forwarded-For hop. Enable only behind a proxy
# that overwrites the header; otherwise clients can rotate it freely.
TRUST_PROXY_HEADERS: bool = os.getenv("TRUST_PROXY_HEADERS", "").lower() in ("1", "true", "yes")

ADMIN_AUTH_SETTINGS: dict[str, int] = {
	"max_failed_attempts": 3,
	"lockout_seconds": 2 * 60 * 60,   # 2 hours
	# Failure records with no activity are forgotten after this long
	"record_ttl_seconds": 2 * 60 * 60,
	"max_tracked_clients": 10000,
}

# ----------------------------- Side Effects ------------------------------- #
# Landing page waitlist endpoint that receives new applicant emails.
LANDING_WAITLIST_URL: str | None = os.getenv("LANDING_WAITLIST_URL") or None
WAITLIST_TIMEOUT_SECONDS: float = float(os.getenv("WAITLIST_TIMEOUT_SECONDS", "10"))

STRIPE_WEBHOOK_SECRET: str | None = os.getenv("STRIPE_WEBHOOK_SECRET") or None

# --------------------------------- Backoff -------------------------------- #
BACKOFF_POLICY: dict[str, int | float] = {
	"base_seconds": 2,
	"factor": 2,          # Exponential factor
	"max_seconds": 120,
	"max_attempts": 3,    # Total attempts per side-effect task
	"jitter_pct": 0.10,   # +/-10% jitter
}

# --------------------------------- Queue ---------------------------------- #
QUEUE_SETTINGS: dict[str, dict[str, int] | int | str | bool | float] = {
	"priorities": {  # Lower number = higher priority
		"high": 0,
		"normal": 5,
		"low": 10,
	},
	"warn_depth": 1000,
	"max_in_memory": 5000,
	# Most recent permanently failed tasks kept for inspection
	"failed_tasks_max": 500,
	"worker_join_timeout": 10.0,
	"use_redis": os.getenv("USE_REDIS_QUEUE", "").lower() in ("1", "true", "yes"),
	"redis_url": os.getenv("REDIS_URL", "redis://localhost:6379/0"),
	"redis_ready_key": "partners:ready_tasks",
	"redis_scheduled_key": "partners:scheduled_tasks",
	"redis_health_check_timeout": 2.0,
}

__all__ = [
	"TAPFILIATE_SETTINGS",
	"EARNINGS_SETTINGS",
	"ADMIN_API_TOKEN",
	"TRUST_PROXY_HEADERS",
	"ADMIN_AUTH_SETTINGS",
	"LANDING_WAITLIST_URL",
	"WAITLIST_TIMEOUT_SECONDS",
	"STRIPE_WEBHOOK_SECRET",
	"BACKOFF_POLICY",
	"QUEUE_SETTINGS",
]
