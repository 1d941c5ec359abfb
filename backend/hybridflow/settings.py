"""Engine runtime settings, tunable parameters for execution.

All values read from environment variables with defaults. Import from here
instead of hardcoding.

Infrastructure config (Temporal address, API host, dispatch mode) stays
in hybridflow/config.py.
"""

from __future__ import annotations

import os


def _int(key: str, default: int) -> int:
    return int(os.getenv(key, str(default)))


def _float(key: str, default: float) -> float:
    return float(os.getenv(key, str(default)))


def _str(key: str, default: str) -> str:
    return os.getenv(key, default)


# =====================================================================
# Execution State Machine
# =====================================================================

# Upper bound on node runs within one advance cycle (runaway guard)
ENGINE_MAX_NODE_RUNS_PER_CYCLE = _int("ENGINE_MAX_NODE_RUNS_PER_CYCLE", 100)

# Attempts for server executors whose node type declares no retry policy
NODE_DEFAULT_MAX_ATTEMPTS = _int("NODE_DEFAULT_MAX_ATTEMPTS", 1)

# Exponential backoff between attempts (seconds)
NODE_RETRY_BASE_DELAY = _float("NODE_RETRY_BASE_DELAY", 0.5)
NODE_RETRY_MAX_DELAY = _float("NODE_RETRY_MAX_DELAY", 30.0)


# =====================================================================
# Built-in nodes
# =====================================================================

# Discount codes expire this many days after generation
DISCOUNT_CODE_TTL_DAYS = _int("DISCOUNT_CODE_TTL_DAYS", 30)

# Simulated provider latency for the email node (seconds)
EMAIL_SEND_DELAY = _float("EMAIL_SEND_DELAY", 0.0)

# Default provider when an email node does not name one
EMAIL_DEFAULT_PROVIDER = _str("EMAIL_DEFAULT_PROVIDER", "klaviyo")


# =====================================================================
# HTTP Clients (fetch node, remote driver)
# =====================================================================

FETCH_HTTP_TIMEOUT = _float("FETCH_HTTP_TIMEOUT", 30.0)
FETCH_HTTP_MAX_CONNECTIONS = _int("FETCH_HTTP_MAX_CONNECTIONS", 20)
FETCH_HTTP_MAX_KEEPALIVE = _int("FETCH_HTTP_MAX_KEEPALIVE", 10)

DRIVER_HTTP_TIMEOUT = _float("DRIVER_HTTP_TIMEOUT", 30.0)


# =====================================================================
# Temporal dispatch
# =====================================================================

ADVANCE_ACTIVITY_TIMEOUT_MINUTES = _int("ADVANCE_ACTIVITY_TIMEOUT_MINUTES", 10)
RESUME_ACTIVITY_TIMEOUT_MINUTES = _int("RESUME_ACTIVITY_TIMEOUT_MINUTES", 5)
