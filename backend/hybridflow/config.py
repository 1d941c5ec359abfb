"""Infrastructure configuration constants, the single source of truth for env vars."""

import os

# Temporal
TEMPORAL_ADDRESS = os.getenv("TEMPORAL_ADDRESS", "localhost:7233")
TASK_QUEUE = os.getenv("TEMPORAL_TASK_QUEUE", "hybridflow-task-queue")

# Server binding, used by entrypoint / uvicorn
API_HOST = os.getenv("API_HOST", "0.0.0.0")
API_PORT = int(os.getenv("API_PORT", "8000"))

# How advance cycles are driven after executeWorkflow:
#   inline   - run within the inbound request (default, no broker needed)
#   temporal - create the execution and hand the cycle to a Temporal worker
DISPATCH_MODE = os.getenv("DISPATCH_MODE", "inline").lower()

# Load hybridflow/templates/*.json into the workflows table on startup
SEED_TEMPLATES = os.getenv("SEED_TEMPLATES", "true").lower() in ("true", "1", "yes")

# Default engine URL for the remote driver
# Use 127.0.0.1 instead of localhost to avoid IPv6 timeout issues
HYBRIDFLOW_API_URL = os.getenv("HYBRIDFLOW_API_URL", "http://127.0.0.1:8000")
