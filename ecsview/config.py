"""ecsview configuration - constants and defaults.

All tunables live here so the gateway and UI stay free of magic numbers.
Override at runtime via ``ECSVIEW_*`` environment variables or CLI flags.
"""

from __future__ import annotations

import os

# ---------------------------------------------------------------------------
# ECS API limits
# ---------------------------------------------------------------------------

# DescribeServices accepts at most 10 service identifiers per request.
MAX_DESCRIBE_BATCH_SIZE: int = 10
DESCRIBE_BATCH_SIZE: int = max(
    1, min(MAX_DESCRIBE_BATCH_SIZE, int(os.getenv("ECSVIEW_DESCRIBE_BATCH_SIZE", "10")))
)

# ---------------------------------------------------------------------------
# Polling
# ---------------------------------------------------------------------------

POLL_INTERVAL_SECONDS: float = float(os.getenv("ECSVIEW_POLL_INTERVAL", "10"))

# ---------------------------------------------------------------------------
# CloudWatch metrics - trailing window averaged into a single datapoint
# ---------------------------------------------------------------------------

METRICS_NAMESPACE: str = "AWS/ECS"
METRICS_WINDOW_SECONDS: int = int(os.getenv("ECSVIEW_METRICS_WINDOW", "300"))  # 5 min
METRICS_PERIOD_SECONDS: int = int(os.getenv("ECSVIEW_METRICS_PERIOD", "300"))
METRICS_ENABLED: bool = os.getenv("ECSVIEW_METRICS", "1") not in ("0", "false", "no")

# ---------------------------------------------------------------------------
# Interactive shell (aws ecs execute-command)
# ---------------------------------------------------------------------------

AWS_CLI: str = os.getenv("ECSVIEW_AWS_CLI", "aws")
DEFAULT_SHELL_COMMAND: str = os.getenv("ECSVIEW_SHELL_COMMAND", "/bin/sh")

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

LOG_FILE: str | None = os.getenv("ECSVIEW_LOG_FILE") or None
LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
