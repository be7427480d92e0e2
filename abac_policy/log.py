"""Structured JSON logging.

One JSON object per line on stdout, flushed immediately, so log lines can be
filtered by a single grep on any correlation key.
"""

import json
import time
from typing import Optional

SOURCE = "abac_policy"


def log_structured(level: str, message: str, **fields):
    """Emit structured JSON log for observability."""
    log_entry = {
        "timestamp": time.time(),
        "level": level,
        "message": message,
        "source": SOURCE,
        **fields
    }
    print(json.dumps(log_entry, default=str), flush=True)


def log_decision(
    level: str,
    message: str,
    *,
    request_id: Optional[str] = None,
    policy_id: Optional[str] = None,
    event_type: Optional[str] = None,
    **extra,
):
    """Structured log with the standard decision correlation IDs.

    Keys that are None are left out of the line.
    """
    log_structured(
        level,
        message,
        **{k: v for k, v in {
            "request_id": request_id,
            "policy_id": policy_id,
            "event_type": event_type,
            **extra,
        }.items() if v is not None},
    )
