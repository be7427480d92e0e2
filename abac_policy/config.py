"""Engine configuration from ABAC_* environment variables."""

import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Mapping, Optional

from .evaluator import DEFAULT_MAX_DEPTH


class ErrorMode(str, Enum):
    """What the engine does when a candidate policy raises EvaluationError."""
    ABORT = "abort"  # propagate; the whole call fails (caller maps to deny)
    SKIP = "skip"    # log, record the policy as skipped, try the next candidate


@dataclass
class EngineConfig:
    """Configuration for the decision engine and its HTTP host."""
    on_evaluation_error: ErrorMode = ErrorMode.ABORT
    max_condition_depth: int = DEFAULT_MAX_DEPTH
    policy_path: Optional[Path] = None
    audit_queue_size: int = 1000
    auth_token: str = ""
    port: int = 8080

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "EngineConfig":
        """Read configuration; invalid values raise ValueError."""
        env = os.environ if environ is None else environ

        mode = env.get("ABAC_ON_EVALUATION_ERROR", ErrorMode.ABORT.value).strip().lower()
        try:
            error_mode = ErrorMode(mode)
        except ValueError:
            raise ValueError(
                f"ABAC_ON_EVALUATION_ERROR must be 'abort' or 'skip', got {mode!r}"
            ) from None

        depth = _int(env, "ABAC_MAX_CONDITION_DEPTH", DEFAULT_MAX_DEPTH)
        if depth < 1:
            raise ValueError("ABAC_MAX_CONDITION_DEPTH must be >= 1")

        queue_size = _int(env, "ABAC_AUDIT_QUEUE_SIZE", 1000)
        if queue_size < 0:
            raise ValueError("ABAC_AUDIT_QUEUE_SIZE must be >= 0")

        policy_path = env.get("ABAC_POLICY_PATH", "").strip()

        return cls(
            on_evaluation_error=error_mode,
            max_condition_depth=depth,
            policy_path=Path(policy_path) if policy_path else None,
            audit_queue_size=queue_size,
            auth_token=env.get("ABAC_AUTH_TOKEN", ""),
            port=_int(env, "ABAC_PORT", 8080),
        )


def _int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None
