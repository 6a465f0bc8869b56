"""
Approval Gate Configuration

Every tunable is read from the environment once, at import time, with a
conservative default. ``GateConfig`` bundles them for the service so tests
and embedders can override individual values without touching os.environ.
"""

from __future__ import annotations

import os
from dataclasses import dataclass


def _env_bool(name: str, default: str) -> bool:
    return os.environ.get(name, default).strip().lower() in {"1", "true", "yes", "on"}


# ---------------------------------------------------------------------------
# Configuration (from env vars with defaults)
# ---------------------------------------------------------------------------

APPROVAL_TTL_SECONDS = int(os.environ.get("APPROVAL_TTL_SECONDS", "1800"))
APPROVAL_SWEEP_INTERVAL_SECONDS = int(
    os.environ.get("APPROVAL_SWEEP_INTERVAL_SECONDS", "300")
)
APPROVAL_BASE_WAIT_SECONDS = int(os.environ.get("APPROVAL_BASE_WAIT_SECONDS", "300"))
APPROVAL_MAX_WAIT_SECONDS = int(os.environ.get("APPROVAL_MAX_WAIT_SECONDS", "3600"))
APPROVAL_DEFER_EXTENSION_SECONDS = int(
    os.environ.get("APPROVAL_DEFER_EXTENSION_SECONDS", str(APPROVAL_TTL_SECONDS))
)
APPROVAL_LARGE_CONTENT_CHARS = int(
    os.environ.get("APPROVAL_LARGE_CONTENT_CHARS", "5000")
)
APPROVAL_HISTORY_LIMIT = int(os.environ.get("APPROVAL_HISTORY_LIMIT", "50"))
APPROVAL_INCLUDE_PERSONA_RULES = _env_bool("APPROVAL_INCLUDE_PERSONA_RULES", "true")

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

# Workflow phase at which citations/references work begins.
CITATION_PHASE = 6


@dataclass
class GateConfig:
    """Tunable limits for one ApprovalGateService instance."""
    ttl_seconds: int = APPROVAL_TTL_SECONDS
    sweep_interval_seconds: int = APPROVAL_SWEEP_INTERVAL_SECONDS
    base_wait_seconds: int = APPROVAL_BASE_WAIT_SECONDS
    max_wait_seconds: int = APPROVAL_MAX_WAIT_SECONDS
    defer_extension_seconds: int = APPROVAL_DEFER_EXTENSION_SECONDS
    large_content_chars: int = APPROVAL_LARGE_CONTENT_CHARS
    history_limit: int = APPROVAL_HISTORY_LIMIT
    include_persona_rules: bool = APPROVAL_INCLUDE_PERSONA_RULES

    def __post_init__(self) -> None:
        for name in (
            "ttl_seconds",
            "sweep_interval_seconds",
            "base_wait_seconds",
            "max_wait_seconds",
            "defer_extension_seconds",
            "large_content_chars",
            "history_limit",
        ):
            value = getattr(self, name)
            if value <= 0:
                raise ValueError(f"GateConfig.{name} must be positive, got {value}")
