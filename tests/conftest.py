"""
Shared fixtures: a hand-driven clock and a service wired to it, so expiry
is exercised by moving time forward instead of sleeping.
"""

from __future__ import annotations

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# Ensure project root is importable
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from approval.config import GateConfig
from approval.engine import ApprovalGateService
from approval.models import ApprovalContext, PolicyRule, RuleAction


class FakeClock:
    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now += timedelta(seconds=seconds)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config() -> GateConfig:
    return GateConfig(
        ttl_seconds=1800,
        sweep_interval_seconds=300,
        base_wait_seconds=300,
        max_wait_seconds=3600,
        defer_extension_seconds=600,
        large_content_chars=5000,
        history_limit=50,
        include_persona_rules=True,
    )


@pytest.fixture
def service(config, clock) -> ApprovalGateService:
    return ApprovalGateService(config=config, clock=clock)


@pytest.fixture
def make_context():
    def _make(**fields) -> ApprovalContext:
        fields.setdefault("session_id", "session-1")
        return ApprovalContext(**fields)
    return _make


@pytest.fixture
def make_rule():
    def _make(
        rule_id: str,
        priority: int,
        action: RuleAction = RuleAction.REQUIRE_APPROVAL,
        condition=lambda ctx: True,
        modes=("all",),
    ) -> PolicyRule:
        return PolicyRule(
            id=rule_id,
            name=rule_id.replace("-", " ").title(),
            description="",
            condition=condition,
            action=action,
            applicable_modes=frozenset(modes),
            priority=priority,
        )
    return _make

