"""
Approval Gate Service Test Suite
End-to-end scenarios across evaluate, resolve, sweep and the admin surface.

Usage:  pytest tests/test_engine.py
"""

from __future__ import annotations

from dataclasses import replace
from datetime import timedelta

import pytest

from approval.config import GateConfig
from approval.engine import ApprovalGateService
from approval.errors import (
    DuplicateRuleError,
    ExpiredError,
    NotFoundError,
    StoreIntegrityError,
)
from approval.models import ChatMode, RequestStatus, RuleAction, ToolCall, Verdict
from approval.notifications import NotificationPriority, NotificationType
from approval.rules import RuleSpec


# ---------------------------------------------------------------------------
# Scenarios
# ---------------------------------------------------------------------------

def test_scenario_formal_web_search_requires_approval(service, make_context):
    result = service.evaluate(make_context(mode="formal", tool_calls=[ToolCall("web_search")]))
    assert result.verdict is Verdict.REQUIRE_APPROVAL
    assert result.winning_rule.id == "formal-external-research"
    assert result.approval_id is not None
    assert result.reason == (
        "Approval required: External research requires verification in formal academic mode"
    )


def test_scenario_casual_web_search_proceeds(service, make_context):
    result = service.evaluate(make_context(
        mode="casual",
        message_content="cari resep nasi goreng",
        tool_calls=[ToolCall("web_search")],
    ))
    assert result.verdict is Verdict.PROCEED
    assert result.approval_id is None
    assert result.notification is None
    assert result.reason == "Request approved automatically - low risk profile for casual mode"


def test_scenario_casual_password_requires_approval(service, make_context):
    result = service.evaluate(make_context(
        mode="casual", message_content="gimana nyimpen password aman"
    ))
    assert result.verdict is Verdict.REQUIRE_APPROVAL
    assert result.winning_rule.id == "casual-sensitive-content"


def test_scenario_unknown_id_is_not_found(service):
    result = service.resolve("unknown-id", "approve", "actor-1")
    assert not result.success
    assert isinstance(result.error, NotFoundError)


# ---------------------------------------------------------------------------
# Lifecycle properties
# ---------------------------------------------------------------------------

def test_unset_mode_selects_formal_rules(service, make_context, make_rule):
    selected = {r.id for r in service.registry.applicable_rules(ChatMode.NONE)}
    assert "formal-external-research" in selected
    assert "casual-sensitive-content" not in selected

    service.add_rule(make_rule("formal-only", 500, modes=("formal",)))
    result = service.evaluate(make_context(message_content="hello"))
    assert result.verdict is Verdict.REQUIRE_APPROVAL
    assert result.winning_rule.id == "formal-only"


def test_unset_mode_does_not_fire_formal_conditions(service, make_context):
    # Built-in formal conditions check the mode itself, not just selection
    result = service.evaluate(make_context(tool_calls=[ToolCall("web_search")]))
    assert result.verdict is Verdict.PROCEED
    assert result.approval_id is None


def test_overlapping_rules_are_all_reported(service, make_context):
    result = service.evaluate(make_context(
        mode="formal",
        tool_calls=[ToolCall("web_search"), ToolCall("file_handler")],
        workflow_phase=4,
        message_content="skip this phase and bypass review",
    ))
    assert [r.id for r in result.triggered_rules] == [
        "formal-external-research",
        "formal-workflow-phase-skip",
        "workflow-bypass-attempt",
        "universal-file-operations",
    ]


def test_create_then_approve_round_trip(service, make_context):
    result = service.evaluate(make_context(mode="casual", message_content="my secret"))
    resolution = service.resolve(result.approval_id, "approve", "human:mod")
    assert resolution.success
    assert resolution.request.status is RequestStatus.APPROVED
    assert resolution.request.approved_by == "human:mod"
    assert result.approval_id not in {r.id for r in service.list_pending()}
    assert service.history()[0].id == result.approval_id


def test_resolving_twice_fails(service, make_context):
    result = service.evaluate(make_context(mode="casual", message_content="my secret"))
    assert service.resolve(result.approval_id, "deny", "a", reason="no").success
    second = service.resolve(result.approval_id, "approve", "b")
    assert isinstance(second.error, NotFoundError)
    assert service.get(result.approval_id).status is RequestStatus.REJECTED


def test_caller_dicts_do_not_leak_into_history(service, make_context):
    args = {"query": "soil salinity", "filters": {"years": [2020, 2024]}}
    metadata = {"draft": {"title": "Salinity"}}
    result = service.evaluate(make_context(
        mode="formal", tool_calls=[ToolCall("web_search", args)], metadata=metadata,
    ))
    pending = service.get(result.approval_id)

    args["filters"]["years"].append(1999)
    assert pending.context.tool_calls[0].args["filters"] == {"years": [2020, 2024]}

    service.resolve(result.approval_id, "approve", "human:advisor")
    args["query"] = "tampered"
    metadata["draft"]["title"] = "tampered"

    archived = service.history()[0]
    assert archived.context.tool_calls[0].args["query"] == "soil salinity"
    assert archived.context.metadata["draft"] == {"title": "Salinity"}
    assert service.verify_history() is True


def test_context_mappings_are_read_only(make_context):
    ctx = make_context(tool_calls=[{"name": "web_search", "args": {"q": "x"}}])
    with pytest.raises(TypeError):
        ctx.tool_calls[0].args["q"] = "y"
    with pytest.raises(TypeError):
        ctx.metadata["k"] = "v"


def test_broken_history_chain_is_fatal(service, make_context):
    result = service.evaluate(make_context(mode="casual", message_content="my secret"))
    service.resolve(result.approval_id, "approve", "human:mod")
    assert service.verify_history() is True

    log = service.store.history_log
    entry = log._entries[0]
    log._entries[0] = replace(entry, request=replace(entry.request, approved_by="mallory"))
    with pytest.raises(StoreIntegrityError):
        service.verify_history()
    assert service.status()["history_intact"] is False


def test_failed_notification_expires_the_request(service, make_context, monkeypatch):
    def broken(request):
        raise RuntimeError("template error")

    monkeypatch.setattr(service.notifications, "build", broken)
    with pytest.raises(RuntimeError):
        service.evaluate(make_context(mode="casual", message_content="my secret"))
    assert service.list_pending() == []
    orphan = service.history()[0]
    assert orphan.status is RequestStatus.EXPIRED
    assert service.notifications.get(orphan.id) is None


def test_sweep_then_resolve_reports_expired(service, clock, make_context):
    result = service.evaluate(make_context(mode="casual", message_content="my secret"))
    request = service.get(result.approval_id)

    expired = service.sweep(now=request.expires_at + timedelta(seconds=1))
    assert [r.id for r in expired] == [result.approval_id]
    assert service.get(result.approval_id).status is RequestStatus.EXPIRED
    assert service.list_pending() == []
    assert service.notifications.get(result.approval_id).type is NotificationType.APPROVAL_EXPIRED

    # Once expired, the record stays expired for every later observer
    clock.advance(1801)
    late = service.resolve(result.approval_id, "approve", "a")
    assert not late.success
    assert isinstance(late.error, ExpiredError)
    assert service.get(result.approval_id).status is RequestStatus.EXPIRED


def test_resolve_after_ttl_without_sweep(service, clock, make_context):
    result = service.evaluate(make_context(mode="casual", message_content="my secret"))
    clock.advance(1801)
    late = service.resolve(result.approval_id, "approve", "a")
    assert isinstance(late.error, ExpiredError)
    assert late.request.status is RequestStatus.EXPIRED
    assert service.notifications.get(result.approval_id).type is NotificationType.APPROVAL_EXPIRED
    assert service.sweep() == []


def test_escalate_pulls_in_next_tier(service, make_context):
    result = service.evaluate(make_context(mode="casual", message_content="my secret"))
    escalated = service.resolve(result.approval_id, "escalate", "human:mod")
    assert escalated.success
    assert escalated.request.is_pending
    assert escalated.request.escalation_level == 1

    n = service.notifications.get(result.approval_id)
    assert n.approvers == ["system_moderator", "academic_advisor"]
    assert n.priority is NotificationPriority.URGENT
    assert n.type is NotificationType.APPROVAL_REQUEST
    assert result.approval_id in {
        x.approval_id for x in service.active_notifications("academic_advisor")
    }


def test_defer_moves_notification_expiry(service, make_context):
    result = service.evaluate(make_context(mode="casual", message_content="my secret"))
    original = service.get(result.approval_id).expires_at
    deferred = service.resolve(result.approval_id, "defer", "human:mod", reason="context?")
    assert deferred.request.expires_at == original + timedelta(seconds=600)
    assert service.notifications.get(result.approval_id).expires_at == deferred.request.expires_at


def test_pending_message_only_while_pending(service, make_context):
    result = service.evaluate(make_context(mode="casual", message_content="my secret"))
    assert service.pending_message(result.approval_id).startswith("Permintaan lo")
    service.resolve(result.approval_id, "approve", "a")
    assert service.pending_message(result.approval_id) is None
    assert service.pending_message("approval_missing") is None


# ---------------------------------------------------------------------------
# Administration and reporting
# ---------------------------------------------------------------------------

def test_runtime_reject_rule_outranks_defaults(service, make_context):
    rule = service.add_rule(RuleSpec(
        id="block-system-tools",
        name="Block System Tools",
        action=RuleAction.REJECT,
        priority=200,
        tool_patterns=["system_*"],
    ))
    assert rule.id in service.registry
    result = service.evaluate(make_context(
        mode="formal",
        tool_calls=[ToolCall("system_command"), ToolCall("web_search")],
    ))
    assert result.verdict is Verdict.REJECT
    assert service.list_pending() == []

    with pytest.raises(DuplicateRuleError):
        service.add_rule(RuleSpec(id="block-system-tools", name="Again", keywords=["x"]))

    assert service.remove_rule("block-system-tools") is True
    assert service.remove_rule("block-system-tools") is False


def test_persona_rules_can_be_disabled(clock, make_context):
    service = ApprovalGateService(
        config=GateConfig(include_persona_rules=False), clock=clock
    )
    assert len(service.rules()) == 6
    result = service.evaluate(make_context(mode="casual", message_content="switch mode please"))
    assert result.verdict is Verdict.PROCEED


def test_history_defaults_to_configured_limit(clock, make_context):
    service = ApprovalGateService(config=GateConfig(history_limit=3), clock=clock)
    for i in range(5):
        result = service.evaluate(make_context(
            session_id=f"s-{i % 2}", mode="casual", message_content="secret"
        ))
        clock.advance(1)
        service.resolve(result.approval_id, "approve", "a")
    assert len(service.history()) == 3
    assert len(service.history(limit=10)) == 5
    assert len(service.history(limit=10, session_id="s-1")) == 2


def test_status_and_stats(service, make_context):
    approved = service.evaluate(make_context(mode="casual", message_content="secret"))
    service.evaluate(make_context(mode="formal", tool_calls=[ToolCall("web_search")]))
    service.resolve(approved.approval_id, "approve", "a")

    status = service.status()
    assert status["total_rules"] == 8
    assert status["pending_requests"] == 1
    assert status["history_size"] == 1
    assert status["rules_by_mode"] == {"formal": 7, "casual": 4, "universal": 3}
    assert status["history_intact"] is True

    stats = service.stats()
    assert stats["total_requests"] == 2
    assert stats["approved"] == 1
    assert stats["pending"] == 1
    assert stats["risk_distribution"] == {"low": 1, "medium": 0, "high": 1, "critical": 0}
    assert stats["average_wait_seconds"] == pytest.approx((600 + 390) / 2)


def test_gate_config_rejects_bad_values():
    with pytest.raises(ValueError):
        GateConfig(ttl_seconds=0)
    with pytest.raises(ValueError):
        GateConfig(sweep_interval_seconds=-5)
