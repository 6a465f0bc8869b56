"""
Decision Resolver Test Suite
approve/deny terminal transitions, escalate/defer extension semantics and
the structured failures for unknown, resolved and expired requests.

Usage:  pytest tests/test_resolver.py
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from approval.errors import ExpiredError, NotFoundError
from approval.models import DecisionType, RequestStatus
from approval.resolver import DecisionResolver
from approval.store import ApprovalRequestStore


@pytest.fixture
def store(clock):
    return ApprovalRequestStore(ttl_seconds=1800, clock=clock)


@pytest.fixture
def resolver(store):
    return DecisionResolver(store, defer_extension_seconds=600)


@pytest.fixture
def pending(store, make_context):
    return store.create(make_context(), [])


def test_approve(resolver, store, pending, clock):
    result = resolver.resolve(pending.id, "approve", "human:supervisor")
    assert result.success
    assert result.error is None
    assert result.message == "Approval approve successfully processed"
    request = result.request
    assert request.status is RequestStatus.APPROVED
    assert request.approved_by == "human:supervisor"
    assert request.resolved_at == clock.now
    assert [d.decision for d in request.decisions] == [DecisionType.APPROVE]
    assert store.list_pending() == []


def test_deny_records_reason(resolver, pending):
    result = resolver.resolve(pending.id, DecisionType.DENY, "human:mod", reason="Off topic")
    assert result.success
    assert result.request.status is RequestStatus.REJECTED
    assert result.request.rejection_reason == "Off topic"
    assert result.request.approved_by == "human:mod"
    assert result.request.decisions[0].reason == "Off topic"


def test_second_resolution_is_not_found(resolver, pending):
    assert resolver.resolve(pending.id, "approve", "a").success
    again = resolver.resolve(pending.id, "approve", "a")
    assert not again.success
    assert isinstance(again.error, NotFoundError)
    assert again.request is None


def test_unknown_id_is_not_found(resolver):
    result = resolver.resolve("unknown-id", "approve", "actor-1")
    assert not result.success
    assert isinstance(result.error, NotFoundError)
    assert result.error.approval_id == "unknown-id"


def test_late_decision_expires_request(resolver, store, pending, clock):
    clock.advance(1801)
    result = resolver.resolve(pending.id, "approve", "late-actor")
    assert not result.success
    assert isinstance(result.error, ExpiredError)
    assert result.request.status is RequestStatus.EXPIRED
    assert result.request.approved_by is None
    assert store.get(pending.id).status is RequestStatus.EXPIRED
    assert isinstance(
        resolver.resolve(pending.id, "approve", "late-actor").error, ExpiredError
    )


def test_escalate_keeps_request_pending(resolver, store, pending):
    result = resolver.resolve(pending.id, "escalate", "human:mod", reason="Need a supervisor")
    assert result.success
    assert result.request.is_pending
    assert result.request.escalation_level == 1
    assert result.request.approved_by is None
    assert store.list_pending() == [result.request]

    final = resolver.resolve(pending.id, "approve", "human:supervisor")
    assert final.request.status is RequestStatus.APPROVED
    assert [d.decision for d in final.request.decisions] == [
        DecisionType.ESCALATE, DecisionType.APPROVE
    ]
    assert [d.actor_id for d in final.request.decisions] == ["human:mod", "human:supervisor"]


def test_defer_extends_expiry(resolver, pending, clock):
    result = resolver.resolve(pending.id, "defer", "human:mod", reason="Which sources?")
    assert result.success
    assert result.request.is_pending
    assert result.request.expires_at == pending.expires_at + timedelta(seconds=600)

    # Past the original TTL but inside the extension
    clock.advance(1800 + 300)
    assert resolver.resolve(pending.id, "approve", "human:mod").success


def test_explicit_now_is_honored(resolver, pending):
    late = pending.expires_at + timedelta(seconds=1)
    result = resolver.resolve(pending.id, "approve", "a", now=late)
    assert isinstance(result.error, ExpiredError)


def test_unknown_decision_type_raises(resolver, pending):
    with pytest.raises(ValueError):
        resolver.resolve(pending.id, "maybe", "a")
