"""
History Log Test Suite
Append-only semantics and hash-chain verification.

Usage:  pytest tests/test_audit.py
"""

from __future__ import annotations

from dataclasses import replace
from datetime import timedelta

import pytest

from approval.audit import GENESIS_HASH, HistoryLog
from approval.errors import StoreIntegrityError
from approval.models import ApprovalRequest, RequestStatus


@pytest.fixture
def make_request(clock, make_context):
    counter = iter(range(1000))

    def _make(status=RequestStatus.APPROVED, session_id="session-1"):
        n = next(counter)
        created = clock.now + timedelta(seconds=n)
        return ApprovalRequest(
            id=f"approval_{n}",
            context=make_context(session_id=session_id),
            triggered_rules=(),
            status=status,
            created_at=created,
            expires_at=created + timedelta(minutes=30),
            resolved_at=created if status is not RequestStatus.PENDING else None,
        )
    return _make


def test_empty_log_starts_at_genesis():
    log = HistoryLog()
    assert log.head_hash == GENESIS_HASH
    assert log.verify()
    assert len(log) == 0


def test_entries_are_chained(make_request):
    log = HistoryLog()
    first = log.append(make_request())
    second = log.append(make_request(RequestStatus.EXPIRED))
    assert first.previous_hash == GENESIS_HASH
    assert second.previous_hash == first.entry_hash
    assert log.head_hash == second.entry_hash
    assert [e.sequence for e in log.entries()] == [0, 1]
    assert log.verify()


def test_refuses_pending_and_duplicate_requests(make_request):
    log = HistoryLog()
    with pytest.raises(StoreIntegrityError):
        log.append(make_request(RequestStatus.PENDING))
    request = make_request()
    log.append(request)
    with pytest.raises(StoreIntegrityError):
        log.append(request)
    assert len(log) == 1


def test_tampering_breaks_verification(make_request):
    log = HistoryLog()
    for _ in range(3):
        log.append(make_request())
    assert log.verify()

    entry = log._entries[1]
    forged = replace(entry.request, approved_by="mallory")
    log._entries[1] = replace(entry, request=forged)
    assert not log.verify()


def test_requests_newest_first_with_filter(make_request):
    log = HistoryLog()
    a = make_request(session_id="a")
    b = make_request(session_id="b")
    c = make_request(session_id="a")
    for r in (a, b, c):
        log.append(r)
    assert log.requests() == [c, b, a]
    assert log.requests(limit=1) == [c]
    assert log.requests(where=lambda r: r.context.session_id == "a") == [c, a]
    assert log.get(b.id) is b
    assert log.get("approval_missing") is None
    assert b.id in log
