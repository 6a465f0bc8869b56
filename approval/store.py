"""
Approval Request Store
Owns the table of in-flight approval requests plus the append-only history.

Records are frozen snapshots; every write replaces the whole record under
that request's own lock, so readers never see a half-applied transition.
The table lock only guards the dict itself and is held for dictionary
operations, never while a transition function runs.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Callable, Iterable, Optional
from uuid import uuid4

from approval.audit import HistoryLog
from approval.config import APPROVAL_TTL_SECONDS
from approval.errors import ExpiredError, NotFoundError, StoreIntegrityError
from approval.models import (
    ApprovalContext,
    ApprovalRequest,
    ChatMode,
    PolicyRule,
    RequestStatus,
    utcnow,
)

logger = logging.getLogger("approval-gates.store")

Clock = Callable[[], datetime]
Transition = Callable[[ApprovalRequest, datetime], ApprovalRequest]


def new_approval_id() -> str:
    return f"approval_{uuid4().hex}"


class ApprovalRequestStore:

    def __init__(
        self,
        ttl_seconds: int = APPROVAL_TTL_SECONDS,
        clock: Clock = utcnow,
        history: HistoryLog | None = None,
    ):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self.ttl = timedelta(seconds=ttl_seconds)
        self.clock = clock
        self.history_log = history if history is not None else HistoryLog()
        self._pending: dict[str, ApprovalRequest] = {}
        self._id_locks: dict[str, threading.Lock] = {}
        self._table_lock = threading.Lock()

    # -- writes ------------------------------------------------------------

    def create(
        self,
        context: ApprovalContext,
        triggered_rules: Iterable[PolicyRule],
        now: Optional[datetime] = None,
    ) -> ApprovalRequest:
        created_at = now or self.clock()
        request = ApprovalRequest(
            id=new_approval_id(),
            context=context,
            triggered_rules=tuple(triggered_rules),
            status=RequestStatus.PENDING,
            created_at=created_at,
            expires_at=created_at + self.ttl,
        )
        with self._table_lock:
            if request.id in self._pending or request.id in self.history_log:
                raise StoreIntegrityError(f"Approval id collision: {request.id}")
            self._pending[request.id] = request
            self._id_locks[request.id] = threading.Lock()

        logger.info(
            "Approval request created: %s (session=%s, rules=%s, expires=%s)",
            request.id,
            context.session_id,
            [r.id for r in request.triggered_rules],
            request.expires_at.isoformat(),
        )
        return request

    def transition(
        self,
        approval_id: str,
        apply: Transition,
        now: Optional[datetime] = None,
    ) -> ApprovalRequest:
        """Apply ``apply`` to a pending request while holding its lock.

        Raises NotFoundError when the id is unknown or already resolved, and
        ExpiredError when the request has expired, recording the expiry first
        if the TTL passed just now.
        """
        now = now or self.clock()
        with self._table_lock:
            lock = self._id_locks.get(approval_id)
        if lock is None:
            raise self._gone(approval_id)

        with lock:
            with self._table_lock:
                current = self._pending.get(approval_id)
            if current is None:
                # Lost a race with another writer for this id
                raise self._gone(approval_id)

            if current.is_expired_at(now):
                self._archive(_expire(current, now))
                logger.info("Approval request expired on resolve: %s", approval_id)
                raise ExpiredError(approval_id)

            updated = apply(current, now)
            if updated.id != current.id:
                raise StoreIntegrityError(
                    f"Transition changed request id {current.id} -> {updated.id}"
                )
            if updated.status.is_terminal:
                self._archive(updated)
            else:
                with self._table_lock:
                    self._pending[approval_id] = updated
        return updated

    def expire(self, approval_id: str, now: Optional[datetime] = None) -> ApprovalRequest:
        """Expire one pending request immediately, regardless of its TTL."""
        request = self.transition(approval_id, _expire, now=now)
        logger.info("Approval request expired early: %s", approval_id)
        return request

    def sweep(self, now: Optional[datetime] = None) -> list[ApprovalRequest]:
        """Expire every pending request with ``expires_at <= now``."""
        now = now or self.clock()
        with self._table_lock:
            candidates = [
                (approval_id, self._id_locks[approval_id])
                for approval_id, request in self._pending.items()
                if request.expires_at <= now
            ]

        expired = []
        for approval_id, lock in candidates:
            with lock:
                with self._table_lock:
                    current = self._pending.get(approval_id)
                # Resolved or deferred since the snapshot was taken
                if current is None or current.expires_at > now:
                    continue
                request = _expire(current, now)
                self._archive(request)
                expired.append(request)

        if expired:
            logger.info(
                "Sweep expired %d approval request(s): %s",
                len(expired), [r.id for r in expired],
            )
        else:
            logger.debug("Sweep found nothing to expire")
        return expired

    def _gone(self, approval_id: str) -> Exception:
        archived = self.history_log.get(approval_id)
        if archived is not None and archived.status is RequestStatus.EXPIRED:
            return ExpiredError(approval_id)
        return NotFoundError(approval_id)

    def _archive(self, request: ApprovalRequest) -> None:
        """Move a terminal request from the pending table into history."""
        with self._table_lock:
            if request.id not in self._pending:
                raise StoreIntegrityError(
                    f"Cannot archive {request.id}: not in the pending table"
                )
            self.history_log.append(request)
            del self._pending[request.id]
            self._id_locks.pop(request.id, None)

    # -- reads -------------------------------------------------------------

    def get(self, approval_id: str) -> Optional[ApprovalRequest]:
        with self._table_lock:
            request = self._pending.get(approval_id)
        if request is not None:
            return request
        return self.history_log.get(approval_id)

    def list_pending(
        self,
        session_id: Optional[str] = None,
        user_id: Optional[str] = None,
        mode: ChatMode | str | None = None,
    ) -> list[ApprovalRequest]:
        """Pending requests matching every given filter, newest first."""
        mode = ChatMode(mode) if mode is not None else None
        with self._table_lock:
            snapshot = list(self._pending.values())
        selected = [
            r for r in snapshot
            if (session_id is None or r.context.session_id == session_id)
            and (user_id is None or r.context.user_id == user_id)
            and (mode is None or r.context.mode is mode)
        ]
        selected.sort(key=lambda r: r.created_at, reverse=True)
        return selected

    def history(
        self,
        limit: Optional[int] = None,
        session_id: Optional[str] = None,
    ) -> list[ApprovalRequest]:
        where = None
        if session_id is not None:
            where = lambda r: r.context.session_id == session_id  # noqa: E731
        return self.history_log.requests(limit=limit, where=where)

    @property
    def pending_count(self) -> int:
        with self._table_lock:
            return len(self._pending)

    @property
    def history_count(self) -> int:
        return len(self.history_log)


def _expire(request: ApprovalRequest, now: datetime) -> ApprovalRequest:
    return replace(request, status=RequestStatus.EXPIRED, resolved_at=now)
