"""
Decision Resolver
Applies an approver's decision to a pending approval request.

approve and deny are terminal and move the request into history. escalate
and defer keep it pending: escalate bumps the escalation level so the next
approver tier is pulled in, defer pushes the expiry out. Every decision is
appended to the request's decision log.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Optional

from approval.config import APPROVAL_DEFER_EXTENSION_SECONDS
from approval.errors import ExpiredError, NotFoundError
from approval.models import (
    ApprovalRequest,
    DecisionRecord,
    DecisionType,
    RequestStatus,
    ResolutionResult,
)
from approval.store import ApprovalRequestStore

logger = logging.getLogger("approval-gates.resolver")


def apply_decision(
    request: ApprovalRequest,
    decision: DecisionType,
    actor_id: str,
    reason: Optional[str],
    now: datetime,
    defer_extension: timedelta,
) -> ApprovalRequest:
    """Return the next snapshot of ``request``. Pure; the store handles locking."""
    decisions = request.decisions + (
        DecisionRecord(decision=decision, actor_id=actor_id, decided_at=now, reason=reason),
    )
    if decision is DecisionType.APPROVE:
        return replace(
            request,
            status=RequestStatus.APPROVED,
            approved_by=actor_id,
            resolved_at=now,
            decisions=decisions,
        )
    if decision is DecisionType.DENY:
        return replace(
            request,
            status=RequestStatus.REJECTED,
            approved_by=actor_id,
            rejection_reason=reason,
            resolved_at=now,
            decisions=decisions,
        )
    if decision is DecisionType.ESCALATE:
        return replace(
            request,
            escalation_level=request.escalation_level + 1,
            decisions=decisions,
        )
    if decision is DecisionType.DEFER:
        return replace(
            request,
            expires_at=request.expires_at + defer_extension,
            decisions=decisions,
        )
    raise ValueError(f"Unknown decision: {decision!r}")


class DecisionResolver:

    def __init__(
        self,
        store: ApprovalRequestStore,
        defer_extension_seconds: int = APPROVAL_DEFER_EXTENSION_SECONDS,
    ):
        self.store = store
        self.defer_extension = timedelta(seconds=defer_extension_seconds)

    def resolve(
        self,
        approval_id: str,
        decision: DecisionType | str,
        actor_id: str,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ResolutionResult:
        """Apply a decision.

        Unknown, already-terminal and expired ids come back as a failed
        ResolutionResult carrying the domain error. Anything else raised
        here is a fault and propagates.
        """
        decision = DecisionType(decision)

        def transition(request: ApprovalRequest, at: datetime) -> ApprovalRequest:
            return apply_decision(
                request, decision, actor_id, reason, at, self.defer_extension
            )

        try:
            request = self.store.transition(approval_id, transition, now=now)
        except NotFoundError as exc:
            logger.info("Resolve %s on %s: not found", decision.value, approval_id)
            return ResolutionResult(
                success=False,
                message="Approval request not found or already resolved",
                error=exc,
            )
        except ExpiredError as exc:
            logger.info("Resolve %s on %s: expired", decision.value, approval_id)
            return ResolutionResult(
                success=False,
                message="Approval request has expired",
                request=self.store.get(approval_id),
                error=exc,
            )
        except Exception:
            logger.exception("Resolve %s on %s failed", decision.value, approval_id)
            raise

        logger.info(
            "Approval %s by %s on %s (status=%s): %s",
            decision.value, actor_id, approval_id, request.status.value,
            reason or "No reason provided",
        )
        return ResolutionResult(
            success=True,
            message=f"Approval {decision.value} successfully processed",
            request=request,
        )
