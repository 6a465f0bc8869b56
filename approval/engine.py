"""
Approval Gate Service
One explicitly constructed object that wires the registry, risk assessor,
evaluator, store, notification dispatcher, resolver and expiry sweeper.

Build one per process (or per test) and pass it to whoever needs it; there
is no module-level instance.
"""

from __future__ import annotations

import logging
from datetime import datetime
from functools import partial
from typing import Callable, Optional

from approval.config import GateConfig
from approval.errors import StoreIntegrityError
from approval.evaluator import PolicyEvaluator
from approval.models import (
    ApprovalContext,
    ApprovalRequest,
    ChatMode,
    DecisionType,
    EvaluationResult,
    PolicyRule,
    ResolutionResult,
    utcnow,
)
from approval.notifications import (
    Notification,
    NotificationDispatcher,
    bypass_options,
    pending_message,
)
from approval.risk import assess_risk
from approval.rules import RuleRegistry, RuleSpec, build_default_registry, compile_rule
from approval.store import ApprovalRequestStore
from approval.resolver import DecisionResolver
from approval.sweeper import ExpirySweeper

logger = logging.getLogger("approval-gates.engine")


class ApprovalGateService:

    def __init__(
        self,
        config: GateConfig | None = None,
        registry: RuleRegistry | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.config = config or GateConfig()
        self.clock = clock
        self.registry = registry if registry is not None else build_default_registry(
            include_persona_rules=self.config.include_persona_rules,
            large_content_chars=self.config.large_content_chars,
        )
        self.store = ApprovalRequestStore(
            ttl_seconds=self.config.ttl_seconds, clock=clock
        )
        self.evaluator = PolicyEvaluator(
            self.registry,
            self.store,
            assessor=partial(
                assess_risk, large_content_chars=self.config.large_content_chars
            ),
        )
        self.notifications = NotificationDispatcher(
            base_wait_seconds=self.config.base_wait_seconds,
            max_wait_seconds=self.config.max_wait_seconds,
            clock=clock,
        )
        self.resolver = DecisionResolver(
            self.store, defer_extension_seconds=self.config.defer_extension_seconds
        )
        self.sweeper = ExpirySweeper(
            self.sweep, interval_seconds=self.config.sweep_interval_seconds
        )
        logger.info(
            "Approval gate service ready (rules=%d, ttl=%ss, sweep=%ss)",
            len(self.registry),
            self.config.ttl_seconds,
            self.config.sweep_interval_seconds,
        )

    # -- lifecycle ---------------------------------------------------------

    async def start(self) -> None:
        await self.sweeper.start()

    async def stop(self) -> None:
        await self.sweeper.stop()

    # -- evaluation --------------------------------------------------------

    def evaluate(self, context: ApprovalContext) -> EvaluationResult:
        result = self.evaluator.evaluate(context)
        if result.approval_id is not None:
            request = self.store.get(result.approval_id)
            if request is None:
                raise StoreIntegrityError(
                    f"Approval {result.approval_id} vanished right after creation"
                )
            try:
                result.notification = self.notifications.build(request)
            except Exception:
                logger.exception(
                    "Notification build failed for %s; expiring the request", request.id
                )
                self.store.expire(request.id)
                raise
        return result

    def pending_message(self, approval_id: str) -> Optional[str]:
        """User-facing wait text for a pending request, or None once it is gone."""
        request = self.store.get(approval_id)
        notification = self.notifications.get(approval_id)
        if request is None or notification is None or not request.is_pending:
            return None
        return pending_message(
            request.context.mode,
            notification.estimated_wait_seconds,
            bypass_options(request.context),
        )

    # -- decisions ---------------------------------------------------------

    def resolve(
        self,
        approval_id: str,
        decision: DecisionType | str,
        actor_id: str,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ResolutionResult:
        decision = DecisionType(decision)
        result = self.resolver.resolve(approval_id, decision, actor_id, reason, now=now)
        if result.request is not None:
            self.notifications.sync(result.request)
        if result.success and decision is DecisionType.ESCALATE:
            self.notifications.escalate(approval_id)
        return result

    def sweep(self, now: Optional[datetime] = None) -> list[ApprovalRequest]:
        expired = self.store.sweep(now)
        for request in expired:
            self.notifications.sync(request)
        return expired

    # -- rule administration ----------------------------------------------

    def add_rule(self, rule: PolicyRule | RuleSpec) -> PolicyRule:
        if isinstance(rule, RuleSpec):
            rule = compile_rule(rule)
        self.registry.add(rule)
        return rule

    def remove_rule(self, rule_id: str) -> bool:
        return self.registry.remove(rule_id)

    def rules(self) -> list[PolicyRule]:
        return self.registry.rules()

    # -- queries -----------------------------------------------------------

    def get(self, approval_id: str) -> Optional[ApprovalRequest]:
        return self.store.get(approval_id)

    def list_pending(
        self,
        session_id: Optional[str] = None,
        user_id: Optional[str] = None,
        mode: ChatMode | str | None = None,
    ) -> list[ApprovalRequest]:
        return self.store.list_pending(session_id=session_id, user_id=user_id, mode=mode)

    def history(
        self,
        limit: Optional[int] = None,
        session_id: Optional[str] = None,
    ) -> list[ApprovalRequest]:
        if limit is None:
            limit = self.config.history_limit
        return self.store.history(limit=limit, session_id=session_id)

    def active_notifications(self, approver: Optional[str] = None) -> list[Notification]:
        return self.notifications.active(approver)

    def verify_history(self) -> bool:
        """Recompute the history chain; a broken chain is fatal."""
        if not self.store.history_log.verify():
            logger.error("Approval history chain failed verification")
            raise StoreIntegrityError("Approval history chain failed verification")
        return True

    def status(self) -> dict:
        return {
            "total_rules": len(self.registry),
            "pending_requests": self.store.pending_count,
            "history_size": self.store.history_count,
            "rules_by_mode": self.registry.counts_by_mode(),
            "history_head": self.store.history_log.head_hash,
            "history_intact": self.store.history_log.verify(),
            "sweeper_running": self.sweeper.is_running,
        }

    def stats(self) -> dict:
        return self.notifications.stats()
