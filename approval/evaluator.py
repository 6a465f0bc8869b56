"""
Policy Evaluator
Turns an ApprovalContext into a verdict.

The single highest-priority matching rule decides; ties go to the rule that
was registered first. When nothing matches the verdict is PROCEED. That
fail-open default covers "no rule matched" only: an exception raised while
evaluating is logged and propagated, never turned into a verdict.
"""

from __future__ import annotations

import logging
from typing import Callable

from approval.config import CITATION_PHASE
from approval.models import (
    ApprovalContext,
    ChatMode,
    EvaluationResult,
    PolicyRule,
    RiskAssessment,
    RiskLevel,
    RuleAction,
    Verdict,
)
from approval.risk import assess_risk
from approval.rules import RuleRegistry
from approval.store import ApprovalRequestStore

logger = logging.getLogger("approval-gates.evaluator")

Assessor = Callable[[ApprovalContext], RiskAssessment]

ACADEMIC_INTEGRITY_CONCERN = 0.5

_VERDICT_FOR_ACTION = {
    RuleAction.AUTO_APPROVE: Verdict.PROCEED,
    RuleAction.PROCEED: Verdict.PROCEED,
    RuleAction.REQUIRE_APPROVAL: Verdict.REQUIRE_APPROVAL,
    RuleAction.REJECT: Verdict.REJECT,
}


def rank_matches(matched: list[PolicyRule]) -> list[PolicyRule]:
    """Order matched rules by priority, highest first.

    ``sorted`` is stable, so rules with equal priority keep registry order.
    """
    return sorted(matched, key=lambda r: -r.priority)


def approval_reason(
    verdict: Verdict,
    context: ApprovalContext,
    triggered_rules: list[PolicyRule] | tuple[PolicyRule, ...],
) -> str:
    mode = context.mode.value
    if verdict is Verdict.PROCEED:
        return f"Request approved automatically - low risk profile for {mode} mode"
    if verdict is Verdict.REJECT:
        names = ", ".join(r.name for r in triggered_rules)
        return f"Request rejected due to policy violations: {names}"

    risk = context.risk_assessment
    reasons = []
    if risk and risk.content_risk_level is RiskLevel.CRITICAL:
        reasons.append("Critical content risk detected")
    if risk and risk.academic_integrity_risk > ACADEMIC_INTEGRITY_CONCERN:
        reasons.append("Academic integrity concerns")
    if context.mode is ChatMode.FORMAL and context.has_tool("web_search"):
        reasons.append("External research requires verification in formal academic mode")
    phase = context.effective_phase
    if context.workflow_active and phase is not None and phase >= CITATION_PHASE:
        reasons.append("Final workflow phases require additional oversight")

    if reasons:
        return f"Approval required: {', '.join(reasons)}"
    return f"Manual review required for {mode} mode request"


class PolicyEvaluator:

    def __init__(
        self,
        registry: RuleRegistry,
        store: ApprovalRequestStore,
        assessor: Assessor = assess_risk,
    ):
        self.registry = registry
        self.store = store
        self.assessor = assessor

    def evaluate(self, context: ApprovalContext) -> EvaluationResult:
        try:
            return self._evaluate(context)
        except Exception:
            logger.exception(
                "Policy evaluation failed (session=%s)", context.session_id
            )
            raise

    def _evaluate(self, context: ApprovalContext) -> EvaluationResult:
        # 1. Attach the risk profile unless the caller precomputed one
        if context.risk_assessment is None:
            context = context.with_risk(self.assessor(context))
        risk = context.risk_assessment

        # 2-3. Applicable rules whose condition holds
        matched = []
        for rule in self.registry.applicable_rules(context.mode):
            if rule.condition(context):
                logger.debug("Rule matched: %s (priority=%d)", rule.id, rule.priority)
                matched.append(rule)

        # 4. Highest priority first
        triggered = tuple(rank_matches(matched))

        # 5. Winner decides
        if not triggered:
            verdict = Verdict.PROCEED
        else:
            verdict = _VERDICT_FOR_ACTION[triggered[0].action]

        result = EvaluationResult(
            verdict=verdict,
            triggered_rules=triggered,
            risk_assessment=risk,
        )
        if verdict is Verdict.REQUIRE_APPROVAL:
            request = self.store.create(context, triggered)
            result.approval_id = request.id
        result.reason = approval_reason(verdict, context, triggered)

        logger.info(
            "Verdict %s for session=%s mode=%s risk=%s rules=%s",
            verdict.value,
            context.session_id,
            context.mode.value,
            risk.content_risk_level.value,
            [r.id for r in triggered],
        )
        return result
