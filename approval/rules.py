"""
Rule Registry
Ordered, mutable set of approval policy rules.

Formal (academic) sessions carry the stricter rules, casual sessions a single
sensitive-content check, and a small universal set applies to every mode.
Only the single highest-priority matching rule decides a verdict, so rule
authors express precedence through ``priority`` alone.
"""

from __future__ import annotations

import fnmatch
import logging
import threading
from functools import partial
from typing import Iterable, Optional

from pydantic import BaseModel, Field

from approval.config import APPROVAL_LARGE_CONTENT_CHARS, CITATION_PHASE
from approval.errors import DuplicateRuleError
from approval.models import (
    MODE_ALL,
    ApprovalContext,
    ChatMode,
    PolicyRule,
    RuleAction,
)

logger = logging.getLogger("approval-gates.rules")

# ---------------------------------------------------------------------------
# Vocabulary
# ---------------------------------------------------------------------------

CASUAL_SENSITIVE_KEYWORDS = ("private", "confidential", "password", "secret")

FILE_TOOLS = ("file_handler", "document_processor")

LONG_FORM_TARGETS = ("page", "chapter", "document")

WORKFLOW_BYPASS_PHRASES = ("bypass", "skip to final", "finish quickly")

MODE_SWITCH_PHRASES = ("switch mode", "change persona")


# ---------------------------------------------------------------------------
# Built-in conditions
# ---------------------------------------------------------------------------

def _is_formal(ctx: ApprovalContext) -> bool:
    return ctx.mode is ChatMode.FORMAL


def _check_external_research(ctx: ApprovalContext) -> bool:
    """Web searches in formal mode need source-quality review."""
    return _is_formal(ctx) and ctx.has_tool("web_search")


def _check_citation_modification(ctx: ApprovalContext) -> bool:
    phase = ctx.effective_phase
    return (
        _is_formal(ctx)
        and ctx.has_tool("cite_manager")
        and phase is not None
        and phase >= CITATION_PHASE
    )


def _check_phase_skip(ctx: ApprovalContext) -> bool:
    text = ctx.text
    return (
        _is_formal(ctx)
        and ctx.effective_phase is not None
        and "skip" in text
        and ("phase" in text or "step" in text)
    )


def _check_casual_sensitive(ctx: ApprovalContext) -> bool:
    text = ctx.text
    return (
        ctx.mode is ChatMode.CASUAL
        and any(keyword in text for keyword in CASUAL_SENSITIVE_KEYWORDS)
    )


def _check_file_operations(ctx: ApprovalContext) -> bool:
    return ctx.has_tool(*FILE_TOOLS)


def _check_large_content(ctx: ApprovalContext, limit: int) -> bool:
    text = ctx.text
    if len(ctx.message_content) > limit:
        return True
    return "write" in text and any(target in text for target in LONG_FORM_TARGETS)


def _check_mode_switch(ctx: ApprovalContext) -> bool:
    text = ctx.text
    return any(phrase in text for phrase in MODE_SWITCH_PHRASES)


def _check_workflow_bypass(ctx: ApprovalContext) -> bool:
    text = ctx.text
    return (
        _is_formal(ctx)
        and ctx.effective_phase is not None
        and any(phrase in text for phrase in WORKFLOW_BYPASS_PHRASES)
    )


# ---------------------------------------------------------------------------
# Default rule sets
# ---------------------------------------------------------------------------

def default_rules(large_content_chars: int = APPROVAL_LARGE_CONTENT_CHARS) -> list[PolicyRule]:
    """Mode-aware defaults: strict formal rules, light casual rules, universal rules."""
    return [
        # Formal academic mode
        PolicyRule(
            id="formal-external-research",
            name="External Research Approval",
            description=(
                "Require approval for web searches in formal academic mode "
                "to ensure source quality"
            ),
            condition=_check_external_research,
            action=RuleAction.REQUIRE_APPROVAL,
            applicable_modes=frozenset({ChatMode.FORMAL.value}),
            priority=100,
        ),
        PolicyRule(
            id="formal-citation-modification",
            name="Citation Modification Approval",
            description=(
                "Require approval when modifying citations in formal "
                "academic writing"
            ),
            condition=_check_citation_modification,
            action=RuleAction.REQUIRE_APPROVAL,
            applicable_modes=frozenset({ChatMode.FORMAL.value}),
            priority=90,
        ),
        PolicyRule(
            id="formal-workflow-phase-skip",
            name="Workflow Phase Skip Prevention",
            description="Prevent skipping critical workflow phases in academic writing",
            condition=_check_phase_skip,
            action=RuleAction.REQUIRE_APPROVAL,
            applicable_modes=frozenset({ChatMode.FORMAL.value}),
            priority=95,
        ),
        # Casual mode
        PolicyRule(
            id="casual-sensitive-content",
            name="Sensitive Content Check",
            description="Basic content filtering for casual conversations",
            condition=_check_casual_sensitive,
            action=RuleAction.REQUIRE_APPROVAL,
            applicable_modes=frozenset({ChatMode.CASUAL.value}),
            priority=50,
        ),
        # Universal
        PolicyRule(
            id="universal-file-operations",
            name="File Operations Approval",
            description="Require approval for file system operations regardless of mode",
            condition=_check_file_operations,
            action=RuleAction.REQUIRE_APPROVAL,
            applicable_modes=frozenset({MODE_ALL}),
            priority=80,
        ),
        PolicyRule(
            id="universal-large-content",
            name="Large Content Generation",
            description="Require approval for very long content generation",
            condition=partial(_check_large_content, limit=large_content_chars),
            action=RuleAction.REQUIRE_APPROVAL,
            applicable_modes=frozenset({MODE_ALL}),
            priority=60,
        ),
    ]


def persona_rules() -> list[PolicyRule]:
    """Persona-aware additions registered on top of the defaults."""
    return [
        PolicyRule(
            id="persona-mode-switch",
            name="Persona Mode Switch Approval",
            description=(
                "Require approval when switching between formal and casual "
                "modes mid-session"
            ),
            condition=_check_mode_switch,
            action=RuleAction.REQUIRE_APPROVAL,
            applicable_modes=frozenset({MODE_ALL}),
            priority=75,
        ),
        PolicyRule(
            id="workflow-bypass-attempt",
            name="Workflow Bypass Prevention",
            description=(
                "Prevent attempts to bypass workflow phases in formal "
                "academic mode"
            ),
            condition=_check_workflow_bypass,
            action=RuleAction.REQUIRE_APPROVAL,
            applicable_modes=frozenset({ChatMode.FORMAL.value}),
            priority=85,
        ),
    ]


# ---------------------------------------------------------------------------
# Declarative rules (administrative surface)
# ---------------------------------------------------------------------------

class RuleSpec(BaseModel):
    """A rule expressed as data so it can be added at runtime over the API."""
    id: str
    name: str
    description: str = ""
    action: RuleAction = RuleAction.REQUIRE_APPROVAL
    modes: list[str] = Field(default_factory=lambda: [MODE_ALL])
    priority: int = 0
    tool_patterns: list[str] = Field(
        default_factory=list, description="Tool name patterns (supports wildcards)"
    )
    keywords: list[str] = Field(
        default_factory=list, description="Case-insensitive message substrings"
    )
    min_workflow_phase: Optional[int] = None
    max_content_chars: Optional[int] = Field(
        default=None, description="Match when the message is longer than this"
    )

    def has_criteria(self) -> bool:
        return bool(
            self.tool_patterns
            or self.keywords
            or self.min_workflow_phase is not None
            or self.max_content_chars is not None
        )


def compile_rule(spec: RuleSpec) -> PolicyRule:
    """Turn a RuleSpec into a PolicyRule whose condition ANDs every given criterion."""
    patterns = tuple(spec.tool_patterns)
    keywords = tuple(k.lower() for k in spec.keywords)
    min_phase = spec.min_workflow_phase
    max_chars = spec.max_content_chars
    has_criteria = spec.has_criteria()

    def condition(ctx: ApprovalContext) -> bool:
        if not has_criteria:
            return False
        if patterns and not any(
            fnmatch.fnmatch(name, pattern)
            for name in ctx.tool_names
            for pattern in patterns
        ):
            return False
        if keywords and not any(k in ctx.text for k in keywords):
            return False
        if min_phase is not None:
            phase = ctx.effective_phase
            if phase is None or phase < min_phase:
                return False
        if max_chars is not None and len(ctx.message_content) <= max_chars:
            return False
        return True

    return PolicyRule(
        id=spec.id,
        name=spec.name,
        description=spec.description,
        condition=condition,
        action=spec.action,
        applicable_modes=frozenset(spec.modes),
        priority=spec.priority,
    )


# ---------------------------------------------------------------------------
# RuleRegistry
# ---------------------------------------------------------------------------

class RuleRegistry:
    """
    Insertion-ordered rule set.

    Insertion order is part of the contract: the evaluator breaks priority
    ties in favour of the rule registered first.
    """

    def __init__(self, rules: Iterable[PolicyRule] | None = None):
        self._rules: list[PolicyRule] = []
        self._lock = threading.Lock()
        for rule in rules or ():
            self.add(rule)

    def add(self, rule: PolicyRule) -> None:
        with self._lock:
            if any(r.id == rule.id for r in self._rules):
                raise DuplicateRuleError(rule.id)
            self._rules.append(rule)
        logger.info("Rule added: %s (priority=%d)", rule.id, rule.priority)

    def remove(self, rule_id: str) -> bool:
        with self._lock:
            for index, rule in enumerate(self._rules):
                if rule.id == rule_id:
                    del self._rules[index]
                    break
            else:
                return False
        logger.info("Rule removed: %s", rule_id)
        return True

    def get(self, rule_id: str) -> Optional[PolicyRule]:
        with self._lock:
            return next((r for r in self._rules if r.id == rule_id), None)

    def rules(self) -> list[PolicyRule]:
        with self._lock:
            return list(self._rules)

    def applicable_rules(self, mode: ChatMode) -> list[PolicyRule]:
        mode = ChatMode(mode or ChatMode.NONE)
        with self._lock:
            snapshot = list(self._rules)
        return [rule for rule in snapshot if rule.applies_to(mode)]

    def counts_by_mode(self) -> dict[str, int]:
        snapshot = self.rules()
        return {
            "formal": sum(1 for r in snapshot if r.applies_to(ChatMode.FORMAL)),
            "casual": sum(1 for r in snapshot if r.applies_to(ChatMode.CASUAL)),
            "universal": sum(1 for r in snapshot if MODE_ALL in r.applicable_modes),
        }

    def __len__(self) -> int:
        with self._lock:
            return len(self._rules)

    def __contains__(self, rule_id: object) -> bool:
        return self.get(str(rule_id)) is not None


def build_default_registry(
    include_persona_rules: bool = True,
    large_content_chars: int = APPROVAL_LARGE_CONTENT_CHARS,
) -> RuleRegistry:
    rules = default_rules(large_content_chars)
    if include_persona_rules:
        rules.extend(persona_rules())
    return RuleRegistry(rules)
