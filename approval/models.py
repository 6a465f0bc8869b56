"""
Approval Gate Domain Types

Immutable snapshots flow through the engine: a context is never mutated
after it is built, and an approval request is replaced wholesale on every
transition, so a reader holding a reference always sees a complete record.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Mapping, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def frozen_mapping(value: Mapping[str, Any]) -> Mapping[str, Any]:
    """Read-only deep copy, detached from anything the caller still holds."""
    return MappingProxyType(copy.deepcopy(dict(value)))


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class ChatMode(str, Enum):
    FORMAL = "formal"
    CASUAL = "casual"
    NONE = "none"


MODE_ALL = "all"
RULE_MODES = frozenset({ChatMode.FORMAL.value, ChatMode.CASUAL.value, MODE_ALL})


class RuleAction(str, Enum):
    AUTO_APPROVE = "auto_approve"
    PROCEED = "proceed"
    REQUIRE_APPROVAL = "require_approval"
    REJECT = "reject"


class Verdict(str, Enum):
    PROCEED = "proceed"
    REQUIRE_APPROVAL = "require_approval"
    REJECT = "reject"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _RISK_RANK[self]


_RISK_RANK = {
    RiskLevel.LOW: 0,
    RiskLevel.MEDIUM: 1,
    RiskLevel.HIGH: 2,
    RiskLevel.CRITICAL: 3,
}


class RequestStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self is not RequestStatus.PENDING


class DecisionType(str, Enum):
    APPROVE = "approve"
    DENY = "deny"
    ESCALATE = "escalate"
    DEFER = "defer"


# ---------------------------------------------------------------------------
# Context
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ToolCall:
    name: str
    args: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "args", frozen_mapping(self.args))


@dataclass(frozen=True)
class WorkflowState:
    """Snapshot from the external academic workflow tracker."""
    type: str
    current_phase: int
    is_active: bool = True
    artifacts: tuple[str, ...] = ()


@dataclass(frozen=True)
class PersonaRef:
    """Opaque persona handle; the engine only reads it for display."""
    id: str
    name: Optional[str] = None


@dataclass(frozen=True)
class RiskAssessment:
    content_risk_level: RiskLevel
    academic_integrity_risk: float = 0.0  # 0.0 - 1.0
    privacy_risk: float = 0.0             # 0.0 - 1.0
    operational_risk: float = 0.0         # 0.0 - 1.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "content_risk_level": self.content_risk_level.value,
            "academic_integrity_risk": self.academic_integrity_risk,
            "privacy_risk": self.privacy_risk,
            "operational_risk": self.operational_risk,
        }


@dataclass(frozen=True)
class ApprovalContext:
    """
    Everything the engine knows about one user-initiated action.

    ``metadata`` is routed untouched into rule conditions; the engine never
    interprets its shape.
    """
    session_id: str
    message_content: str = ""
    user_id: Optional[str] = None
    mode: ChatMode = ChatMode.NONE
    persona: Optional[PersonaRef] = None
    tool_calls: tuple[ToolCall, ...] = ()
    workflow_phase: Optional[int] = None
    workflow_state: Optional[WorkflowState] = None
    is_first_message: bool = False
    metadata: Mapping[str, Any] = field(default_factory=dict)
    risk_assessment: Optional[RiskAssessment] = None

    def __post_init__(self) -> None:
        # Normalise loosely-typed input so the snapshot is genuinely immutable
        object.__setattr__(self, "mode", ChatMode(self.mode or ChatMode.NONE))
        object.__setattr__(self, "tool_calls", tuple(
            tc if isinstance(tc, ToolCall) else ToolCall(**tc)
            for tc in self.tool_calls
        ))
        object.__setattr__(self, "metadata", frozen_mapping(self.metadata))

    @property
    def text(self) -> str:
        return self.message_content.lower()

    @property
    def tool_names(self) -> tuple[str, ...]:
        return tuple(tc.name for tc in self.tool_calls)

    def has_tool(self, *names: str) -> bool:
        return any(name in names for name in self.tool_names)

    @property
    def workflow_active(self) -> bool:
        if self.workflow_state is not None:
            return self.workflow_state.is_active
        return self.workflow_phase is not None

    @property
    def effective_phase(self) -> Optional[int]:
        if self.workflow_phase is not None:
            return self.workflow_phase
        if self.workflow_state is not None:
            return self.workflow_state.current_phase
        return None

    def with_risk(self, assessment: RiskAssessment) -> ApprovalContext:
        return replace(self, risk_assessment=assessment)

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "user_id": self.user_id,
            "mode": self.mode.value,
            "persona": (
                {"id": self.persona.id, "name": self.persona.name}
                if self.persona else None
            ),
            "message_content": self.message_content,
            "tool_calls": [
                {"name": tc.name, "args": dict(tc.args)} for tc in self.tool_calls
            ],
            "workflow_phase": self.workflow_phase,
            "workflow_state": (
                {
                    "type": self.workflow_state.type,
                    "current_phase": self.workflow_state.current_phase,
                    "is_active": self.workflow_state.is_active,
                    "artifacts": list(self.workflow_state.artifacts),
                }
                if self.workflow_state else None
            ),
            "is_first_message": self.is_first_message,
            "metadata": dict(self.metadata),
            "risk_assessment": (
                self.risk_assessment.to_dict() if self.risk_assessment else None
            ),
        }


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PolicyRule:
    id: str
    name: str
    description: str
    condition: Callable[[ApprovalContext], bool]
    action: RuleAction
    applicable_modes: frozenset[str]
    priority: int  # higher wins

    def __post_init__(self) -> None:
        object.__setattr__(self, "action", RuleAction(self.action))
        modes = frozenset(
            m.value if isinstance(m, ChatMode) else str(m)
            for m in self.applicable_modes
        )
        unknown = modes - RULE_MODES
        if unknown or not modes:
            raise ValueError(
                f"Rule '{self.id}' has invalid applicable modes: {sorted(unknown) or 'empty'}"
            )
        object.__setattr__(self, "applicable_modes", modes)

    def applies_to(self, mode: ChatMode) -> bool:
        if MODE_ALL in self.applicable_modes:
            return True
        # An unset mode falls back to the stricter formal rule set
        if mode is ChatMode.NONE:
            return ChatMode.FORMAL.value in self.applicable_modes
        return mode.value in self.applicable_modes

    def summary(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "action": self.action.value,
            "applicable_modes": sorted(self.applicable_modes),
            "priority": self.priority,
        }


# ---------------------------------------------------------------------------
# Approval requests
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DecisionRecord:
    decision: DecisionType
    actor_id: str
    decided_at: datetime
    reason: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "decision": self.decision.value,
            "actor_id": self.actor_id,
            "reason": self.reason,
            "decided_at": self.decided_at.isoformat(),
        }


@dataclass(frozen=True)
class ApprovalRequest:
    id: str
    context: ApprovalContext
    triggered_rules: tuple[PolicyRule, ...]  # descending priority
    status: RequestStatus
    created_at: datetime
    expires_at: datetime
    approved_by: Optional[str] = None
    rejection_reason: Optional[str] = None
    resolved_at: Optional[datetime] = None
    escalation_level: int = 0
    decisions: tuple[DecisionRecord, ...] = ()

    def __post_init__(self) -> None:
        if self.expires_at <= self.created_at:
            raise ValueError(
                f"Approval request '{self.id}' must expire after it is created"
            )

    @property
    def is_pending(self) -> bool:
        return self.status is RequestStatus.PENDING

    def is_expired_at(self, now: datetime) -> bool:
        return now > self.expires_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "status": self.status.value,
            "context": self.context.to_dict(),
            "triggered_rules": [r.summary() for r in self.triggered_rules],
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "approved_by": self.approved_by,
            "rejection_reason": self.rejection_reason,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "escalation_level": self.escalation_level,
            "decisions": [d.to_dict() for d in self.decisions],
        }


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

@dataclass
class EvaluationResult:
    verdict: Verdict
    triggered_rules: tuple[PolicyRule, ...] = ()
    approval_id: Optional[str] = None
    risk_assessment: Optional[RiskAssessment] = None
    reason: str = ""
    notification: Any = None  # approval.notifications.Notification

    @property
    def winning_rule(self) -> Optional[PolicyRule]:
        return self.triggered_rules[0] if self.triggered_rules else None

    @property
    def needs_approval(self) -> bool:
        return self.verdict is Verdict.REQUIRE_APPROVAL


@dataclass
class ResolutionResult:
    success: bool
    message: str
    request: Optional[ApprovalRequest] = None
    error: Optional[Exception] = None
