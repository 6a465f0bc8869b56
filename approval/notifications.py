"""
Notification Dispatcher
Builds the human-facing notification for every new approval request and
keeps it in step with the request as approvers act on it.

Approver tiers are additive and risk-driven; the estimated wait scales with
risk, mode, and the number of tiers that must weigh in. Delivery (email,
dashboard, push) happens elsewhere: this module only produces payloads.
"""

from __future__ import annotations

import logging
import math
import threading
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from pydantic import BaseModel

from approval.config import APPROVAL_BASE_WAIT_SECONDS, APPROVAL_MAX_WAIT_SECONDS
from approval.models import (
    ApprovalContext,
    ApprovalRequest,
    ChatMode,
    DecisionType,
    RequestStatus,
    RiskLevel,
    utcnow,
)

logger = logging.getLogger("approval-gates.notifications")


# ---------------------------------------------------------------------------
# Types
# ---------------------------------------------------------------------------

class NotificationType(str, Enum):
    APPROVAL_REQUEST = "approval_request"
    APPROVAL_GRANTED = "approval_granted"
    APPROVAL_DENIED = "approval_denied"
    APPROVAL_EXPIRED = "approval_expired"


class NotificationPriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


PRIORITY_ORDER = [
    NotificationPriority.LOW,
    NotificationPriority.NORMAL,
    NotificationPriority.HIGH,
    NotificationPriority.URGENT,
]

_TYPE_FOR_STATUS = {
    RequestStatus.APPROVED: NotificationType.APPROVAL_GRANTED,
    RequestStatus.REJECTED: NotificationType.APPROVAL_DENIED,
    RequestStatus.EXPIRED: NotificationType.APPROVAL_EXPIRED,
}


class NotificationAction(BaseModel):
    id: str
    label: str
    action: DecisionType
    requires_reason: bool = False


class BypassOptions(BaseModel):
    supervisor_bypass: bool = False
    emergency_bypass: bool = False
    temporary_bypass: bool = False


class Notification(BaseModel):
    id: str
    approval_id: str
    type: NotificationType = NotificationType.APPROVAL_REQUEST
    title: str
    message: str
    priority: NotificationPriority
    approvers: list[str]
    session_id: str
    mode: ChatMode
    risk_level: RiskLevel
    created_at: datetime
    expires_at: datetime
    estimated_wait_seconds: float
    actions: list[NotificationAction]


# ---------------------------------------------------------------------------
# Approver tiers
# ---------------------------------------------------------------------------

SECURITY_OFFICER = "security_officer"
SYSTEM_ADMINISTRATOR = "system_administrator"
ACADEMIC_SUPERVISOR = "academic_supervisor"
ACADEMIC_ADVISOR = "academic_advisor"
SYSTEM_MODERATOR = "system_moderator"

# Lowest to highest authority; escalation walks up this list
APPROVER_LADDER = [
    SYSTEM_MODERATOR,
    ACADEMIC_ADVISOR,
    ACADEMIC_SUPERVISOR,
    SECURITY_OFFICER,
    SYSTEM_ADMINISTRATOR,
]

ACADEMIC_INTEGRITY_THRESHOLD = 0.5
EMERGENCY_BYPASS_MAX_OPERATIONAL_RISK = 0.3

RISK_WAIT_FACTOR = {
    RiskLevel.CRITICAL: 4.0,
    RiskLevel.HIGH: 2.0,
    RiskLevel.MEDIUM: 1.5,
    RiskLevel.LOW: 1.0,
}
FORMAL_WAIT_FACTOR = 1.3

_PRIORITY_FOR_RISK = {
    RiskLevel.CRITICAL: NotificationPriority.URGENT,
    RiskLevel.HIGH: NotificationPriority.HIGH,
    RiskLevel.MEDIUM: NotificationPriority.NORMAL,
    RiskLevel.LOW: NotificationPriority.LOW,
}


def _risk_level(context: ApprovalContext) -> RiskLevel:
    risk = context.risk_assessment
    return risk.content_risk_level if risk else RiskLevel.LOW


def notification_priority(level: RiskLevel) -> NotificationPriority:
    return _PRIORITY_FOR_RISK[level]


def required_approvers(context: ApprovalContext) -> list[str]:
    approvers = []
    risk = context.risk_assessment
    if risk and risk.content_risk_level is RiskLevel.CRITICAL:
        approvers += [SECURITY_OFFICER, SYSTEM_ADMINISTRATOR]
    if risk and risk.academic_integrity_risk > ACADEMIC_INTEGRITY_THRESHOLD:
        approvers.append(ACADEMIC_SUPERVISOR)
    if context.mode is ChatMode.FORMAL and context.workflow_active:
        approvers.append(ACADEMIC_ADVISOR)
    return approvers or [SYSTEM_MODERATOR]


def next_approver(approvers: list[str]) -> Optional[str]:
    """First ladder tier above the most senior tier already assigned."""
    ranks = [APPROVER_LADDER.index(a) for a in approvers if a in APPROVER_LADDER]
    start = max(ranks) + 1 if ranks else 0
    for tier in APPROVER_LADDER[start:]:
        if tier not in approvers:
            return tier
    return None


def estimate_wait_seconds(
    context: ApprovalContext,
    approver_count: int,
    base_seconds: float = APPROVAL_BASE_WAIT_SECONDS,
    max_seconds: float = APPROVAL_MAX_WAIT_SECONDS,
) -> float:
    wait = base_seconds * RISK_WAIT_FACTOR[_risk_level(context)]
    if context.mode is ChatMode.FORMAL:
        wait *= FORMAL_WAIT_FACTOR
    wait *= max(approver_count, 1)
    return min(wait, max_seconds)


def bypass_options(context: ApprovalContext) -> BypassOptions:
    risk = context.risk_assessment
    return BypassOptions(
        supervisor_bypass=context.mode is ChatMode.FORMAL,
        emergency_bypass=(
            risk is not None
            and risk.operational_risk < EMERGENCY_BYPASS_MAX_OPERATIONAL_RISK
        ),
        temporary_bypass=context.mode is ChatMode.CASUAL,
    )


def available_actions(
    context: ApprovalContext,
    bypass: BypassOptions,
) -> list[NotificationAction]:
    actions = [
        NotificationAction(
            id="approve", label="Approve Request",
            action=DecisionType.APPROVE, requires_reason=False,
        ),
        NotificationAction(
            id="deny", label="Deny Request",
            action=DecisionType.DENY, requires_reason=True,
        ),
    ]
    if bypass.supervisor_bypass:
        actions.append(NotificationAction(
            id="escalate", label="Escalate to Supervisor",
            action=DecisionType.ESCALATE, requires_reason=False,
        ))
    if _risk_level(context) is not RiskLevel.CRITICAL:
        actions.append(NotificationAction(
            id="defer", label="Request More Information",
            action=DecisionType.DEFER, requires_reason=True,
        ))
    return actions


# ---------------------------------------------------------------------------
# User-facing text
# ---------------------------------------------------------------------------

PENDING_MESSAGES = {
    ChatMode.FORMAL: (
        "Permintaan Anda memerlukan persetujuan sebelum diproses. "
        "Mohon menunggu konfirmasi dari supervisor."
    ),
    ChatMode.CASUAL: (
        "Permintaan lo butuh approval dulu nih. "
        "Tunggu sebentar ya, lagi diproses sama yang berwenang."
    ),
}


def pending_message(
    mode: ChatMode,
    estimated_wait_seconds: float,
    bypass: BypassOptions,
) -> str:
    """Wait-state text shown to the end user while a request is held."""
    casual = mode is ChatMode.CASUAL
    parts = [PENDING_MESSAGES.get(mode, PENDING_MESSAGES[ChatMode.FORMAL])]

    if estimated_wait_seconds > 60:
        minutes = math.ceil(estimated_wait_seconds / 60)
        parts.append(
            f"Estimasi waktu tunggu: {minutes} menit."
            if casual else f"Estimated waiting time: {minutes} minutes."
        )
    if bypass.supervisor_bypass:
        parts.append(
            "Alternatif: bisa minta bypass sama supervisor kalo urgent."
            if casual else "Alternative: supervisor bypass available for urgent requests."
        )
    return " ".join(parts)


def notification_title(context: ApprovalContext) -> str:
    label = "Casual" if context.mode is ChatMode.CASUAL else "Academic"
    persona = context.persona.name if context.persona and context.persona.name else "Unknown Persona"
    return f"{label} Mode Approval Required - {persona}"


def notification_message(request: ApprovalRequest) -> str:
    context = request.context
    persona = context.persona.name if context.persona and context.persona.name else "Unknown"
    lines = [
        f"A {context.mode.value} mode request requires approval.",
        f"Persona: {persona}",
        f"Risk Level: {_risk_level(context).value}",
        f"Session: {context.session_id}",
    ]
    if request.triggered_rules:
        lines.append(
            "Triggered Rules: " + ", ".join(r.name for r in request.triggered_rules)
        )
    if context.tool_calls:
        lines.append("Tools Requested: " + ", ".join(context.tool_names))
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# NotificationDispatcher
# ---------------------------------------------------------------------------

class NotificationDispatcher:
    """One notification per approval request, updated in place as it resolves."""

    def __init__(
        self,
        base_wait_seconds: float = APPROVAL_BASE_WAIT_SECONDS,
        max_wait_seconds: float = APPROVAL_MAX_WAIT_SECONDS,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.base_wait_seconds = base_wait_seconds
        self.max_wait_seconds = max_wait_seconds
        self.clock = clock
        self._notifications: dict[str, Notification] = {}
        self._lock = threading.Lock()

    def build(self, request: ApprovalRequest) -> Notification:
        context = request.context
        approvers = required_approvers(context)
        bypass = bypass_options(context)
        notification = Notification(
            id=f"notification_{request.id}",
            approval_id=request.id,
            title=notification_title(context),
            message=notification_message(request),
            priority=notification_priority(_risk_level(context)),
            approvers=approvers,
            session_id=context.session_id,
            mode=context.mode,
            risk_level=_risk_level(context),
            created_at=request.created_at,
            expires_at=request.expires_at,
            estimated_wait_seconds=estimate_wait_seconds(
                context, len(approvers), self.base_wait_seconds, self.max_wait_seconds
            ),
            actions=available_actions(context, bypass),
        )
        with self._lock:
            self._notifications[request.id] = notification
        logger.info(
            "Notification created: %s (priority=%s, approvers=%s)",
            notification.id, notification.priority.value, approvers,
        )
        return notification

    def _update(self, approval_id: str, **changes) -> Optional[Notification]:
        with self._lock:
            current = self._notifications.get(approval_id)
            if current is None:
                return None
            updated = current.model_copy(update=changes)
            self._notifications[approval_id] = updated
        return updated

    def sync(self, request: ApprovalRequest) -> Optional[Notification]:
        """Bring a notification in line with its request's current state."""
        if request.status in _TYPE_FOR_STATUS:
            return self._update(request.id, type=_TYPE_FOR_STATUS[request.status])
        return self._update(request.id, expires_at=request.expires_at)

    def escalate(self, approval_id: str) -> Optional[Notification]:
        current = self.get(approval_id)
        if current is None:
            return None
        approvers = list(current.approvers)
        tier = next_approver(approvers)
        if tier is not None:
            approvers.append(tier)
        rank = PRIORITY_ORDER.index(current.priority)
        priority = PRIORITY_ORDER[min(rank + 1, len(PRIORITY_ORDER) - 1)]
        logger.info(
            "Notification escalated: %s (added=%s, priority=%s)",
            current.id, tier, priority.value,
        )
        return self._update(approval_id, approvers=approvers, priority=priority)

    def get(self, approval_id: str) -> Optional[Notification]:
        with self._lock:
            return self._notifications.get(approval_id)

    def active(
        self,
        approver: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> list[Notification]:
        """Open approval requests, most urgent first."""
        now = now or self.clock()
        with self._lock:
            snapshot = list(self._notifications.values())
        selected = [
            n for n in snapshot
            if n.type is NotificationType.APPROVAL_REQUEST
            and n.expires_at > now
            and (approver is None or approver in n.approvers)
        ]
        selected.sort(key=lambda n: PRIORITY_ORDER.index(n.priority), reverse=True)
        return selected

    def stats(self) -> dict:
        with self._lock:
            snapshot = list(self._notifications.values())
        counts = {t: 0 for t in NotificationType}
        risk_distribution = {level.value: 0 for level in RiskLevel}
        for n in snapshot:
            counts[n.type] += 1
            risk_distribution[n.risk_level.value] += 1
        waits = [n.estimated_wait_seconds for n in snapshot]
        return {
            "total_requests": len(snapshot),
            "approved": counts[NotificationType.APPROVAL_GRANTED],
            "denied": counts[NotificationType.APPROVAL_DENIED],
            "expired": counts[NotificationType.APPROVAL_EXPIRED],
            "pending": counts[NotificationType.APPROVAL_REQUEST],
            "average_wait_seconds": sum(waits) / len(waits) if waits else 0.0,
            "risk_distribution": risk_distribution,
        }
