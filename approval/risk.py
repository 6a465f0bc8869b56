"""
Risk Assessor
Deterministic, side-effect-free risk profile for an ApprovalContext.

The content risk tier follows a strict precedence (integrity-violation
vocabulary, then privacy vocabulary, then size or risky tooling); the three
continuous sub-scores are set independently and then adjusted for the
session mode. No I/O and no clock: identical input, identical output.
"""

from __future__ import annotations

from approval.config import APPROVAL_LARGE_CONTENT_CHARS
from approval.models import ApprovalContext, ChatMode, RiskAssessment, RiskLevel

# ---------------------------------------------------------------------------
# Vocabulary
# ---------------------------------------------------------------------------

SENSITIVE_TERMS = (
    "password",
    "secret",
    "confidential",
    "private",
    "personal",
    "api key",
    "token",
    "credential",
    "login",
)

# "plagiar" covers plagiarism / plagiarize / plagiarise
HIGH_RISK_TERMS = ("cheat", "plagiar", "copy", "bypass", "hack", "illegal")

RISKY_TOOLS = frozenset({"file_handler", "system_command", "external_api"})

# ---------------------------------------------------------------------------
# Scores
# ---------------------------------------------------------------------------

INTEGRITY_RISK_ON_HIGH_RISK_TERM = 0.8
PRIVACY_RISK_ON_SENSITIVE_TERM = 0.6
OPERATIONAL_RISK_ON_LARGE_CONTENT = 0.3
OPERATIONAL_RISK_ON_RISKY_TOOL = 0.5

CASUAL_INTEGRITY_FACTOR = 0.5
FORMAL_WORKFLOW_INTEGRITY_FLOOR = 0.3


def find_terms(text: str, terms: tuple[str, ...]) -> list[str]:
    """Return the terms present in ``text`` (already lower-cased), in vocabulary order."""
    return [term for term in terms if term in text]


def assess_risk(
    context: ApprovalContext,
    large_content_chars: int = APPROVAL_LARGE_CONTENT_CHARS,
) -> RiskAssessment:
    """Score a context. Pure function of its arguments."""
    text = context.text

    has_high_risk = bool(find_terms(text, HIGH_RISK_TERMS))
    has_sensitive = bool(find_terms(text, SENSITIVE_TERMS))
    is_large = len(context.message_content) > large_content_chars
    uses_risky_tool = any(name in RISKY_TOOLS for name in context.tool_names)

    academic_integrity_risk = INTEGRITY_RISK_ON_HIGH_RISK_TERM if has_high_risk else 0.0
    privacy_risk = PRIVACY_RISK_ON_SENSITIVE_TERM if has_sensitive else 0.0
    operational_risk = OPERATIONAL_RISK_ON_LARGE_CONTENT if is_large else 0.0
    if uses_risky_tool:
        operational_risk = max(operational_risk, OPERATIONAL_RISK_ON_RISKY_TOOL)

    if has_high_risk:
        level = RiskLevel.CRITICAL
    elif has_sensitive:
        level = RiskLevel.HIGH
    elif is_large or uses_risky_tool:
        level = RiskLevel.MEDIUM
    else:
        level = RiskLevel.LOW

    # Persona-mode adjustments
    if context.mode is ChatMode.CASUAL:
        academic_integrity_risk *= CASUAL_INTEGRITY_FACTOR
    elif context.mode is ChatMode.FORMAL and context.workflow_active:
        academic_integrity_risk = max(
            academic_integrity_risk, FORMAL_WORKFLOW_INTEGRITY_FLOOR
        )

    return RiskAssessment(
        content_risk_level=level,
        academic_integrity_risk=academic_integrity_risk,
        privacy_risk=privacy_risk,
        operational_risk=operational_risk,
    )
