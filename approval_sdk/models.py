"""
Approval SDK: Data Models
"""

from __future__ import annotations

from pydantic import BaseModel


class EvaluationOutcome(BaseModel):
    """Result of a POST /evaluate call."""
    verdict: str            # proceed | require_approval | reject
    status_code: int
    approval_id: str | None = None
    reason: str = ""
    triggered_rules: list[str] = []
    message: str | None = None
    estimated_wait_seconds: float | None = None
    raw: dict               # full response body

    @property
    def proceed(self) -> bool:
        return self.verdict == "proceed"

    @property
    def pending(self) -> bool:
        return self.verdict == "require_approval"


class DecisionOutcome(BaseModel):
    """Result of a POST /approvals/{id}/decision call."""
    success: bool
    status_code: int
    status: str | None = None   # request status after the decision
    message: str = ""
    raw: dict               # full response body
