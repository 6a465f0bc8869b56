"""
Approval Gate Gateway
HTTP surface over one ApprovalGateService.

Callers submit a context to /evaluate and gate their action on the status
code: 200 proceed, 202 held for human approval, 403 rejected. Approvers
read /notifications and post decisions to /approvals/{id}/decision.
Administrators adjust the rule set at runtime through /rules.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import FastAPI, HTTPException, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from approval.config import LOG_LEVEL
from approval.engine import ApprovalGateService
from approval.errors import DuplicateRuleError, ExpiredError, NotFoundError
from approval.models import (
    ApprovalContext,
    ChatMode,
    DecisionType,
    EvaluationResult,
    PersonaRef,
    ToolCall,
    Verdict,
    WorkflowState,
)
from approval.rules import RuleSpec

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("approval-gates.gateway")

# ---------------------------------------------------------------------------
# Request / Response models
# ---------------------------------------------------------------------------

class ToolCallIn(BaseModel):
    name: str
    args: dict[str, Any] = {}


class WorkflowStateIn(BaseModel):
    type: str
    current_phase: int
    is_active: bool = True
    artifacts: list[str] = []


class PersonaIn(BaseModel):
    id: str
    name: Optional[str] = None


class EvaluateRequest(BaseModel):
    session_id: str
    user_id: Optional[str] = None
    mode: Optional[ChatMode] = None
    persona: Optional[PersonaIn] = None
    message_content: str = ""
    tool_calls: list[ToolCallIn] = []
    workflow_phase: Optional[int] = None
    workflow_state: Optional[WorkflowStateIn] = None
    is_first_message: bool = False
    metadata: dict[str, Any] = {}

    def to_context(self) -> ApprovalContext:
        return ApprovalContext(
            session_id=self.session_id,
            user_id=self.user_id,
            mode=self.mode or ChatMode.NONE,
            persona=PersonaRef(**self.persona.model_dump()) if self.persona else None,
            message_content=self.message_content,
            tool_calls=tuple(ToolCall(name=t.name, args=t.args) for t in self.tool_calls),
            workflow_phase=self.workflow_phase,
            workflow_state=(
                WorkflowState(
                    type=self.workflow_state.type,
                    current_phase=self.workflow_state.current_phase,
                    is_active=self.workflow_state.is_active,
                    artifacts=tuple(self.workflow_state.artifacts),
                )
                if self.workflow_state else None
            ),
            is_first_message=self.is_first_message,
            metadata=self.metadata,
        )


class DecisionRequest(BaseModel):
    decision: DecisionType
    actor_id: str = Field(min_length=1)
    reason: Optional[str] = None


def _evaluation_body(result: EvaluationResult, service: ApprovalGateService) -> dict:
    body: dict[str, Any] = {
        "verdict": result.verdict.value,
        "approval_id": result.approval_id,
        "reason": result.reason,
        "triggered_rules": [r.summary() for r in result.triggered_rules],
        "risk_assessment": (
            result.risk_assessment.to_dict() if result.risk_assessment else None
        ),
    }
    if result.notification is not None:
        body["notification"] = result.notification.model_dump(mode="json")
        body["estimated_wait_seconds"] = result.notification.estimated_wait_seconds
        body["required_approvers"] = result.notification.approvers
        body["message"] = service.pending_message(result.approval_id)
    return body


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------

def create_app(service: ApprovalGateService | None = None) -> FastAPI:
    service = service or ApprovalGateService()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await service.start()
        try:
            yield
        finally:
            await service.stop()

    app = FastAPI(
        title="Approval Gate Gateway",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.service = service

    @app.get("/health")
    def health():
        return {"status": "operational", "service": "approval-gateway"}

    @app.post("/evaluate")
    def evaluate(request: EvaluateRequest):
        """
        Evaluate a context against the active rule set.

        Flow:
          1. Score the context and pick the winning rule.
          2. On require_approval, record a pending request and notify approvers.
          3. Return the verdict with the matching HTTP status.
        """
        try:
            result = service.evaluate(request.to_context())
        except Exception:
            logger.exception("Evaluation failed (session=%s)", request.session_id)
            return JSONResponse(
                status_code=500,
                content={"error": "Policy evaluation failed.", "verdict": None},
            )

        body = _evaluation_body(result, service)
        if result.verdict is Verdict.REJECT:
            return JSONResponse(status_code=403, content=body)
        if result.verdict is Verdict.REQUIRE_APPROVAL:
            return JSONResponse(status_code=202, content=body)
        return JSONResponse(status_code=200, content=body)

    @app.get("/approvals")
    def list_approvals(
        session_id: Optional[str] = None,
        user_id: Optional[str] = None,
        mode: Optional[ChatMode] = None,
    ):
        pending = service.list_pending(session_id=session_id, user_id=user_id, mode=mode)
        return {"count": len(pending), "approvals": [r.to_dict() for r in pending]}

    @app.get("/approvals/history")
    def approval_history(
        limit: Optional[int] = Query(default=None, ge=1),
        session_id: Optional[str] = None,
    ):
        history = service.history(limit=limit, session_id=session_id)
        return {"count": len(history), "approvals": [r.to_dict() for r in history]}

    @app.get("/approvals/{approval_id}")
    def get_approval(approval_id: str):
        request = service.get(approval_id)
        if request is None:
            raise HTTPException(
                status_code=404, detail=f"Approval {approval_id} not found."
            )
        body = request.to_dict()
        notification = service.notifications.get(approval_id)
        body["notification"] = (
            notification.model_dump(mode="json") if notification else None
        )
        return body

    @app.post("/approvals/{approval_id}/decision")
    def decide(approval_id: str, request: DecisionRequest):
        """
        Apply an approver's decision.

        404 when the id is unknown or already resolved, 410 when the request
        expired before the decision arrived (it is marked expired either way).
        """
        result = service.resolve(
            approval_id, request.decision, request.actor_id, request.reason
        )
        body = {
            "success": result.success,
            "message": result.message,
            "approval": result.request.to_dict() if result.request else None,
        }
        if isinstance(result.error, NotFoundError):
            return JSONResponse(status_code=404, content=body)
        if isinstance(result.error, ExpiredError):
            return JSONResponse(status_code=410, content=body)
        notification = service.notifications.get(approval_id)
        body["notification"] = (
            notification.model_dump(mode="json") if notification else None
        )
        return JSONResponse(status_code=200, content=body)

    @app.get("/notifications")
    def notifications(approver: Optional[str] = None):
        active = service.active_notifications(approver)
        return {
            "count": len(active),
            "notifications": [n.model_dump(mode="json") for n in active],
        }

    @app.get("/rules")
    def list_rules():
        return {"rules": [r.summary() for r in service.rules()]}

    @app.post("/rules", status_code=201)
    def add_rule(spec: RuleSpec):
        try:
            rule = service.add_rule(spec)
        except DuplicateRuleError as exc:
            raise HTTPException(status_code=409, detail=str(exc))
        except ValueError as exc:
            raise HTTPException(status_code=422, detail=str(exc))
        return rule.summary()

    @app.delete("/rules/{rule_id}")
    def remove_rule(rule_id: str):
        return {"rule_id": rule_id, "removed": service.remove_rule(rule_id)}

    @app.get("/status")
    def status():
        return {**service.status(), "stats": service.stats()}

    @app.post("/sweep")
    def sweep():
        expired = service.sweeper.sweep_now()
        return {"expired": [r.id for r in expired]}

    return app


app = create_app()
