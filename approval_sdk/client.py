"""
Approval SDK: Client
Thin synchronous wrapper over the approval gate gateway.
"""

from __future__ import annotations

from typing import Any

import httpx

from approval_sdk.models import DecisionOutcome, EvaluationOutcome


class ApprovalGateClient:
    """
    Client for the approval gate gateway.

    Chat backends use ``evaluate`` to gate an action; approver tooling uses
    ``pending`` and ``decide`` under its own ``actor_id``.
    """

    def __init__(
        self,
        gateway_url: str,
        actor_id: str,
        timeout: float = 10.0,
        client: httpx.Client | None = None,
    ):
        """
        Args:
            gateway_url: Base URL of the gateway (e.g. "http://localhost:8000")
            actor_id: Identity recorded on every decision (e.g. "human:supervisor")
            timeout: HTTP request timeout in seconds
            client: Pre-built httpx client (e.g. a FastAPI TestClient)
        """
        self.gateway_url = gateway_url.rstrip("/")
        self.actor_id = actor_id
        self._client = client if client is not None else httpx.Client(timeout=timeout)

    def evaluate(
        self,
        session_id: str,
        message_content: str = "",
        mode: str | None = None,
        tool_calls: list[str | dict[str, Any]] | None = None,
        workflow_phase: int | None = None,
        user_id: str | None = None,
        **extra: Any,
    ) -> EvaluationOutcome:
        """
        Submit a context for evaluation via POST /evaluate.

        ``tool_calls`` accepts bare tool names or ``{"name", "args"}`` dicts.
        Any other context field (persona, workflow_state, metadata, ...) can
        be passed as a keyword argument.
        """
        calls = [
            {"name": t, "args": {}} if isinstance(t, str) else t
            for t in tool_calls or []
        ]
        resp = self._client.post(
            f"{self.gateway_url}/evaluate",
            json={
                "session_id": session_id,
                "user_id": user_id,
                "mode": mode,
                "message_content": message_content,
                "tool_calls": calls,
                "workflow_phase": workflow_phase,
                **extra,
            },
        )

        body = resp.json()

        return EvaluationOutcome(
            verdict=body.get("verdict") or "error",
            status_code=resp.status_code,
            approval_id=body.get("approval_id"),
            reason=body.get("reason", ""),
            triggered_rules=[r["id"] for r in body.get("triggered_rules", [])],
            message=body.get("message"),
            estimated_wait_seconds=body.get("estimated_wait_seconds"),
            raw=body,
        )

    def decide(
        self,
        approval_id: str,
        decision: str,
        reason: str | None = None,
    ) -> DecisionOutcome:
        """
        Apply a decision (approve | deny | escalate | defer) as this client's actor.
        """
        resp = self._client.post(
            f"{self.gateway_url}/approvals/{approval_id}/decision",
            json={
                "decision": decision,
                "actor_id": self.actor_id,
                "reason": reason,
            },
        )

        body = resp.json()
        approval = body.get("approval") or {}

        return DecisionOutcome(
            success=resp.status_code == 200 and bool(body.get("success")),
            status_code=resp.status_code,
            status=approval.get("status"),
            message=body.get("message", ""),
            raw=body,
        )

    def pending(self, session_id: str | None = None) -> list[dict]:
        """List pending approval requests via GET /approvals."""
        params = {"session_id": session_id} if session_id else None
        resp = self._client.get(f"{self.gateway_url}/approvals", params=params)
        return resp.json().get("approvals", [])

    def health(self) -> dict:
        """Check gateway health via GET /health."""
        resp = self._client.get(f"{self.gateway_url}/health")
        return resp.json()
