#!/usr/bin/env python3
"""
Approval Gates: End-to-End Demo Script

Walks through the approval loop: proceed, held for approval, approver
decision, double-resolve, casual vs formal policy, escalation, and a
runtime rule added over the admin surface.

Usage:
    1. uvicorn main:app --port 8000
    2. python scripts/demo.py

Requires: httpx
"""

from __future__ import annotations

import json
import os
import sys
import time

# Ensure project root is importable
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import httpx

from approval_sdk.client import ApprovalGateClient
from approval_sdk.models import EvaluationOutcome

BASE_URL = os.environ.get("GATEWAY_URL", "http://localhost:8000")

# ---------------------------------------------------------------------------
# Terminal colors (ANSI)
# ---------------------------------------------------------------------------

class C:
    RESET   = "\033[0m"
    BOLD    = "\033[1m"
    DIM     = "\033[2m"
    RED     = "\033[91m"
    GREEN   = "\033[92m"
    YELLOW  = "\033[93m"
    BLUE    = "\033[94m"
    MAGENTA = "\033[95m"
    CYAN    = "\033[96m"
    WHITE   = "\033[97m"
    BG_RED  = "\033[41m"
    BG_GREEN = "\033[42m"
    BG_YELLOW = "\033[43m"


def banner(text: str, color: str = C.CYAN):
    width = 64
    print()
    print(f"{color}{C.BOLD}{'=' * width}{C.RESET}")
    print(f"{color}{C.BOLD}  {text}{C.RESET}")
    print(f"{color}{C.BOLD}{'=' * width}{C.RESET}")
    print()


def step(n: int, text: str):
    print(f"  {C.BOLD}{C.WHITE}[Step {n}]{C.RESET} {text}")


def ok(text: str):
    print(f"  {C.GREEN}{C.BOLD}OK{C.RESET} {text}")


def fail(text: str):
    print(f"  {C.RED}{C.BOLD}FAIL{C.RESET} {text}")


def info(text: str):
    print(f"  {C.DIM}{text}{C.RESET}")


def verdict_badge(verdict: str) -> str:
    if verdict == "proceed":
        return f"{C.BG_GREEN}{C.WHITE}{C.BOLD} PROCEED {C.RESET}"
    elif verdict == "reject":
        return f"{C.BG_RED}{C.WHITE}{C.BOLD} REJECT {C.RESET}"
    elif verdict == "require_approval":
        return f"{C.BG_YELLOW}{C.WHITE}{C.BOLD} REQUIRE APPROVAL {C.RESET}"
    return f"{C.BOLD} {verdict} {C.RESET}"


def pp(data: dict, indent: int = 4):
    raw = json.dumps(data, indent=indent, default=str)
    for line in raw.split("\n"):
        print(f"    {C.DIM}{line}{C.RESET}")


def show(outcome: EvaluationOutcome):
    print()
    print(f"  {verdict_badge(outcome.verdict)}  HTTP {outcome.status_code}")
    if outcome.triggered_rules:
        print(f"    {C.CYAN}rules:{C.RESET}   {', '.join(outcome.triggered_rules)}")
    print(f"    {C.CYAN}reason:{C.RESET}  {outcome.reason}")
    if outcome.approval_id:
        print(f"    {C.CYAN}approval:{C.RESET} {outcome.approval_id}")
    if outcome.message:
        print(f"    {C.YELLOW}{outcome.message}{C.RESET}")
    print()


def pause(seconds: float = 1.0):
    time.sleep(seconds)


# ---------------------------------------------------------------------------
# Demo steps
# ---------------------------------------------------------------------------

def main():
    chat = ApprovalGateClient(BASE_URL, actor_id="service:chat-backend")
    supervisor = ApprovalGateClient(BASE_URL, actor_id="human:academic-supervisor")

    banner("APPROVAL GATES  --  Human-in-the-loop policy engine", C.MAGENTA)
    print(f"  {C.DIM}Gateway: {BASE_URL}{C.RESET}")
    pause(1)

    # -----------------------------------------------------------------------
    # 1. Health check
    # -----------------------------------------------------------------------
    banner("1. Health Check", C.BLUE)
    step(1, "GET /health")
    try:
        body = chat.health()
        ok(f"Gateway operational  ({body.get('service', '?')})")
    except httpx.HTTPError as exc:
        fail(f"Gateway unreachable: {exc}")
        print(f"\n  {C.RED}Start the gateway first:{C.RESET}")
        print(f"  {C.YELLOW}  uvicorn main:app --port 8000{C.RESET}\n")
        sys.exit(1)
    pause(1)

    # -----------------------------------------------------------------------
    # 2. Casual chat proceeds
    # -----------------------------------------------------------------------
    banner("2. PROCEED -- Casual web search", C.GREEN)
    step(2, "POST /evaluate  mode=casual  tools=[web_search]")
    show(chat.evaluate(
        "demo-casual", "cari resep nasi goreng", mode="casual", tool_calls=["web_search"],
    ))
    pause(1.5)

    # -----------------------------------------------------------------------
    # 3. Formal research is held
    # -----------------------------------------------------------------------
    banner("3. REQUIRE APPROVAL -- Formal external research", C.YELLOW)
    step(3, "POST /evaluate  mode=formal  tools=[web_search]")
    held = chat.evaluate(
        "demo-formal", "find recent studies on soil salinity",
        mode="formal", tool_calls=["web_search"], workflow_phase=2,
        persona={"id": "academic-1", "name": "Academic Mentor"},
    )
    show(held)
    pause(1.5)

    # -----------------------------------------------------------------------
    # 4. Supervisor approves, then tries again
    # -----------------------------------------------------------------------
    banner("4. DECIDE -- Supervisor approval", C.GREEN)
    step(4, f"POST /approvals/{held.approval_id}/decision  approve")
    result = supervisor.decide(held.approval_id, "approve", reason="Sources look fine")
    (ok if result.success else fail)(f"HTTP {result.status_code}  status={result.status}")
    info(result.message)

    step(4, "Same decision again (must fail: already resolved)")
    again = supervisor.decide(held.approval_id, "approve")
    (ok if again.status_code == 404 else fail)(f"HTTP {again.status_code}  {again.message}")
    pause(1.5)

    # -----------------------------------------------------------------------
    # 5. Casual sensitive content + escalation
    # -----------------------------------------------------------------------
    banner("5. ESCALATE -- Sensitive content in casual mode", C.YELLOW)
    step(5, "POST /evaluate  mode=casual  'gimana nyimpen password aman'")
    sensitive = chat.evaluate("demo-casual", "gimana nyimpen password aman", mode="casual")
    show(sensitive)

    step(5, "escalate, then deny")
    escalated = supervisor.decide(sensitive.approval_id, "escalate")
    info(f"escalate -> HTTP {escalated.status_code}, still {escalated.status}")
    pp(escalated.raw.get("notification") or {})
    denied = supervisor.decide(sensitive.approval_id, "deny", reason="Not appropriate")
    info(f"deny -> HTTP {denied.status_code}, {denied.status}")
    pause(1.5)

    # -----------------------------------------------------------------------
    # 6. Runtime rule
    # -----------------------------------------------------------------------
    banner("6. ADMIN -- Add a reject rule at runtime", C.RED)
    step(6, "POST /rules  reject any 'system_*' tool")
    r = httpx.post(f"{BASE_URL}/rules", json={
        "id": "demo-block-system-tools",
        "name": "Block System Tools",
        "action": "reject",
        "modes": ["all"],
        "priority": 200,
        "tool_patterns": ["system_*"],
    })
    info(f"HTTP {r.status_code}")
    show(chat.evaluate("demo-formal", "list files", mode="formal", tool_calls=["system_command"]))
    httpx.delete(f"{BASE_URL}/rules/demo-block-system-tools")
    pause(1)

    # -----------------------------------------------------------------------
    # 7. Status
    # -----------------------------------------------------------------------
    banner("7. STATUS -- Engine and history chain", C.BLUE)
    status = httpx.get(f"{BASE_URL}/status").json()
    pp(status)
    (ok if status.get("history_intact") else fail)("History hash chain verified")
    print()


if __name__ == "__main__":
    main()
