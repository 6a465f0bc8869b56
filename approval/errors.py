"""
Approval Gate Errors

Expected domain conditions (duplicate rule, unknown or stale approval) have
their own types so callers can turn them into clear user-facing messages.
StoreIntegrityError is the exception: it signals corrupted internal state
and must never be converted into a verdict.
"""

from __future__ import annotations


class ApprovalGateError(Exception):
    """Base class for every error raised by the approval gate engine."""


class DuplicateRuleError(ApprovalGateError, ValueError):
    def __init__(self, rule_id: str):
        self.rule_id = rule_id
        super().__init__(f"Rule with ID '{rule_id}' already exists")


class NotFoundError(ApprovalGateError, LookupError):
    def __init__(self, approval_id: str):
        self.approval_id = approval_id
        super().__init__(
            f"Approval request '{approval_id}' not found or already processed"
        )


class ExpiredError(ApprovalGateError):
    def __init__(self, approval_id: str):
        self.approval_id = approval_id
        super().__init__(f"Approval request '{approval_id}' has expired")


class StoreIntegrityError(ApprovalGateError):
    """Pending table or history log violates its own invariants."""
