"""
Approval History Log
Append-only, tamper-evident record of approval requests that reached a
terminal state.

Each entry's hash covers the previous entry's hash plus the canonical JSON
of the terminal request, so editing or dropping any entry breaks every hash
after it. Entries are never mutated or removed once appended.
"""

from __future__ import annotations

import hashlib
import json
import threading
from dataclasses import dataclass
from typing import Callable, Optional

from approval.errors import StoreIntegrityError
from approval.models import ApprovalRequest

GENESIS_HASH = "GENESIS"


@dataclass(frozen=True)
class HistoryEntry:
    sequence: int
    request: ApprovalRequest
    previous_hash: str
    entry_hash: str


def canonical_payload(request: ApprovalRequest) -> str:
    return json.dumps(request.to_dict(), sort_keys=True, default=str)


def compute_entry_hash(previous_hash: str, sequence: int, payload: str) -> str:
    material = f"{previous_hash}|{sequence}|{payload}"
    return hashlib.sha256(material.encode("utf-8")).hexdigest()


class HistoryLog:
    """
    Append-only ledger of terminal approval requests.

    Appending a non-terminal request, or the same id twice, is an integrity
    violation rather than a recoverable condition.
    """

    def __init__(self):
        self._entries: list[HistoryEntry] = []
        self._index: dict[str, int] = {}
        self._lock = threading.Lock()

    def append(self, request: ApprovalRequest) -> HistoryEntry:
        if not request.status.is_terminal:
            raise StoreIntegrityError(
                f"Refusing to archive non-terminal request {request.id} "
                f"(status={request.status.value})"
            )
        with self._lock:
            if request.id in self._index:
                raise StoreIntegrityError(
                    f"Request {request.id} is already archived"
                )
            sequence = len(self._entries)
            previous_hash = (
                self._entries[-1].entry_hash if self._entries else GENESIS_HASH
            )
            entry = HistoryEntry(
                sequence=sequence,
                request=request,
                previous_hash=previous_hash,
                entry_hash=compute_entry_hash(
                    previous_hash, sequence, canonical_payload(request)
                ),
            )
            self._entries.append(entry)
            self._index[request.id] = sequence
        return entry

    def get(self, approval_id: str) -> Optional[ApprovalRequest]:
        with self._lock:
            position = self._index.get(approval_id)
            if position is None:
                return None
            return self._entries[position].request

    def entries(self) -> list[HistoryEntry]:
        with self._lock:
            return list(self._entries)

    def requests(
        self,
        limit: Optional[int] = None,
        where: Callable[[ApprovalRequest], bool] | None = None,
    ) -> list[ApprovalRequest]:
        """Archived requests, newest first."""
        selected = [
            e.request for e in self.entries()
            if where is None or where(e.request)
        ]
        selected.sort(key=lambda r: r.created_at, reverse=True)
        return selected[:limit] if limit is not None else selected

    def verify(self) -> bool:
        """Recompute every hash in order and confirm the chain is intact."""
        previous_hash = GENESIS_HASH
        for entry in self.entries():
            expected = compute_entry_hash(
                previous_hash, entry.sequence, canonical_payload(entry.request)
            )
            if entry.previous_hash != previous_hash or entry.entry_hash != expected:
                return False
            previous_hash = entry.entry_hash
        return True

    @property
    def head_hash(self) -> str:
        with self._lock:
            return self._entries[-1].entry_hash if self._entries else GENESIS_HASH

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, approval_id: object) -> bool:
        with self._lock:
            return approval_id in self._index

