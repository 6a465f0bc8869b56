"""
Expiry Sweeper
Background task that expires stale approval requests on a fixed interval,
independent of any request/response cycle.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

from approval.config import APPROVAL_SWEEP_INTERVAL_SECONDS
from approval.errors import StoreIntegrityError
from approval.models import ApprovalRequest

logger = logging.getLogger("approval-gates.sweeper")


class ExpirySweeper:
    """
    Runs ``sweep`` every ``interval_seconds`` on the running event loop.

    ``sweep`` is the store-level operation (it takes the same per-request
    locks as resolve), so a sweep and a concurrent decision on one request
    never both apply.
    """

    def __init__(
        self,
        sweep: Callable[[], list[ApprovalRequest]],
        interval_seconds: float = APPROVAL_SWEEP_INTERVAL_SECONDS,
    ):
        self._sweep = sweep
        self._interval = interval_seconds
        self._task: asyncio.Task | None = None
        self._running = False

    async def start(self) -> None:
        if self._running:
            logger.warning("ExpirySweeper already running")
            return
        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info("ExpirySweeper started (interval=%ss)", self._interval)

    async def stop(self) -> None:
        """Cancel the loop. Re-raises the fault if the loop died on one."""
        task, self._task = self._task, None
        self._running = False
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("ExpirySweeper stopped")

    async def _loop(self) -> None:
        while self._running:
            await asyncio.sleep(self._interval)
            try:
                self._sweep()
            except StoreIntegrityError:
                logger.exception("Store integrity violated during sweep; stopping")
                self._running = False
                raise
            except Exception:
                logger.exception("Error in sweep loop")

    def sweep_now(self) -> list[ApprovalRequest]:
        """Run one sweep immediately, outside the schedule."""
        logger.info("Manual sweep triggered")
        return self._sweep()

    @property
    def is_running(self) -> bool:
        return self._running
