"""
Approval gate: PENDING -> APPROVED | REJECTED | TIMED_OUT.

Waiting on a gate suspends only the branch that owns it. Decisions arrive
from outside (the approval watcher), the timeout or run cancellation.
"""

import asyncio
import logging
from datetime import datetime
from enum import Enum
from typing import Optional

from controller.src.engine.errors import GateClosedError, UnauthorizedApprover
from controller.src.engine.graph import ApprovalSpec

logger = logging.getLogger(__name__)


class GateState(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    TIMED_OUT = "timed_out"


class ApprovalGate:
    def __init__(self, stage_path: str, spec: ApprovalSpec, cancel_event: asyncio.Event):
        self.stage_path = stage_path
        self.spec = spec
        self.state = GateState.PENDING
        self.decided_by: Optional[str] = None
        self.reason: Optional[str] = None
        self.opened_at = datetime.utcnow()
        self._decided = asyncio.Event()
        self._cancel_event = cancel_event

    def _decide(self, state: GateState, approver: Optional[str], reason: Optional[str]):
        if self.state != GateState.PENDING:
            raise GateClosedError(f"Gate for '{self.stage_path}' is already {self.state.value}")

        if self.spec.approvers and approver not in self.spec.approvers:
            raise UnauthorizedApprover(
                f"'{approver}' may not decide gate for '{self.stage_path}'"
            )

        self.state = state
        self.decided_by = approver
        self.reason = reason
        self._decided.set()
        logger.info(f"Gate for {self.stage_path} {state.value} by {approver}")

    def approve(self, approver: Optional[str] = None):
        self._decide(GateState.APPROVED, approver, None)

    def reject(self, approver: Optional[str] = None, reason: Optional[str] = None):
        self._decide(GateState.REJECTED, approver, reason)

    async def wait(self) -> GateState:
        """Block until decided, timed out or the run is cancelled."""
        if self.state != GateState.PENDING:
            return self.state

        logger.info(
            f"Waiting for approval of {self.stage_path}: {self.spec.message} "
            f"(timeout {self.spec.timeout}s)"
        )

        decided = asyncio.ensure_future(self._decided.wait())
        cancelled = asyncio.ensure_future(self._cancel_event.wait())
        try:
            await asyncio.wait(
                {decided, cancelled},
                timeout=self.spec.timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            decided.cancel()
            cancelled.cancel()

        if self.state == GateState.PENDING:
            # Timer expiry or run cancellation
            self.state = GateState.TIMED_OUT
            self.reason = "run cancelled" if self._cancel_event.is_set() else "timed out"
            logger.warning(f"Gate for {self.stage_path} {self.reason}")

        return self.state
