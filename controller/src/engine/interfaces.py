"""
Boundary contracts between the engine and its collaborators.
"""

from typing import Optional, Protocol

from pydantic import BaseModel

from controller.src.engine.context import ContextSnapshot
from controller.src.engine.reporter import Outcome


class ActionResult(BaseModel):
    outcome: Outcome
    duration_ms: int = 0
    log_ref: Optional[str] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.outcome == Outcome.SUCCESS


class ActionRunner(Protocol):
    """Runs opaque actions. Must be safe to call concurrently."""

    async def invoke(self, action_id: str, snapshot: ContextSnapshot) -> ActionResult:
        ...


class NotificationSink(Protocol):
    """Fire-and-forget: implementations log their own failures."""

    async def notify(self, channel: str, severity: str, message: str) -> None:
        ...


class ArtifactStore(Protocol):
    def publish(self, pattern: str) -> str:
        """Publish files matching a path or glob, return an artifact reference."""
        ...


class AgentSelector(Protocol):
    def can_run(self, requirement: Optional[str]) -> str:
        """Return an eligible host id or raise AgentUnavailable."""
        ...
