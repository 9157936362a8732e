"""
Run-scoped execution context.

Facts about the triggering event and the cancellation flag are shared by the
whole run. Variables and the working directory live in frames: entering a
stage copies the parent frame, leaving it discards the copy.
"""

import asyncio
import logging
import posixpath
from contextlib import contextmanager
from types import MappingProxyType
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class RunFacts(BaseModel):
    """Immutable facts about the event that triggered the run."""
    run_id: str
    branch: str = ""
    changed_paths: Tuple[str, ...] = ()
    params: Dict[str, Any] = Field(default_factory=dict)

    class Config:
        frozen = True


class ContextSnapshot(BaseModel):
    """What an action runner gets to see. Holds copies only."""
    run_id: str
    branch: str
    changed_paths: Tuple[str, ...]
    stage_path: str
    variables: Dict[str, str]
    workdir: str

    class Config:
        frozen = True


class _RunState:
    def __init__(self):
        self.cancelled = False
        self.cancel_reason: Optional[str] = None
        self.cancel_event = asyncio.Event()


class ExecutionContext:
    """One per pipeline run; `scope()` derives the per-stage frames."""

    def __init__(
        self,
        facts: RunFacts,
        variables: Optional[Mapping[str, str]] = None,
        workdir: str = "",
        _state: Optional[_RunState] = None,
    ):
        self.facts = facts
        self.workdir = workdir
        self._variables: Dict[str, str] = dict(variables or {})
        self._state = _state or _RunState()
        self._closed = False

    @property
    def variables(self) -> Mapping[str, str]:
        return MappingProxyType(self._variables)

    def set_variable(self, key: str, value: str):
        """Bind a variable in this frame only."""
        if self._closed:
            raise RuntimeError("Execution context frame already exited")
        self._variables[key] = value

    @property
    def cancelled(self) -> bool:
        return self._state.cancelled

    @property
    def cancel_reason(self) -> Optional[str]:
        return self._state.cancel_reason

    @property
    def cancel_event(self) -> asyncio.Event:
        return self._state.cancel_event

    def cancel(self, reason: str):
        """Stop new stages from starting. Running ones finish."""
        if self._state.cancelled:
            return
        logger.warning(f"Run {self.facts.run_id} cancelled: {reason}")
        self._state.cancelled = True
        self._state.cancel_reason = reason
        self._state.cancel_event.set()

    @contextmanager
    def scope(
        self,
        env: Optional[Mapping[str, str]] = None,
        workdir: Optional[str] = None,
    ) -> Iterator["ExecutionContext"]:
        """Enter a copy-on-enter frame, discarded when the block exits."""
        frame = ExecutionContext(
            self.facts,
            variables={**self._variables, **(env or {})},
            workdir=posixpath.join(self.workdir, workdir) if workdir else self.workdir,
            _state=self._state,
        )
        try:
            yield frame
        finally:
            frame._closed = True
            frame._variables.clear()

    def snapshot(self, stage_path: str) -> ContextSnapshot:
        return ContextSnapshot(
            run_id=self.facts.run_id,
            branch=self.facts.branch,
            changed_paths=self.facts.changed_paths,
            stage_path=stage_path,
            variables=dict(self._variables),
            workdir=self.workdir,
        )


def new_context(
    run_id: str,
    branch: str = "",
    changed_paths: Optional[List[str]] = None,
    params: Optional[Dict[str, Any]] = None,
    env: Optional[Mapping[str, str]] = None,
) -> ExecutionContext:
    """Create the root context for a run from its trigger."""
    facts = RunFacts(
        run_id=run_id,
        branch=branch,
        changed_paths=tuple(changed_paths or ()),
        params=params or {},
    )
    return ExecutionContext(facts, variables=env)
