"""
Result reporter - collects stage records and finalizes the pipeline report.
"""

import asyncio
import logging
from datetime import datetime
from enum import Enum
from typing import Awaitable, Callable, List, Optional, Tuple

from pydantic import BaseModel

from controller.src.engine.errors import ReportFinalizedError
from controller.src.engine.graph import Hook, HookTrigger, PostHooks

logger = logging.getLogger(__name__)


class Outcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    SKIPPED = "skipped"


class StageRecord(BaseModel):
    name: str
    path: str
    outcome: Outcome
    started_at: datetime
    finished_at: datetime
    error: Optional[str] = None
    # Short machine-readable cause, e.g. condition, gate-rejected
    reason: Optional[str] = None
    log_ref: Optional[str] = None
    artifacts: Tuple[str, ...] = ()
    hook_errors: Tuple[str, ...] = ()

    class Config:
        frozen = True

    @property
    def duration_ms(self) -> int:
        return int((self.finished_at - self.started_at).total_seconds() * 1000)


class PipelineReport(BaseModel):
    run_id: str
    pipeline: str
    outcome: Outcome
    records: Tuple[StageRecord, ...]
    started_at: datetime
    finished_at: datetime
    error: Optional[str] = None
    hook_errors: Tuple[str, ...] = ()

    class Config:
        frozen = True

    def record_for(self, name: str) -> Optional[StageRecord]:
        """Find a record by stage path, falling back to the stage name."""
        for record in self.records:
            if record.path == name:
                return record
        for record in self.records:
            if record.name == name:
                return record
        return None

    @property
    def errors(self) -> List[str]:
        return [f"{r.path}: {r.error}" for r in self.records if r.error]


# Awaited on the event loop; blocking listeners must hand off to a thread
RecordListener = Callable[[StageRecord], Awaitable[None]]
HookRunner = Callable[[List[Hook], PipelineReport], Awaitable[List[str]]]


def overall_outcome(records) -> Outcome:
    if any(r.outcome == Outcome.FAILURE for r in records):
        return Outcome.FAILURE
    return Outcome.SUCCESS


class ResultReporter:
    def __init__(
        self,
        run_id: str,
        pipeline: str,
        listeners: Optional[List[RecordListener]] = None,
    ):
        self.run_id = run_id
        self.pipeline = pipeline
        self.started_at = datetime.utcnow()
        self.report: Optional[PipelineReport] = None
        self._records: List[StageRecord] = []
        self._listeners = list(listeners or [])
        self._lock = asyncio.Lock()
        self._finalizing = False

    @property
    def records(self) -> List[StageRecord]:
        return list(self._records)

    @property
    def finalized(self) -> bool:
        return self._finalizing

    async def record(self, record: StageRecord):
        """Append a completed stage record. Safe from parallel branches."""
        async with self._lock:
            if self._finalizing:
                raise ReportFinalizedError(f"Report for run {self.run_id} is already final")
            self._records.append(record)

        logger.info(f"Stage {record.path}: {record.outcome.value}"
                    + (f" ({record.error})" if record.error else ""))

        for listener in self._listeners:
            try:
                await listener(record)
            except Exception:
                logger.exception(f"Record listener failed for stage {record.path}")

    async def finalize(
        self,
        hooks: PostHooks,
        run_hooks: HookRunner,
        error: Optional[str] = None,
    ) -> PipelineReport:
        """
        Freeze the report and run the pipeline-level hooks: `always` first,
        then exactly one of `success` / `failure`.
        Calling this twice is a programming error.
        """
        async with self._lock:
            if self._finalizing:
                raise ReportFinalizedError(f"Report for run {self.run_id} is already finalized")
            self._finalizing = True

        outcome = overall_outcome(self._records)
        if error is None and outcome == Outcome.FAILURE:
            error = next(
                (f"{r.path}: {r.error}" for r in self._records
                 if r.outcome == Outcome.FAILURE and r.error),
                None,
            )

        report = PipelineReport(
            run_id=self.run_id,
            pipeline=self.pipeline,
            outcome=outcome,
            records=tuple(self._records),
            started_at=self.started_at,
            finished_at=datetime.utcnow(),
            error=error,
        )

        trigger = HookTrigger.SUCCESS if outcome == Outcome.SUCCESS else HookTrigger.FAILURE
        hook_errors = await run_hooks(hooks.always, report)
        hook_errors += await run_hooks(hooks.for_trigger(trigger), report)

        self.report = report.model_copy(update={"hook_errors": tuple(hook_errors)})
        logger.info(f"Run {self.run_id} finished: {outcome.value}")
        return self.report
