"""
Scheduler - walks the pipeline graph and executes stages.

Every stage goes through the same steps: cancellation check, condition,
approval gate, scoped frame, body, post hooks, record. Hooks run in a
`finally` block so cleanup happens on every exit path.
"""

import asyncio
import logging
from datetime import datetime
from typing import List, Optional, Tuple

from controller.src.engine.conditions import evaluate
from controller.src.engine.context import ExecutionContext
from controller.src.engine.errors import (
    ActionFailure,
    AgentUnavailable,
    GateRejection,
    GateTimeout,
    HookFailure,
)
from controller.src.engine.gate import ApprovalGate, GateState
from controller.src.engine.graph import (
    PIPELINE_OWNER,
    Hook,
    HookKind,
    HookTrigger,
    Leaf,
    Parallel,
    PipelineGraph,
    Stage,
    join_path,
)
from controller.src.engine.interfaces import (
    ActionRunner,
    AgentSelector,
    ArtifactStore,
    NotificationSink,
)
from controller.src.engine.reporter import (
    Outcome,
    PipelineReport,
    RecordListener,
    ResultReporter,
    StageRecord,
)

logger = logging.getLogger(__name__)

AGENT_HOST_VARIABLE = "PIPELINEX_AGENT_HOST"

# outcome, error, reason, log_ref
BodyResult = Tuple[Outcome, Optional[str], Optional[str], Optional[str]]


class Scheduler:
    """Runs one pipeline graph. Create one scheduler per run."""

    def __init__(
        self,
        runner: ActionRunner,
        selector: Optional[AgentSelector] = None,
        notifier: Optional[NotificationSink] = None,
        artifacts: Optional[ArtifactStore] = None,
        listeners: Optional[List[RecordListener]] = None,
    ):
        self.runner = runner
        self.selector = selector
        self.notifier = notifier
        self.artifacts = artifacts
        self.listeners = list(listeners or [])
        self.pending_gate: Optional[ApprovalGate] = None
        self.graph: Optional[PipelineGraph] = None
        self.context: Optional[ExecutionContext] = None
        self.reporter: Optional[ResultReporter] = None

    async def run(self, graph: PipelineGraph, context: ExecutionContext) -> PipelineReport:
        """
        Run the top-level stages in order, then finalize the report.
        Pipeline hooks run exactly once, whatever happened before.
        """
        self.graph = graph
        self.context = context
        self.reporter = ResultReporter(context.facts.run_id, graph.name, self.listeners)

        logger.info(
            f"Starting pipeline '{graph.name}' run {context.facts.run_id} "
            f"on branch {context.facts.branch or '-'}"
        )

        with context.scope(graph.env) as root:
            async def run_pipeline_hooks(hooks: List[Hook], report: PipelineReport) -> List[str]:
                errors, _ = await self._run_hooks(hooks, root, PIPELINE_OWNER, report.outcome, report)
                return errors

            try:
                await self._run_sequence(graph.stages, root, "", best_effort=False)
            finally:
                report = await self.reporter.finalize(
                    graph.hooks,
                    run_pipeline_hooks,
                    error=context.cancel_reason,
                )

        return report

    def abort(self, reason: str = "aborted"):
        """Cancel the run: no new stage starts, running ones finish."""
        if self.context is not None:
            self.context.cancel(reason)

    async def run_stage(
        self,
        stage: Stage,
        context: ExecutionContext,
        parent_path: str = "",
    ) -> StageRecord:
        """Run one stage of the graph passed to `run()`, from inside that run."""
        if self.reporter is None or self.reporter.finalized:
            raise RuntimeError("run_stage() is only valid while Scheduler.run() is in progress")

        path = join_path(parent_path, stage.name)
        started_at = datetime.utcnow()

        if context.cancelled:
            return await self._finish(stage, path, started_at, Outcome.SKIPPED, reason="cancelled")

        if not evaluate(stage.condition, context):
            # Hooks still see the stage's own variables and directory
            with context.scope(stage.env, stage.workdir) as frame:
                hook_errors, artifacts = await self._run_hooks(
                    stage.hooks.always, frame, path, Outcome.SKIPPED
                )
            return await self._finish(
                stage, path, started_at, Outcome.SKIPPED,
                reason="condition", hook_errors=hook_errors, artifacts=artifacts,
            )

        outcome, error, reason, log_ref = Outcome.FAILURE, None, None, None
        hook_errors: List[str] = []
        artifacts: List[str] = []

        with context.scope(stage.env, stage.workdir) as frame:
            try:
                if stage.approval is not None:
                    gate = await self._await_gate(stage, frame, path)
                    if gate.state != GateState.APPROVED:
                        self._fail_gate(stage, gate, context)

                if stage.agent:
                    host = self._select_agent(stage.agent)
                    frame.set_variable(AGENT_HOST_VARIABLE, host)
                outcome, error, reason, log_ref = await self._execute_body(stage, frame, path)
            except ActionFailure as e:
                outcome, error, reason, log_ref = Outcome.FAILURE, str(e), e.reason, e.log_ref
            except (GateRejection, GateTimeout, AgentUnavailable) as e:
                outcome, error, reason = Outcome.FAILURE, str(e), e.reason
            except Exception as e:
                logger.exception(f"Stage {path} raised")
                outcome, error, reason = Outcome.FAILURE, str(e), "error"
            finally:
                hook_errors, artifacts = await self._run_post_hooks(stage, frame, path, outcome)

        return await self._finish(
            stage, path, started_at, outcome,
            error=error, reason=reason, log_ref=log_ref,
            hook_errors=hook_errors, artifacts=artifacts,
        )

    # ------------------------------------------------------------------
    # Bodies
    # ------------------------------------------------------------------

    async def _execute_body(self, stage: Stage, frame: ExecutionContext, path: str) -> BodyResult:
        if isinstance(stage.body, Leaf):
            return await self._invoke_action(stage.body.action_id, frame, path)

        if isinstance(stage.body, Parallel):
            # Fail-together: every branch runs to completion
            records = await asyncio.gather(
                *(self.run_stage(child, frame, path) for child in stage.children)
            )
        else:
            records = await self._run_sequence(stage.children, frame, path, stage.best_effort)

        return self._aggregate(records)

    async def _run_sequence(
        self,
        stages: List[Stage],
        context: ExecutionContext,
        parent_path: str,
        best_effort: bool,
    ) -> List[StageRecord]:
        records = []
        for i, stage in enumerate(stages):
            record = await self.run_stage(stage, context, parent_path)
            records.append(record)

            if record.outcome == Outcome.FAILURE and not best_effort:
                for rest in stages[i + 1:]:
                    reason = "cancelled" if context.cancelled else "upstream-failed"
                    records.append(await self._finish(
                        rest, join_path(parent_path, rest.name), datetime.utcnow(),
                        Outcome.SKIPPED, reason=reason,
                    ))
                break
        return records

    async def _invoke_action(self, action_id: str, frame: ExecutionContext, path: str) -> BodyResult:
        snapshot = frame.snapshot(path)
        try:
            result = await self.runner.invoke(action_id, snapshot)
        except ActionFailure:
            raise
        except Exception as e:
            logger.exception(f"Action {action_id} raised")
            raise ActionFailure(f"Action '{action_id}' failed: {e}") from e

        if not result.succeeded:
            raise ActionFailure(result.error or f"Action '{action_id}' failed", result.log_ref)

        return Outcome.SUCCESS, None, None, result.log_ref

    @staticmethod
    def _aggregate(records: List[StageRecord]) -> BodyResult:
        failed = [r.name for r in records if r.outcome == Outcome.FAILURE]
        if failed:
            return Outcome.FAILURE, f"Failed: {', '.join(failed)}", "child-failed", None
        if all(r.outcome == Outcome.SKIPPED for r in records):
            return Outcome.SKIPPED, None, "no-children-ran", None
        return Outcome.SUCCESS, None, None, None

    # ------------------------------------------------------------------
    # Gates and agents
    # ------------------------------------------------------------------

    async def _await_gate(self, stage: Stage, frame: ExecutionContext, path: str) -> ApprovalGate:
        gate = ApprovalGate(path, stage.approval, frame.cancel_event)
        self.pending_gate = gate

        if self.notifier is not None:
            await self._notify_safely(
                "approvals", "info",
                f"Run {frame.facts.run_id} waiting for approval of {path}: {stage.approval.message}",
            )

        try:
            await gate.wait()
        finally:
            self.pending_gate = None
        return gate

    @staticmethod
    def _fail_gate(stage: Stage, gate: ApprovalGate, context: ExecutionContext):
        if gate.state == GateState.REJECTED:
            message = f"Approval rejected by {gate.decided_by or 'unknown'}"
            if gate.reason:
                message += f": {gate.reason}"
            error = GateRejection(message)
        else:
            error = GateTimeout(f"Approval {gate.reason or 'timed out'}")

        if stage.approval.fatal:
            context.cancel(f"{gate.stage_path}: {error}")

        raise error

    def _select_agent(self, requirement: str) -> str:
        if self.selector is None:
            raise AgentUnavailable(requirement)
        return self.selector.can_run(requirement)

    # ------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------

    async def _run_post_hooks(
        self,
        stage: Stage,
        frame: ExecutionContext,
        path: str,
        outcome: Outcome,
    ) -> Tuple[List[str], List[str]]:
        hooks = list(stage.hooks.always)
        if outcome == Outcome.SUCCESS:
            hooks += stage.hooks.for_trigger(HookTrigger.SUCCESS)
        elif outcome == Outcome.FAILURE:
            hooks += stage.hooks.for_trigger(HookTrigger.FAILURE)
        return await self._run_hooks(hooks, frame, path, outcome)

    async def _run_hooks(
        self,
        hooks: List[Hook],
        context: ExecutionContext,
        owner: str,
        outcome: Outcome,
        report: Optional[PipelineReport] = None,
    ) -> Tuple[List[str], List[str]]:
        """Run hooks in order. A failing hook never stops the others."""
        errors: List[str] = []
        artifacts: List[str] = []

        for hook in hooks:
            try:
                ref = await self._run_hook(hook, context, owner, outcome, report)
                if ref:
                    artifacts.append(ref)
            except Exception as e:
                message = f"{hook.kind.value} hook '{hook.target}' failed: {e}"
                logger.error(f"{owner}: {message}")
                errors.append(message)

        return errors, artifacts

    async def _run_hook(
        self,
        hook: Hook,
        context: ExecutionContext,
        owner: str,
        outcome: Outcome,
        report: Optional[PipelineReport],
    ) -> Optional[str]:
        if hook.kind in (HookKind.RUN, HookKind.STAGE):
            action_id = hook.target
            if hook.kind == HookKind.STAGE:
                action_id = self.graph.find(hook.target).body.action_id

            result = await self.runner.invoke(action_id, context.snapshot(owner))
            if not result.succeeded:
                raise HookFailure(result.error or f"action '{action_id}' failed")
            return None

        if hook.kind == HookKind.NOTIFY:
            if self.notifier is None:
                raise HookFailure("no notification sink configured")
            message = self._format_message(hook, context, owner, outcome, report)
            await self.notifier.notify(hook.target, hook.severity, message)
            return None

        if self.artifacts is None:
            raise HookFailure("no artifact store configured")
        return await asyncio.to_thread(self.artifacts.publish, hook.target)

    def _format_message(
        self,
        hook: Hook,
        context: ExecutionContext,
        owner: str,
        outcome: Outcome,
        report: Optional[PipelineReport],
    ) -> str:
        template = hook.message or "{stage}: {outcome} (run {run_id})"
        try:
            return template.format(
                stage=self.graph.name if owner == PIPELINE_OWNER else owner,
                outcome=outcome.value,
                run_id=context.facts.run_id,
                branch=context.facts.branch,
                error=(report.error if report else None) or "",
            )
        except (KeyError, IndexError, ValueError) as e:
            raise HookFailure(f"bad message template {template!r}: {e}") from e

    async def _notify_safely(self, channel: str, severity: str, message: str):
        # Notification failures never escalate
        try:
            await self.notifier.notify(channel, severity, message)
        except Exception as e:
            logger.error(f"Notification to {channel} failed: {e}")

    async def _finish(
        self,
        stage: Stage,
        path: str,
        started_at: datetime,
        outcome: Outcome,
        error: Optional[str] = None,
        reason: Optional[str] = None,
        log_ref: Optional[str] = None,
        hook_errors: Optional[List[str]] = None,
        artifacts: Optional[List[str]] = None,
    ) -> StageRecord:
        record = StageRecord(
            name=stage.name,
            path=path,
            outcome=outcome,
            started_at=started_at,
            finished_at=datetime.utcnow(),
            error=error,
            reason=reason,
            log_ref=log_ref,
            hook_errors=tuple(hook_errors or ()),
            artifacts=tuple(artifacts or ()),
        )
        await self.reporter.record(record)
        return record
