"""
Pipeline executor - runs a queued pipeline through the engine.
"""

import asyncio
import contextlib
import logging
from datetime import datetime
from functools import partial
from typing import Any, Dict, Optional
from kubernetes.client.rest import ApiException

from controller.src.engine import (
    ApprovalGate,
    Outcome,
    PipelineReport,
    Scheduler,
    StageRecord,
    StructuralError,
    build_graph,
    new_context,
)
from controller.src.k8s import ensure_namespace
from controller.src.models.job import PipelineJob, RunStatus
from controller.src.services.agents import LabelAgentSelector
from controller.src.services.approvals import watch_approvals
from controller.src.services.artifacts import LocalArtifactStore
from controller.src.services.notifier import WebhookNotifier
from controller.src.services.runner import KubernetesActionRunner
from controller.src.services.status_reporter import (
    save_stage_logs,
    save_stage_record,
    update_run_status,
)

logger = logging.getLogger(__name__)

async def execute_pipeline(job_data: Dict[str, Any]) -> bool:
    """
    Execute a pipeline run.
    Returns True if the run succeeded, False otherwise.
    """
    job = PipelineJob(**job_data)
    run_id = job.run_id

    try:
        graph = build_graph(job.config)
    except StructuralError as e:
        # Nothing runs for an invalid graph
        logger.error(f"Run {run_id} rejected: {e}")
        await asyncio.to_thread(
            update_run_status, run_id, RunStatus.INVALID,
            finished_at=datetime.utcnow(), error=str(e),
        )
        return False

    logger.info(f"Starting pipeline run {run_id} with {len(graph.stages)} top-level stages")

    try:
        await asyncio.to_thread(ensure_namespace)
    except ApiException as e:
        logger.error(f"Run {run_id} cannot start: {e}")
        await asyncio.to_thread(
            update_run_status, run_id, RunStatus.FAILED,
            finished_at=datetime.utcnow(),
            error=f"Cluster unavailable: {e.reason}",
        )
        return False

    await asyncio.to_thread(update_run_status, run_id, RunStatus.RUNNING, started_at=datetime.utcnow())

    context = new_context(
        run_id=run_id,
        branch=job.trigger.branch,
        changed_paths=job.trigger.changed_paths,
        params=job.trigger.params,
    )

    async def persist_record(record: StageRecord):
        # Stage rows are written off the event loop so parallel branches keep moving
        await asyncio.to_thread(save_stage_record, run_id, record)

    scheduler = Scheduler(
        runner=KubernetesActionRunner(run_id, graph.actions, on_logs=partial(save_stage_logs, run_id)),
        selector=LabelAgentSelector(),
        notifier=WebhookNotifier(),
        artifacts=LocalArtifactStore(run_id),
        listeners=[persist_record],
    )

    def on_gate_change(gate: Optional[ApprovalGate]):
        update_run_status(run_id, RunStatus.AWAITING_APPROVAL if gate else RunStatus.RUNNING)

    watcher = asyncio.create_task(watch_approvals(run_id, scheduler, on_gate_change))
    try:
        report = await scheduler.run(graph, context)
    finally:
        watcher.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await watcher

    await asyncio.to_thread(finish_run, report)
    return report.outcome == Outcome.SUCCESS

def finish_run(report: PipelineReport):
    status = RunStatus.SUCCEEDED if report.outcome == Outcome.SUCCESS else RunStatus.FAILED
    update_run_status(
        report.run_id,
        status,
        finished_at=datetime.utcnow(),
        report=report.model_dump(mode="json"),
        error=report.error,
    )
    logger.info(f"Pipeline run {report.run_id} finished with status: {status.value}")
