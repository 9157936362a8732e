"""
Action runner backed by Kubernetes Jobs.
"""

import asyncio
import logging
import time
from typing import Callable, Dict, Optional, Tuple
from kubernetes.client.rest import ApiException

from controller.src.config import get_settings
from controller.src.engine.context import ContextSnapshot
from controller.src.engine.graph import ActionSpec
from controller.src.engine.interfaces import ActionResult
from controller.src.engine.reporter import Outcome
from controller.src.k8s import build_job, create_job, delete_job, get_job_status, read_job
from controller.src.services.log_collector import collect_logs

logger = logging.getLogger(__name__)
settings = get_settings()

LogSink = Callable[[str, str], None]

class KubernetesActionRunner:
    """
    Runs each action as one Kubernetes Job.
    Blocking client calls go through threads so parallel actions overlap.
    """

    def __init__(
        self,
        run_id: str,
        actions: Dict[str, ActionSpec],
        on_logs: Optional[LogSink] = None,
    ):
        self.run_id = run_id
        self.actions = actions
        self.on_logs = on_logs

    async def invoke(self, action_id: str, snapshot: ContextSnapshot) -> ActionResult:
        action = self.actions.get(action_id)
        if action is None:
            return ActionResult(outcome=Outcome.FAILURE, error=f"Unknown action '{action_id}'")

        job = build_job(
            run_id=self.run_id,
            action_id=action_id,
            action=action,
            env_vars=snapshot.variables,
            workdir=snapshot.workdir,
        )
        job_name = job.metadata.name
        start = time.monotonic()

        logger.info(f"Creating job {job_name} for {snapshot.stage_path}")
        await asyncio.to_thread(create_job, job)

        succeeded, error = await self.wait_for_job(job_name, action.timeout)
        duration_ms = int((time.monotonic() - start) * 1000)

        logs = await asyncio.to_thread(collect_logs, job_name)
        if self.on_logs:
            if action_id != snapshot.stage_path:
                # Hook actions log under the stage that owns them
                logs = f"--- {action_id} ---\n{logs}"
            await asyncio.to_thread(self.on_logs, snapshot.stage_path, logs)

        return ActionResult(
            outcome=Outcome.SUCCESS if succeeded else Outcome.FAILURE,
            duration_ms=duration_ms,
            log_ref=job_name,
            error=error,
        )

    async def wait_for_job(self, job_name: str, timeout: int) -> Tuple[bool, Optional[str]]:
        """
        Wait for a job to complete.
        Returns (succeeded, error message).
        """
        start_time = time.monotonic()

        while True:
            if time.monotonic() - start_time > timeout:
                logger.error(f"Job {job_name} timed out after {timeout}s")
                await asyncio.to_thread(delete_job, job_name)
                return False, f"Timed out after {timeout}s"

            try:
                job = await asyncio.to_thread(read_job, job_name)
            except ApiException as e:
                logger.error(f"Error checking job status: {e}")
                await asyncio.sleep(5)
                continue

            status = get_job_status(job)
            if status == "succeeded":
                return True, None
            if status == "failed":
                return False, f"Job {job_name} failed"

            await asyncio.sleep(settings.job_poll_interval)
