"""
Kubernetes Job builder for pipeline actions.
"""

from kubernetes import client
from typing import Dict, Optional
import hashlib

from controller.src.config import get_settings
from controller.src.engine.graph import ActionSpec

settings = get_settings()

def build_job_name(run_id: str, action_id: str) -> str:
    """Generate a unique job name for an action of a run."""
    # K8s names must be lowercase, alphanumeric, max 63 chars
    leaf = action_id.split("/")[-1].split("#")[0]
    safe_name = leaf.lower().replace(" ", "-").replace("_", "-")
    safe_name = "".join(c for c in safe_name if c.isalnum() or c == "-")
    safe_name = safe_name.strip("-")[:20] or "action"

    # Hashes keep names unique per run and per action path
    run_hash = hashlib.md5(run_id.encode()).hexdigest()[:8]
    action_hash = hashlib.md5(action_id.encode()).hexdigest()[:6]

    return f"px-{run_hash}-{action_hash}-{safe_name}"

def build_job(
    run_id: str,
    action_id: str,
    action: ActionSpec,
    env_vars: Optional[Dict[str, str]] = None,
    workdir: str = "",
) -> client.V1Job:
    """
    Build a Kubernetes Job running one action.
    `env_vars` is the variable frame of the stage being run.
    """
    job_name = build_job_name(run_id, action_id)
    labels = {
        "app": "pipelinex",
        "run-id": run_id,
        "action": hashlib.md5(action_id.encode()).hexdigest()[:12],
    }

    env = [
        client.V1EnvVar(name="PIPELINEX_RUN_ID", value=run_id),
        client.V1EnvVar(name="PIPELINEX_ACTION_ID", value=action_id),
    ]
    for key, value in (env_vars or {}).items():
        env.append(client.V1EnvVar(name=key, value=str(value)))

    # Join commands with && so the action fails fast on error
    shell_command = " && ".join(action.commands)

    container = client.V1Container(
        name="action",
        image=action.image,
        command=["/bin/sh", "-c"],
        args=[shell_command],
        env=env,
        working_dir=workdir or None,
        resources=client.V1ResourceRequirements(
            requests={"cpu": "100m", "memory": "128Mi"},
            limits={"cpu": "500m", "memory": "512Mi"},
        ),
    )

    template = client.V1PodTemplateSpec(
        metadata=client.V1ObjectMeta(labels=labels),
        spec=client.V1PodSpec(
            containers=[container],
            restart_policy="Never",
        ),
    )

    return client.V1Job(
        api_version="batch/v1",
        kind="Job",
        metadata=client.V1ObjectMeta(
            name=job_name,
            namespace=settings.k8s_namespace,
            labels=labels,
        ),
        spec=client.V1JobSpec(
            template=template,
            backoff_limit=0,  # Actions are not retried
            active_deadline_seconds=action.timeout,
            ttl_seconds_after_finished=settings.job_ttl_after_finished,
        ),
    )

def get_job_status(job: client.V1Job) -> str:
    """
    Determine job status from Kubernetes Job object.
    Returns: 'pending', 'running', 'succeeded', 'failed'
    """
    if job.status is None:
        return "pending"

    if job.status.succeeded and job.status.succeeded > 0:
        return "succeeded"

    if job.status.failed and job.status.failed > 0:
        return "failed"

    if job.status.active and job.status.active > 0:
        return "running"

    return "pending"
