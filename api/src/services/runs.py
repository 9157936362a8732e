"""
Run creation shared by the webhook and the manual trigger.
"""

import logging
from typing import Dict, Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from api.src.models.pipeline import Repository, PipelineRun
from api.src.services.github import clone_repository, fetch_pipeline_config, cleanup_repo
from api.src.services.pipeline_parser import parse_pipeline_dict, PipelineConfigError
from api.src.services.queue import enqueue_pipeline_run

logger = logging.getLogger(__name__)

async def get_or_create_repository(db: AsyncSession, repo_info: Dict[str, Any]) -> Repository:
    result = await db.execute(
        select(Repository).where(Repository.full_name == repo_info["repo_full_name"])
    )
    repository = result.scalar_one_or_none()

    if not repository:
        repository = Repository(
            name=repo_info["repo_name"],
            full_name=repo_info["repo_full_name"],
            clone_url=repo_info["clone_url"],
        )
        db.add(repository)
        await db.flush()

    return repository

async def load_pipeline(repo_info: Dict[str, Any]) -> Dict[str, Any]:
    """
    Clone the repository at the pushed commit and validate its pipeline definition.
    Raises PipelineConfigError when there is none or it is invalid.
    """
    repo_path = await clone_repository(repo_info["clone_url"], repo_info["commit_sha"])
    try:
        pipeline_config = await fetch_pipeline_config(repo_path)
    finally:
        cleanup_repo(repo_path)

    if not pipeline_config:
        raise PipelineConfigError("No pipeline configuration found")

    return parse_pipeline_dict(pipeline_config)

async def create_run(
    db: AsyncSession,
    repo_info: Dict[str, Any],
    config: Dict[str, Any],
    params: Dict[str, Any] = None,
) -> PipelineRun:
    """Persist a run and queue it for the controller."""
    repository = await get_or_create_repository(db, repo_info)

    pipeline_run = PipelineRun(
        repository_id=repository.id,
        commit_sha=repo_info["commit_sha"],
        branch=repo_info["branch"],
        status="queued",
        triggered_by=repo_info.get("pusher"),
        config=config,
        changed_paths=repo_info.get("changed_paths", []),
    )
    db.add(pipeline_run)
    await db.commit()

    await enqueue_pipeline_run(
        run_id=str(pipeline_run.id),
        config=config,
        trigger={
            "branch": repo_info["branch"],
            "changed_paths": repo_info.get("changed_paths", []),
            "params": params or {},
        },
        repo_info=repo_info,
    )

    logger.info(f"Pipeline run {pipeline_run.id} created and queued")
    return pipeline_run
