from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from sqlalchemy.orm import selectinload
from datetime import datetime
from typing import List, Optional
from uuid import UUID
import logging

from api.src.db.database import get_db
from api.src.models.pipeline import PipelineRun, StageResult, Repository
from api.src.models.run import (
    PipelineRunResponse,
    RepositoryResponse,
    ManualTriggerRequest,
    ApprovalDecision,
)
from api.src.services.github import RepositoryError
from api.src.services.pipeline_parser import PipelineConfigError
from api.src.services.queue import get_run_status, submit_approval_decision, get_pending_decision
from api.src.services.runs import load_pipeline, create_run

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/pipelines", tags=["pipelines"])

FINISHED_STATUSES = ("succeeded", "failed", "invalid")

async def _get_run(db: AsyncSession, run_id: UUID) -> PipelineRun:
    query = (
        select(PipelineRun)
        .options(selectinload(PipelineRun.stages))
        .where(PipelineRun.id == run_id)
    )
    result = await db.execute(query)
    run = result.scalar_one_or_none()

    if not run:
        raise HTTPException(status_code=404, detail="Pipeline run not found")

    return run

@router.get("/runs", response_model=List[PipelineRunResponse])
async def list_runs(
    limit: int = 20,
    offset: int = 0,
    status: Optional[str] = None,
    db: AsyncSession = Depends(get_db)
):
    """List pipeline runs, newest first."""
    query = (
        select(PipelineRun)
        .options(selectinload(PipelineRun.stages))
        .order_by(PipelineRun.created_at.desc())
    )

    if status:
        query = query.where(PipelineRun.status == status)

    result = await db.execute(query.limit(limit).offset(offset))
    return result.scalars().all()

@router.get("/runs/{run_id}", response_model=PipelineRunResponse)
async def get_run(run_id: UUID, db: AsyncSession = Depends(get_db)):
    """Get a specific pipeline run."""
    return await _get_run(db, run_id)

@router.get("/runs/{run_id}/status")
async def get_run_status_endpoint(run_id: UUID, db: AsyncSession = Depends(get_db)):
    """Get live status of a pipeline run and its finished stages."""
    run = await _get_run(db, run_id)

    return {
        "run_id": str(run_id),
        "db_status": run.status,
        "live_status": await get_run_status(str(run_id)),
        "pending_decision": await get_pending_decision(str(run_id)),
        "stages": [
            {
                "path": stage.path,
                "outcome": stage.outcome,
                "reason": stage.reason,
            }
            for stage in sorted(run.stages, key=lambda s: s.started_at or datetime.min)
        ]
    }

@router.get("/runs/{run_id}/report")
async def get_run_report(run_id: UUID, db: AsyncSession = Depends(get_db)):
    """Final pipeline report, available once the run has finished."""
    run = await _get_run(db, run_id)

    if run.status not in FINISHED_STATUSES:
        raise HTTPException(status_code=409, detail=f"Run is still {run.status}")

    if run.report is None:
        # Rejected before any stage ran
        return {"run_id": str(run_id), "outcome": "failure", "error": run.error, "records": []}

    return run.report

@router.get("/runs/{run_id}/logs")
async def get_run_logs(run_id: UUID, db: AsyncSession = Depends(get_db)):
    """Get logs for all stages of a pipeline run."""
    query = (
        select(StageResult)
        .where(StageResult.run_id == run_id)
        .order_by(StageResult.started_at)
    )
    result = await db.execute(query)
    stages = result.scalars().all()

    if not stages:
        raise HTTPException(status_code=404, detail="Pipeline run not found")

    return {
        "run_id": str(run_id),
        "stages": [
            {
                "path": stage.path,
                "outcome": stage.outcome,
                "log_ref": stage.log_ref,
                "logs": stage.logs,
                "started_at": stage.started_at,
                "finished_at": stage.finished_at,
            }
            for stage in stages
        ]
    }

@router.post("/runs/{run_id}/approval")
async def decide_approval(
    run_id: UUID,
    decision: ApprovalDecision,
    db: AsyncSession = Depends(get_db),
):
    """
    Approve or reject the pending gate of a run, or abort the run.
    The controller applies the decision when it next polls.
    """
    run = await _get_run(db, run_id)

    if run.status in FINISHED_STATUSES:
        raise HTTPException(status_code=409, detail=f"Run already {run.status}")

    try:
        await submit_approval_decision(str(run_id), decision.model_dump())
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    logger.info(f"Decision '{decision.decision}' for run {run_id} by {decision.approver}")
    return {"status": "submitted", "run_id": str(run_id), "decision": decision.decision}

@router.post("/trigger")
async def trigger_run(request: ManualTriggerRequest, db: AsyncSession = Depends(get_db)):
    """Start a run by hand, optionally with user-supplied flags."""
    full_name = request.repository_url.rstrip("/").removesuffix(".git")
    full_name = "/".join(full_name.split("/")[-2:])

    repo_info = {
        "repo_name": full_name.split("/")[-1],
        "repo_full_name": full_name,
        "clone_url": request.repository_url,
        "commit_sha": request.commit_sha or "",
        "branch": request.branch,
        "pusher": "manual",
        "changed_paths": request.changed_paths,
    }

    try:
        config = await load_pipeline(repo_info)
    except (PipelineConfigError, RepositoryError) as e:
        raise HTTPException(status_code=400, detail=str(e))

    if not repo_info["commit_sha"]:
        repo_info["commit_sha"] = "HEAD"

    pipeline_run = await create_run(db, repo_info, config, params=request.params)
    return {"status": "queued", "run_id": str(pipeline_run.id)}

@router.get("/repositories", response_model=List[RepositoryResponse])
async def list_repositories(db: AsyncSession = Depends(get_db)):
    """List all registered repositories."""
    result = await db.execute(select(Repository).order_by(Repository.created_at.desc()))
    return result.scalars().all()

@router.get("/stats")
async def get_pipeline_stats(db: AsyncSession = Depends(get_db)):
    """Run counts by status and stage outcome counts."""
    result = await db.execute(
        select(PipelineRun.status, func.count(PipelineRun.id)).group_by(PipelineRun.status)
    )
    status_counts = {row[0]: row[1] for row in result.all()}

    result = await db.execute(
        select(StageResult.outcome, func.count(StageResult.id)).group_by(StageResult.outcome)
    )
    outcome_counts = {row[0]: row[1] for row in result.all()}

    repo_count = (await db.execute(select(func.count(Repository.id)))).scalar()

    return {
        "repositories": repo_count,
        "runs": status_counts,
        "total_runs": sum(status_counts.values()),
        "stages": outcome_counts,
    }
