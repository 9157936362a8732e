"""
Persist run status and stage records to the database.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional
import redis
from sqlalchemy import create_engine, update
from sqlalchemy.orm import sessionmaker

from controller.src.config import get_settings
from controller.src.engine.reporter import StageRecord
from controller.src.models.db import PipelineRun, StageResult
from controller.src.models.job import RunStatus

logger = logging.getLogger(__name__)
settings = get_settings()

# Sync database connection for controller
engine = create_engine(settings.database_url)
SessionLocal = sessionmaker(bind=engine)

# Live status read by the API
STATUS_KEY = "pipelinex:status"
status_cache = redis.from_url(settings.redis_url, decode_responses=True)

def update_run_status(
    run_id: str,
    status: RunStatus,
    started_at: Optional[datetime] = None,
    finished_at: Optional[datetime] = None,
    report: Optional[Dict[str, Any]] = None,
    error: Optional[str] = None,
):
    """Update pipeline run status in database."""
    with SessionLocal() as session:
        values = {"status": status.value, "updated_at": datetime.utcnow()}

        if started_at:
            values["started_at"] = started_at
        if finished_at:
            values["finished_at"] = finished_at
        if report is not None:
            values["report"] = report
        if error is not None:
            values["error"] = error

        session.execute(
            update(PipelineRun)
            .where(PipelineRun.id == run_id)
            .values(**values)
        )
        session.commit()
        logger.info(f"Updated run {run_id} status to {status.value}")

    try:
        status_cache.hset(STATUS_KEY, run_id, status.value)
    except redis.RedisError as e:
        logger.warning(f"Could not publish status of run {run_id}: {e}")

def _get_or_create_stage(session, run_id: str, path: str) -> StageResult:
    row = session.query(StageResult).filter(
        StageResult.run_id == run_id,
        StageResult.path == path,
    ).one_or_none()

    if row is None:
        row = StageResult(run_id=run_id, path=path, name=path.split("/")[-1])
        session.add(row)
    return row

def save_stage_record(run_id: str, record: StageRecord):
    """Store a finished stage record."""
    with SessionLocal() as session:
        row = _get_or_create_stage(session, run_id, record.path)
        row.name = record.name
        row.outcome = record.outcome.value
        row.reason = record.reason
        row.error = record.error
        row.log_ref = record.log_ref
        row.artifacts = list(record.artifacts)
        row.hook_errors = list(record.hook_errors)
        row.started_at = record.started_at
        row.finished_at = record.finished_at
        session.commit()
        logger.debug(f"Saved stage {record.path} of run {run_id}: {record.outcome.value}")

def save_stage_logs(run_id: str, path: str, logs: str):
    """Append action logs; may arrive before the stage record."""
    with SessionLocal() as session:
        row = _get_or_create_stage(session, run_id, path)
        row.logs = f"{row.logs}\n{logs}" if row.logs else logs
        session.commit()
