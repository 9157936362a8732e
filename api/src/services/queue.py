"""
Redis queue service for pipeline runs and approval decisions.
"""

import redis.asyncio as redis
import json
from typing import Dict, Any, Optional
from datetime import datetime

from api.src.config import get_settings

settings = get_settings()

PIPELINE_QUEUE = "pipelinex:jobs"
PIPELINE_STATUS = "pipelinex:status"
APPROVALS = "pipelinex:approvals"

APPROVAL_DECISIONS = ("approve", "reject", "abort")

async def get_redis_client() -> redis.Redis:
    """Get async Redis client."""
    return redis.from_url(settings.redis_url, decode_responses=True)

async def enqueue_pipeline_run(
    run_id: str,
    config: Dict[str, Any],
    trigger: Dict[str, Any],
    repo_info: Dict[str, Any],
):
    """Add pipeline run to processing queue."""
    client = await get_redis_client()

    job = {
        "run_id": run_id,
        "config": config,
        "trigger": trigger,
        "repo_info": repo_info,
        "queued_at": datetime.utcnow().isoformat(),
    }

    try:
        await client.lpush(PIPELINE_QUEUE, json.dumps(job))
        await client.hset(PIPELINE_STATUS, run_id, "queued")
    finally:
        await client.close()

async def submit_approval_decision(run_id: str, decision: Dict[str, Any]):
    """
    Store a decision for the controller's approval watcher.
    A newer decision replaces one that has not been applied yet.
    """
    if decision.get("decision") not in APPROVAL_DECISIONS:
        raise ValueError(f"Decision must be one of {', '.join(APPROVAL_DECISIONS)}")

    client = await get_redis_client()

    try:
        await client.hset(APPROVALS, run_id, json.dumps(decision))
    finally:
        await client.close()

async def get_pending_decision(run_id: str) -> Optional[Dict[str, Any]]:
    """Decision submitted but not yet applied by the controller."""
    client = await get_redis_client()

    try:
        raw = await client.hget(APPROVALS, run_id)
        return json.loads(raw) if raw else None
    finally:
        await client.close()

async def get_run_status(run_id: str) -> Optional[str]:
    """Get pipeline run status from Redis."""
    client = await get_redis_client()

    try:
        return await client.hget(PIPELINE_STATUS, run_id)
    finally:
        await client.close()

async def get_queue_length() -> int:
    """Get number of jobs in queue."""
    client = await get_redis_client()

    try:
        return await client.llen(PIPELINE_QUEUE)
    finally:
        await client.close()
