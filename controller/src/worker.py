"""
Queue worker - pulls pipeline runs from Redis and executes them.
"""

import asyncio
import json
import logging
from typing import Optional, Dict, Any

import redis.asyncio as redis

from controller.src.config import get_settings
from controller.src.services.executor import execute_pipeline

logger = logging.getLogger(__name__)
settings = get_settings()

PIPELINE_QUEUE = "pipelinex:jobs"

async def get_next_job(client: redis.Redis) -> Optional[Dict[str, Any]]:
    """Pull next job from Redis queue, waiting up to 5 seconds."""
    result = await client.brpop(PIPELINE_QUEUE, timeout=5)
    if not result:
        return None

    _, job_data = result
    try:
        return json.loads(job_data)
    except json.JSONDecodeError:
        logger.error(f"Dropping malformed job payload: {job_data!r}")
        return None

async def worker_loop():
    """Main worker loop. Runs one pipeline at a time."""
    logger.info("Worker started, waiting for jobs...")
    client = redis.from_url(settings.redis_url, decode_responses=True)

    try:
        while True:
            try:
                job = await get_next_job(client)
            except redis.RedisError as e:
                logger.error(f"Queue error: {e}")
                await asyncio.sleep(5)
                continue

            if not job:
                continue

            run_id = job.get("run_id", "unknown")
            logger.info(f"Received job for run {run_id}")

            try:
                await execute_pipeline(job)
            except Exception as e:
                logger.exception(f"Failed to execute pipeline {run_id}: {e}")
    finally:
        await client.close()

def run_worker():
    """Entry point for worker."""
    try:
        asyncio.run(worker_loop())
    except KeyboardInterrupt:
        logger.info("Worker shutting down...")
