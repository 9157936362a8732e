from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import text
import redis.asyncio as redis

from api.src.db.database import get_db
from api.src.config import get_settings
from api.src.services.queue import get_queue_length

settings = get_settings()

router = APIRouter(tags=["health"])

@router.get("/health")
async def health_check():
    return {"status": "healthy", "service": "pipelinex-api"}

@router.get("/health/all")
async def full_health_check(db: AsyncSession = Depends(get_db)):
    """Database, Redis and queue depth in one call."""
    health = {"api": "healthy", "database": "unknown", "redis": "unknown"}
    queue_length = None

    try:
        await db.execute(text("SELECT 1"))
        health["database"] = "healthy"
    except Exception as e:
        health["database"] = f"unhealthy: {e}"

    try:
        client = redis.from_url(settings.redis_url)
        await client.ping()
        await client.close()
        health["redis"] = "healthy"
        queue_length = await get_queue_length()
    except redis.RedisError as e:
        health["redis"] = f"unhealthy: {e}"

    overall = "healthy" if all(v == "healthy" for v in health.values()) else "degraded"
    return {"status": overall, "services": health, "queue_length": queue_length}
