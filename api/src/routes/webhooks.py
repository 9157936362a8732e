"""
GitHub webhook endpoints.
"""

from fastapi import APIRouter, Request, HTTPException, Header, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional
import logging

from api.src.config import get_settings
from api.src.db.database import get_db
from api.src.services.github import verify_signature, parse_webhook_payload, RepositoryError
from api.src.services.pipeline_parser import PipelineConfigError
from api.src.services.runs import load_pipeline, create_run

logger = logging.getLogger(__name__)
settings = get_settings()

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

async def process_push_event(payload: dict, db: AsyncSession):
    """Process GitHub push event and create pipeline run."""
    webhook_data = parse_webhook_payload(payload)

    if not webhook_data["commit_sha"]:
        logger.warning("No commit SHA in webhook payload")
        return {"status": "skipped", "reason": "No commit SHA"}

    if settings.trigger_branches and webhook_data["branch"] not in settings.trigger_branches:
        return {"status": "skipped", "reason": f"Branch {webhook_data['branch']} not configured"}

    try:
        config = await load_pipeline(webhook_data)
    except PipelineConfigError as e:
        logger.error(f"Invalid pipeline config in {webhook_data['repo_full_name']}: {e}")
        return {"status": "error", "reason": str(e)}
    except RepositoryError as e:
        logger.error(f"Failed to process repository: {e}")
        return {"status": "error", "reason": str(e)}

    pipeline_run = await create_run(db, webhook_data, config)

    return {
        "status": "queued",
        "run_id": str(pipeline_run.id),
        "stages": len(config["stages"]),
        "changed_paths": len(webhook_data["changed_paths"]),
    }

@router.post("/github")
async def github_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    x_hub_signature_256: Optional[str] = Header(None),
    x_github_event: Optional[str] = Header(None),
):
    """
    Receive GitHub webhook events.
    """
    body = await request.body()

    if not verify_signature(body, x_hub_signature_256):
        raise HTTPException(status_code=401, detail="Invalid signature")

    try:
        payload = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON payload")

    if x_github_event == "ping":
        return {"status": "pong", "message": "Webhook configured successfully"}

    if x_github_event == "push":
        return await process_push_event(payload, db)

    return {
        "status": "ignored",
        "event": x_github_event,
        "message": f"Event type '{x_github_event}' not handled"
    }
