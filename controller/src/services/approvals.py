"""
Approval watcher - applies decisions submitted through the API to the
pending gate of a running pipeline.

The API stores one decision per run in a Redis hash:
    pipelinex:approvals[run_id] = {"decision": "approve" | "reject" | "abort",
                                   "approver": "...", "reason": "...", "stage": "..."}
"""

import asyncio
import json
import logging
from typing import Any, Callable, Dict, Optional

import redis.asyncio as redis

from controller.src.config import get_settings
from controller.src.engine.errors import GateClosedError, UnauthorizedApprover
from controller.src.engine.gate import ApprovalGate
from controller.src.engine.scheduler import Scheduler

logger = logging.getLogger(__name__)
settings = get_settings()

APPROVALS_KEY = "pipelinex:approvals"

# Blocking listeners are fine: they run in a worker thread
GateListener = Callable[[Optional[ApprovalGate]], None]

def apply_decision(scheduler: Scheduler, decision: Dict[str, Any]) -> bool:
    """
    Apply one decision. Returns True when the decision is consumed,
    False when it has to wait for a gate to open.
    """
    action = decision.get("decision")
    approver = decision.get("approver")

    if action == "abort":
        scheduler.abort(f"aborted by {approver or 'unknown'}")
        return True

    gate = scheduler.pending_gate
    if gate is None:
        return False

    stage = decision.get("stage")
    if stage and stage != gate.stage_path:
        logger.warning(f"Discarding decision for '{stage}', pending gate is '{gate.stage_path}'")
        return True

    try:
        if action == "approve":
            gate.approve(approver)
        elif action == "reject":
            gate.reject(approver, decision.get("reason"))
        else:
            logger.warning(f"Discarding unknown decision {action!r}")
    except (GateClosedError, UnauthorizedApprover) as e:
        logger.warning(f"Decision from {approver} refused: {e}")

    return True

async def _poll_once(client: redis.Redis, run_id: str, scheduler: Scheduler):
    raw = await client.hget(APPROVALS_KEY, run_id)
    if not raw:
        return

    try:
        decision = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning(f"Dropping malformed decision for run {run_id}: {raw!r}")
        decision = None

    if decision is None or apply_decision(scheduler, decision):
        await client.hdel(APPROVALS_KEY, run_id)

async def watch_approvals(
    run_id: str,
    scheduler: Scheduler,
    on_gate_change: Optional[GateListener] = None,
):
    """Poll for decisions until cancelled."""
    client = redis.from_url(settings.redis_url, decode_responses=True)
    current_gate = None

    try:
        while True:
            gate = scheduler.pending_gate
            if gate is not current_gate:
                current_gate = gate
                if on_gate_change:
                    try:
                        await asyncio.to_thread(on_gate_change, gate)
                    except Exception:
                        logger.exception(f"Gate listener failed for run {run_id}")

            try:
                await _poll_once(client, run_id, scheduler)
            except redis.RedisError as e:
                logger.error(f"Approval watcher for run {run_id}: {e}")

            await asyncio.sleep(settings.approval_poll_interval)
    finally:
        await client.close()
