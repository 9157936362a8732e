"""
Queue payload and run status models.
"""

from pydantic import BaseModel
from typing import List, Optional, Dict, Any
from enum import Enum

class RunStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    AWAITING_APPROVAL = "awaiting_approval"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    INVALID = "invalid"

class RunTrigger(BaseModel):
    branch: str = ""
    changed_paths: List[str] = []
    params: Dict[str, Any] = {}

class PipelineJob(BaseModel):
    run_id: str
    config: Dict[str, Any]
    trigger: RunTrigger = RunTrigger()
    repo_info: Dict[str, Any] = {}
    queued_at: Optional[str] = None
