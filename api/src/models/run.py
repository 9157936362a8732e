from pydantic import BaseModel
from typing import Optional, List, Dict, Any
from datetime import datetime
from uuid import UUID

class StageResponse(BaseModel):
    id: UUID
    path: str
    name: str
    outcome: str
    reason: Optional[str] = None
    error: Optional[str] = None
    log_ref: Optional[str] = None
    artifacts: Optional[List[str]] = None
    hook_errors: Optional[List[str]] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class PipelineRunBase(BaseModel):
    commit_sha: str
    branch: str

class PipelineRunResponse(PipelineRunBase):
    id: UUID
    status: str
    triggered_by: Optional[str] = None
    changed_paths: Optional[List[str]] = None
    error: Optional[str] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    created_at: datetime
    stages: List[StageResponse] = []

    class Config:
        from_attributes = True

class RepositoryResponse(BaseModel):
    id: UUID
    name: str
    full_name: str
    clone_url: str
    created_at: datetime

    class Config:
        from_attributes = True

class ManualTriggerRequest(BaseModel):
    repository_url: str
    branch: str = "main"
    commit_sha: Optional[str] = None
    changed_paths: List[str] = []
    # User-supplied flags, visible to `flag:` conditions
    params: Dict[str, Any] = {}

class ApprovalDecision(BaseModel):
    decision: str  # approve | reject | abort
    approver: Optional[str] = None
    reason: Optional[str] = None
    stage: Optional[str] = None
