from api.src.models.pipeline import Repository, PipelineRun, StageResult
from api.src.models.run import (
    PipelineRunResponse,
    StageResponse,
    RepositoryResponse,
    ManualTriggerRequest,
    ApprovalDecision,
)

__all__ = [
    "Repository",
    "PipelineRun",
    "StageResult",
    "PipelineRunResponse",
    "StageResponse",
    "RepositoryResponse",
    "ManualTriggerRequest",
    "ApprovalDecision",
]
