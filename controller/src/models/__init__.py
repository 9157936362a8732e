from controller.src.models.job import (
    RunStatus,
    RunTrigger,
    PipelineJob,
)

__all__ = [
    "RunStatus",
    "RunTrigger",
    "PipelineJob",
]
