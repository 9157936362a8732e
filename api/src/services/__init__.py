from api.src.services.github import (
    RepositoryError,
    verify_signature,
    clone_repository,
    fetch_pipeline_config,
    collect_changed_paths,
    parse_webhook_payload,
    cleanup_repo,
)
from api.src.services.pipeline_parser import (
    parse_pipeline_config,
    parse_pipeline_dict,
    PipelineConfigError,
)
from api.src.services.queue import (
    enqueue_pipeline_run,
    submit_approval_decision,
    get_pending_decision,
    get_run_status,
    get_queue_length,
)

__all__ = [
    "RepositoryError",
    "verify_signature",
    "clone_repository",
    "fetch_pipeline_config",
    "collect_changed_paths",
    "parse_webhook_payload",
    "cleanup_repo",
    "parse_pipeline_config",
    "parse_pipeline_dict",
    "PipelineConfigError",
    "enqueue_pipeline_run",
    "submit_approval_decision",
    "get_pending_decision",
    "get_run_status",
    "get_queue_length",
]
