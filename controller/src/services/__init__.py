from controller.src.services.executor import execute_pipeline, finish_run
from controller.src.services.runner import KubernetesActionRunner
from controller.src.services.agents import LabelAgentSelector
from controller.src.services.notifier import WebhookNotifier
from controller.src.services.artifacts import LocalArtifactStore
from controller.src.services.approvals import apply_decision, watch_approvals
from controller.src.services.log_collector import collect_logs
from controller.src.services.status_reporter import (
    update_run_status,
    save_stage_record,
    save_stage_logs,
)

__all__ = [
    "execute_pipeline",
    "finish_run",
    "KubernetesActionRunner",
    "LabelAgentSelector",
    "WebhookNotifier",
    "LocalArtifactStore",
    "apply_decision",
    "watch_approvals",
    "collect_logs",
    "update_run_status",
    "save_stage_record",
    "save_stage_logs",
]
