from controller.src.engine.conditions import evaluate
from controller.src.engine.context import ContextSnapshot, ExecutionContext, RunFacts, new_context
from controller.src.engine.errors import (
    PipelineError,
    StructuralError,
    ConditionEvaluationError,
    ActionFailure,
    GateRejection,
    GateTimeout,
    AgentUnavailable,
    HookFailure,
    GateClosedError,
    UnauthorizedApprover,
    ReportFinalizedError,
)
from controller.src.engine.gate import ApprovalGate, GateState
from controller.src.engine.graph import (
    ActionSpec,
    ApprovalSpec,
    Hook,
    HookKind,
    PipelineGraph,
    PostHooks,
    Stage,
    build_graph,
    validate_graph,
)
from controller.src.engine.interfaces import ActionResult
from controller.src.engine.reporter import Outcome, PipelineReport, ResultReporter, StageRecord
from controller.src.engine.scheduler import Scheduler

__all__ = [
    "evaluate",
    "ContextSnapshot",
    "ExecutionContext",
    "RunFacts",
    "new_context",
    "PipelineError",
    "StructuralError",
    "ConditionEvaluationError",
    "ActionFailure",
    "GateRejection",
    "GateTimeout",
    "AgentUnavailable",
    "HookFailure",
    "GateClosedError",
    "UnauthorizedApprover",
    "ReportFinalizedError",
    "ApprovalGate",
    "GateState",
    "ActionSpec",
    "ApprovalSpec",
    "Hook",
    "HookKind",
    "PipelineGraph",
    "PostHooks",
    "Stage",
    "build_graph",
    "validate_graph",
    "ActionResult",
    "Outcome",
    "PipelineReport",
    "ResultReporter",
    "StageRecord",
    "Scheduler",
]
