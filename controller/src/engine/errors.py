"""
Error taxonomy for the pipeline engine.
"""

from typing import List, Optional


class PipelineError(Exception):
    """Base class for engine errors."""
    pass


class StructuralError(PipelineError):
    """Raised when a pipeline graph is invalid. No stage runs."""

    def __init__(self, problems: List[str]):
        self.problems = list(problems)
        super().__init__("Invalid pipeline: " + "; ".join(self.problems))


class ConditionEvaluationError(PipelineError):
    """Malformed predicate. Logged by the evaluator, never raised to callers."""
    pass


class ActionFailure(PipelineError):
    """The action runner reported a failure."""

    reason = "action-failed"

    def __init__(self, message: str, log_ref: Optional[str] = None):
        self.log_ref = log_ref
        super().__init__(message)


class GateRejection(PipelineError):
    """An approval gate was rejected."""

    reason = "gate-rejected"


class GateTimeout(PipelineError):
    """An approval gate timed out or the run was cancelled while pending."""

    reason = "gate-timeout"


class AgentUnavailable(PipelineError):
    """No eligible host for a stage's agent requirement."""

    reason = "no-eligible-agent"

    def __init__(self, requirement: Optional[str]):
        self.requirement = requirement
        super().__init__(f"No eligible agent for requirement '{requirement}'")


class HookFailure(PipelineError):
    """A post hook failed."""
    pass


class GateClosedError(PipelineError):
    """Decision submitted to a gate that is no longer pending."""
    pass


class UnauthorizedApprover(PipelineError):
    """Decision submitted by someone outside the gate's approver set."""
    pass


class ReportFinalizedError(RuntimeError):
    """The pipeline report was already finalized."""
    pass
