"""
Fault taxonomy for the orchestration engine.

Faults are raised inside a component and caught at its boundary:
- SchedulingFault: timer misconfiguration, the scheduler falls back to the normal delay
- StageFault: an analysis stage failed, the stage contributes an empty/default patch
- ToolFault: a Tool Service dispatch failed, the action is marked failed
- ContractViolation: an external response did not match the expected shape

Only lifecycle errors caused by an operator command propagate to callers.
"""

from dataclasses import dataclass, field
from typing import Any


class OrchestrationError(Exception):
    """Base class for all engine errors."""


class SchedulingFault(OrchestrationError):
    """Raised when batch timings cannot be used to schedule a run."""


class ContractViolation(OrchestrationError):
    """
    Raised when an Inference or Tool Service response does not match the expected shape.

    Attributes:
        shape: Name of the expected shape (e.g. "intent_analysis", "tool_result")
        reason: What was wrong with the payload
    """

    def __init__(self, shape: str, reason: str):
        self.shape = shape
        self.reason = reason
        super().__init__(f"{shape}: {reason}")


class StageFault(OrchestrationError):
    """Raised when an analysis stage's inference call or decode step fails."""

    def __init__(self, stage: str, reason: str):
        self.stage = stage
        self.reason = reason
        super().__init__(f"Stage '{stage}' failed: {reason}")


@dataclass
class ToolFault(OrchestrationError):
    """
    Exception raised when a Tool Service dispatch fails.

    Attributes:
        tool_name: Name of the tool that failed
        error_code: Machine-readable error code (TIMEOUT, TOOL_ERROR, CONTRACT_VIOLATION...)
        message: Human-readable error message, surfaced on the action
        details: Additional error context
    """
    tool_name: str
    error_code: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict for logging and event payloads."""
        return {
            "error": self.error_code,
            "message": self.message,
            "tool_name": self.tool_name,
            "details": self.details,
        }


class ActionLifecycleError(OrchestrationError):
    """Raised when an operator command cannot be applied to an action."""


class UnknownActionError(ActionLifecycleError):
    """Raised when an operator command references an action that is not active."""

    def __init__(self, action_id: str):
        self.action_id = action_id
        super().__init__(f"Unknown or inactive action: {action_id}")


class InvalidTransitionError(ActionLifecycleError):
    """Raised when a status change is not allowed from the action's current status."""

    def __init__(self, action_id: str, current: str, target: str):
        self.action_id = action_id
        self.current = current
        self.target = target
        super().__init__(
            f"Invalid transition for action {action_id}: {current} -> {target}"
        )
