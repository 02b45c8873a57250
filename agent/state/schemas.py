"""
ConversationState schema and data model for the orchestration engine.

One ConversationState exists per active conversation. It is owned by the
conversation's engine and mutated only through reducer patches applied by the
StateStore (see agent.state.reducers). Value objects stored in the state are
frozen dataclasses: a change always produces a new object.

Customer profile layout (sparse, snake_case keys):
    {
        "name": "Ana", "email": "...", "phone": "...",
        "destination": "Cancun", "preferred_property": "...", "room_type": "...",
        "travel_dates": {"check_in": "2025-05-28", "check_out": "2025-06-06", "flexible": False},
        "party_size": {"adults": 2, "children": 1, "child_ages": [8]},
        "budget": {"min": 2000, "max": 5000, "currency": "USD"},
        "preferences": ["beach view"],
        "special_requests": ["anniversary"],
    }
"""

from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, TypedDict


def utc_now() -> datetime:
    return datetime.now(UTC)


class Speaker(str, Enum):
    """Who produced an utterance."""

    AGENT = "agent"
    CUSTOMER = "customer"


class StageStatus(str, Enum):
    """Status of a conversation stage."""

    COMPLETED = "completed"
    CURRENT = "current"
    FUTURE = "future"


class RiskLevel(str, Enum):
    """Consequence of executing a tool without further human review."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return _RISK_RANK[self]

    @classmethod
    def highest(cls, *levels: "RiskLevel") -> "RiskLevel":
        return max(levels, key=lambda level: level.rank)


_RISK_RANK = {RiskLevel.LOW: 0, RiskLevel.MEDIUM: 1, RiskLevel.HIGH: 2}


class ActionStatus(str, Enum):
    """Lifecycle status of an ExecutableAction."""

    SUGGESTED = "suggested"
    CONFIRMED = "confirmed"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"
    DISMISSED = "dismissed"
    INVALIDATED = "invalidated"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {
        ActionStatus.COMPLETED,
        ActionStatus.FAILED,
        ActionStatus.DISMISSED,
        ActionStatus.INVALIDATED,
    }
)


class UserInteraction(str, Enum):
    """How a resolved action was resolved, as recorded in history."""

    CONFIRMED = "confirmed"
    DISMISSED = "dismissed"
    AUTO_EXECUTED = "auto_executed"
    INVALIDATED = "invalidated"


class TaskStatus(str, Enum):
    """Status of a Tool Service invocation."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class IssueSeverity(str, Enum):
    """Severity of a profile validation issue."""

    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


@dataclass(frozen=True)
class TranscriptMessage:
    """One speaker-attributed, timestamped unit of transcribed text."""

    speaker: Speaker
    text: str
    timestamp: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "speaker": self.speaker.value,
            "text": self.text,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class Stage:
    """A step in the narrative of this specific conversation."""

    id: str
    label: str
    status: StageStatus
    description: str = ""
    completed_at: datetime | None = None


@dataclass(frozen=True)
class ExecutableAction:
    """
    A suggestion that maps to a Tool Service call.

    Attributes:
        id: Engine-assigned identifier
        intent: Intent the action addresses (e.g. "check_availability")
        label: Short operator-facing title
        description: One-line explanation
        tool_name: Catalog tool name
        parameters: Parameters proposed at suggestion time
        confidence: 0-100, clamped by the engine before construction
        priority: critical | high | medium | low
        risk_level: Effective risk (max of proposal and catalog)
        requires_confirmation: Always True when risk_level is HIGH
        status: Lifecycle status
        auto_execute: Set when policy allows a countdown-driven execution
        confirmed_by_user: Set only by an explicit operator confirm
        status_reason: Why the action reached its current status (user_cancel, superseded...)
        parameter_overrides: Keys replaced by profile values at dispatch time
    """

    id: str
    intent: str
    label: str
    description: str
    tool_name: str
    parameters: dict[str, Any]
    confidence: float
    priority: str
    risk_level: RiskLevel
    requires_confirmation: bool
    status: ActionStatus = ActionStatus.SUGGESTED
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime | None = None
    result: dict[str, Any] | None = None
    error: str | None = None
    auto_execute: bool = False
    confirmed_by_user: bool = False
    status_reason: str | None = None
    parameter_overrides: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not 0 <= self.confidence <= 100:
            raise ValueError(f"confidence must be within [0, 100], got {self.confidence}")
        if self.risk_level == RiskLevel.HIGH and not self.requires_confirmation:
            raise ValueError("high risk actions must require confirmation")
        if self.risk_level == RiskLevel.HIGH and self.auto_execute:
            raise ValueError("high risk actions can never auto-execute")

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["risk_level"] = self.risk_level.value
        data["status"] = self.status.value
        data["parameter_overrides"] = list(self.parameter_overrides)
        return data


@dataclass(frozen=True)
class BackgroundTask:
    """An in-flight or finished Tool Service invocation."""

    id: str
    action_id: str
    tool_name: str
    parameters: dict[str, Any]
    status: TaskStatus = TaskStatus.PENDING
    progress: int | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    attempts: int = 0
    summary: str | None = None
    result: dict[str, Any] | None = None
    error: str | None = None
    duration_ms: int | None = None


@dataclass(frozen=True)
class ActionHistoryEntry:
    """Immutable snapshot of a resolved action."""

    action: ExecutableAction
    suggested_at: datetime
    resolved_at: datetime
    user_interaction: UserInteraction
    reason: str | None = None


@dataclass(frozen=True)
class QuickScript:
    """Free-text response template for the operator."""

    id: str
    label: str
    script: str
    confidence: float
    intent: str = ""
    priority: str = "medium"
    when_to_use: str = ""


@dataclass(frozen=True)
class ConversationInsight:
    """Context awareness summary produced by the action generation stage."""

    health_score: int = 75
    detected_emotion: str = "neutral"
    engagement_level: str = "medium"
    concerns: tuple[str, ...] = ()
    strengths: tuple[str, ...] = ()
    completed_goals: tuple[str, ...] = ()
    missing_information: tuple[str, ...] = ()


@dataclass(frozen=True)
class ValidationIssue:
    """A problem found in extracted profile data."""

    field: str
    severity: IssueSeverity
    message: str
    suggestion: str | None = None
    agent_hint: str | None = None
    auto_fix: dict[str, Any] | None = None


class ConversationState(TypedDict, total=False):
    """
    State for one active conversation.

    All fields are optional (total=False) so reducer patches can carry only
    the fields they change.

    Fields:
        conversation_id: Identifier supplied by the ingress
        messages: Last N TranscriptMessages (N=10), oldest first
        stages: Ordered Stage list, append-only; completed stages are frozen
        current_stage: Id of the single stage with status CURRENT
        customer_profile: Sparse, authoritative profile (see module docstring)
        detected_intents: Set semantics, kept as an ordered list of unique strings
        executable_actions: Active (non-terminal) actions
        quick_scripts: Up to 3 scripts with confidence >= 75
        insights: Latest ConversationInsight
        health_score: 0-100, 75 until the conversation has 3 messages
        background_tasks: Tool Service invocations for this conversation
        action_history: Append-only list of ActionHistoryEntry
        validation_issues: Issues found in the current profile
        pipeline_runs: Number of completed pipeline runs
        created_at / updated_at: Timestamps
    """

    conversation_id: str
    messages: list[TranscriptMessage]
    stages: list[Stage]
    current_stage: str | None
    customer_profile: dict[str, Any]
    detected_intents: list[str]
    executable_actions: list[ExecutableAction]
    quick_scripts: list[QuickScript]
    insights: ConversationInsight
    health_score: int
    background_tasks: list[BackgroundTask]
    action_history: list[ActionHistoryEntry]
    validation_issues: list[ValidationIssue]
    pipeline_runs: int
    created_at: datetime
    updated_at: datetime


DEFAULT_HEALTH_SCORE = 75


def initial_state(conversation_id: str) -> ConversationState:
    """Create the empty state for a new conversation."""
    now = utc_now()
    return ConversationState(
        conversation_id=conversation_id,
        messages=[],
        stages=[],
        current_stage=None,
        customer_profile={},
        detected_intents=[],
        executable_actions=[],
        quick_scripts=[],
        insights=ConversationInsight(),
        health_score=DEFAULT_HEALTH_SCORE,
        background_tasks=[],
        action_history=[],
        validation_issues=[],
        pipeline_runs=0,
        created_at=now,
        updated_at=now,
    )


def _to_jsonable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {key: _to_jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_jsonable(item) for item in value]
    if hasattr(value, "__dataclass_fields__"):
        return _to_jsonable(asdict(value))
    return value


def state_to_dict(state: ConversationState) -> dict[str, Any]:
    """Serialize a ConversationState to JSON-compatible primitives for notifications."""
    return _to_jsonable(dict(state))
