"""
Decoding of Inference Service output.

Every stage response is decoded into a tagged result: `ParsedOutput` carrying
a validated pydantic model, or `UnparseableOutput` carrying the reason. Stages
branch on `result.kind` and never assume a response is well-formed.
"""

import json
import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Generic, Literal, TypeVar

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from agent.state.schemas import RiskLevel, StageStatus

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

FENCED_JSON_PATTERN = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)


class _Lenient(BaseModel):
    """Base for inference output models: unknown keys are ignored."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)


# ============================================================================
# Stage 1: Intent & Entity Extraction
# ============================================================================


class TravelDatesDelta(_Lenient):
    check_in: str | None = Field(default=None, validation_alias=AliasChoices("check_in", "checkIn"))
    check_out: str | None = Field(default=None, validation_alias=AliasChoices("check_out", "checkOut"))
    flexible: bool | None = None


class PartySizeDelta(_Lenient):
    adults: int | None = None
    children: int | None = None
    child_ages: list[int] | None = Field(
        default=None, validation_alias=AliasChoices("child_ages", "childAges")
    )


class BudgetDelta(_Lenient):
    min: float | None = None
    max: float | None = None
    currency: str | None = None


class ProfileDelta(_Lenient):
    """Customer profile fields found in the latest messages."""

    name: str | None = None
    email: str | None = None
    phone: str | None = None
    destination: str | None = None
    preferred_property: str | None = Field(
        default=None, validation_alias=AliasChoices("preferred_property", "preferredProperty")
    )
    room_type: str | None = Field(default=None, validation_alias=AliasChoices("room_type", "roomType"))
    travel_dates: TravelDatesDelta | None = Field(
        default=None, validation_alias=AliasChoices("travel_dates", "travelDates")
    )
    party_size: PartySizeDelta | None = Field(
        default=None, validation_alias=AliasChoices("party_size", "partySize")
    )
    budget: BudgetDelta | None = None
    preferences: list[str] | None = None
    special_requests: list[str] | None = Field(
        default=None, validation_alias=AliasChoices("special_requests", "specialRequests")
    )

    def to_patch(self) -> dict[str, Any]:
        """Only the fields that carry a value, nested dicts pruned the same way."""
        patch = self.model_dump(exclude_none=True)
        return {key: value for key, value in patch.items() if value not in ({}, [], "")}


class IntentAnalysisOutput(_Lenient):
    intents: list[str] = Field(default_factory=list)
    extracted_info: ProfileDelta = Field(
        default_factory=ProfileDelta,
        validation_alias=AliasChoices("extracted_info", "extractedInfo"),
    )
    sentiment: str | None = None
    buying_signals: list[str] = Field(
        default_factory=list, validation_alias=AliasChoices("buying_signals", "buyingSignals")
    )


# ============================================================================
# Stage 2: Stage Management
# ============================================================================


class StageOutput(_Lenient):
    id: str | None = None
    label: str = Field(min_length=1)
    description: str = ""
    status: StageStatus = StageStatus.FUTURE

    @field_validator("status", mode="before")
    @classmethod
    def lowercase_status(cls, v: Any) -> Any:
        return v.strip().lower() if isinstance(v, str) else v


class StageManagementOutput(_Lenient):
    stages: list[StageOutput] = Field(
        validation_alias=AliasChoices("stages", "conversation_stages", "conversationStages")
    )
    current_stage: str | None = Field(
        default=None, validation_alias=AliasChoices("current_stage", "currentStage")
    )
    reasoning: str = ""


# ============================================================================
# Stage 3: Action / Insight / Script Generation
# ============================================================================


def _finite_or_zero(value: Any) -> Any:
    if isinstance(value, (int, float)) and not isinstance(value, bool) and not math.isfinite(value):
        return 0.0
    return value


class ActionProposal(_Lenient):
    id: str | None = None
    intent: str = ""
    label: str = Field(min_length=1)
    description: str = ""
    tool_name: str = Field(validation_alias=AliasChoices("tool_name", "toolName"))
    parameters: dict[str, Any] = Field(default_factory=dict)
    confidence: float
    priority: str = "medium"
    risk_level: RiskLevel | None = Field(
        default=None, validation_alias=AliasChoices("risk_level", "riskLevel")
    )
    requires_confirmation: bool = Field(
        default=False, validation_alias=AliasChoices("requires_confirmation", "requiresConfirmation")
    )

    @field_validator("risk_level", mode="before")
    @classmethod
    def lowercase_risk(cls, v: Any) -> Any:
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator("confidence", mode="after")
    @classmethod
    def non_finite_to_zero(cls, v: float) -> float:
        return _finite_or_zero(v)


class InsightOutput(_Lenient):
    detected_emotion: str = Field(
        default="neutral", validation_alias=AliasChoices("detected_emotion", "detectedEmotion")
    )
    engagement_level: str = Field(
        default="medium", validation_alias=AliasChoices("engagement_level", "engagementLevel")
    )
    health_score: float | None = Field(
        default=None, validation_alias=AliasChoices("health_score", "healthScore")
    )
    concerns: list[str] = Field(default_factory=list)
    strengths: list[str] = Field(default_factory=list)
    completed_goals: list[str] = Field(
        default_factory=list, validation_alias=AliasChoices("completed_goals", "completedGoals")
    )
    missing_information: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("missing_information", "missingInformation"),
    )


class QuickScriptOutput(_Lenient):
    id: str | None = None
    intent: str = ""
    label: str = Field(min_length=1)
    script: str = Field(min_length=1)
    confidence: float
    priority: str = "medium"
    when_to_use: str = Field(default="", validation_alias=AliasChoices("when_to_use", "whenToUse"))

    @field_validator("confidence", mode="after")
    @classmethod
    def non_finite_to_zero(cls, v: float) -> float:
        return _finite_or_zero(v)


class ActionGenerationOutput(_Lenient):
    executable_actions: list[ActionProposal] = Field(
        default_factory=list,
        validation_alias=AliasChoices("executable_actions", "executableActions"),
    )
    insights: InsightOutput = Field(default_factory=InsightOutput)
    quick_scripts: list[QuickScriptOutput] = Field(
        default_factory=list, validation_alias=AliasChoices("quick_scripts", "quickScripts")
    )


# ============================================================================
# Stage 4: Health Scoring
# ============================================================================


class HealthScoreOutput(_Lenient):
    score: float
    factors: dict[str, str] = Field(default_factory=dict)
    concerns: list[str] = Field(default_factory=list)
    strengths: list[str] = Field(default_factory=list)

    @field_validator("score", mode="after")
    @classmethod
    def non_finite_to_zero(cls, v: float) -> float:
        return _finite_or_zero(v)


# ============================================================================
# Tagged decode result
# ============================================================================


@dataclass(frozen=True)
class ParsedOutput(Generic[ModelT]):
    value: ModelT
    kind: Literal["parsed"] = "parsed"


@dataclass(frozen=True)
class UnparseableOutput:
    reason: str
    raw: str
    kind: Literal["unparseable"] = "unparseable"


DecodeResult = ParsedOutput[ModelT] | UnparseableOutput


def extract_json_text(raw: str) -> str:
    """
    Pull the JSON object out of a model response.

    Handles ```json fences and leading/trailing prose around a single object.
    """
    cleaned = raw.strip()
    fenced = FENCED_JSON_PATTERN.search(cleaned)
    if fenced:
        cleaned = fenced.group(1).strip()
    if not cleaned.startswith("{"):
        start = cleaned.find("{")
        end = cleaned.rfind("}")
        if start != -1 and end > start:
            cleaned = cleaned[start : end + 1]
    return cleaned


def decode_output(raw: str, model: type[ModelT]) -> DecodeResult:
    """
    Decode a raw response against the expected model.

    Args:
        raw: Text returned by the Inference Service
        model: Expected pydantic model

    Returns:
        ParsedOutput on success, UnparseableOutput otherwise (never raises)
    """
    if not isinstance(raw, str) or not raw.strip():
        return UnparseableOutput(reason="empty response", raw=str(raw or ""))

    try:
        data = json.loads(extract_json_text(raw))
    except json.JSONDecodeError as e:
        return UnparseableOutput(reason=f"invalid JSON: {e.msg}", raw=raw)

    if not isinstance(data, dict):
        return UnparseableOutput(reason=f"expected object, got {type(data).__name__}", raw=raw)

    try:
        return ParsedOutput(value=model.model_validate(data))
    except ValidationError as e:
        return UnparseableOutput(
            reason=f"{model.__name__} validation failed: {e.error_count()} errors", raw=raw
        )
