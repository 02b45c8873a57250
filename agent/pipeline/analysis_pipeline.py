"""
Analysis Pipeline - four ordered stages compiled into a LangGraph StateGraph.

    extract_intents → manage_stages → generate_actions → score_health → END

Each stage reads the conversation snapshot, calls the Inference Service and
produces a partial state patch. The patch is merged into the snapshot before
the next stage runs and handed to the `on_patch` listener, so the owner can
apply it to its StateStore right away.

A stage whose call fails, times out or returns output that does not decode
records a StageFault and contributes an empty patch (stage 3 contributes
empty defaults). The pipeline always runs to completion.
"""

import asyncio
import logging
import operator
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Annotated, Any, TypedDict
from uuid import uuid4

from langgraph.graph import END, StateGraph
from pydantic import BaseModel

from agent.errors import ContractViolation, StageFault
from agent.lifecycle.policy import (
    MAX_SCRIPTS,
    MIN_SCRIPT_CONFIDENCE,
    clamp_confidence,
    select_candidates,
)
from agent.pipeline.decoding import (
    ActionGenerationOutput,
    ActionProposal,
    HealthScoreOutput,
    InsightOutput,
    IntentAnalysisOutput,
    QuickScriptOutput,
    StageManagementOutput,
    UnparseableOutput,
    decode_output,
)
from agent.pipeline.prompts import (
    SYSTEM_PROMPT,
    build_action_generation_prompt,
    build_health_score_prompt,
    build_intent_analysis_prompt,
    build_stage_management_prompt,
)
from agent.state.reducers import apply_patch, stage_id_for
from agent.state.schemas import (
    DEFAULT_HEALTH_SCORE,
    ConversationInsight,
    ConversationState,
    QuickScript,
    Stage,
)
from agent.tools.catalog import ToolCatalog
from agent.validation.profile_validator import validate_customer_profile

logger = logging.getLogger(__name__)

STAGE_INTENTS = "intent_analysis"
STAGE_STAGES = "stage_management"
STAGE_ACTIONS = "action_generation"
STAGE_HEALTH = "health_scoring"

# Health scoring is skipped until the conversation has this many messages
MIN_MESSAGES_FOR_HEALTH = 3

PatchListener = Callable[[str, ConversationState], None]


class PipelineState(TypedDict):
    """LangGraph state for one pipeline run."""

    conversation: ConversationState
    patches: Annotated[list[tuple[str, ConversationState]], operator.add]
    candidates: list[ActionProposal]
    faults: Annotated[list[StageFault], operator.add]


@dataclass
class PipelineResult:
    """Outcome of one pipeline run."""

    conversation: ConversationState
    patches: list[tuple[str, ConversationState]] = field(default_factory=list)
    candidates: list[ActionProposal] = field(default_factory=list)
    faults: list[StageFault] = field(default_factory=list)
    duration_ms: int = 0

    @property
    def failed_stages(self) -> list[str]:
        return [fault.stage for fault in self.faults]


def select_scripts(scripts: list[QuickScriptOutput]) -> list[QuickScript]:
    """Keep scripts with confidence >= 75, highest first, at most 3."""
    kept = []
    for script in scripts:
        confidence = clamp_confidence(script.confidence)
        if confidence < MIN_SCRIPT_CONFIDENCE:
            continue
        kept.append(
            QuickScript(
                id=script.id or f"script-{uuid4().hex[:8]}",
                label=script.label,
                script=script.script,
                confidence=confidence,
                intent=script.intent,
                priority=script.priority,
                when_to_use=script.when_to_use,
            )
        )
    kept.sort(key=lambda script: script.confidence, reverse=True)
    return kept[:MAX_SCRIPTS]


def to_insight(output: InsightOutput) -> ConversationInsight:
    health = output.health_score
    return ConversationInsight(
        health_score=int(round(clamp_confidence(health))) if health is not None else DEFAULT_HEALTH_SCORE,
        detected_emotion=output.detected_emotion,
        engagement_level=output.engagement_level,
        concerns=tuple(output.concerns),
        strengths=tuple(output.strengths),
        completed_goals=tuple(output.completed_goals),
        missing_information=tuple(output.missing_information),
    )


class AnalysisPipeline:
    """
    The four-stage analysis pipeline of one conversation.

    Example:
        >>> pipeline = AnalysisPipeline("conv-123", inference_client, default_catalog())
        >>> result = await pipeline.run(store.state, on_patch=apply_to_store)
        >>> result.candidates  # filtered ActionProposals for the lifecycle manager
    """

    def __init__(
        self,
        conversation_id: str,
        inference_client: Any,
        catalog: ToolCatalog,
        timeout_s: float = 15.0,
    ):
        self.conversation_id = conversation_id
        self.inference_client = inference_client
        self.catalog = catalog
        self.timeout_s = timeout_s
        self._on_patch: PatchListener | None = None
        self._graph = self._build_graph()

    def _build_graph(self):
        graph = StateGraph(PipelineState)

        graph.add_node("extract_intents", self._extract_intents)
        graph.add_node("manage_stages", self._manage_stages)
        graph.add_node("generate_actions", self._generate_actions)
        graph.add_node("score_health", self._score_health)

        graph.set_entry_point("extract_intents")
        graph.add_edge("extract_intents", "manage_stages")
        graph.add_edge("manage_stages", "generate_actions")
        graph.add_edge("generate_actions", "score_health")
        graph.add_edge("score_health", END)

        return graph.compile()

    async def run(
        self, state: ConversationState, on_patch: PatchListener | None = None
    ) -> PipelineResult:
        """
        Run all four stages against a snapshot of the conversation.

        Args:
            state: Conversation snapshot to analyze
            on_patch: Called with (stage, patch) after each stage that produced a patch

        Returns:
            PipelineResult with the patches, action candidates and stage faults
        """
        start_time = time.time()
        self._on_patch = on_patch
        try:
            final = await self._graph.ainvoke(
                {"conversation": state, "patches": [], "candidates": [], "faults": []}
            )
        finally:
            self._on_patch = None

        duration_ms = int((time.time() - start_time) * 1000)
        result = PipelineResult(
            conversation=final["conversation"],
            patches=final["patches"],
            candidates=final["candidates"],
            faults=final["faults"],
            duration_ms=duration_ms,
        )
        logger.info(
            f"Pipeline run completed | duration_ms={duration_ms} | "
            f"candidates={len(result.candidates)} | failed_stages={result.failed_stages}",
            extra={"conversation_id": self.conversation_id},
        )
        return result

    # ========================================================================
    # Stage plumbing
    # ========================================================================

    async def _infer(self, stage: str, prompt: str, model: type[BaseModel]) -> Any:
        """Call the Inference Service and decode the response, raising StageFault on any failure."""
        try:
            raw = await asyncio.wait_for(
                self.inference_client.complete(stage, SYSTEM_PROMPT, prompt),
                timeout=self.timeout_s,
            )
        except asyncio.TimeoutError as e:
            raise StageFault(stage, f"inference timed out after {self.timeout_s}s") from e
        except Exception as e:
            raise StageFault(stage, f"inference call failed: {e}") from e

        result = decode_output(raw, model)
        if isinstance(result, UnparseableOutput):
            violation = ContractViolation(stage, result.reason)
            raise StageFault(stage, str(violation)) from violation
        return result.value

    def _advance(
        self, stage: str, conversation: ConversationState, patch: ConversationState
    ) -> dict[str, Any]:
        if not patch:
            return {"patches": []}
        if self._on_patch is not None:
            self._on_patch(stage, patch)
        return {"conversation": apply_patch(conversation, patch), "patches": [(stage, patch)]}

    def _log_fault(self, fault: StageFault) -> None:
        logger.warning(
            f"Stage fault | stage={fault.stage} | reason={fault.reason}",
            extra={"conversation_id": self.conversation_id, "stage": fault.stage},
            exc_info=fault.__cause__,
        )

    # ========================================================================
    # Stage 1: Intent & Entity Extraction
    # ========================================================================

    async def _extract_intents(self, state: PipelineState) -> dict[str, Any]:
        conversation = state["conversation"]
        try:
            output = await self._infer(
                STAGE_INTENTS, build_intent_analysis_prompt(conversation), IntentAnalysisOutput
            )
        except StageFault as fault:
            self._log_fault(fault)
            return {"faults": [fault]}

        patch = ConversationState()
        intents = [intent for intent in output.intents if intent]
        if intents:
            patch["detected_intents"] = intents
        profile_delta = output.extracted_info.to_patch()
        if profile_delta:
            patch["customer_profile"] = profile_delta

        return self._advance(STAGE_INTENTS, conversation, patch)

    # ========================================================================
    # Stage 2: Stage Management
    # ========================================================================

    async def _manage_stages(self, state: PipelineState) -> dict[str, Any]:
        conversation = state["conversation"]
        try:
            output = await self._infer(
                STAGE_STAGES, build_stage_management_prompt(conversation), StageManagementOutput
            )
        except StageFault as fault:
            self._log_fault(fault)
            return {"faults": [fault]}

        stages = [
            Stage(
                id=proposed.id or stage_id_for(proposed.label),
                label=proposed.label,
                status=proposed.status,
                description=proposed.description,
            )
            for proposed in output.stages
        ]
        patch = ConversationState()
        if stages or output.current_stage:
            patch["stages"] = stages
            patch["current_stage"] = output.current_stage

        return self._advance(STAGE_STAGES, conversation, patch)

    # ========================================================================
    # Stage 3: Action / Insight / Script Generation
    # ========================================================================

    async def _generate_actions(self, state: PipelineState) -> dict[str, Any]:
        conversation = state["conversation"]
        validation = validate_customer_profile(
            conversation.get("customer_profile", {}), conversation.get("messages", [])
        )

        try:
            output = await self._infer(
                STAGE_ACTIONS,
                build_action_generation_prompt(conversation, self.catalog, validation.issues),
                ActionGenerationOutput,
            )
        except StageFault as fault:
            self._log_fault(fault)
            patch = ConversationState(
                validation_issues=validation.issues,
                quick_scripts=[],
                insights=ConversationInsight(),
            )
            advanced = self._advance(STAGE_ACTIONS, conversation, patch)
            advanced.update(candidates=[], faults=[fault])
            return advanced

        candidates = select_candidates(output.executable_actions)
        patch = ConversationState(
            validation_issues=validation.issues,
            quick_scripts=select_scripts(output.quick_scripts),
            insights=to_insight(output.insights),
        )
        advanced = self._advance(STAGE_ACTIONS, conversation, patch)
        advanced["candidates"] = candidates
        return advanced

    # ========================================================================
    # Stage 4: Health Scoring
    # ========================================================================

    async def _score_health(self, state: PipelineState) -> dict[str, Any]:
        conversation = state["conversation"]
        if len(conversation.get("messages", [])) < MIN_MESSAGES_FOR_HEALTH:
            return self._advance(
                STAGE_HEALTH, conversation, ConversationState(health_score=DEFAULT_HEALTH_SCORE)
            )

        try:
            output = await self._infer(
                STAGE_HEALTH, build_health_score_prompt(conversation), HealthScoreOutput
            )
        except StageFault as fault:
            self._log_fault(fault)
            return {"faults": [fault]}

        score = int(round(clamp_confidence(output.score)))
        return self._advance(STAGE_HEALTH, conversation, ConversationState(health_score=score))
