"""
OrchestrationEngine - the real-time copilot engine of one conversation.

Wires the components of a single conversation together:

    submit_utterance → StateStore (message appended)
                     → BatchScheduler (when to analyze)
                     → AnalysisPipeline (state patches, action candidates)
                     → ActionLifecycleManager (policy, status, countdowns)
                     → ExecutionDispatcher (Tool Service calls)

Every state patch is applied by the StateStore and reported to the event sink
as a StateUpdated notification. Engines share nothing: each one is built with
its own clients, store and scheduler.
"""

import logging
from datetime import datetime

from agent.batching.batch_scheduler import BatchScheduler, PendingBatch
from agent.batching.classifier import BatchDecision, BatchTimings
from agent.clients.inference_client import InferenceClient
from agent.clients.tool_client import ToolClient
from agent.dispatch.execution_dispatcher import ExecutionDispatcher
from agent.lifecycle.action_lifecycle import ActionLifecycleManager
from agent.notifications import EventSink, InMemoryEventSink, StateUpdated
from agent.pipeline.analysis_pipeline import AnalysisPipeline, PipelineResult
from agent.state.reducers import StateStore
from agent.state.schemas import (
    ConversationState,
    ExecutableAction,
    Speaker,
    TranscriptMessage,
    utc_now,
)
from agent.tools.catalog import ToolCatalog, default_catalog
from shared.config import Settings, get_settings

logger = logging.getLogger(__name__)


class OrchestrationEngine:
    """
    Engine for one active conversation.

    Example:
        >>> engine = OrchestrationEngine("conv-123", inference_client, tool_client)
        >>> await engine.submit_utterance("customer", "May 28 til")
        >>> await engine.submit_utterance("customer", "June 6")
        >>> # one pipeline run later:
        >>> engine.state["customer_profile"]["travel_dates"]
        {'check_in': '2025-05-28', 'check_out': '2025-06-06'}
        >>> engine.confirm_action(engine.state["executable_actions"][0].id)
        >>> await engine.close()
    """

    def __init__(
        self,
        conversation_id: str,
        inference_client: InferenceClient,
        tool_client: ToolClient,
        catalog: ToolCatalog | None = None,
        timings: BatchTimings | None = None,
        settings: Settings | None = None,
        event_sink: EventSink | None = None,
    ):
        settings = settings or get_settings()
        self.conversation_id = conversation_id
        self.catalog = catalog or default_catalog()
        self.event_sink = event_sink or InMemoryEventSink()
        self._closed = False

        self.store = StateStore(conversation_id)
        self.store.add_listener(self._notify_state_updated)

        self.pipeline = AnalysisPipeline(
            conversation_id,
            inference_client,
            self.catalog,
            timeout_s=settings.INFERENCE_TIMEOUT_SECONDS,
        )
        self.dispatcher = ExecutionDispatcher(
            conversation_id,
            tool_client,
            self.catalog,
            self.store,
            timeout_s=settings.TOOL_TIMEOUT_SECONDS,
        )
        self.lifecycle = ActionLifecycleManager(
            conversation_id,
            self.store,
            self.catalog,
            self.dispatcher,
            event_sink=self.event_sink,
            countdown_ms=settings.AUTO_EXECUTE_COUNTDOWN_MS,
            tick_ms=settings.COUNTDOWN_TICK_MS,
        )
        self.scheduler = BatchScheduler(
            conversation_id,
            timings or BatchTimings.from_settings(settings),
            callback=self._run_pipeline,
        )

        logger.info(
            f"OrchestrationEngine created | tools={len(self.catalog)}",
            extra={"conversation_id": conversation_id},
        )

    @property
    def state(self) -> ConversationState:
        return self.store.state

    @property
    def closed(self) -> bool:
        return self._closed

    def _notify_state_updated(
        self, state: ConversationState, patch: ConversationState, source: str
    ) -> None:
        self.event_sink.emit(StateUpdated(self.conversation_id, source, patch, state))

    # ========================================================================
    # Transcript ingest
    # ========================================================================

    async def submit_utterance(
        self,
        speaker: Speaker | str,
        text: str,
        timestamp: datetime | None = None,
    ) -> BatchDecision:
        """
        Record an utterance and let the scheduler decide when to analyze it.

        Args:
            speaker: "agent" or "customer"
            text: Transcribed text
            timestamp: When the utterance was spoken (defaults to now)

        Returns:
            The scheduler's delay decision (acknowledgment only)

        Raises:
            ValueError: Unknown speaker or empty text
            RuntimeError: The engine is closed
        """
        if self._closed:
            raise RuntimeError(f"Engine for conversation {self.conversation_id} is closed")
        text = text.strip()
        if not text:
            raise ValueError("Utterance text is empty")

        message = TranscriptMessage(
            speaker=Speaker(speaker), text=text, timestamp=timestamp or utc_now()
        )
        self.store.apply({"messages": [message]}, source="ingest")
        return await self.scheduler.add_fragment(text)

    # ========================================================================
    # Pipeline run
    # ========================================================================

    def _apply_stage_patch(self, stage: str, patch: ConversationState) -> None:
        self.store.apply(patch, source=f"pipeline.{stage}")

    async def _run_pipeline(self, batch: PendingBatch) -> PipelineResult:
        previous_stage = self.state.get("current_stage")
        logger.info(
            f"Pipeline run started | trigger={batch.trigger.value} | fragments={len(batch.fragments)}",
            extra={"conversation_id": self.conversation_id, "trigger": batch.trigger.value},
        )

        result = await self.pipeline.run(self.state, on_patch=self._apply_stage_patch)

        self.store.apply(
            {"pipeline_runs": self.state.get("pipeline_runs", 0) + 1}, source="engine"
        )
        self.lifecycle.reconcile(
            result.candidates,
            previous_stage,
            self.state.get("current_stage"),
            self.state.get("validation_issues", []),
        )
        return result

    # ========================================================================
    # Operator commands
    # ========================================================================

    def confirm_action(self, action_id: str) -> ExecutableAction:
        return self.lifecycle.confirm(action_id)

    def dismiss_action(self, action_id: str) -> ExecutableAction:
        return self.lifecycle.dismiss(action_id)

    def cancel_action(self, action_id: str) -> ExecutableAction:
        return self.lifecycle.cancel(action_id)

    async def close(self) -> None:
        """
        End the conversation.

        Cancels pending timers, waits for an in-flight pipeline run, dismisses
        actions still counting down and waits for in-flight dispatches.
        """
        if self._closed:
            return
        self._closed = True
        await self.scheduler.close()
        await self.lifecycle.close()
        logger.info(
            f"OrchestrationEngine closed | pipeline_runs={self.state.get('pipeline_runs', 0)} | "
            f"history={len(self.state.get('action_history', []))}",
            extra={"conversation_id": self.conversation_id},
        )
