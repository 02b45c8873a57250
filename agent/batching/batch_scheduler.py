"""
Batch Scheduler - adaptive debouncer in front of the analysis pipeline.

One scheduler exists per conversation. It:
1. Collects utterance fragments that have not been analyzed yet
2. Restarts a debounce timer on every fragment, with a delay chosen by the classifier
3. Starts a max-wait timer on the first unprocessed fragment that fires unconditionally
4. Runs the callback with all collected fragments when either timer fires

At most one callback run is in flight. A timer that fires while a run is in
flight is recorded as pending, and a new run starts with everything collected
in the meantime as soon as the in-flight run finishes. In-flight runs are never
cancelled.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Callable, Coroutine

from agent.batching.classifier import BatchDecision, BatchTimings, decide_delay

logger = logging.getLogger(__name__)


class BatchTrigger(str, Enum):
    """What caused a pipeline run."""

    DEBOUNCE = "debounce"
    MAX_WAIT = "max_wait"
    PENDING = "pending"


@dataclass(frozen=True)
class PendingBatch:
    """Fragments handed to the callback for one pipeline run."""

    fragments: tuple[str, ...]
    trigger: BatchTrigger
    decision: BatchDecision
    first_received_at: datetime
    released_at: datetime


BatchCallback = Callable[[PendingBatch], Coroutine]


class BatchScheduler:
    """
    Decides when to run the analysis pipeline for one conversation.

    Example:
        >>> scheduler = BatchScheduler("conv-123", BatchTimings())
        >>> scheduler.set_callback(run_pipeline)
        >>> await scheduler.add_fragment("May 28 til")   # extended wait, 4000 ms
        >>> await scheduler.add_fragment("June 6")       # timer reset, fast track 1500 ms
        >>> # 1500 ms later run_pipeline is called once with both fragments
    """

    def __init__(
        self,
        conversation_id: str,
        timings: BatchTimings | None = None,
        callback: BatchCallback | None = None,
    ):
        self.conversation_id = conversation_id
        self.timings = timings or BatchTimings.from_settings()
        self._callback = callback
        self._fragments: list[str] = []
        self._first_received_at: datetime | None = None
        self._debounce_timer: asyncio.Task | None = None
        self._max_wait_timer: asyncio.Task | None = None
        self._run_task: asyncio.Task | None = None
        self._pending = False
        self._closed = False
        self.runs_started = 0

        logger.info(
            f"BatchScheduler initialized | conversation_id={conversation_id} | "
            f"max_wait_ms={self.timings.max_wait_ms}"
        )

    def set_callback(self, callback: BatchCallback) -> None:
        """
        Set the callback to invoke when a batch is released.

        Args:
            callback: Async function that receives a PendingBatch
        """
        self._callback = callback

    @property
    def pending_fragments(self) -> list[str]:
        return list(self._fragments)

    @property
    def run_in_flight(self) -> bool:
        return self._run_task is not None and not self._run_task.done()

    async def add_fragment(self, text: str) -> BatchDecision:
        """
        Add an utterance fragment and (re)arm the timers.

        Args:
            text: Utterance text

        Returns:
            The delay decision made for the pending fragments
        """
        if self._closed:
            raise RuntimeError(f"BatchScheduler for {self.conversation_id} is closed")

        self._fragments.append(text)
        if self._first_received_at is None:
            self._first_received_at = datetime.now(UTC)

        decision = decide_delay(self._fragments, self.timings)

        if self._debounce_timer is not None:
            self._debounce_timer.cancel()
        self._debounce_timer = asyncio.create_task(
            self._wait_and_fire(decision.delay_ms, BatchTrigger.DEBOUNCE)
        )

        if self._max_wait_timer is None:
            self._max_wait_timer = asyncio.create_task(
                self._wait_and_fire(self.timings.max_wait_ms, BatchTrigger.MAX_WAIT)
            )

        logger.info(
            f"Fragment added | conversation_id={self.conversation_id} | "
            f"pending={len(self._fragments)} | reason={decision.reason.value} | "
            f"delay_ms={decision.delay_ms}",
            extra={"conversation_id": self.conversation_id},
        )
        return decision

    async def _wait_and_fire(self, delay_ms: int, trigger: BatchTrigger) -> None:
        """Timer task body: sleep, then release the batch (or mark it pending)."""
        try:
            await asyncio.sleep(delay_ms / 1000)
        except asyncio.CancelledError:
            logger.debug(
                f"Timer cancelled | conversation_id={self.conversation_id} | trigger={trigger.value}"
            )
            raise

        if trigger == BatchTrigger.DEBOUNCE:
            self._debounce_timer = None
        else:
            self._max_wait_timer = None

        if not self._fragments or self._closed:
            return

        if self.run_in_flight:
            self._pending = True
            logger.info(
                f"Timer elapsed during in-flight run, marked pending | "
                f"conversation_id={self.conversation_id} | trigger={trigger.value}",
                extra={"conversation_id": self.conversation_id, "trigger": trigger.value},
            )
            return

        self._release(trigger)

    def _cancel_timers(self) -> None:
        current = asyncio.current_task()
        for timer in (self._debounce_timer, self._max_wait_timer):
            if timer is not None and timer is not current:
                timer.cancel()
        self._debounce_timer = None
        self._max_wait_timer = None

    def _release(self, trigger: BatchTrigger) -> None:
        """Hand every collected fragment to a new run task."""
        fragments = tuple(self._fragments)
        decision = decide_delay(list(fragments), self.timings)
        batch = PendingBatch(
            fragments=fragments,
            trigger=trigger,
            decision=decision,
            first_received_at=self._first_received_at or datetime.now(UTC),
            released_at=datetime.now(UTC),
        )

        self._fragments = []
        self._first_received_at = None
        self._pending = False
        self._cancel_timers()

        self.runs_started += 1
        logger.info(
            f"Batch released | conversation_id={self.conversation_id} | "
            f"trigger={trigger.value} | fragments={len(fragments)}",
            extra={"conversation_id": self.conversation_id, "trigger": trigger.value},
        )
        self._run_task = asyncio.create_task(self._run(batch))

    async def _run(self, batch: PendingBatch) -> None:
        try:
            if self._callback:
                await self._callback(batch)
        except Exception as e:
            logger.error(
                f"Error processing batch | conversation_id={self.conversation_id} | "
                f"error={str(e)}",
                exc_info=True,
            )
        finally:
            self._run_task = None
            if self._pending and self._fragments and not self._closed:
                self._release(BatchTrigger.PENDING)
            else:
                self._pending = False

    async def close(self) -> None:
        """
        Cancel timers and wait for an in-flight run to finish.

        Fragments that were never released are dropped.
        """
        self._closed = True
        self._cancel_timers()
        if self._run_task is not None:
            await asyncio.gather(self._run_task, return_exceptions=True)
        if self._fragments:
            logger.info(
                f"Dropping unreleased fragments on close | "
                f"conversation_id={self.conversation_id} | fragments={len(self._fragments)}"
            )
        self._fragments = []
        logger.info(f"BatchScheduler closed | conversation_id={self.conversation_id}")
