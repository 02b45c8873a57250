"""
Conversation registry.

Maps conversation ids to independently constructed OrchestrationEngines.
An engine is created on the first utterance of a conversation and closed and
discarded when the conversation ends.
"""

import asyncio
import logging
from collections.abc import Callable

from agent.engine import OrchestrationEngine

logger = logging.getLogger(__name__)

EngineFactory = Callable[[str], OrchestrationEngine]


class SessionRegistry:
    """Active engines keyed by conversation id."""

    def __init__(self, engine_factory: EngineFactory):
        self._engine_factory = engine_factory
        self._engines: dict[str, OrchestrationEngine] = {}
        self._closing: set[asyncio.Task] = set()

    def __contains__(self, conversation_id: object) -> bool:
        return conversation_id in self._engines

    def __len__(self) -> int:
        return len(self._engines)

    def get(self, conversation_id: str) -> OrchestrationEngine | None:
        return self._engines.get(conversation_id)

    def get_or_create(self, conversation_id: str) -> OrchestrationEngine:
        engine = self._engines.get(conversation_id)
        if engine is None:
            engine = self._engine_factory(conversation_id)
            self._engines[conversation_id] = engine
            logger.info(
                f"Conversation started | active={len(self._engines)}",
                extra={"conversation_id": conversation_id},
            )
        return engine

    def end(self, conversation_id: str) -> bool:
        """
        Discard a conversation's engine and close it in the background.

        Closing waits for the engine's in-flight run and dispatches, so it is
        tracked instead of awaited. Returns False if the conversation was not active.
        """
        engine = self._engines.pop(conversation_id, None)
        if engine is None:
            return False
        task = asyncio.create_task(self._close_engine(conversation_id, engine))
        self._closing.add(task)
        task.add_done_callback(self._closing.discard)
        return True

    async def _close_engine(self, conversation_id: str, engine: OrchestrationEngine) -> None:
        try:
            await engine.close()
        except Exception as e:
            logger.error(
                f"Error closing conversation: {e}",
                extra={"conversation_id": conversation_id},
                exc_info=True,
            )
            return
        logger.info(
            f"Conversation ended | active={len(self._engines)}",
            extra={"conversation_id": conversation_id},
        )

    async def wait_closed(self) -> None:
        """Wait for engines still closing."""
        while self._closing:
            await asyncio.gather(*list(self._closing), return_exceptions=True)

    async def close_all(self) -> None:
        for conversation_id in list(self._engines):
            self.end(conversation_id)
        await self.wait_closed()
