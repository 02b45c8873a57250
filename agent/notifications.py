"""
Consumer notifications.

The engine reports to the presentation layer through an EventSink:
- StateUpdated: a state patch was applied (carries the delta and the full state)
- CountdownTick: an auto-executing action is counting down
- ActionResolved: an action reached a terminal status

`emit` is synchronous and never blocks the engine. RedisEventPublisher queues
events and publishes them to EVENT_CHANNEL from a background drain task.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

from agent.state.schemas import (
    ActionStatus,
    ConversationState,
    state_to_dict,
)
from shared.redis_client import publish_to_channel

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StateUpdated:
    conversation_id: str
    source: str
    delta: ConversationState
    state: ConversationState
    event_type: str = "state_updated"

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_type": self.event_type,
            "conversation_id": self.conversation_id,
            "source": self.source,
            "delta": state_to_dict(self.delta),
            "state": state_to_dict(self.state),
        }


@dataclass(frozen=True)
class CountdownTick:
    conversation_id: str
    action_id: str
    seconds_remaining: int
    event_type: str = "countdown_tick"

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_type": self.event_type,
            "conversation_id": self.conversation_id,
            "action_id": self.action_id,
            "seconds_remaining": self.seconds_remaining,
        }


@dataclass(frozen=True)
class ActionResolved:
    conversation_id: str
    action_id: str
    final_status: ActionStatus
    reason: str | None = None
    event_type: str = "action_resolved"

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_type": self.event_type,
            "conversation_id": self.conversation_id,
            "action_id": self.action_id,
            "final_status": self.final_status.value,
            "reason": self.reason,
        }


Event = StateUpdated | CountdownTick | ActionResolved


class EventSink(Protocol):
    def emit(self, event: Event) -> None:
        ...


@dataclass
class InMemoryEventSink:
    """Collects events in a list. Used by tests and local runs."""

    events: list[Event] = field(default_factory=list)

    def emit(self, event: Event) -> None:
        self.events.append(event)

    def of_type(self, event_type: type) -> list[Event]:
        return [event for event in self.events if isinstance(event, event_type)]


class RedisEventPublisher:
    """
    EventSink that publishes events as JSON to a Redis pub/sub channel.

    Example:
        >>> publisher = RedisEventPublisher(settings.EVENT_CHANNEL)
        >>> publisher.start()
        >>> publisher.emit(CountdownTick("conv-123", "action-1", 3))
        >>> await publisher.close()
    """

    def __init__(self, channel: str):
        self.channel = channel
        self._queue: asyncio.Queue[Event | None] = asyncio.Queue()
        self._drain_task: asyncio.Task | None = None

    def start(self) -> None:
        if self._drain_task is None:
            self._drain_task = asyncio.create_task(self._drain())

    def emit(self, event: Event) -> None:
        self._queue.put_nowait(event)

    async def _drain(self) -> None:
        while True:
            event = await self._queue.get()
            if event is None:
                return
            try:
                await publish_to_channel(self.channel, event.to_dict())
            except Exception as e:
                logger.error(
                    f"Failed to publish event | event_type={event.event_type} | error={e}",
                    extra={"conversation_id": event.conversation_id},
                )

    async def close(self) -> None:
        """Publish everything queued so far, then stop the drain task."""
        if self._drain_task is None:
            return
        self._queue.put_nowait(None)
        await self._drain_task
        self._drain_task = None
