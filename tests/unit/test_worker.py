"""
Unit tests for the agent worker: agent/main.py, agent/sessions.py,
shared/commands.py and agent/notifications.py.

Tests coverage:
- ConversationCommand validation per command type
- SessionRegistry create / get / end / close_all, closing off the command loop
- handle_command routing to the conversation's engine
- consume_commands skips malformed and rejected commands
- RedisEventPublisher drains queued events to the event channel
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from pydantic import ValidationError

from agent.errors import UnknownActionError
from agent.main import consume_commands, handle_command
from agent.notifications import ActionResolved, CountdownTick, RedisEventPublisher
from agent.sessions import SessionRegistry
from agent.state.schemas import ActionStatus
from shared.commands import CommandType, ConversationCommand
from shared.config import Settings


def make_engine() -> MagicMock:
    engine = MagicMock()
    engine.submit_utterance = AsyncMock()
    engine.close = AsyncMock()
    return engine


@pytest.fixture
def engines():
    return {}


@pytest.fixture
def registry(engines):
    def factory(conversation_id: str):
        engines[conversation_id] = make_engine()
        return engines[conversation_id]

    return SessionRegistry(factory)


# ============================================================================
# Commands
# ============================================================================


class TestConversationCommand:
    """Command payload validation."""

    def test_utterance_command(self):
        command = ConversationCommand.model_validate(
            {"type": "utterance", "conversation_id": "c1", "speaker": "customer", "text": "hi"}
        )

        assert command.type == CommandType.UTTERANCE

    @pytest.mark.parametrize(
        "payload",
        [
            {"type": "utterance", "conversation_id": "c1", "speaker": "customer"},
            {"type": "utterance", "conversation_id": "c1", "text": "hi"},
            {"type": "utterance", "conversation_id": "c1", "speaker": "robot", "text": "hi"},
            {"type": "confirm", "conversation_id": "c1"},
            {"type": "rewind", "conversation_id": "c1"},
            {"type": "end", "conversation_id": ""},
        ],
    )
    def test_invalid_commands(self, payload):
        with pytest.raises(ValidationError):
            ConversationCommand.model_validate(payload)


# ============================================================================
# Session registry
# ============================================================================


class TestSessionRegistry:
    """Engine per conversation."""

    def test_get_or_create_reuses_engine(self, registry):
        first = registry.get_or_create("c1")

        assert registry.get_or_create("c1") is first
        assert registry.get_or_create("c2") is not first
        assert len(registry) == 2
        assert "c1" in registry

    @pytest.mark.asyncio
    async def test_end_closes_and_discards(self, registry, engines):
        registry.get_or_create("c1")

        assert registry.end("c1") is True
        assert registry.get("c1") is None
        assert registry.end("c1") is False

        await registry.wait_closed()
        engines["c1"].close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_close_all_continues_after_error(self, registry, engines):
        registry.get_or_create("c1")
        registry.get_or_create("c2")
        engines["c1"].close.side_effect = RuntimeError("boom")

        await registry.close_all()

        engines["c2"].close.assert_awaited_once()
        assert len(registry) == 0


# ============================================================================
# Command routing
# ============================================================================


class TestHandleCommand:
    """handle_command()"""

    @pytest.mark.asyncio
    async def test_utterance_creates_engine(self, registry, engines):
        command = ConversationCommand(
            type=CommandType.UTTERANCE, conversation_id="c1", speaker="customer", text="May 28 til"
        )

        await handle_command(registry, command)

        engines["c1"].submit_utterance.assert_awaited_once_with("customer", "May 28 til", None)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "command_type,method",
        [
            (CommandType.CONFIRM, "confirm_action"),
            (CommandType.DISMISS, "dismiss_action"),
            (CommandType.CANCEL, "cancel_action"),
        ],
    )
    async def test_operator_commands(self, registry, engines, command_type, method):
        registry.get_or_create("c1")

        await handle_command(
            registry, ConversationCommand(type=command_type, conversation_id="c1", action_id="a1")
        )

        getattr(engines["c1"], method).assert_called_once_with("a1")

    @pytest.mark.asyncio
    async def test_operator_command_for_unknown_conversation_is_ignored(self, registry, engines):
        await handle_command(
            registry,
            ConversationCommand(type=CommandType.CONFIRM, conversation_id="ghost", action_id="a1"),
        )

        assert engines == {}

    @pytest.mark.asyncio
    async def test_end(self, registry, engines):
        registry.get_or_create("c1")

        await handle_command(registry, ConversationCommand(type=CommandType.END, conversation_id="c1"))
        await handle_command(registry, ConversationCommand(type=CommandType.END, conversation_id="c1"))
        await registry.wait_closed()

        engines["c1"].close.assert_awaited_once()
        assert "c1" not in registry

    @pytest.mark.asyncio
    async def test_slow_end_does_not_block_other_conversations(self, registry, engines):
        release = asyncio.Event()

        async def slow_close():
            await release.wait()

        registry.get_or_create("a")
        engines["a"].close.side_effect = slow_close

        await asyncio.wait_for(
            handle_command(registry, ConversationCommand(type=CommandType.END, conversation_id="a")),
            timeout=0.1,
        )
        await asyncio.wait_for(
            handle_command(
                registry,
                ConversationCommand(
                    type=CommandType.UTTERANCE, conversation_id="b", speaker="customer", text="hi"
                ),
            ),
            timeout=0.1,
        )

        engines["b"].submit_utterance.assert_awaited_once()
        assert "a" not in registry

        close_all = asyncio.create_task(registry.close_all())
        await asyncio.sleep(0)
        assert not close_all.done()

        release.set()
        await close_all
        engines["a"].close.assert_awaited_once()
        engines["b"].close.assert_awaited_once()


class TestConsumeCommands:
    """consume_commands() over the command channel."""

    @pytest.mark.asyncio
    async def test_bad_payloads_do_not_stop_the_consumer(self, engines):
        payloads = [
            {"type": "utterance", "conversation_id": "c1", "speaker": "customer", "text": "hi"},
            {"type": "confirm", "conversation_id": "c1"},
            {"type": "dismiss", "conversation_id": "c1", "action_id": "missing"},
            {"type": "utterance", "conversation_id": "c1", "speaker": "agent", "text": "hello"},
        ]

        async def fake_subscribe(channel):
            assert channel == "copilot:commands"
            for payload in payloads:
                yield payload

        def create_engine(conversation_id):
            engine = make_engine()
            engine.dismiss_action.side_effect = UnknownActionError("missing")
            engines[conversation_id] = engine
            return engine

        registry = SessionRegistry(create_engine)
        settings = Settings(_env_file=None)

        with patch("agent.main.subscribe_to_channel", fake_subscribe):
            await consume_commands(registry, settings)

        assert engines["c1"].submit_utterance.await_count == 2
        engines["c1"].dismiss_action.assert_called_once_with("missing")


# ============================================================================
# Event publishing
# ============================================================================


class TestRedisEventPublisher:
    """Notifications published to EVENT_CHANNEL."""

    @pytest.mark.asyncio
    async def test_close_flushes_queued_events(self):
        with patch("agent.notifications.publish_to_channel", new_callable=AsyncMock) as mock_publish:
            publisher = RedisEventPublisher("copilot:events")
            publisher.start()
            publisher.emit(CountdownTick("c1", "a1", 3))
            publisher.emit(ActionResolved("c1", "a1", ActionStatus.COMPLETED))
            await publisher.close()

        assert mock_publish.await_count == 2
        channel, payload = mock_publish.await_args_list[1].args
        assert channel == "copilot:events"
        assert payload == {
            "event_type": "action_resolved",
            "conversation_id": "c1",
            "action_id": "a1",
            "final_status": "completed",
            "reason": None,
        }

    @pytest.mark.asyncio
    async def test_publish_failures_are_logged(self):
        failing = AsyncMock(side_effect=Exception("redis down"))
        with patch("agent.notifications.publish_to_channel", failing):
            publisher = RedisEventPublisher("copilot:events")
            publisher.start()
            publisher.emit(CountdownTick("c1", "a1", 2))
            publisher.emit(CountdownTick("c1", "a1", 1))
            await publisher.close()

        assert failing.await_count == 2
