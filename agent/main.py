"""
Copilot Agent Service Entry Point
Background worker running one OrchestrationEngine per active conversation
"""
import asyncio
import logging
import signal

from pydantic import ValidationError

from agent.clients.inference_client import LangChainInferenceClient
from agent.clients.tool_client import HttpToolClient
from agent.engine import OrchestrationEngine
from agent.errors import ActionLifecycleError
from agent.notifications import EventSink, RedisEventPublisher
from agent.sessions import SessionRegistry
from shared.commands import CommandType, ConversationCommand
from shared.config import Settings, get_settings
from shared.logging_config import configure_logging
from shared.redis_client import close_redis_client, subscribe_to_channel
from shared.startup_validator import StartupValidationError, validate_startup_config

# Configure structured JSON logging
configure_logging()
logger = logging.getLogger(__name__)

# Global flag for graceful shutdown
shutdown_event = asyncio.Event()


def build_engine_factory(settings: Settings, event_sink: EventSink):
    """Engine factory for the registry: production clients, one set per conversation."""

    def create_engine(conversation_id: str) -> OrchestrationEngine:
        return OrchestrationEngine(
            conversation_id,
            inference_client=LangChainInferenceClient(conversation_id, settings=settings),
            tool_client=HttpToolClient(settings=settings),
            settings=settings,
            event_sink=event_sink,
        )

    return create_engine


async def handle_command(registry: SessionRegistry, command: ConversationCommand) -> None:
    """
    Route one command to its conversation's engine.

    Raises:
        ActionLifecycleError: The operator command does not apply to the action
    """
    conversation_id = command.conversation_id

    if command.type == CommandType.UTTERANCE:
        engine = registry.get_or_create(conversation_id)
        await engine.submit_utterance(command.speaker, command.text, command.timestamp)
        return

    if command.type == CommandType.END:
        if not registry.end(conversation_id):
            logger.warning(
                "End received for unknown conversation", extra={"conversation_id": conversation_id}
            )
        return

    engine = registry.get(conversation_id)
    if engine is None:
        logger.warning(
            f"Command for unknown conversation | type={command.type.value}",
            extra={"conversation_id": conversation_id},
        )
        return

    if command.type == CommandType.CONFIRM:
        engine.confirm_action(command.action_id)
    elif command.type == CommandType.DISMISS:
        engine.dismiss_action(command.action_id)
    elif command.type == CommandType.CANCEL:
        engine.cancel_action(command.action_id)


async def consume_commands(registry: SessionRegistry, settings: Settings) -> None:
    """
    Subscribe to COMMAND_CHANNEL and process commands in arrival order.

    Malformed commands and rejected operator commands are logged and skipped.
    """
    async for payload in subscribe_to_channel(settings.COMMAND_CHANNEL):
        try:
            command = ConversationCommand.model_validate(payload)
        except ValidationError as e:
            logger.error(f"Invalid command discarded: {e.error_count()} errors | payload={payload}")
            continue

        try:
            await handle_command(registry, command)
        except ActionLifecycleError as e:
            logger.warning(
                f"Operator command rejected | type={command.type.value} | error={e}",
                extra={"conversation_id": command.conversation_id, "action_id": command.action_id},
            )
        except (ValueError, RuntimeError) as e:
            logger.warning(
                f"Command rejected | type={command.type.value} | error={e}",
                extra={"conversation_id": command.conversation_id},
            )
        except Exception as e:
            logger.error(
                f"Error processing command: {e}",
                extra={"conversation_id": command.conversation_id},
                exc_info=True,
            )


async def main(settings: Settings | None = None) -> None:
    """Agent worker main entry point"""
    settings = settings or get_settings()
    logger.info("Agent service started")

    logger.info("Running startup configuration validation...")
    try:
        await validate_startup_config(settings)
        logger.info("Startup configuration validation passed")
    except StartupValidationError as e:
        logger.critical(f"Startup blocked due to configuration errors: {e}")
        raise

    # Get the current event loop for signal handling
    loop = asyncio.get_running_loop()

    def handle_shutdown_signal() -> None:
        logger.info("Received shutdown signal, initiating graceful shutdown...")
        shutdown_event.set()

    try:
        loop.add_signal_handler(signal.SIGTERM, handle_shutdown_signal)
        loop.add_signal_handler(signal.SIGINT, handle_shutdown_signal)
        logger.info("Signal handlers registered")
    except NotImplementedError:
        logger.warning("Signal handlers not supported on this platform")

    publisher = RedisEventPublisher(settings.EVENT_CHANNEL)
    publisher.start()
    registry = SessionRegistry(build_engine_factory(settings, publisher))
    consumer_task = asyncio.create_task(consume_commands(registry, settings))

    try:
        await shutdown_event.wait()
    except asyncio.CancelledError:
        logger.info("Main loop cancelled")
    finally:
        logger.info(f"Shutting down agent service | active_conversations={len(registry)}")
        consumer_task.cancel()
        await asyncio.gather(consumer_task, return_exceptions=True)
        await registry.close_all()
        await publisher.close()
        await close_redis_client()
        logger.info("Agent service stopped")


if __name__ == "__main__":
    logger.info("Starting Copilot Agent Service")
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt")
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
    finally:
        logger.info("Agent service exited")
