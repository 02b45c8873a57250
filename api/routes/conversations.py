"""
API routes for live conversations.

Every endpoint validates its input, publishes a command on COMMAND_CHANNEL for
the agent worker and returns 202 Accepted. Processing is asynchronous: results
reach consumers as notifications on EVENT_CHANNEL.
"""

import logging
from typing import Annotated, Literal

from fastapi import APIRouter, Path

from api.models.requests import CommandAccepted, UtteranceRequest
from shared.commands import CommandType, ConversationCommand
from shared.config import get_settings
from shared.redis_client import publish_to_channel

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/conversations", tags=["conversations"])

ConversationId = Annotated[str, Path(min_length=1, max_length=128)]
ActionId = Annotated[str, Path(min_length=1, max_length=128)]


async def _publish(command: ConversationCommand) -> CommandAccepted:
    await publish_to_channel(
        get_settings().COMMAND_CHANNEL, command.model_dump(mode="json", exclude_none=True)
    )
    logger.info(
        f"Command published | type={command.type.value}",
        extra={"conversation_id": command.conversation_id, "action_id": command.action_id},
    )
    return CommandAccepted(
        conversation_id=command.conversation_id,
        command=command.type.value,
        action_id=command.action_id,
    )


@router.post("/{conversation_id}/utterances", status_code=202, response_model=CommandAccepted)
async def submit_utterance(
    conversation_id: ConversationId,
    body: UtteranceRequest,
) -> CommandAccepted:
    """
    Submit a transcribed utterance.

    The first utterance of a conversation starts its engine.

    **Errors:**
    - **422**: Invalid body
    - **503**: Redis unavailable
    """
    return await _publish(
        ConversationCommand(
            type=CommandType.UTTERANCE,
            conversation_id=conversation_id,
            speaker=body.speaker,
            text=body.text,
            timestamp=body.timestamp,
        )
    )


@router.post(
    "/{conversation_id}/actions/{action_id}/{decision}",
    status_code=202,
    response_model=CommandAccepted,
)
async def decide_action(
    conversation_id: ConversationId,
    action_id: ActionId,
    decision: Literal["confirm", "dismiss", "cancel"],
) -> CommandAccepted:
    """
    Operator decision on a suggested action: confirm, dismiss, or cancel a countdown.
    """
    return await _publish(
        ConversationCommand(
            type=CommandType(decision),
            conversation_id=conversation_id,
            action_id=action_id,
        )
    )


@router.post("/{conversation_id}/end", status_code=202, response_model=CommandAccepted)
async def end_conversation(conversation_id: ConversationId) -> CommandAccepted:
    """End the conversation and discard its engine."""
    return await _publish(
        ConversationCommand(type=CommandType.END, conversation_id=conversation_id)
    )
