"""
Commands exchanged between the API and the agent worker over COMMAND_CHANNEL.

Message format:
    {"type": "utterance", "conversation_id": "call-123", "speaker": "customer",
     "text": "May 28 til", "timestamp": "2025-05-01T10:00:00Z"}
    {"type": "confirm" | "dismiss" | "cancel", "conversation_id": "call-123",
     "action_id": "action-3f2a"}
    {"type": "end", "conversation_id": "call-123"}
"""

from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field, model_validator


class CommandType(str, Enum):
    UTTERANCE = "utterance"
    CONFIRM = "confirm"
    DISMISS = "dismiss"
    CANCEL = "cancel"
    END = "end"


ACTION_COMMANDS = frozenset({CommandType.CONFIRM, CommandType.DISMISS, CommandType.CANCEL})


class ConversationCommand(BaseModel):
    """One command for a conversation's engine."""

    type: CommandType
    conversation_id: str = Field(min_length=1)
    speaker: Literal["agent", "customer"] | None = None
    text: str | None = None
    timestamp: datetime | None = None
    action_id: str | None = None

    @model_validator(mode="after")
    def check_required_fields(self) -> "ConversationCommand":
        if self.type == CommandType.UTTERANCE and (not self.speaker or not self.text):
            raise ValueError("utterance commands require speaker and text")
        if self.type in ACTION_COMMANDS and not self.action_id:
            raise ValueError(f"{self.type.value} commands require action_id")
        return self
