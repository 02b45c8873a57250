"""Pydantic models for API request bodies."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


class UtteranceRequest(BaseModel):
    """One transcribed, speaker-attributed utterance."""
    model_config = ConfigDict(extra="forbid")

    speaker: Literal["agent", "customer"]
    text: str = Field(min_length=1, max_length=4000)
    timestamp: datetime | None = None

    @field_validator("text")
    @classmethod
    def text_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("text must not be blank")
        return v


class CommandAccepted(BaseModel):
    """Acknowledgment returned by every command endpoint."""

    status: Literal["accepted"] = "accepted"
    conversation_id: str
    command: str
    action_id: str | None = None
