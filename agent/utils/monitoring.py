"""
Langfuse monitoring utilities for inference observability and token tracking.

This module provides helpers to integrate Langfuse tracing into the
analysis pipeline, enabling:
- Token usage monitoring and cost tracking per analysis stage
- Latency and error rates of the Inference Service
- Session grouping per conversation, passed as run metadata

NOTE: Langfuse 3.x uses OpenTelemetry and requires environment variables:
- LANGFUSE_PUBLIC_KEY
- LANGFUSE_SECRET_KEY
- LANGFUSE_HOST (optional, defaults to Langfuse cloud)
"""

import logging
import os
from typing import Any

from langfuse.langchain import CallbackHandler

from shared.config import Settings, get_settings

logger = logging.getLogger(__name__)


def langfuse_enabled(settings: Settings | None = None) -> bool:
    settings = settings or get_settings()
    return settings.LANGFUSE_ENABLED and settings.LANGFUSE_PUBLIC_KEY != "pk-lf-placeholder"


def get_langfuse_handler(conversation_id: str) -> CallbackHandler | None:
    """
    Create a Langfuse callback handler for tracing inference calls.

    In Langfuse 3.x, credentials are read from environment variables.
    This function ensures they are set before creating the handler.
    Session and tags are per call and travel in the run config metadata
    (see get_langfuse_config).

    Args:
        conversation_id: Conversation identifier, only used for logging

    Returns:
        CallbackHandler, or None when Langfuse is not enabled
    """
    settings = get_settings()
    if not langfuse_enabled(settings):
        return None

    os.environ["LANGFUSE_PUBLIC_KEY"] = settings.LANGFUSE_PUBLIC_KEY
    os.environ["LANGFUSE_SECRET_KEY"] = settings.LANGFUSE_SECRET_KEY
    if settings.LANGFUSE_BASE_URL:
        os.environ["LANGFUSE_HOST"] = settings.LANGFUSE_BASE_URL

    try:
        handler = CallbackHandler(public_key=settings.LANGFUSE_PUBLIC_KEY)
        logger.debug(f"Langfuse handler created for conversation {conversation_id}")
        return handler
    except Exception as e:
        logger.error(f"Failed to create Langfuse handler: {e}", exc_info=True)
        raise


def get_langfuse_config(conversation_id: str, stage: str | None = None) -> dict[str, Any]:
    """
    Build the LangChain run config for one traced inference call.

    Example:
        >>> config = get_langfuse_config("conv-123", stage="extract_intents")
        >>> await llm.ainvoke(messages, config=config)
    """
    handler = get_langfuse_handler(conversation_id)
    if handler is None:
        return {}

    tags = ["copilot", "analysis-pipeline"]
    if stage:
        tags.append(f"stage:{stage}")
    return {
        "callbacks": [handler],
        "metadata": {
            "langfuse_session_id": conversation_id,
            "langfuse_tags": tags,
        },
    }
