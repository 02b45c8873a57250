"""
Inference Service client.

The analysis pipeline talks to the Inference Service only through the
InferenceClient protocol, so engines can be built with a fake client in tests.
The production implementation uses LangChain chat models, either through
OpenRouter (ChatOpenAI with OpenRouter base URL) or directly through Anthropic.
"""

import logging
import time
from typing import Any, Protocol

from langchain_anthropic import ChatAnthropic
from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI

from agent.utils.monitoring import get_langfuse_config
from shared.circuit_breaker import call_with_breaker, inference_breaker
from shared.config import Settings, get_settings

logger = logging.getLogger(__name__)

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"


class InferenceClient(Protocol):
    """Reasoning backend used by the analysis stages."""

    async def complete(self, stage: str, system_prompt: str, prompt: str) -> str:
        """Return the raw text produced for a stage prompt."""
        ...


def _get_llm_client(settings: Settings) -> BaseChatModel:
    """
    Build the chat model for the configured provider.

    OpenRouter is the default; LLM_PROVIDER=anthropic talks to Anthropic directly.
    """
    if settings.LLM_PROVIDER.lower() == "anthropic":
        return ChatAnthropic(
            model=settings.ANTHROPIC_MODEL,
            api_key=settings.ANTHROPIC_API_KEY,
            temperature=settings.LLM_TEMPERATURE,
            max_tokens=settings.LLM_MAX_TOKENS,
            timeout=settings.INFERENCE_TIMEOUT_SECONDS,
            max_retries=1,
        )

    return ChatOpenAI(
        model=settings.LLM_MODEL,
        api_key=settings.OPENROUTER_API_KEY,
        base_url=OPENROUTER_BASE_URL,
        temperature=settings.LLM_TEMPERATURE,
        max_tokens=settings.LLM_MAX_TOKENS,
        request_timeout=settings.INFERENCE_TIMEOUT_SECONDS,
        max_retries=1,
        default_headers={
            "HTTP-Referer": settings.SITE_URL,
            "X-Title": settings.SITE_NAME,
        },
    )


def _content_to_text(content: Any) -> str:
    """Flatten LangChain message content (str or list of content blocks) to text."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and block.get("type") == "text":
                parts.append(block.get("text", ""))
        return "".join(parts)
    return str(content)


class LangChainInferenceClient:
    """
    InferenceClient backed by a LangChain chat model.

    Each call is protected by the shared inference circuit breaker and traced
    with Langfuse when enabled.
    """

    def __init__(
        self,
        conversation_id: str,
        settings: Settings | None = None,
        llm: BaseChatModel | None = None,
    ):
        self.conversation_id = conversation_id
        self.settings = settings or get_settings()
        self.llm = llm or _get_llm_client(self.settings)

    async def complete(self, stage: str, system_prompt: str, prompt: str) -> str:
        start_time = time.time()
        config = get_langfuse_config(self.conversation_id, stage=stage)

        response = await call_with_breaker(
            inference_breaker,
            self.llm.ainvoke,
            [SystemMessage(content=system_prompt), HumanMessage(content=prompt)],
            config=config,
        )

        latency_ms = (time.time() - start_time) * 1000
        logger.info(
            f"Inference call completed | stage={stage} | latency_ms={latency_ms:.0f}",
            extra={"conversation_id": self.conversation_id, "stage": stage},
        )
        return _content_to_text(response.content)
