"""
Test configuration and fixtures.

This module sets up the test environment and provides fake Inference and Tool
Service clients plus scaled-down timings shared by all tests.
"""

import asyncio
import json
import os
from collections import defaultdict
from typing import Any

import pytest

# Must be set BEFORE any import of shared.config
os.environ["REDIS_URL"] = "redis://localhost:6379/0"
os.environ["LANGFUSE_ENABLED"] = "false"
os.environ["OPENROUTER_API_KEY"] = "sk-or-test-key"

from agent.batching.classifier import BatchTimings  # noqa: E402
from agent.tools.catalog import default_catalog  # noqa: E402
from shared.config import Settings  # noqa: E402

# Benign response for each analysis stage
DEFAULT_STAGE_RESPONSES: dict[str, Any] = {
    "intent_analysis": {"intents": [], "extracted_info": {}},
    "stage_management": {"stages": []},
    "action_generation": {"executable_actions": [], "quick_scripts": []},
    "health_scoring": {"score": 75},
}


class FakeInferenceClient:
    """
    InferenceClient returning canned responses per stage.

    A response may be a dict (JSON-encoded), a raw string, an exception to
    raise, or a callable taking the prompt and returning one of those.
    """

    def __init__(self, responses: dict[str, Any] | None = None, delay_s: float = 0.0):
        self.responses = {**DEFAULT_STAGE_RESPONSES, **(responses or {})}
        self.delay_s = delay_s
        self.calls: list[tuple[str, str]] = []
        self.in_flight = 0
        self.max_in_flight = 0

    def stages_called(self) -> list[str]:
        return [stage for stage, _ in self.calls]

    async def complete(self, stage: str, system_prompt: str, prompt: str) -> str:
        self.calls.append((stage, prompt))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay_s:
                await asyncio.sleep(self.delay_s)
            response = self.responses.get(stage, "{}")
            if callable(response):
                response = response(prompt)
            if isinstance(response, BaseException):
                raise response
            return response if isinstance(response, str) else json.dumps(response)
        finally:
            self.in_flight -= 1


class FakeToolClient:
    """
    ToolClient returning canned responses per tool.

    A response may be a dict, an exception to raise, or a list consumed one
    item per call. Tracks concurrent calls per tool.
    """

    def __init__(self, responses: dict[str, Any] | None = None, delay_s: float = 0.0):
        self.responses = dict(responses or {})
        self.delay_s = delay_s
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.in_flight: dict[str, int] = defaultdict(int)
        self.max_in_flight: dict[str, int] = defaultdict(int)

    def calls_for(self, tool_name: str) -> list[dict[str, Any]]:
        return [parameters for name, parameters in self.calls if name == tool_name]

    async def invoke(self, tool_name: str, parameters: dict[str, Any]) -> dict[str, Any]:
        self.calls.append((tool_name, dict(parameters)))
        self.in_flight[tool_name] += 1
        self.max_in_flight[tool_name] = max(
            self.max_in_flight[tool_name], self.in_flight[tool_name]
        )
        try:
            if self.delay_s:
                await asyncio.sleep(self.delay_s)
            response = self.responses.get(
                tool_name, {"success": True, "data": {}, "summary": "Done"}
            )
            if isinstance(response, list):
                response = response.pop(0) if len(response) > 1 else response[0]
            if isinstance(response, BaseException):
                raise response
            return response
        finally:
            self.in_flight[tool_name] -= 1


@pytest.fixture
def fast_timings() -> BatchTimings:
    """Batch timings scaled down ~100x, keeping their ordering."""
    return BatchTimings(
        urgent_ms=5,
        affirmation_ms=10,
        fast_track_ms=30,
        normal_ms=60,
        extended_ms=120,
        max_wait_ms=250,
    )


@pytest.fixture
def test_settings() -> Settings:
    """Settings with short countdowns and timeouts."""
    return Settings(
        _env_file=None,
        OPENROUTER_API_KEY="sk-or-test-key",
        AUTO_EXECUTE_COUNTDOWN_MS=60,
        COUNTDOWN_TICK_MS=20,
        INFERENCE_TIMEOUT_SECONDS=0.5,
        TOOL_TIMEOUT_SECONDS=0.5,
    )


@pytest.fixture
def catalog():
    return default_catalog()


@pytest.fixture
def fake_inference() -> FakeInferenceClient:
    return FakeInferenceClient()


@pytest.fixture
def fake_tools() -> FakeToolClient:
    return FakeToolClient()


@pytest.fixture
def make_inference():
    """Factory for FakeInferenceClient with custom stage responses."""
    return FakeInferenceClient


@pytest.fixture
def make_tools():
    """Factory for FakeToolClient with custom tool responses."""
    return FakeToolClient


async def _wait_until(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            pytest.fail("Condition not met before timeout")
        await asyncio.sleep(0.005)


@pytest.fixture
def wait_until():
    """Poll a predicate until it is true, failing the test after a timeout."""
    return _wait_until
