"""
Tool Service client.

The Execution Dispatcher talks to the Tool Service only through the ToolClient
protocol. The production implementation POSTs parameters to
`{TOOL_SERVICE_URL}/tools/{tool_name}` and returns the JSON body.

Response contract:
    {"success": true, "data": {...}, "summary": "...", "duration_ms": 120}
    {"success": false, "error": "..."}
"""

import logging
import time
from typing import Any, Protocol

import httpx

from shared.circuit_breaker import call_with_breaker, tool_service_breaker
from shared.config import Settings, get_settings

logger = logging.getLogger(__name__)


class ToolClient(Protocol):
    """Business operation executor."""

    async def invoke(self, tool_name: str, parameters: dict[str, Any]) -> dict[str, Any]:
        """Invoke a tool and return the raw response payload."""
        ...


class HttpToolClient:
    """
    ToolClient over HTTP.

    Transport errors and 5xx responses raise (and count against the tool
    service circuit breaker). 4xx responses are business failures and are
    returned as {"success": False, "error": "HTTP <status>: <body>"}.
    """

    def __init__(self, settings: Settings | None = None):
        settings = settings or get_settings()
        # Remove trailing slash to avoid double slashes in URLs
        self.base_url = settings.TOOL_SERVICE_URL.rstrip("/")
        self.timeout = settings.TOOL_TIMEOUT_SECONDS
        self.headers = {"Content-Type": "application/json"}
        if settings.TOOL_SERVICE_API_KEY:
            self.headers["Authorization"] = f"Bearer {settings.TOOL_SERVICE_API_KEY}"

        logger.info(f"HttpToolClient initialized: {self.base_url}")

    async def _post(self, tool_name: str, parameters: dict[str, Any]) -> httpx.Response:
        async with httpx.AsyncClient() as client:
            response = await client.post(
                f"{self.base_url}/tools/{tool_name}",
                json=parameters,
                headers=self.headers,
                timeout=self.timeout,
            )
            if response.status_code >= 500:
                response.raise_for_status()
            return response

    async def invoke(self, tool_name: str, parameters: dict[str, Any]) -> dict[str, Any]:
        start_time = time.time()
        logger.info(
            f"Invoking tool | tool_name={tool_name} | parameters={sorted(parameters)}",
            extra={"tool_name": tool_name},
        )

        try:
            response = await call_with_breaker(
                tool_service_breaker, self._post, tool_name, parameters
            )
        except httpx.HTTPError as e:
            logger.error(f"HTTP error invoking tool {tool_name}: {e}")
            raise

        duration_ms = int((time.time() - start_time) * 1000)

        if response.is_error:
            logger.warning(
                f"Tool returned client error | tool_name={tool_name} | status={response.status_code}",
                extra={"tool_name": tool_name},
            )
            return {
                "success": False,
                "error": f"HTTP {response.status_code}: {response.text}",
                "duration_ms": duration_ms,
            }

        payload = response.json()
        if isinstance(payload, dict):
            payload.setdefault("duration_ms", duration_ms)
        return payload
