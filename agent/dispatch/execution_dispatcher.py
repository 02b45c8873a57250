"""
Execution Dispatcher - runs confirmed and auto-executing actions against the Tool Service.

Responsibilities:
- Per-tool concurrency caps (asyncio.Semaphore sized from the catalog entry)
- Parameter authority: profile values override the action's proposed parameters
- Bounded calls (timeout) and response validation against the ToolResult contract
- A single automatic retry, for low risk idempotent tools only
- BackgroundTask bookkeeping in the StateStore

Failures never propagate: every ToolFault becomes a failed DispatchOutcome.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, replace
from typing import Any
from uuid import uuid4

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError
from tenacity import AsyncRetrying, RetryError, retry_if_exception_type, stop_after_attempt

from agent.dispatch.summaries import summarize_result
from agent.errors import ContractViolation, ToolFault
from agent.state.reducers import StateStore
from agent.state.schemas import (
    BackgroundTask,
    ExecutableAction,
    RiskLevel,
    TaskStatus,
    utc_now,
)
from agent.tools.catalog import (
    ToolCatalog,
    ToolDefinition,
    build_parameters,
    missing_required_parameters,
)

logger = logging.getLogger(__name__)


class ToolResult(BaseModel):
    """Tool Service response contract."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    success: bool
    data: Any = None
    summary: str | None = None
    duration_ms: int | None = Field(
        default=None, validation_alias=AliasChoices("duration_ms", "durationMs")
    )
    error: str | None = None


@dataclass(frozen=True)
class DispatchOutcome:
    """Result of dispatching one action."""

    action_id: str
    tool_name: str
    task_id: str
    success: bool
    parameters: dict[str, Any]
    overrides: tuple[str, ...] = ()
    summary: str | None = None
    result: dict[str, Any] | None = None
    error: str | None = None
    error_code: str | None = None
    duration_ms: int = 0
    attempts: int = 0


def is_retryable(tool: ToolDefinition) -> bool:
    """Only low risk idempotent tools get an automatic retry."""
    return tool.risk_level == RiskLevel.LOW and tool.idempotent


class ExecutionDispatcher:
    """
    Dispatches actions for one conversation.

    Example:
        >>> dispatcher = ExecutionDispatcher("conv-123", tool_client, catalog, store)
        >>> outcome = await dispatcher.execute(action, store.state["customer_profile"])
        >>> outcome.success, outcome.summary
        (True, 'Found 3 available rooms')
    """

    def __init__(
        self,
        conversation_id: str,
        tool_client: Any,
        catalog: ToolCatalog,
        store: StateStore,
        timeout_s: float = 20.0,
    ):
        self.conversation_id = conversation_id
        self.tool_client = tool_client
        self.catalog = catalog
        self.store = store
        self.timeout_s = timeout_s
        self._semaphores: dict[str, asyncio.Semaphore] = {}

    def _semaphore(self, tool: ToolDefinition) -> asyncio.Semaphore:
        if tool.name not in self._semaphores:
            self._semaphores[tool.name] = asyncio.Semaphore(tool.max_concurrent)
        return self._semaphores[tool.name]

    def resolve_parameters(
        self, tool: ToolDefinition, action: ExecutableAction, profile: dict[str, Any]
    ) -> tuple[dict[str, Any], tuple[str, ...]]:
        """
        Merge the action's parameters with the profile, profile first.

        Returns:
            Tuple of (parameters, names of the keys whose proposed value was replaced)
        """
        profile_parameters = build_parameters(tool, profile)
        overrides = tuple(
            sorted(
                name
                for name, value in profile_parameters.items()
                if name in action.parameters and action.parameters[name] != value
            )
        )
        if overrides:
            logger.info(
                f"Profile overrides action parameters | action_id={action.id} | "
                f"tool_name={tool.name} | keys={list(overrides)}",
                extra={
                    "conversation_id": self.conversation_id,
                    "action_id": action.id,
                    "tool_name": tool.name,
                },
            )
        return {**action.parameters, **profile_parameters}, overrides

    def _update_task(self, task: BackgroundTask) -> None:
        self.store.apply({"background_tasks": [task]}, source="dispatcher")

    async def _invoke_once(self, tool: ToolDefinition, parameters: dict[str, Any]) -> ToolResult:
        try:
            raw = await asyncio.wait_for(
                self.tool_client.invoke(tool.name, parameters), timeout=self.timeout_s
            )
        except asyncio.TimeoutError as e:
            raise ToolFault(
                tool_name=tool.name,
                error_code="TIMEOUT",
                message=f"Tool call timed out after {self.timeout_s}s",
            ) from e
        except Exception as e:
            raise ToolFault(
                tool_name=tool.name,
                error_code="TOOL_ERROR",
                message=f"Tool call failed: {e}",
                details={"exception": type(e).__name__},
            ) from e

        try:
            result = ToolResult.model_validate(raw)
        except ValidationError as e:
            violation = ContractViolation("tool_result", f"{e.error_count()} validation errors")
            raise ToolFault(
                tool_name=tool.name,
                error_code="CONTRACT_VIOLATION",
                message=str(violation),
            ) from violation

        if not result.success:
            raise ToolFault(
                tool_name=tool.name,
                error_code="TOOL_FAILED",
                message=result.error or "Tool reported failure",
            )
        return result

    async def _invoke(
        self, tool: ToolDefinition, parameters: dict[str, Any]
    ) -> tuple[ToolResult, int]:
        """Invoke with at most one retry for eligible tools. Returns (result, attempts)."""
        max_attempts = 2 if is_retryable(tool) else 1
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(max_attempts),
                retry=retry_if_exception_type(ToolFault),
            ):
                with attempt:
                    if attempt.retry_state.attempt_number > 1:
                        logger.warning(
                            f"Retrying tool call | tool_name={tool.name} | "
                            f"attempt={attempt.retry_state.attempt_number}",
                            extra={"conversation_id": self.conversation_id, "tool_name": tool.name},
                        )
                    result = await self._invoke_once(tool, parameters)
        except RetryError as e:
            fault = e.last_attempt.exception()
            if isinstance(fault, ToolFault):
                fault.details["attempts"] = e.last_attempt.attempt_number
                raise fault
            raise
        return result, attempt.retry_state.attempt_number

    async def execute(self, action: ExecutableAction, profile: dict[str, Any]) -> DispatchOutcome:
        """
        Execute an action against the Tool Service.

        Args:
            action: Action in EXECUTING status
            profile: Current customer profile (authoritative for parameters)

        Returns:
            DispatchOutcome (never raises for tool failures)
        """
        start_time = time.time()
        task = BackgroundTask(
            id=f"task-{uuid4().hex[:12]}",
            action_id=action.id,
            tool_name=action.tool_name,
            parameters=dict(action.parameters),
        )
        parameters = dict(action.parameters)
        overrides: tuple[str, ...] = ()
        attempts = 0
        log_extra = {
            "conversation_id": self.conversation_id,
            "action_id": action.id,
            "tool_name": action.tool_name,
        }

        try:
            tool = self.catalog.get(action.tool_name)
            if tool is None:
                raise ToolFault(
                    tool_name=action.tool_name,
                    error_code="UNKNOWN_TOOL",
                    message=f"Tool '{action.tool_name}' is not in the catalog",
                )

            parameters, overrides = self.resolve_parameters(tool, action, profile)
            task = replace(task, parameters=parameters)
            self._update_task(task)

            missing = missing_required_parameters(tool, profile, parameters)
            if missing:
                raise ToolFault(
                    tool_name=tool.name,
                    error_code="MISSING_PARAMETERS",
                    message=f"Missing required parameters: {', '.join(missing)}",
                    details={"missing": missing},
                )

            async with self._semaphore(tool):
                task = replace(task, status=TaskStatus.RUNNING, started_at=utc_now())
                self._update_task(task)
                result, attempts = await self._invoke(tool, parameters)

        except ToolFault as fault:
            duration_ms = int((time.time() - start_time) * 1000)
            attempts = fault.details.get("attempts", max(attempts, 1))
            logger.error(
                f"Tool dispatch failed | error_code={fault.error_code} | error={fault.message} | "
                f"attempts={attempts}",
                extra=log_extra,
                exc_info=fault.__cause__,
            )
            task = replace(
                task,
                status=TaskStatus.FAILED,
                completed_at=utc_now(),
                attempts=attempts,
                error=fault.message,
                duration_ms=duration_ms,
            )
            self._update_task(task)
            return DispatchOutcome(
                action_id=action.id,
                tool_name=action.tool_name,
                task_id=task.id,
                success=False,
                parameters=parameters,
                overrides=overrides,
                error=fault.message,
                error_code=fault.error_code,
                duration_ms=duration_ms,
                attempts=attempts,
            )

        duration_ms = result.duration_ms or int((time.time() - start_time) * 1000)
        data = result.data if isinstance(result.data, dict) else {"data": result.data}
        summary = result.summary or summarize_result(tool.name, result.data)
        task = replace(
            task,
            status=TaskStatus.COMPLETED,
            progress=100,
            completed_at=utc_now(),
            attempts=attempts,
            summary=summary,
            result=data,
            duration_ms=duration_ms,
        )
        self._update_task(task)
        logger.info(
            f"Tool dispatch completed | duration_ms={duration_ms} | attempts={attempts} | "
            f"summary={summary}",
            extra=log_extra,
        )
        return DispatchOutcome(
            action_id=action.id,
            tool_name=tool.name,
            task_id=task.id,
            success=True,
            parameters=parameters,
            overrides=overrides,
            summary=summary,
            result=data,
            duration_ms=duration_ms,
            attempts=attempts,
        )
