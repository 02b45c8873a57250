"""
Action Lifecycle Manager.

Owns the status of every ExecutableAction of one conversation:

    suggested → confirmed → executing → completed | failed
        │           │           └─→ dismissed (cancel while executing)
        │           └─→ dismissed | invalidated
        └─→ dismissed | invalidated | executing (auto-execute countdown only)

All status changes go through `_transition`, which validates the move against
ALLOWED_TRANSITIONS, applies a single patch to the StateStore and, when the new
status is terminal, appends an ActionHistoryEntry and emits ActionResolved.

Terminal actions stay in `executable_actions` (so their result or error stays
visible) until the next reconciliation prunes them.
"""

import asyncio
import logging
import math
from dataclasses import replace
from typing import Any

from agent.dispatch.execution_dispatcher import DispatchOutcome, ExecutionDispatcher
from agent.errors import ActionLifecycleError, InvalidTransitionError, UnknownActionError
from agent.lifecycle.policy import apply_policy
from agent.notifications import ActionResolved, CountdownTick, EventSink, InMemoryEventSink
from agent.pipeline.decoding import ActionProposal
from agent.state.reducers import StateStore
from agent.state.schemas import (
    ActionHistoryEntry,
    ActionStatus,
    ExecutableAction,
    RiskLevel,
    UserInteraction,
    ValidationIssue,
    utc_now,
)
from agent.tools.catalog import ToolCatalog, get_profile_value

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[ActionStatus, frozenset[ActionStatus]] = {
    ActionStatus.SUGGESTED: frozenset(
        {
            ActionStatus.CONFIRMED,
            ActionStatus.DISMISSED,
            ActionStatus.INVALIDATED,
            ActionStatus.EXECUTING,
        }
    ),
    ActionStatus.CONFIRMED: frozenset(
        {ActionStatus.EXECUTING, ActionStatus.DISMISSED, ActionStatus.INVALIDATED}
    ),
    ActionStatus.EXECUTING: frozenset(
        {ActionStatus.COMPLETED, ActionStatus.FAILED, ActionStatus.DISMISSED}
    ),
}

# Statuses a later pipeline run may invalidate
OUTSTANDING_STATUSES = frozenset({ActionStatus.SUGGESTED, ActionStatus.CONFIRMED})

# An identical candidate after one of these is not suggested again
SETTLED_STATUSES = frozenset({ActionStatus.COMPLETED, ActionStatus.DISMISSED})

REASON_USER_CANCEL = "user_cancel"
REASON_USER_DISMISS = "user_dismiss"
REASON_CONVERSATION_ENDED = "conversation_ended"


def interaction_for(action: ExecutableAction) -> UserInteraction:
    """How a terminal action was resolved, for the history entry."""
    if action.status == ActionStatus.DISMISSED:
        return UserInteraction.DISMISSED
    if action.status == ActionStatus.INVALIDATED:
        return UserInteraction.INVALIDATED
    if action.confirmed_by_user:
        return UserInteraction.CONFIRMED
    return UserInteraction.AUTO_EXECUTED


class ActionLifecycleManager:
    """
    Lifecycle of the actions of one conversation.

    Example:
        >>> manager = ActionLifecycleManager("conv-123", store, catalog, dispatcher)
        >>> manager.reconcile(result.candidates, previous_stage, store.state["current_stage"])
        >>> manager.confirm("action-3f2a")   # operator pressed confirm
    """

    def __init__(
        self,
        conversation_id: str,
        store: StateStore,
        catalog: ToolCatalog,
        dispatcher: ExecutionDispatcher,
        event_sink: EventSink | None = None,
        countdown_ms: int = 3000,
        tick_ms: int = 1000,
    ):
        self.conversation_id = conversation_id
        self.store = store
        self.catalog = catalog
        self.dispatcher = dispatcher
        self.event_sink = event_sink or InMemoryEventSink()
        self.countdown_ms = countdown_ms
        self.tick_ms = tick_ms
        self._countdowns: dict[str, asyncio.Task] = {}
        self._executions: set[asyncio.Task] = set()

    # ========================================================================
    # Lookups
    # ========================================================================

    @property
    def actions(self) -> list[ExecutableAction]:
        return list(self.store.state.get("executable_actions", []))

    def get(self, action_id: str) -> ExecutableAction:
        for action in self.actions:
            if action.id == action_id:
                return action
        raise UnknownActionError(action_id)

    def in_countdown(self, action_id: str) -> bool:
        return action_id in self._countdowns

    def _log_extra(self, action: ExecutableAction) -> dict[str, Any]:
        return {
            "conversation_id": self.conversation_id,
            "action_id": action.id,
            "tool_name": action.tool_name,
        }

    # ========================================================================
    # Transitions
    # ========================================================================

    def _history_entry(self, action: ExecutableAction, reason: str | None) -> ActionHistoryEntry:
        return ActionHistoryEntry(
            action=action,
            suggested_at=action.created_at,
            resolved_at=action.updated_at or utc_now(),
            user_interaction=interaction_for(action),
            reason=reason,
        )

    def _transition(
        self,
        action_id: str,
        target: ActionStatus,
        reason: str | None = None,
        **changes: Any,
    ) -> ExecutableAction:
        current = self.get(action_id)
        if target not in ALLOWED_TRANSITIONS.get(current.status, frozenset()):
            raise InvalidTransitionError(action_id, current.status.value, target.value)

        updated = replace(
            current, status=target, updated_at=utc_now(), status_reason=reason, **changes
        )
        actions = [updated if action.id == action_id else action for action in self.actions]
        patch: dict[str, Any] = {"executable_actions": actions}
        if target.is_terminal:
            patch["action_history"] = [self._history_entry(updated, reason)]
        self.store.apply(patch, source="lifecycle")

        logger.info(
            f"Action transition | action_id={action_id} | {current.status.value} -> {target.value}"
            + (f" | reason={reason}" if reason else ""),
            extra=self._log_extra(updated),
        )
        if target.is_terminal:
            self.event_sink.emit(
                ActionResolved(self.conversation_id, action_id, target, reason)
            )
        return updated

    # ========================================================================
    # Reconciliation after a pipeline run
    # ========================================================================

    def _stale_reason(self, action: ExecutableAction, profile: dict[str, Any]) -> str | None:
        """Describe the profile change that invalidates an action's parameters, if any."""
        tool = self.catalog.get(action.tool_name)
        if tool is None:
            return None
        for name, source in tool.parameter_sources().items():
            if name not in action.parameters:
                continue
            current = get_profile_value(profile, source)
            if current is not None and current != action.parameters[name]:
                return (
                    f"Customer {source} changed from {action.parameters[name]!r} to {current!r}"
                )
        return None

    def _previous_resolution(self, action: ExecutableAction) -> ActionStatus | None:
        """Final status of the latest history entry for the same tool and parameters."""
        for entry in reversed(self.store.state.get("action_history", [])):
            previous = entry.action
            if previous.tool_name == action.tool_name and previous.parameters == action.parameters:
                return previous.status
        return None

    def reconcile(
        self,
        candidates: list[ActionProposal],
        previous_stage: str | None,
        current_stage: str | None,
        issues: list[ValidationIssue] | None = None,
    ) -> list[ExecutableAction]:
        """
        Merge a pipeline run's candidates into the active actions.

        1. Terminal actions are pruned (they already live in history)
        2. A stage change invalidates every outstanding suggested/confirmed action
        3. A profile value differing from a parameter an action was built with invalidates it
        4. A candidate for the same tool as an outstanding suggestion replaces it only when
           its parameters differ; otherwise the existing suggestion is kept
        5. A candidate identical to an action already completed or dismissed (including an
           operator cancel) is dropped; one identical to a failed action is only suggested,
           never auto-executed

        Args:
            candidates: Filtered proposals from the action generation stage
            previous_stage: Current stage id before the run
            current_stage: Current stage id after the run
            issues: Profile validation issues from the run

        Returns:
            Newly suggested actions
        """
        profile = self.store.state.get("customer_profile", {})
        stage_changed = previous_stage is not None and previous_stage != current_stage
        now = utc_now()

        kept: list[ExecutableAction] = []
        resolved: list[tuple[ExecutableAction, str]] = []

        for action in self.actions:
            if action.status.is_terminal:
                continue
            reason = None
            if action.status in OUTSTANDING_STATUSES:
                if stage_changed:
                    reason = (
                        f"Conversation moved from stage '{previous_stage}' to '{current_stage}'"
                    )
                else:
                    reason = self._stale_reason(action, profile)
            if reason:
                resolved.append(
                    (
                        replace(
                            action,
                            status=ActionStatus.INVALIDATED,
                            updated_at=now,
                            status_reason=reason,
                        ),
                        reason,
                    )
                )
            else:
                kept.append(action)

        added: list[ExecutableAction] = []
        for proposal in candidates:
            action = apply_policy(proposal, self.catalog, profile, issues)
            if action is None:
                continue
            previous = self._previous_resolution(action)
            if previous in SETTLED_STATUSES:
                logger.info(
                    f"Candidate already resolved, not suggested again | "
                    f"tool={action.tool_name} | previous_status={previous.value}",
                    extra={"conversation_id": self.conversation_id, "tool_name": action.tool_name},
                )
                continue
            if previous == ActionStatus.FAILED and action.auto_execute:
                action = replace(action, auto_execute=False)
            same_tool = next(
                (existing for existing in kept if existing.tool_name == action.tool_name), None
            )
            if same_tool is not None:
                if same_tool.status != ActionStatus.SUGGESTED or same_tool.parameters == action.parameters:
                    continue
                reason = "Superseded by a newer suggestion with different parameters"
                kept.remove(same_tool)
                resolved.append(
                    (
                        replace(
                            same_tool,
                            status=ActionStatus.INVALIDATED,
                            updated_at=now,
                            status_reason=reason,
                        ),
                        reason,
                    )
                )
            added.append(action)

        for action, _ in resolved:
            self._stop_countdown(action.id)

        patch: dict[str, Any] = {"executable_actions": kept + added}
        if resolved:
            patch["action_history"] = [self._history_entry(action, reason) for action, reason in resolved]
        self.store.apply(patch, source="lifecycle")

        for action, reason in resolved:
            logger.info(
                f"Action invalidated | action_id={action.id} | reason={reason}",
                extra=self._log_extra(action),
            )
            self.event_sink.emit(
                ActionResolved(self.conversation_id, action.id, ActionStatus.INVALIDATED, reason)
            )

        for action in added:
            logger.info(
                f"Action suggested | action_id={action.id} | confidence={action.confidence:.0f} | "
                f"risk_level={action.risk_level.value} | auto_execute={action.auto_execute}",
                extra=self._log_extra(action),
            )
            if action.auto_execute:
                self._start_countdown(action)

        return added

    # ========================================================================
    # Auto-execution countdown
    # ========================================================================

    def _start_countdown(self, action: ExecutableAction) -> None:
        task = asyncio.create_task(self._countdown(action.id))
        self._countdowns[action.id] = task
        self._executions.add(task)
        task.add_done_callback(self._executions.discard)

    def _stop_countdown(self, action_id: str) -> bool:
        task = self._countdowns.pop(action_id, None)
        if task is None:
            return False
        if task is not asyncio.current_task():
            task.cancel()
        return True

    async def _countdown(self, action_id: str) -> None:
        remaining_ms = self.countdown_ms
        while remaining_ms > 0:
            self.event_sink.emit(
                CountdownTick(self.conversation_id, action_id, math.ceil(remaining_ms / 1000))
            )
            step_ms = min(self.tick_ms, remaining_ms)
            await asyncio.sleep(step_ms / 1000)
            remaining_ms -= step_ms

        # Past this point a cancel dismisses the executing action, the task keeps running
        self._countdowns.pop(action_id, None)
        self.event_sink.emit(CountdownTick(self.conversation_id, action_id, 0))
        logger.info(
            f"Countdown elapsed, auto-executing | action_id={action_id}",
            extra={"conversation_id": self.conversation_id, "action_id": action_id},
        )
        await self._execute(action_id)

    # ========================================================================
    # Execution
    # ========================================================================

    def begin_execution(self, action_id: str) -> ExecutableAction:
        """
        Move an action to EXECUTING.

        Raises:
            ActionLifecycleError: High risk action without an operator confirmation,
                or a suggested action that is not auto-executable
        """
        action = self.get(action_id)
        if action.risk_level == RiskLevel.HIGH and not action.confirmed_by_user:
            raise ActionLifecycleError(
                f"High risk action {action_id} requires an explicit operator confirmation"
            )
        if action.status == ActionStatus.SUGGESTED and not action.auto_execute:
            raise InvalidTransitionError(
                action_id, action.status.value, ActionStatus.EXECUTING.value
            )
        return self._transition(action_id, ActionStatus.EXECUTING)

    def finish_execution(self, outcome: DispatchOutcome) -> ExecutableAction | None:
        """
        Record a dispatch outcome on its action.

        An action that is no longer executing (cancelled meanwhile) keeps its
        status; the outcome only lives on the background task.
        """
        try:
            action = self.get(outcome.action_id)
        except UnknownActionError:
            action = None
        if action is None or action.status != ActionStatus.EXECUTING:
            logger.info(
                f"Dispatch finished for an action no longer executing | "
                f"action_id={outcome.action_id} | success={outcome.success}",
                extra={"conversation_id": self.conversation_id, "action_id": outcome.action_id},
            )
            return None

        if outcome.success:
            return self._transition(
                outcome.action_id,
                ActionStatus.COMPLETED,
                result={"summary": outcome.summary, "data": outcome.result, "duration_ms": outcome.duration_ms},
                parameters=outcome.parameters,
                parameter_overrides=outcome.overrides,
            )
        return self._transition(
            outcome.action_id,
            ActionStatus.FAILED,
            reason=outcome.error_code,
            error=outcome.error,
            parameters=outcome.parameters,
            parameter_overrides=outcome.overrides,
        )

    async def _execute(self, action_id: str) -> None:
        try:
            action = self.begin_execution(action_id)
        except ActionLifecycleError as e:
            logger.warning(
                f"Execution not started | action_id={action_id} | error={e}",
                extra={"conversation_id": self.conversation_id, "action_id": action_id},
            )
            return

        outcome = await self.dispatcher.execute(action, self.store.state.get("customer_profile", {}))
        self.finish_execution(outcome)

    def _spawn_execution(self, action_id: str) -> None:
        task = asyncio.create_task(self._execute(action_id))
        self._executions.add(task)
        task.add_done_callback(self._executions.discard)

    # ========================================================================
    # Operator commands
    # ========================================================================

    def confirm(self, action_id: str) -> ExecutableAction:
        """
        Operator confirmation: suggested → confirmed, then dispatch.

        Confirming an action that is counting down stops the countdown and
        dispatches it right away.
        """
        self._stop_countdown(action_id)
        action = self._transition(action_id, ActionStatus.CONFIRMED, confirmed_by_user=True)
        self._spawn_execution(action_id)
        return action

    def dismiss(self, action_id: str, reason: str = REASON_USER_DISMISS) -> ExecutableAction:
        """Dismiss an active action. An in-flight dispatch is allowed to finish."""
        self._stop_countdown(action_id)
        return self._transition(action_id, ActionStatus.DISMISSED, reason=reason)

    def cancel(self, action_id: str) -> ExecutableAction:
        """Cancel a countdown or an executing action (dismissed with reason user_cancel)."""
        if self.in_countdown(action_id):
            logger.info(
                f"Countdown cancelled by operator | action_id={action_id}",
                extra={"conversation_id": self.conversation_id, "action_id": action_id},
            )
        return self.dismiss(action_id, reason=REASON_USER_CANCEL)

    async def close(self) -> None:
        """Dismiss actions still counting down and wait for in-flight dispatches."""
        for action_id in list(self._countdowns):
            try:
                self.dismiss(action_id, reason=REASON_CONVERSATION_ENDED)
            except ActionLifecycleError as e:
                logger.warning(f"Could not dismiss action on close | action_id={action_id} | error={e}")
                self._stop_countdown(action_id)
        if self._executions:
            await asyncio.gather(*self._executions, return_exceptions=True)
