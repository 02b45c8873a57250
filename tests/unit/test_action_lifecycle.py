"""
Unit tests for agent/lifecycle/action_lifecycle.py - Action status ownership.

Tests coverage:
- reconcile() - suggestion, stage-change and stale-parameter invalidation,
  same-tool dedupe and supersede, pruning of terminal actions
- Completed or dismissed actions are not suggested again; failed ones lose auto-execute
- Auto-execute countdown: ticks, execution, cancel, confirm during countdown
- Operator commands: confirm, dismiss, cancel (including while executing)
- High risk actions never execute without an explicit confirmation
- Action history only grows
- close() dismisses countdowns and waits for dispatches
"""

import asyncio

import pytest

from agent.dispatch.execution_dispatcher import ExecutionDispatcher
from agent.errors import ActionLifecycleError, InvalidTransitionError, UnknownActionError
from agent.lifecycle.action_lifecycle import (
    REASON_CONVERSATION_ENDED,
    REASON_USER_CANCEL,
    ActionLifecycleManager,
)
from agent.notifications import ActionResolved, CountdownTick, InMemoryEventSink
from agent.pipeline.decoding import ActionProposal
from agent.state.reducers import StateStore
from agent.state.schemas import ActionStatus, TaskStatus, UserInteraction

PROFILE = {
    "email": "ana@example.com",
    "preferred_property": "prop-cancun-01",
    "travel_dates": {"check_in": "2099-05-28", "check_out": "2099-06-06"},
    "party_size": {"adults": 2},
}

AVAILABILITY_OK = {"success": True, "data": {"available": True, "rooms": [{"id": "r1"}]}}


def proposal(tool_name: str = "check_availability", confidence: float = 90, **overrides):
    data = {"label": f"Run {tool_name}", "tool_name": tool_name, "confidence": confidence}
    data.update(overrides)
    return ActionProposal.model_validate(data)


@pytest.fixture
def store():
    store = StateStore("conv-1")
    store.apply({"customer_profile": PROFILE}, source="test")
    return store


@pytest.fixture
def sink():
    return InMemoryEventSink()


@pytest.fixture
def tools(make_tools):
    return make_tools({"check_availability": AVAILABILITY_OK})


@pytest.fixture
def manager(store, catalog, tools, sink):
    dispatcher = ExecutionDispatcher("conv-1", tools, catalog, store, timeout_s=1.0)
    return ActionLifecycleManager(
        "conv-1", store, catalog, dispatcher, event_sink=sink, countdown_ms=60, tick_ms=20
    )


def status_of(manager: ActionLifecycleManager, action_id: str) -> ActionStatus | None:
    for action in manager.actions:
        if action.id == action_id:
            return action.status
    return None


# ============================================================================
# Reconciliation
# ============================================================================


class TestReconcile:
    """Merging pipeline candidates into active actions."""

    def test_candidates_become_suggestions(self, manager, store):
        added = manager.reconcile([proposal(confidence=80)], None, "greeting")

        assert len(added) == 1
        assert added[0].status == ActionStatus.SUGGESTED
        assert store.state["executable_actions"] == added

    def test_unknown_tool_is_skipped(self, manager):
        assert manager.reconcile([proposal("launch_rocket")], None, None) == []

    def test_stage_change_invalidates_outstanding_actions(self, manager, store, sink):
        action = manager.reconcile([proposal(confidence=80)], None, "greeting")[0]

        manager.reconcile([], "greeting", "dates")

        assert store.state["executable_actions"] == []
        entry = store.state["action_history"][-1]
        assert entry.action.id == action.id
        assert entry.user_interaction == UserInteraction.INVALIDATED
        assert "greeting" in entry.reason
        resolved = sink.of_type(ActionResolved)
        assert resolved[-1].final_status == ActionStatus.INVALIDATED

    def test_first_stage_assignment_is_not_a_stage_change(self, manager, store):
        manager.reconcile([proposal(confidence=80)], None, None)

        manager.reconcile([], None, "greeting")

        assert len(store.state["executable_actions"]) == 1

    def test_stale_parameter_invalidates_action(self, manager, store):
        """Test that a profile correction invalidates an action built on the old value."""
        action = manager.reconcile([proposal(confidence=80)], None, "dates")[0]
        assert action.parameters["check_in"] == "2099-05-28"

        store.apply(
            {"customer_profile": {"travel_dates": {"check_in": "2099-05-29"}}}, source="test"
        )
        manager.reconcile([], "dates", "dates")

        assert status_of(manager, action.id) is None
        entry = store.state["action_history"][-1]
        assert "travel_dates.check_in" in entry.reason

    def test_same_tool_same_parameters_keeps_existing(self, manager):
        first = manager.reconcile([proposal(confidence=80)], None, "dates")[0]

        added = manager.reconcile([proposal(confidence=82)], "dates", "dates")

        assert added == []
        assert [action.id for action in manager.actions] == [first.id]

    def test_same_tool_different_parameters_supersedes(self, manager, store):
        first = manager.reconcile(
            [proposal(confidence=80, parameters={"property_id": "prop-a"})], None, "dates"
        )[0]

        added = manager.reconcile(
            [proposal(confidence=80, parameters={"notes": "ocean view"})], "dates", "dates"
        )

        assert len(added) == 1
        assert [action.id for action in manager.actions] == [added[0].id]
        assert store.state["action_history"][-1].action.id == first.id
        assert "Superseded" in store.state["action_history"][-1].reason

    def test_terminal_actions_pruned_on_next_reconcile(self, manager):
        action = manager.reconcile([proposal(confidence=80)], None, "dates")[0]
        manager.dismiss(action.id)

        assert status_of(manager, action.id) == ActionStatus.DISMISSED

        manager.reconcile([], "dates", "dates")

        assert status_of(manager, action.id) is None


# ============================================================================
# Auto-execute countdown
# ============================================================================


class TestCountdown:
    """Visible, cancellable countdown before auto-execution."""

    @pytest.mark.asyncio
    async def test_countdown_then_execution(self, manager, sink, store, tools, wait_until):
        action = manager.reconcile([proposal(confidence=98)], None, "dates")[0]
        assert action.auto_execute is True
        assert manager.in_countdown(action.id)

        await wait_until(lambda: status_of(manager, action.id) == ActionStatus.COMPLETED)

        ticks = [tick.seconds_remaining for tick in sink.of_type(CountdownTick)]
        assert ticks[-1] == 0
        assert len(ticks) >= 2
        assert len(tools.calls) == 1
        completed = manager.get(action.id)
        assert completed.result["summary"] == "Found 1 available room"
        entry = store.state["action_history"][-1]
        assert entry.user_interaction == UserInteraction.AUTO_EXECUTED

    @pytest.mark.asyncio
    async def test_cancel_during_countdown(self, manager, tools, store):
        action = manager.reconcile([proposal(confidence=98)], None, "dates")[0]

        cancelled = manager.cancel(action.id)
        await asyncio.sleep(0.15)

        assert cancelled.status == ActionStatus.DISMISSED
        assert cancelled.status_reason == REASON_USER_CANCEL
        assert tools.calls == []
        assert store.state["action_history"][-1].reason == REASON_USER_CANCEL
        assert not manager.in_countdown(action.id)

    @pytest.mark.asyncio
    async def test_confirm_during_countdown_executes_immediately(
        self, manager, store, tools, wait_until
    ):
        action = manager.reconcile([proposal(confidence=98)], None, "dates")[0]

        manager.confirm(action.id)
        await wait_until(lambda: status_of(manager, action.id) == ActionStatus.COMPLETED)
        await asyncio.sleep(0.1)

        assert len(tools.calls) == 1
        assert store.state["action_history"][-1].user_interaction == UserInteraction.CONFIRMED

    @pytest.mark.asyncio
    async def test_stage_change_stops_countdown(self, manager, tools):
        action = manager.reconcile([proposal(confidence=98)], None, "dates")[0]

        manager.reconcile([], "dates", "quote")
        await asyncio.sleep(0.15)

        assert tools.calls == []
        assert not manager.in_countdown(action.id)


class TestResolvedCandidates:
    """Candidates identical to an already resolved action."""

    @pytest.mark.asyncio
    async def test_completed_action_is_not_dispatched_again(self, manager, tools, wait_until):
        action = manager.reconcile([proposal(confidence=98)], None, "dates")[0]
        await wait_until(lambda: status_of(manager, action.id) == ActionStatus.COMPLETED)

        added = manager.reconcile([proposal(confidence=98)], "dates", "dates")
        await asyncio.sleep(0.15)

        assert added == []
        assert len(tools.calls) == 1

    @pytest.mark.asyncio
    async def test_cancelled_action_does_not_auto_execute_later(self, manager, tools, store):
        action = manager.reconcile([proposal(confidence=98)], None, "dates")[0]
        manager.cancel(action.id)

        added = manager.reconcile([proposal(confidence=98)], "dates", "dates")
        await asyncio.sleep(0.15)

        assert added == []
        assert tools.calls == []
        interactions = [entry.user_interaction for entry in store.state["action_history"]]
        assert interactions == [UserInteraction.DISMISSED]

    def test_dismissed_action_with_new_parameters_is_suggested(self, manager):
        action = manager.reconcile([proposal(confidence=80)], None, "dates")[0]
        manager.dismiss(action.id)

        assert manager.reconcile([proposal(confidence=80)], "dates", "dates") == []
        added = manager.reconcile(
            [proposal(confidence=80, parameters={"notes": "sea view"})], "dates", "dates"
        )

        assert len(added) == 1
        assert added[0].parameters["notes"] == "sea view"

    @pytest.mark.asyncio
    async def test_failed_action_is_suggested_without_auto_execute(
        self, store, catalog, sink, make_tools, wait_until
    ):
        tools = make_tools({"check_availability": {"success": False, "error": "Sold out"}})
        dispatcher = ExecutionDispatcher("conv-1", tools, catalog, store, timeout_s=1.0)
        manager = ActionLifecycleManager(
            "conv-1", store, catalog, dispatcher, event_sink=sink, countdown_ms=60, tick_ms=20
        )
        action = manager.reconcile([proposal(confidence=98)], None, "dates")[0]
        await wait_until(lambda: status_of(manager, action.id) == ActionStatus.FAILED)
        calls = len(tools.calls)

        retry = manager.reconcile([proposal(confidence=98)], "dates", "dates")[0]
        await asyncio.sleep(0.15)

        assert retry.auto_execute is False
        assert retry.status == ActionStatus.SUGGESTED
        assert not manager.in_countdown(retry.id)
        assert len(tools.calls) == calls


# ============================================================================
# Operator commands and execution
# ============================================================================


class TestOperatorCommands:
    """Confirm, dismiss, cancel."""

    @pytest.mark.asyncio
    async def test_confirm_executes_action(self, manager, wait_until):
        action = manager.reconcile([proposal(confidence=88)], None, "dates")[0]
        assert action.requires_confirmation is True

        confirmed = manager.confirm(action.id)

        assert confirmed.status == ActionStatus.CONFIRMED
        assert confirmed.confirmed_by_user is True
        await wait_until(lambda: status_of(manager, action.id) == ActionStatus.COMPLETED)

    @pytest.mark.asyncio
    async def test_failed_dispatch_marks_action_failed(
        self, store, catalog, sink, make_tools, wait_until
    ):
        tools = make_tools({"check_availability": {"success": False, "error": "Sold out"}})
        dispatcher = ExecutionDispatcher("conv-1", tools, catalog, store, timeout_s=1.0)
        manager = ActionLifecycleManager("conv-1", store, catalog, dispatcher, event_sink=sink)
        action = manager.reconcile([proposal(confidence=88)], None, "dates")[0]

        manager.confirm(action.id)
        await wait_until(lambda: status_of(manager, action.id) == ActionStatus.FAILED)

        failed = manager.get(action.id)
        assert failed.error == "Sold out"
        assert failed.status_reason == "TOOL_FAILED"

    @pytest.mark.asyncio
    async def test_cancel_while_executing(self, store, catalog, sink, make_tools, wait_until):
        """Test that cancelling an executing action dismisses it and ignores its outcome."""
        tools = make_tools({"check_availability": AVAILABILITY_OK}, delay_s=0.1)
        dispatcher = ExecutionDispatcher("conv-1", tools, catalog, store, timeout_s=1.0)
        manager = ActionLifecycleManager("conv-1", store, catalog, dispatcher, event_sink=sink)
        action = manager.reconcile([proposal(confidence=88)], None, "dates")[0]

        manager.confirm(action.id)
        await wait_until(lambda: status_of(manager, action.id) == ActionStatus.EXECUTING)
        manager.cancel(action.id)
        await manager.close()

        assert status_of(manager, action.id) == ActionStatus.DISMISSED
        assert manager.get(action.id).status_reason == REASON_USER_CANCEL
        assert store.state["background_tasks"][-1].status == TaskStatus.COMPLETED

    def test_dismiss_unknown_action(self, manager):
        with pytest.raises(UnknownActionError):
            manager.dismiss("action-missing")

    def test_dismiss_twice_is_invalid(self, manager):
        action = manager.reconcile([proposal(confidence=80)], None, "dates")[0]
        manager.dismiss(action.id)

        with pytest.raises(InvalidTransitionError):
            manager.dismiss(action.id)

    def test_plain_suggestion_cannot_execute_without_confirm(self, manager):
        action = manager.reconcile([proposal(confidence=80)], None, "dates")[0]

        with pytest.raises(InvalidTransitionError):
            manager.begin_execution(action.id)

    def test_high_risk_requires_explicit_confirmation(self, manager):
        action = manager.reconcile(
            [proposal("create_hold", 99, parameters={"room_count": 1})], None, "dates"
        )[0]

        assert action.requires_confirmation is True
        assert action.auto_execute is False
        assert not manager.in_countdown(action.id)
        with pytest.raises(ActionLifecycleError):
            manager.begin_execution(action.id)

    @pytest.mark.asyncio
    async def test_high_risk_executes_after_confirm(self, manager, tools, wait_until):
        action = manager.reconcile(
            [proposal("create_hold", 99, parameters={"room_count": 1})], None, "dates"
        )[0]

        manager.confirm(action.id)
        await wait_until(lambda: status_of(manager, action.id) == ActionStatus.COMPLETED)

        assert tools.calls_for("create_hold")[0]["room_count"] == 1


# ============================================================================
# History and shutdown
# ============================================================================


class TestHistoryAndClose:
    """Append-only history and close()."""

    @pytest.mark.asyncio
    async def test_history_only_grows(self, manager, store, wait_until):
        snapshots = []

        first = manager.reconcile([proposal(confidence=80)], None, "dates")[0]
        manager.dismiss(first.id)
        snapshots.append(list(store.state["action_history"]))

        second = manager.reconcile(
            [proposal(confidence=88, parameters={"notes": "sea view"})], "dates", "dates"
        )[0]
        manager.confirm(second.id)
        await wait_until(lambda: status_of(manager, second.id) == ActionStatus.COMPLETED)
        snapshots.append(list(store.state["action_history"]))

        manager.reconcile([proposal(confidence=80, parameters={"notes": "x"})], "dates", "quote")
        snapshots.append(list(store.state["action_history"]))

        for earlier, later in zip(snapshots, snapshots[1:]):
            assert later[: len(earlier)] == earlier
            assert len(later) >= len(earlier)

    @pytest.mark.asyncio
    async def test_close_dismisses_countdowns(self, manager, tools, store):
        action = manager.reconcile([proposal(confidence=98)], None, "dates")[0]

        await manager.close()
        await asyncio.sleep(0.1)

        assert tools.calls == []
        assert manager.get(action.id).status_reason == REASON_CONVERSATION_ENDED
