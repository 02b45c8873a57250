"""
Merge reducers for ConversationState and the per-conversation StateStore.

Reducers are pure: they never mutate their inputs and always return new
containers. `apply_patch` routes each patch field to its reducer; fields
without a dedicated reducer are overwritten.
"""

import logging
import re
from collections.abc import Callable
from dataclasses import replace
from typing import Any

from agent.state.schemas import (
    ActionHistoryEntry,
    BackgroundTask,
    ConversationState,
    Stage,
    StageStatus,
    TranscriptMessage,
    initial_state,
    utc_now,
)

logger = logging.getLogger(__name__)

# Maximum number of messages to retain in state
MAX_MESSAGES = 10


def _dedupe(items: list[Any]) -> list[Any]:
    unique: list[Any] = []
    for item in items:
        if item not in unique:
            unique.append(item)
    return unique


def merge_profile(current: dict[str, Any], delta: dict[str, Any]) -> dict[str, Any]:
    """
    Merge a profile delta into the current profile.

    Scalars overwrite, lists append and deduplicate, nested dicts merge
    recursively. None values in the delta are ignored.

    Example:
        >>> merge_profile({"preferences": ["spa"]}, {"preferences": ["spa", "beach"]})
        {'preferences': ['spa', 'beach']}
    """
    merged = dict(current)
    for key, value in delta.items():
        if value is None:
            continue
        existing = merged.get(key)
        if isinstance(value, dict) and isinstance(existing, dict):
            merged[key] = merge_profile(existing, value)
        elif isinstance(value, list):
            base = list(existing) if isinstance(existing, list) else []
            merged[key] = _dedupe(base + list(value))
        elif isinstance(value, dict):
            merged[key] = merge_profile({}, value)
        else:
            merged[key] = value
    return merged


def append_messages(
    current: list[TranscriptMessage],
    new: list[TranscriptMessage],
    limit: int = MAX_MESSAGES,
) -> list[TranscriptMessage]:
    """Append messages keeping only the last `limit` (FIFO windowing)."""
    return (list(current) + list(new))[-limit:]


def merge_intents(current: list[str], new: list[str]) -> list[str]:
    return _dedupe(list(current) + [intent for intent in new if intent])


def stage_id_for(label: str) -> str:
    """Derive a stable stage id from its label ("Pricing & Quote" -> "pricing-quote")."""
    slug = re.sub(r"[^a-z0-9]+", "-", label.lower()).strip("-")
    return slug or "stage"


def merge_stages(
    current: list[Stage],
    current_pointer: str | None,
    proposed: list[Stage],
    proposed_pointer: str | None,
) -> tuple[list[Stage], str | None]:
    """
    Merge a proposed stage list into the existing one.

    - Existing stages keep their position; new stages are appended in proposal order.
    - Completed stages are frozen: they are never changed or un-marked.
    - Exactly zero or one stage is CURRENT, and it is the returned pointer.

    Args:
        current: Existing stages
        current_pointer: Id of the existing current stage
        proposed: Stages proposed by the stage management stage
        proposed_pointer: Id or label of the proposed current stage

    Returns:
        Tuple of (merged stages, current stage id)
    """
    merged = list(current)
    positions = {stage.id: index for index, stage in enumerate(merged)}
    now = utc_now()

    for stage in proposed:
        stage_id = stage.id or stage_id_for(stage.label)
        completed_at = now if stage.status == StageStatus.COMPLETED else None
        if stage_id in positions:
            existing = merged[positions[stage_id]]
            if existing.status == StageStatus.COMPLETED:
                continue
            merged[positions[stage_id]] = replace(
                existing,
                label=stage.label or existing.label,
                description=stage.description or existing.description,
                status=stage.status,
                completed_at=completed_at,
            )
        else:
            positions[stage_id] = len(merged)
            merged.append(replace(stage, id=stage_id, completed_at=completed_at))

    pointer = _resolve_pointer(merged, proposed_pointer)
    if pointer is None:
        pointer = _resolve_pointer(merged, current_pointer)
    if pointer is None:
        # Fall back to the first stage the proposal itself marked current
        pointer = next(
            (stage.id for stage in merged if stage.status == StageStatus.CURRENT), None
        )

    pointer_index = positions.get(pointer) if pointer else None
    normalized: list[Stage] = []
    for index, stage in enumerate(merged):
        if stage.status == StageStatus.COMPLETED:
            normalized.append(stage)
        elif index == pointer_index:
            normalized.append(replace(stage, status=StageStatus.CURRENT))
        elif stage.status == StageStatus.CURRENT:
            # A stage left behind by the pointer is done, one ahead of it is upcoming
            if pointer_index is not None and index < pointer_index:
                normalized.append(
                    replace(stage, status=StageStatus.COMPLETED, completed_at=now)
                )
            else:
                normalized.append(replace(stage, status=StageStatus.FUTURE))
        else:
            normalized.append(stage)

    return normalized, pointer


def _resolve_pointer(stages: list[Stage], reference: str | None) -> str | None:
    """Find a non-completed stage by id, label or derived id."""
    if not reference:
        return None
    candidates = {reference, stage_id_for(reference)}
    for stage in stages:
        if stage.id in candidates or stage.label == reference:
            if stage.status == StageStatus.COMPLETED:
                return None
            return stage.id
    return None


def append_history(
    current: list[ActionHistoryEntry], entries: list[ActionHistoryEntry]
) -> list[ActionHistoryEntry]:
    """History only grows: existing entries are carried over untouched."""
    return list(current) + list(entries)


def upsert_background_tasks(
    current: list[BackgroundTask], updates: list[BackgroundTask]
) -> list[BackgroundTask]:
    """Replace tasks by id, appending unknown ones."""
    merged = list(current)
    positions = {task.id: index for index, task in enumerate(merged)}
    for task in updates:
        if task.id in positions:
            merged[positions[task.id]] = task
        else:
            positions[task.id] = len(merged)
            merged.append(task)
    return merged


REDUCERS: dict[str, Callable[[Any, Any], Any]] = {
    "messages": append_messages,
    "customer_profile": merge_profile,
    "detected_intents": merge_intents,
    "action_history": append_history,
    "background_tasks": upsert_background_tasks,
}

_EMPTY_DEFAULTS: dict[str, Any] = {
    "messages": [],
    "customer_profile": {},
    "detected_intents": [],
    "action_history": [],
    "background_tasks": [],
    "stages": [],
}


def apply_patch(state: ConversationState, patch: ConversationState) -> ConversationState:
    """
    Apply a partial state patch, returning a new ConversationState.

    `stages` and `current_stage` are merged together; other fields go through
    REDUCERS or are overwritten.
    """
    if not patch:
        return state

    updated: dict[str, Any] = dict(state)

    if "stages" in patch or "current_stage" in patch:
        stages, pointer = merge_stages(
            state.get("stages", []),
            state.get("current_stage"),
            patch.get("stages", []),
            patch.get("current_stage"),
        )
        updated["stages"] = stages
        updated["current_stage"] = pointer

    for key, value in patch.items():
        if key in ("stages", "current_stage"):
            continue
        reducer = REDUCERS.get(key)
        if reducer is None:
            updated[key] = value
        else:
            updated[key] = reducer(state.get(key, _EMPTY_DEFAULTS[key]), value)

    updated["updated_at"] = utc_now()
    return ConversationState(**updated)


StateListener = Callable[[ConversationState, ConversationState, str], None]


class StateStore:
    """
    Holds the ConversationState of one conversation.

    Patches are applied synchronously and sequentially, so with a single event
    loop there is never a concurrent mutation. Listeners are called after each
    patch with (state, patch, source).
    """

    def __init__(self, conversation_id: str):
        self.conversation_id = conversation_id
        self._state = initial_state(conversation_id)
        self._listeners: list[StateListener] = []

    @property
    def state(self) -> ConversationState:
        return self._state

    def add_listener(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    def apply(self, patch: ConversationState, source: str) -> ConversationState:
        """
        Apply a patch and notify listeners.

        Args:
            patch: Partial state
            source: Component that produced the patch (for logging and notifications)

        Returns:
            The new state
        """
        if not patch:
            return self._state

        self._state = apply_patch(self._state, patch)
        logger.debug(
            f"State patch applied | source={source} | fields={sorted(patch.keys())}",
            extra={"conversation_id": self.conversation_id},
        )
        for listener in self._listeners:
            listener(self._state, patch, source)
        return self._state
