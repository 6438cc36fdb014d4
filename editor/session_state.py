"""Per-note viewport state remembered between editor sessions."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from editor.scroll import ScrollState, ScrollStateTracker
from notes.storage import KeyValueStore

logger = logging.getLogger(__name__)

SESSION_STATES_KEY = "editor-states"
DEFAULT_RETENTION = timedelta(days=7)


def _utc_now() -> datetime:
    return datetime.now(UTC)


class ToggleViewState(BaseModel):
    id: int
    scroll_top: int = 0
    scroll_height: int = 0
    selection_start: int = 0
    selection_end: int = 0
    content_hash: Optional[int] = None


class SessionViewState(BaseModel):
    """Where the user left a note: section offsets, editor offset, last section."""

    toggle_states: list[ToggleViewState] = Field(default_factory=list)
    container_scroll_top: int = 0
    last_active_toggle_id: Optional[int] = None
    timestamp: datetime = Field(default_factory=_utc_now)

    @field_validator("timestamp")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        return value if value.tzinfo else value.replace(tzinfo=UTC)

    @classmethod
    def from_capture(
        cls,
        captured: dict[int, ScrollState],
        container_scroll_top: int,
        last_active_toggle_id: Optional[int],
    ) -> SessionViewState:
        return cls(
            toggle_states=[
                ToggleViewState(
                    id=toggle_id,
                    scroll_top=state.scroll_top,
                    scroll_height=state.scroll_height,
                    selection_start=state.selection_start,
                    selection_end=state.selection_end,
                    content_hash=state.content_hash,
                )
                for toggle_id, state in captured.items()
            ],
            container_scroll_top=container_scroll_top,
            last_active_toggle_id=last_active_toggle_id,
        )

    def to_scroll_states(self) -> dict[int, ScrollState]:
        """Restorable form; the last active section also gets focus and caret."""
        return {
            s.id: ScrollState(
                scroll_top=s.scroll_top,
                scroll_height=s.scroll_height,
                selection_start=s.selection_start,
                selection_end=s.selection_end,
                is_focused=s.id == self.last_active_toggle_id,
                content_hash=s.content_hash,
            )
            for s in self.toggle_states
        }


class SessionStateStore:
    """Reads and writes view states under a single store key."""

    def __init__(
        self,
        store: KeyValueStore,
        tracker: ScrollStateTracker,
        retention: timedelta = DEFAULT_RETENTION,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._store = store
        self._tracker = tracker
        self._retention = retention
        self._clock = clock

    async def _load_all(self) -> dict[str, Any]:
        raw = await self._store.get(SESSION_STATES_KEY, {})
        if not isinstance(raw, dict):
            logger.warning("Stored editor states are not a mapping, ignoring them")
            return {}
        return raw

    async def get(self, note_id: int) -> Optional[SessionViewState]:
        raw = (await self._load_all()).get(str(note_id))
        if raw is None:
            return None
        try:
            return SessionViewState.model_validate(raw)
        except ValidationError as exc:
            logger.warning("Ignoring invalid view state for note %s: %s", note_id, exc)
            return None

    async def on_editor_open(self, note_id: int) -> Optional[SessionViewState]:
        """Apply the stored view state to the freshly rendered editor.

        Returns the applied state, or None when nothing was stored.
        """
        view = await self.get(note_id)
        if view is None:
            return None
        await self._tracker.restore_two_pass(
            view.to_scroll_states(), container_scroll_top=view.container_scroll_top
        )
        logger.info("Restored view state for note %s", note_id)
        return view

    async def on_editor_close(self, note_id: int, view: SessionViewState) -> bool:
        """Store ``view`` with a fresh timestamp, replacing any earlier entry."""
        states = await self._load_all()
        stamped = view.model_copy(update={"timestamp": self._clock()})
        states[str(note_id)] = stamped.model_dump(mode="json")
        ok = await self._store.set(SESSION_STATES_KEY, states)
        if not ok:
            logger.warning("Failed to save view state for note %s", note_id)
        return ok

    async def prune(self, retention: Optional[timedelta] = None) -> int:
        """Drop entries older than the retention window. Returns how many went."""
        window = retention if retention is not None else self._retention
        cutoff = self._clock() - window
        states = await self._load_all()
        kept: dict[str, Any] = {}
        for key, raw in states.items():
            try:
                view = SessionViewState.model_validate(raw)
            except ValidationError:
                continue
            if view.timestamp > cutoff:
                kept[key] = raw

        removed = len(states) - len(kept)
        if removed:
            await self._store.set(SESSION_STATES_KEY, kept)
            logger.info("Pruned %d stale editor view states", removed)
        return removed
