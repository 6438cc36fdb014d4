"""Structural mutations of the open note and the re-render they force.

States::

    IDLE --request_toggle--> PENDING_TOGGLE --timer--> RECONCILING --> IDLE

While RECONCILING, new toggle requests and structural mutations are dropped,
not queued. A reconciliation captures every region's viewport, snapshots the
note, mutates it, records history, persists, re-renders the whole toggle list
and then restores viewports in two passes. Any failure along the way ends in
a hard scroll reset; the guard is always released.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from collections.abc import Callable
from typing import Optional

from editor import snapshot as codec
from editor.commit import CommitScheduler
from editor.document import EditorDocument
from editor.history import HistoryManager
from editor.metrics import RECONCILIATIONS
from editor.renderer import Renderer
from editor.scroll import ScrollStateTracker
from editor.timers import Debouncer
from notes.models import Note

logger = logging.getLogger(__name__)

DEFAULT_TOGGLE_DEBOUNCE = 0.05

# Returns the note to render (possibly the same object, mutated in place),
# or None when there is nothing to change.
Mutation = Callable[[Note], Optional[Note]]


class ReconcilerState(str, enum.Enum):
    IDLE = "idle"
    PENDING_TOGGLE = "pending_toggle"
    RECONCILING = "reconciling"


def flip_toggle(toggle_id: int) -> Mutation:
    """Mutation that opens a closed toggle or closes an open one."""

    def _mutate(note: Note) -> Optional[Note]:
        toggle = note.find_toggle(toggle_id)
        if toggle is None:
            return None
        toggle.is_open = not toggle.is_open
        return note

    return _mutate


class ToggleReconciler:
    """Serializes structural edits of one open document."""

    def __init__(
        self,
        document: EditorDocument,
        history: HistoryManager,
        renderer: Renderer,
        tracker: ScrollStateTracker,
        debounce: float = DEFAULT_TOGGLE_DEBOUNCE,
        commits: Optional[CommitScheduler] = None,
    ) -> None:
        self._document = document
        self._history = history
        self._renderer = renderer
        self._tracker = tracker
        self._commits = commits
        self._timer = Debouncer(debounce, name=f"toggle-{document.note_id}")
        self._requested: Optional[int] = None
        self._reconciling = False
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def state(self) -> ReconcilerState:
        if self._reconciling:
            return ReconcilerState.RECONCILING
        if self._timer.pending:
            return ReconcilerState.PENDING_TOGGLE
        return ReconcilerState.IDLE

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def request_toggle(self, toggle_id: int) -> bool:
        """Debounced open/close request. Last call in the window wins."""
        if self._reconciling:
            RECONCILIATIONS.labels(outcome="dropped").inc()
            logger.debug("Toggle request %s dropped: reconciliation in flight", toggle_id)
            return False
        self._requested = toggle_id
        self._timer.arm(self._fire_toggle)
        return True

    async def apply(self, mutation: Mutation, *, record_history: bool = True, label: str = "mutation") -> bool:
        """Run a structural mutation right away. Returns True if it was applied."""
        return await self._reconcile(mutation, record_history=record_history, label=label)

    async def drain(self) -> None:
        """Wait for a pending toggle and for any reconciliation in flight.

        Covers reconciliations started by the timer and by ``apply`` alike.
        """
        await self._timer.wait()
        await self._idle.wait()

    def cancel(self) -> None:
        """Forget a pending toggle request."""
        self._timer.cancel()
        self._requested = None

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _fire_toggle(self) -> None:
        toggle_id, self._requested = self._requested, None
        if toggle_id is None:
            return
        if self._document.note.find_toggle(toggle_id) is None:
            RECONCILIATIONS.labels(outcome="invalid").inc()
            logger.warning("Toggle %s not found in note %s", toggle_id, self._document.note_id)
            return
        await self._reconcile(flip_toggle(toggle_id), record_history=True, label=f"toggle {toggle_id}")

    async def _reconcile(self, mutation: Mutation, *, record_history: bool, label: str) -> bool:
        if self._reconciling:
            RECONCILIATIONS.labels(outcome="dropped").inc()
            logger.debug("%s dropped: reconciliation in flight", label)
            return False

        self._reconciling = True
        self._idle.clear()
        try:
            if self._commits is not None:
                await self._commits.flush()

            captured = self._tracker.capture(self._document.region_ids())
            container_scroll_top = self._renderer.container_scroll_top

            before = codec.snapshot(self._document.note)
            result = mutation(self._document.note)
            if result is None:
                RECONCILIATIONS.labels(outcome="noop").inc()
                logger.debug("%s: nothing to change", label)
                return False

            if record_history:
                self._history.push(before)
            self._document.note = result
            await self._document.persist()

            self._renderer.render_toggle_list(self._document.note)
            await self._tracker.restore_two_pass(captured, container_scroll_top)
            RECONCILIATIONS.labels(outcome="applied").inc()
            logger.info("Applied %s on note %s", label, self._document.note_id)
            return True
        except Exception:
            RECONCILIATIONS.labels(outcome="failed").inc()
            logger.exception("Reconciliation (%s) failed, resetting scroll positions", label)
            self._hard_reset()
            return False
        finally:
            self._reconciling = False
            self._idle.set()

    def _hard_reset(self) -> None:
        try:
            self._tracker.reset()
        except Exception:
            logger.exception("Scroll reset failed")
