"""Undo/redo bookkeeping over note snapshots.

The manager never snapshots on its own: callers hand in the pre-mutation
state on ``push`` and the about-to-be-replaced state on ``undo``/``redo``.

- ``push`` always clears the redo stack (a diverging edit invalidates it)
- ``undo``/``redo`` on an empty stack return None and leave state untouched
- observers are notified after every call that changes a stack, and after
  every ``clear``
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Optional, Protocol

from editor.metrics import HISTORY_OPERATIONS, UNDO_DEPTH
from editor.snapshot import Snapshot

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HistoryState:
    """What undo/redo controls need to know."""

    can_undo: bool
    can_redo: bool


class HistoryObserver(Protocol):
    def on_history_change(self, state: HistoryState) -> None: ...


class HistoryManager:
    """Linear undo/redo stacks of snapshots."""

    def __init__(self, max_depth: Optional[int] = None) -> None:
        self._undo: list[Snapshot] = []
        self._redo: list[Snapshot] = []
        self._max_depth = max_depth
        self._observers: list[HistoryObserver] = []

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    def subscribe(self, observer: HistoryObserver) -> Callable[[], None]:
        """Register an observer. Returns a callable that unsubscribes it."""
        self._observers.append(observer)

        def _unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return _unsubscribe

    @property
    def state(self) -> HistoryState:
        return HistoryState(can_undo=self.can_undo, can_redo=self.can_redo)

    def _notify(self) -> None:
        UNDO_DEPTH.set(len(self._undo))
        state = self.state
        for observer in list(self._observers):
            observer.on_history_change(state)

    # ------------------------------------------------------------------
    # Stack operations
    # ------------------------------------------------------------------

    @property
    def can_undo(self) -> bool:
        return bool(self._undo)

    @property
    def can_redo(self) -> bool:
        return bool(self._redo)

    @property
    def undo_depth(self) -> int:
        return len(self._undo)

    @property
    def redo_depth(self) -> int:
        return len(self._redo)

    def push(self, snapshot: Snapshot) -> None:
        """Record a checkpoint and drop any forward history."""
        self._undo.append(snapshot)
        self._redo.clear()
        if self._max_depth is not None and len(self._undo) > self._max_depth:
            evicted = len(self._undo) - self._max_depth
            del self._undo[:evicted]
            HISTORY_OPERATIONS.labels(operation="evict").inc(evicted)
        HISTORY_OPERATIONS.labels(operation="push").inc()
        self._notify()

    def undo(self, current: Snapshot) -> Optional[Snapshot]:
        """Step back. ``current`` moves onto the redo stack."""
        if not self._undo:
            return None
        previous = self._undo.pop()
        self._redo.append(current)
        HISTORY_OPERATIONS.labels(operation="undo").inc()
        self._notify()
        return previous

    def redo(self, current: Snapshot) -> Optional[Snapshot]:
        """Step forward. ``current`` moves back onto the undo stack."""
        if not self._redo:
            return None
        following = self._redo.pop()
        self._undo.append(current)
        HISTORY_OPERATIONS.labels(operation="redo").inc()
        self._notify()
        return following

    def clear(self) -> None:
        self._undo.clear()
        self._redo.clear()
        HISTORY_OPERATIONS.labels(operation="clear").inc()
        self._notify()
