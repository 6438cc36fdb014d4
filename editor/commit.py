"""Coalesce bursts of text edits into single history entries.

The first edit of a burst pins a snapshot of the note; later edits in the
same burst only re-arm the timer. When the quiet period ends the pinned
snapshot is pushed onto the history, unless the note ended up unchanged.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Optional

from editor import snapshot as codec
from editor.document import EditorDocument
from editor.history import HistoryManager
from editor.metrics import COMMITS
from editor.snapshot import Snapshot
from editor.timers import Debouncer
from notes.models import Note

logger = logging.getLogger(__name__)

DEFAULT_COMMIT_DELAY = 0.5


class CommitScheduler:
    """Debounced commit of field edits for one open document."""

    def __init__(
        self,
        document: EditorDocument,
        history: HistoryManager,
        delay: float = DEFAULT_COMMIT_DELAY,
    ) -> None:
        self._document = document
        self._history = history
        self._timer = Debouncer(delay, name=f"commit-{document.note_id}")
        self._pre_edit: Optional[Snapshot] = None

    @property
    def pending(self) -> bool:
        """Whether a burst is open and not yet committed."""
        return self._pre_edit is not None

    def edit(self, apply: Callable[[Note], None]) -> None:
        """Apply an edit to the live note now and (re)arm the commit timer."""
        if self._pre_edit is None:
            self._pre_edit = codec.snapshot(self._document.note)
        apply(self._document.note)
        self._timer.arm(self._commit)

    async def flush(self) -> None:
        """Commit the open burst immediately, then wait for in-flight commits."""
        self._timer.cancel()
        await self._commit()
        await self._timer.wait()

    def cancel(self) -> None:
        """Abandon the open burst without touching history."""
        self._timer.cancel()
        self._pre_edit = None

    async def _commit(self) -> None:
        pre_edit, self._pre_edit = self._pre_edit, None
        if pre_edit is None:
            return

        if codec.equals(pre_edit, self._document.note):
            COMMITS.labels(outcome="noop").inc()
            logger.debug("Edit burst on note %s left it unchanged", self._document.note_id)
            return

        self._history.push(pre_edit)
        COMMITS.labels(outcome="committed").inc()
        await self._document.persist()
