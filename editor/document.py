"""The live note of an open editor and its persistence hook."""

from __future__ import annotations

import logging

from editor.metrics import PERSIST_FAILURES
from notes.manager import NoteManager
from notes.models import Note

logger = logging.getLogger(__name__)


class EditorDocument:
    """Holds the in-memory note, which stays authoritative for the session."""

    def __init__(self, note: Note, notes: NoteManager) -> None:
        self.note = note
        self._notes = notes

    @property
    def note_id(self) -> int:
        return self.note.id

    def region_ids(self) -> list[int]:
        return [t.id for t in self.note.toggles]

    async def persist(self) -> bool:
        """Write the note through. A failure is logged, not raised."""
        ok = await self._notes.update_note(self.note)
        if not ok:
            PERSIST_FAILURES.inc()
            logger.warning(
                "Persisting note %s failed; keeping in-memory state for this session",
                self.note.id,
            )
        return ok
