"""Note list management: create, update, delete, filter, import and export."""

import json
import logging
import time
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from pydantic import ValidationError

from notes.models import Note, Toggle
from notes.storage import KeyValueStore

logger = logging.getLogger(__name__)

NOTES_KEY = "notes"
INITIAL_SECTIONS = 3

_NOTE_KEYS = ("id", "title", "toggles", "created", "updated")
_TOGGLE_KEYS = ("id", "title", "content", "isOpen")


class NoteManager:
    """Owns the list of notes and persists it as a whole on every change."""

    def __init__(self, store: KeyValueStore, clock: Callable[[], float] = time.time) -> None:
        self._store = store
        self._clock = clock
        self._notes: list[Note] = []
        self._last_id = 0
        self._loaded = False

    @property
    def loaded(self) -> bool:
        return self._loaded

    @property
    def count(self) -> int:
        """Number of notes in memory."""
        return len(self._notes)

    async def load(self) -> None:
        """Load notes from the store. Invalid entries are skipped."""
        raw = await self._store.get(NOTES_KEY, [])
        notes: list[Note] = []
        if not isinstance(raw, list):
            logger.error("Stored notes are not a list, starting fresh")
            raw = []
        for item in raw:
            try:
                notes.append(Note.model_validate(item))
            except ValidationError as exc:
                logger.warning("Skipping invalid stored note: %s", exc)
        self._notes = notes
        self._last_id = max((self._max_id(n) for n in notes), default=0)
        self._loaded = True
        logger.info("Loaded %d notes", len(notes))

    async def save_notes(self) -> bool:
        """Write the full list. Returns False if the store rejected it."""
        ok = await self._store.set(NOTES_KEY, [n.to_json_dict() for n in self._notes])
        if not ok:
            logger.warning("Failed to persist %d notes", len(self._notes))
        return ok

    # ------------------------------------------------------------------
    # Ids
    # ------------------------------------------------------------------

    def _allocate_ids(self, count: int = 1) -> int:
        """Reserve ``count`` consecutive ids derived from the ms clock."""
        base = max(int(self._clock() * 1000), self._last_id + 1)
        self._last_id = base + count - 1
        return base

    @staticmethod
    def _max_id(note: Note) -> int:
        return max([note.id, *(t.id for t in note.toggles)])

    def new_toggle_id(self, note: Note) -> int:
        """An id unique within ``note`` and increasing within this process."""
        candidate = self._allocate_ids()
        existing = {t.id for t in note.toggles}
        while candidate in existing:
            candidate = self._allocate_ids()
        return candidate

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    async def create_note(self) -> Note:
        """Create a note with three empty sections, the first one open."""
        note_id = self._allocate_ids(INITIAL_SECTIONS)
        note = Note(
            id=note_id,
            title="",
            toggles=[
                Toggle(id=note_id + i, title=f"Section {i + 1}", content="", is_open=i == 0)
                for i in range(INITIAL_SECTIONS)
            ],
        )
        self._notes.insert(0, note)
        await self.save_notes()
        logger.info("Created note %s", note.id)
        return note.model_copy(deep=True)

    async def update_note(self, note: Note) -> bool:
        """Stamp ``updated`` on ``note`` and persist a detached copy of it."""
        note.updated = datetime.now(UTC).isoformat()
        for index, existing in enumerate(self._notes):
            if existing.id == note.id:
                self._notes[index] = note.model_copy(deep=True)
                return await self.save_notes()
        logger.warning("update_note: note %s not found", note.id)
        return False

    async def delete_note(self, note_id: int) -> bool:
        before = len(self._notes)
        self._notes = [n for n in self._notes if n.id != note_id]
        if len(self._notes) == before:
            return False
        await self.save_notes()
        logger.info("Deleted note %s", note_id)
        return True

    def get(self, note_id: int) -> Note | None:
        """Return a detached copy of the note, or None."""
        for note in self._notes:
            if note.id == note_id:
                return note.model_copy(deep=True)
        return None

    def get_notes(self, search_term: str = "") -> list[Note]:
        """Notes whose title or any section title/content contains the term."""
        q = search_term.lower()
        return [
            n.model_copy(deep=True)
            for n in self._notes
            if q in n.title.lower()
            or any(q in t.title.lower() or q in t.content.lower() for t in n.toggles)
        ]

    # ------------------------------------------------------------------
    # Import / export
    # ------------------------------------------------------------------

    def export_note(self, note: Note | None) -> str | None:
        """Serialize a single note as pretty-printed JSON."""
        if note is None:
            logger.error("Invalid note object provided for export.")
            return None
        return json.dumps(note.to_json_dict(), indent=2)

    async def import_note(self, json_string: str) -> bool:
        """Add a note parsed from JSON. Conflicting ids are re-issued."""
        try:
            data = json.loads(json_string)
        except json.JSONDecodeError as exc:
            logger.error("Failed to parse imported note: %s", exc)
            return False

        if not _validate_note_payload(data):
            logger.error("Import validation failed. The file is not a valid note.")
            return False

        try:
            note = Note.model_validate(data)
        except ValidationError as exc:
            logger.error("Import validation failed: %s", exc)
            return False

        if any(n.id == note.id for n in self._notes):
            note_id = self._allocate_ids(len(note.toggles) + 1)
            note.id = note_id
            note.title = f"{note.title} (Imported)" if note.title else "Untitled Note (Imported)"
            for i, toggle in enumerate(note.toggles):
                toggle.id = note_id + i + 1
        else:
            self._last_id = max(self._last_id, self._max_id(note))

        self._notes.insert(0, note)
        await self.save_notes()
        logger.info("Imported note %s", note.id)
        return True


def _validate_note_payload(note: Any) -> bool:
    """Structural check mirroring the export format."""
    if not isinstance(note, dict):
        logger.error("Validation Error: Imported data is not a single object.")
        return False

    if not all(k in note for k in _NOTE_KEYS) or not isinstance(note["toggles"], list):
        logger.error("Validation Error: The note is missing required keys or `toggles` is not an array.")
        return False

    for toggle in note["toggles"]:
        if not isinstance(toggle, dict) or not all(k in toggle for k in _TOGGLE_KEYS):
            logger.error("Validation Error: A toggle is missing required keys: %s", toggle)
            return False
    return True
