"""Immutable note snapshots used as undo/redo checkpoints.

A snapshot stores the canonical JSON serialization of a note. Cloning and
equality both go through that serialization, so "the same note" means the
same field set, the same toggle order and the same toggle fields.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict

from notes.models import Note


class Snapshot(BaseModel):
    """A detached, comparable copy of a note."""

    model_config = ConfigDict(frozen=True)

    note_id: int
    canonical: str

    @classmethod
    def of(cls, note: Note) -> Snapshot:
        return cls(note_id=note.id, canonical=_canonical(note))

    def restore(self) -> Note:
        """Materialize a fresh Note that shares nothing with other copies."""
        return Note.model_validate_json(self.canonical)


def _canonical(note: Note) -> str:
    return note.model_dump_json(by_alias=True)


def snapshot(note: Note) -> Snapshot:
    """Return an independent snapshot of ``note``."""
    return Snapshot.of(note)


def equals(a: Note | Snapshot, b: Note | Snapshot) -> bool:
    """True iff both hold identical content, field by field."""
    left = a.canonical if isinstance(a, Snapshot) else _canonical(a)
    right = b.canonical if isinstance(b, Snapshot) else _canonical(b)
    return left == right
