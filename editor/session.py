"""Editor session: one open note, its history and its rendered view.

Field edits go through the commit scheduler; everything that changes the
structure of the toggle list (open/close, add, undo, redo) goes through the
toggle reconciler. View state is restored when a note is opened and saved
when it is closed.
"""

from __future__ import annotations

import logging
from typing import Optional

from editor import snapshot as codec
from editor.commit import CommitScheduler
from editor.config import Settings
from editor.config import settings as default_settings
from editor.document import EditorDocument
from editor.history import HistoryManager, HistoryState
from editor.reconciler import ReconcilerState, ToggleReconciler
from editor.renderer import Renderer
from editor.scroll import ScrollStateTracker
from editor.session_state import SessionStateStore, SessionViewState
from notes.manager import NoteManager
from notes.models import Note, Toggle
from notes.storage import KeyValueStore

logger = logging.getLogger(__name__)


class EditorNotOpenError(RuntimeError):
    """Raised when an editing operation is attempted with no note open."""


class EditorSession:
    """Coordinates the editing engine for a single open note at a time."""

    def __init__(
        self,
        notes: NoteManager,
        renderer: Renderer,
        store: KeyValueStore,
        settings: Settings = default_settings,
    ) -> None:
        self.notes = notes
        self.renderer = renderer
        self.settings = settings
        self.history = HistoryManager(max_depth=settings.history_max_depth)
        self.tracker = ScrollStateTracker(renderer, settings.restore_followup_delay)
        self.view_states = SessionStateStore(store, self.tracker, settings.session_retention)
        self.last_active_toggle_id: Optional[int] = None

        self._history_state = self.history.state
        self.history.subscribe(self)
        self._document: Optional[EditorDocument] = None
        self._commits: Optional[CommitScheduler] = None
        self._reconciler: Optional[ToggleReconciler] = None
        self._pruned = False

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def on_history_change(self, state: HistoryState) -> None:
        self._history_state = state

    @property
    def can_undo(self) -> bool:
        return self._history_state.can_undo

    @property
    def can_redo(self) -> bool:
        return self._history_state.can_redo

    @property
    def is_open(self) -> bool:
        return self._document is not None

    @property
    def current_note(self) -> Optional[Note]:
        return self._document.note if self._document else None

    @property
    def reconciler_state(self) -> ReconcilerState:
        return self._reconciler.state if self._reconciler else ReconcilerState.IDLE

    def _require(self) -> tuple[EditorDocument, CommitScheduler, ToggleReconciler]:
        if self._document is None or self._commits is None or self._reconciler is None:
            raise EditorNotOpenError("No note is open")
        return self._document, self._commits, self._reconciler

    # ------------------------------------------------------------------
    # Open / close
    # ------------------------------------------------------------------

    async def open(self, note_id: int) -> Optional[Note]:
        """Open a note for editing. Returns None if it does not exist."""
        if self.is_open:
            await self.close()

        note = self.notes.get(note_id)
        if note is None:
            logger.warning("Cannot open note %s: not found", note_id)
            return None

        if not self._pruned:
            await self.view_states.prune(self.settings.session_retention)
            self._pruned = True

        document = EditorDocument(note, self.notes)
        self._document = document
        self._commits = CommitScheduler(document, self.history, self.settings.commit_delay)
        self._reconciler = ToggleReconciler(
            document,
            self.history,
            self.renderer,
            self.tracker,
            debounce=self.settings.toggle_debounce,
            commits=self._commits,
        )
        self.last_active_toggle_id = None
        self.history.clear()

        self.renderer.render_toggle_list(note)
        view = await self.view_states.on_editor_open(note_id)
        if view is not None:
            self.last_active_toggle_id = view.last_active_toggle_id
        logger.info("Opened note %s", note_id)
        return note

    async def create_note(self) -> Note:
        """Create a fresh note and open it."""
        note = await self.notes.create_note()
        await self.open(note.id)
        return self.current_note

    def capture_view_state(self) -> SessionViewState:
        document, _, _ = self._require()
        captured = self.tracker.capture(document.region_ids())
        return SessionViewState.from_capture(
            captured, self.renderer.container_scroll_top, self.last_active_toggle_id
        )

    async def close(self) -> None:
        """Commit pending edits, remember the view and leave the editor."""
        if self._document is None:
            return
        document, commits, reconciler = self._require()

        reconciler.cancel()
        await reconciler.drain()
        await commits.flush()

        await self.view_states.on_editor_close(document.note_id, self.capture_view_state())
        self._teardown()
        logger.info("Closed note %s", document.note_id)

    async def delete_current(self) -> bool:
        """Delete the open note and leave the editor without saving its view."""
        if self._document is None:
            return False
        document, commits, reconciler = self._require()

        reconciler.cancel()
        await reconciler.drain()
        commits.cancel()
        deleted = await self.notes.delete_note(document.note_id)
        self._teardown()
        return deleted

    def _teardown(self) -> None:
        self.renderer.clear()
        self._document = None
        self._commits = None
        self._reconciler = None
        self.last_active_toggle_id = None
        self.history.clear()

    # ------------------------------------------------------------------
    # Field edits (debounced)
    # ------------------------------------------------------------------

    def edit_title(self, text: str) -> None:
        _, commits, _ = self._require()

        def _apply(note: Note) -> None:
            note.title = text

        commits.edit(_apply)

    def edit_toggle_title(self, toggle_id: int, text: str) -> bool:
        return self._edit_toggle(toggle_id, "title", text)

    def edit_toggle_content(self, toggle_id: int, text: str) -> bool:
        return self._edit_toggle(toggle_id, "content", text)

    def _edit_toggle(self, toggle_id: int, field: str, text: str) -> bool:
        document, commits, _ = self._require()
        if document.note.find_toggle(toggle_id) is None:
            logger.warning("Edit ignored: toggle %s not in note %s", toggle_id, document.note_id)
            return False

        def _apply(note: Note) -> None:
            toggle = note.find_toggle(toggle_id)
            if toggle is not None:
                setattr(toggle, field, text)

        commits.edit(_apply)
        return True

    def focus_toggle(self, toggle_id: int) -> bool:
        """Remember the section the user is working in and focus it."""
        self._require()
        region = self.renderer.find_region(toggle_id)
        if region is None:
            return False
        region.focus()
        self.last_active_toggle_id = toggle_id
        return True

    # ------------------------------------------------------------------
    # Structural edits (re-render)
    # ------------------------------------------------------------------

    def request_toggle(self, toggle_id: int) -> bool:
        _, _, reconciler = self._require()
        return reconciler.request_toggle(toggle_id)

    async def settle(self) -> None:
        """Wait for a pending toggle request to be reconciled."""
        if self._reconciler is not None:
            await self._reconciler.drain()

    async def add_toggle(self) -> Optional[Toggle]:
        """Append an open, empty section. Returns it, or None if dropped."""
        document, _, reconciler = self._require()
        toggle_id = self.notes.new_toggle_id(document.note)

        def _mutate(note: Note) -> Note:
            note.toggles.append(
                Toggle(id=toggle_id, title=f"Section {len(note.toggles) + 1}", content="", is_open=True)
            )
            return note

        if not await reconciler.apply(_mutate, label="add toggle"):
            return None
        return document.note.find_toggle(toggle_id)

    async def undo(self) -> bool:
        _, _, reconciler = self._require()

        def _mutate(note: Note) -> Optional[Note]:
            previous = self.history.undo(codec.snapshot(note))
            return previous.restore() if previous else None

        return await reconciler.apply(_mutate, record_history=False, label="undo")

    async def redo(self) -> bool:
        _, _, reconciler = self._require()

        def _mutate(note: Note) -> Optional[Note]:
            following = self.history.redo(codec.snapshot(note))
            return following.restore() if following else None

        return await reconciler.apply(_mutate, record_history=False, label="redo")
