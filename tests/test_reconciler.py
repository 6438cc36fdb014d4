"""Tests for editor.reconciler — debounced toggles and scroll-preserving re-renders."""

from __future__ import annotations

import asyncio
import logging
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from editor import snapshot as codec
from editor.commit import CommitScheduler
from editor.document import EditorDocument
from editor.history import HistoryManager
from editor.reconciler import ReconcilerState, ToggleReconciler, flip_toggle
from editor.renderer import HeadlessRenderer
from editor.scroll import ScrollStateTracker
from notes.models import Note, Toggle

DEBOUNCE = 0.05
LONG_TEXT = "\n".join(f"line {i}" for i in range(40))

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class _Harness:
    """Wires a reconciler to a headless renderer and a mocked note manager."""

    def __init__(self, followup: float = 0.0, with_commits: bool = False) -> None:
        self.note = Note(
            id=1,
            title="Journal",
            toggles=[
                Toggle(id=5, title="Monday", content=LONG_TEXT, is_open=True),
                Toggle(id=6, title="Tuesday", content=LONG_TEXT, is_open=False),
                Toggle(id=7, title="Wednesday", content="short", is_open=False),
            ],
        )
        self.notes = MagicMock()
        self.notes.update_note = AsyncMock(return_value=True)
        self.document = EditorDocument(self.note, self.notes)
        self.history = HistoryManager()
        self.renderer = HeadlessRenderer()
        self.tracker = ScrollStateTracker(self.renderer, followup_delay=followup)
        self.commits = CommitScheduler(self.document, self.history, delay=10) if with_commits else None
        self.reconciler = ToggleReconciler(
            self.document,
            self.history,
            self.renderer,
            self.tracker,
            debounce=DEBOUNCE,
            commits=self.commits,
        )
        self.renderer.render_toggle_list(self.note)

    def is_open(self, toggle_id: int) -> bool:
        return self.document.note.find_toggle(toggle_id).is_open


# ---------------------------------------------------------------------------
# Debounced requests
# ---------------------------------------------------------------------------


class TestDebounce:
    @pytest.mark.asyncio
    async def test_request_is_not_applied_immediately(self):
        h = _Harness()

        assert h.reconciler.request_toggle(6) is True

        assert h.reconciler.state == ReconcilerState.PENDING_TOGGLE
        assert h.is_open(6) is False
        await h.reconciler.drain()
        assert h.is_open(6) is True
        assert h.reconciler.state == ReconcilerState.IDLE

    @pytest.mark.asyncio
    async def test_rapid_requests_coalesce_into_one_reconciliation(self):
        h = _Harness()

        h.reconciler.request_toggle(5)
        await asyncio.sleep(0.02)
        h.reconciler.request_toggle(5)
        await h.reconciler.drain()

        assert h.history.undo_depth == 1
        assert h.renderer.render_count == 2
        assert h.is_open(5) is False

    @pytest.mark.asyncio
    async def test_last_request_in_window_wins(self):
        h = _Harness()

        h.reconciler.request_toggle(6)
        h.reconciler.request_toggle(7)
        await h.reconciler.drain()

        assert h.is_open(6) is False
        assert h.is_open(7) is True
        assert h.history.undo_depth == 1

    @pytest.mark.asyncio
    async def test_cancel_forgets_pending_request(self):
        h = _Harness()

        h.reconciler.request_toggle(6)
        h.reconciler.cancel()
        await asyncio.sleep(DEBOUNCE * 3)

        assert h.is_open(6) is False
        assert h.reconciler.state == ReconcilerState.IDLE
        h.notes.update_note.assert_not_awaited()


# ---------------------------------------------------------------------------
# Re-entrancy
# ---------------------------------------------------------------------------


class TestReentrancy:
    @pytest.mark.asyncio
    async def test_requests_during_reconciliation_are_dropped(self):
        h = _Harness(followup=0.1)

        h.reconciler.request_toggle(6)
        await asyncio.sleep(0.08)

        assert h.reconciler.state == ReconcilerState.RECONCILING
        assert h.reconciler.request_toggle(7) is False
        assert await h.reconciler.apply(flip_toggle(5)) is False

        await h.reconciler.drain()

        assert h.reconciler.state == ReconcilerState.IDLE
        assert h.is_open(6) is True
        assert h.is_open(7) is False
        assert h.is_open(5) is True
        assert h.history.undo_depth == 1

    @pytest.mark.asyncio
    async def test_requests_accepted_again_after_reconciliation(self):
        h = _Harness()

        h.reconciler.request_toggle(6)
        await h.reconciler.drain()
        assert h.reconciler.request_toggle(6) is True
        await h.reconciler.drain()

        assert h.is_open(6) is False
        assert h.history.undo_depth == 2

    @pytest.mark.asyncio
    async def test_drain_waits_for_applied_mutation(self):
        h = _Harness(followup=0.1)

        task = asyncio.create_task(h.reconciler.apply(flip_toggle(6)))
        await asyncio.sleep(0.02)
        assert h.reconciler.state == ReconcilerState.RECONCILING

        await h.reconciler.drain()

        assert task.done()
        assert task.result() is True
        assert h.reconciler.state == ReconcilerState.IDLE


# ---------------------------------------------------------------------------
# Scroll preservation
# ---------------------------------------------------------------------------


class TestScrollPreservation:
    @pytest.mark.asyncio
    async def test_other_regions_and_container_keep_their_offsets(self):
        h = _Harness()
        h.renderer.find_region(5).scroll_top = 240
        h.renderer.container_scroll_top = 300

        h.reconciler.request_toggle(6)
        await h.reconciler.drain()

        assert h.renderer.render_count == 2
        assert h.renderer.find_region(5).scroll_top == 240
        assert h.renderer.container_scroll_top == 300

    @pytest.mark.asyncio
    async def test_focus_and_caret_survive_rerender(self):
        h = _Harness()
        region = h.renderer.find_region(5)
        region.focus()
        region.selection_range = (4, 9)

        await h.reconciler.apply(flip_toggle(7))

        region = h.renderer.find_region(5)
        assert region.is_focused
        assert region.selection_range == (4, 9)

    @pytest.mark.asyncio
    async def test_collapsed_region_lands_at_top(self):
        h = _Harness()
        h.renderer.find_region(5).scroll_top = 240

        await h.reconciler.apply(flip_toggle(5))

        assert h.is_open(5) is False
        assert h.renderer.find_region(5).scroll_top == 0


# ---------------------------------------------------------------------------
# History and persistence
# ---------------------------------------------------------------------------


class TestHistory:
    @pytest.mark.asyncio
    async def test_pre_mutation_snapshot_is_pushed(self):
        h = _Harness()

        await h.reconciler.apply(flip_toggle(6))

        previous = h.history.undo(codec.snapshot(h.document.note))
        assert previous.restore().find_toggle(6).is_open is False
        h.notes.update_note.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_apply_without_recording_history(self):
        h = _Harness()

        assert await h.reconciler.apply(flip_toggle(6), record_history=False) is True

        assert h.history.undo_depth == 0
        assert h.is_open(6) is True

    @pytest.mark.asyncio
    async def test_noop_mutation_changes_nothing(self):
        h = _Harness()

        assert await h.reconciler.apply(lambda note: None) is False

        assert h.history.undo_depth == 0
        assert h.renderer.render_count == 1
        h.notes.update_note.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_pending_text_burst_is_committed_first(self):
        h = _Harness(with_commits=True)

        def _type(note: Note) -> None:
            note.toggles[2].content = "short and sweet"

        h.commits.edit(_type)
        await h.reconciler.apply(flip_toggle(7))

        assert h.history.undo_depth == 2
        assert h.commits.pending is False
        before_toggle = h.history.undo(codec.snapshot(h.document.note)).restore()
        assert before_toggle.find_toggle(7).content == "short and sweet"
        assert before_toggle.find_toggle(7).is_open is False
        before_typing = h.history.undo(codec.snapshot(before_toggle)).restore()
        assert before_typing.find_toggle(7).content == "short"

    @pytest.mark.asyncio
    async def test_persist_failure_does_not_abort(self):
        h = _Harness()
        h.notes.update_note = AsyncMock(return_value=False)

        assert await h.reconciler.apply(flip_toggle(6)) is True
        assert h.is_open(6) is True


# ---------------------------------------------------------------------------
# Invalid requests and failures
# ---------------------------------------------------------------------------


class TestFailures:
    @pytest.mark.asyncio
    async def test_unknown_toggle_is_rejected_without_reset(self, caplog):
        h = _Harness()
        h.renderer.find_region(5).scroll_top = 240

        with caplog.at_level(logging.WARNING):
            h.reconciler.request_toggle(999)
            await h.reconciler.drain()

        assert h.history.undo_depth == 0
        assert h.renderer.render_count == 1
        assert h.renderer.find_region(5).scroll_top == 240
        assert any("Toggle 999 not found" in r.getMessage() for r in caplog.records)

    @pytest.mark.asyncio
    async def test_restore_failure_falls_back_to_hard_reset(self, caplog):
        h = _Harness()
        h.renderer.find_region(5).scroll_top = 240
        h.renderer.container_scroll_top = 300

        async def _broken_restore(captured, container_scroll_top=None):
            h.renderer.container_scroll_top = container_scroll_top
            h.renderer.find_region(5).scroll_top = 100
            raise RuntimeError("layout exploded")

        with patch.object(h.tracker, "restore_two_pass", side_effect=_broken_restore):
            with caplog.at_level(logging.ERROR):
                applied = await h.reconciler.apply(flip_toggle(6))

        assert applied is False
        assert h.reconciler.state == ReconcilerState.IDLE
        # The mutation and its history entry survive the failed restore.
        assert h.is_open(6) is True
        assert h.history.undo_depth == 1
        assert h.renderer.find_region(5).scroll_top == 0
        assert h.renderer.container_scroll_top == 0
        assert any("resetting scroll positions" in r.getMessage() for r in caplog.records)

    @pytest.mark.asyncio
    async def test_capture_failure_leaves_note_untouched(self):
        h = _Harness()
        h.renderer.container_scroll_top = 300

        with patch.object(h.tracker, "capture", side_effect=RuntimeError("boom")):
            applied = await h.reconciler.apply(flip_toggle(6))

        assert applied is False
        assert h.is_open(6) is False
        assert h.history.undo_depth == 0
        assert h.renderer.render_count == 1
        assert h.renderer.container_scroll_top == 0

    @pytest.mark.asyncio
    async def test_guard_released_after_failure(self):
        h = _Harness()

        with patch.object(h.tracker, "capture", side_effect=RuntimeError("boom")):
            await h.reconciler.apply(flip_toggle(6))

        assert h.reconciler.request_toggle(6) is True
        await h.reconciler.drain()
        assert h.is_open(6) is True
