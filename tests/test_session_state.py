"""Tests for editor.session_state — remembered view state per note."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from editor.renderer import HeadlessRenderer
from editor.scroll import ScrollStateTracker, content_hash
from editor.session_state import SESSION_STATES_KEY, SessionStateStore, SessionViewState, ToggleViewState
from notes.models import Note, Toggle
from notes.storage import JsonFileStore

LONG_TEXT = "\n".join(f"row {i}" for i in range(50))
NOW = datetime(2024, 6, 1, 12, 0, tzinfo=UTC)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class _Clock:
    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def _make_note() -> Note:
    return Note(
        id=3,
        title="Reading list",
        toggles=[
            Toggle(id=30, title="Books", content=LONG_TEXT, is_open=True),
            Toggle(id=31, title="Papers", content=LONG_TEXT, is_open=True),
        ],
    )


def _make_store(tmp_path, clock: _Clock | None = None):
    """Return (state_store, kv_store, renderer, clock)."""
    clock = clock or _Clock()
    kv = JsonFileStore(tmp_path / "notes.json")
    renderer = HeadlessRenderer()
    tracker = ScrollStateTracker(renderer, followup_delay=0)
    return SessionStateStore(kv, tracker, retention=timedelta(days=7), clock=clock), kv, renderer, clock


def _view(**overrides) -> SessionViewState:
    data = {
        "toggle_states": [ToggleViewState(id=30, scroll_top=120, scroll_height=1000)],
        "container_scroll_top": 50,
    }
    data.update(overrides)
    return SessionViewState(**data)


# ---------------------------------------------------------------------------
# Save and restore
# ---------------------------------------------------------------------------


class TestRoundTrip:
    @pytest.mark.asyncio
    async def test_close_then_open_restores_offsets(self, tmp_path):
        states, _, renderer, _ = _make_store(tmp_path)
        tracker = ScrollStateTracker(renderer, followup_delay=0)
        note = _make_note()
        renderer.render_toggle_list(note)
        renderer.find_region(30).scroll_top = 200
        renderer.find_region(31).scroll_top = 40
        renderer.container_scroll_top = 75
        view = SessionViewState.from_capture(tracker.capture([30, 31]), renderer.container_scroll_top, 31)

        assert await states.on_editor_close(note.id, view) is True

        renderer.render_toggle_list(note)
        applied = await states.on_editor_open(note.id)

        assert applied is not None
        assert applied.last_active_toggle_id == 31
        assert renderer.find_region(30).scroll_top == 200
        assert renderer.find_region(31).scroll_top == 40
        assert renderer.find_region(31).is_focused
        assert renderer.container_scroll_top == 75

    @pytest.mark.asyncio
    async def test_open_without_stored_state_is_a_noop(self, tmp_path):
        states, _, renderer, _ = _make_store(tmp_path)
        renderer.render_toggle_list(_make_note())
        renderer.container_scroll_top = 10

        assert await states.on_editor_open(3) is None
        assert renderer.container_scroll_top == 10

    @pytest.mark.asyncio
    async def test_changed_content_is_not_restored(self, tmp_path):
        states, _, renderer, _ = _make_store(tmp_path)
        view = _view(
            toggle_states=[
                ToggleViewState(id=30, scroll_top=200, scroll_height=1000, content_hash=content_hash("old text")),
            ]
        )
        await states.on_editor_close(3, view)
        renderer.render_toggle_list(_make_note())

        await states.on_editor_open(3)

        assert renderer.find_region(30).scroll_top == 0
        assert renderer.container_scroll_top == 50

    @pytest.mark.asyncio
    async def test_close_overwrites_previous_entry(self, tmp_path):
        states, _, _, _ = _make_store(tmp_path)

        await states.on_editor_close(3, _view(container_scroll_top=1))
        await states.on_editor_close(3, _view(container_scroll_top=2))

        assert (await states.get(3)).container_scroll_top == 2

    @pytest.mark.asyncio
    async def test_close_stamps_current_time(self, tmp_path):
        clock = _Clock()
        states, kv, _, _ = _make_store(tmp_path, clock)

        await states.on_editor_close(3, _view(timestamp=NOW - timedelta(days=30)))

        stored = await kv.get(SESSION_STATES_KEY)
        assert datetime.fromisoformat(stored["3"]["timestamp"]) == NOW

    @pytest.mark.asyncio
    async def test_entries_are_kept_per_note(self, tmp_path):
        states, _, _, _ = _make_store(tmp_path)

        await states.on_editor_close(3, _view(container_scroll_top=1))
        await states.on_editor_close(4, _view(container_scroll_top=2))

        assert (await states.get(3)).container_scroll_top == 1
        assert (await states.get(4)).container_scroll_top == 2


# ---------------------------------------------------------------------------
# Invalid stored data
# ---------------------------------------------------------------------------


class TestInvalidEntries:
    @pytest.mark.asyncio
    async def test_invalid_entry_is_ignored(self, tmp_path):
        states, kv, _, _ = _make_store(tmp_path)
        await kv.set(SESSION_STATES_KEY, {"3": {"toggle_states": "nope"}})

        assert await states.get(3) is None
        assert await states.on_editor_open(3) is None

    @pytest.mark.asyncio
    async def test_non_mapping_value_is_ignored(self, tmp_path):
        states, kv, _, _ = _make_store(tmp_path)
        await kv.set(SESSION_STATES_KEY, ["not", "a", "dict"])

        assert await states.get(3) is None
        assert await states.on_editor_close(3, _view()) is True
        assert await states.get(3) is not None


# ---------------------------------------------------------------------------
# Retention
# ---------------------------------------------------------------------------


class TestPrune:
    @pytest.mark.asyncio
    async def test_old_entries_are_removed(self, tmp_path):
        clock = _Clock()
        states, _, _, _ = _make_store(tmp_path, clock)
        await states.on_editor_close(1, _view())
        clock.now = NOW + timedelta(days=6)
        await states.on_editor_close(2, _view())

        clock.now = NOW + timedelta(days=8)
        removed = await states.prune()

        assert removed == 1
        assert await states.get(1) is None
        assert await states.get(2) is not None

    @pytest.mark.asyncio
    async def test_explicit_retention_overrides_default(self, tmp_path):
        clock = _Clock()
        states, _, _, _ = _make_store(tmp_path, clock)
        await states.on_editor_close(1, _view())

        clock.now = NOW + timedelta(hours=2)
        assert await states.prune(timedelta(hours=1)) == 1

    @pytest.mark.asyncio
    async def test_zero_retention_removes_everything_older_than_now(self, tmp_path):
        clock = _Clock()
        states, _, _, _ = _make_store(tmp_path, clock)
        await states.on_editor_close(1, _view())

        clock.now = NOW + timedelta(seconds=1)

        assert await states.prune(timedelta(0)) == 1
        assert await states.get(1) is None

    @pytest.mark.asyncio
    async def test_invalid_entries_are_pruned(self, tmp_path):
        states, kv, _, _ = _make_store(tmp_path)
        await states.on_editor_close(1, _view())
        stored = await kv.get(SESSION_STATES_KEY)
        stored["9"] = {"timestamp": "garbage"}
        await kv.set(SESSION_STATES_KEY, stored)

        assert await states.prune() == 1
        assert set(await kv.get(SESSION_STATES_KEY)) == {"1"}

    @pytest.mark.asyncio
    async def test_nothing_to_prune_skips_write(self, tmp_path):
        states, _, _, _ = _make_store(tmp_path)
        assert await states.prune() == 0
        assert not (tmp_path / "notes.json").exists()

    def test_naive_timestamps_are_read_as_utc(self):
        view = SessionViewState(timestamp=datetime(2024, 1, 1, 0, 0))
        assert view.timestamp.tzinfo is UTC
