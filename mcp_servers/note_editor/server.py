"""
Note Editor MCP Server

Exposes a headless toggle-note editor via the Model Context Protocol:
note list management, debounced text editing, section open/close with
scroll preservation, and undo/redo.  Runs on port 8005 with SSE transport.
"""

import logging
from datetime import UTC, datetime

from mcp.server.fastmcp import FastMCP
from prometheus_client import start_http_server

from editor.config import settings
from editor.renderer import HeadlessRenderer
from editor.session import EditorNotOpenError, EditorSession
from notes.manager import NoteManager
from notes.models import Note
from notes.storage import RedisStore, build_store

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
)
logger = logging.getLogger("note_editor")

# ---------------------------------------------------------------------------
# MCP server + editor
# ---------------------------------------------------------------------------
mcp = FastMCP("note-editor", host=settings.editor_host, port=settings.editor_port)
store = build_store(
    settings.store_backend,
    storage_path=settings.storage_path,
    redis_url=settings.redis_url,
    namespace=settings.storage_namespace,
)
notes = NoteManager(store)
renderer = HeadlessRenderer(frame_interval=settings.frame_interval)
session = EditorSession(notes, renderer, store, settings)

_NOT_OPEN = {"error": "No note is open", "status": "error"}


async def _ensure_ready() -> None:
    """Connect the store and load notes on first use."""
    if notes.loaded:
        return
    if isinstance(store, RedisStore) and not store.available:
        await store.connect()
    await notes.load()


def _summary(note: Note) -> dict:
    preview = " ".join(t.content for t in note.toggles)[:150]
    return {
        "id": note.id,
        "title": note.title or "Untitled Note",
        "preview": preview or "No content",
        "updated": note.updated,
    }


def _editor_status() -> dict:
    note = session.current_note
    return {
        "note": note.to_json_dict() if note else None,
        "can_undo": session.can_undo,
        "can_redo": session.can_redo,
        "reconciler": session.reconciler_state.value,
        "status": "success",
    }


# ---------------------------------------------------------------------------
# Tools: note list
# ---------------------------------------------------------------------------


@mcp.tool()
async def list_notes(search: str = "") -> dict:
    """List notes, optionally filtered by a case-insensitive search term.

    Args:
        search: Text to match against note titles and section titles/content.

    Returns:
        Dictionary with note summaries and their count.
    """
    await _ensure_ready()
    found = notes.get_notes(search)
    logger.info("Tool list_notes invoked — search='%s', found=%d", search, len(found))
    return {"count": len(found), "notes": [_summary(n) for n in found]}


@mcp.tool()
async def create_note() -> dict:
    """Create a note with three empty sections and open it in the editor."""
    await _ensure_ready()
    note = await session.create_note()
    logger.info("Tool create_note invoked — id=%s", note.id)
    return {**_editor_status(), "message": f"Note {note.id} created."}


@mcp.tool()
async def open_note(note_id: int) -> dict:
    """Open a note in the editor, restoring where the user left off.

    Args:
        note_id: Id of the note to open.
    """
    await _ensure_ready()
    note = await session.open(note_id)
    logger.info("Tool open_note invoked — id=%s, found=%s", note_id, note is not None)
    if note is None:
        return {"error": f"Note {note_id} not found", "status": "error"}
    return _editor_status()


@mcp.tool()
async def close_note() -> dict:
    """Commit pending edits, remember the view state and close the editor."""
    await session.close()
    logger.info("Tool close_note invoked")
    return {"status": "success", "message": "Editor closed."}


@mcp.tool()
async def delete_note() -> dict:
    """Delete the note that is currently open."""
    note = session.current_note
    if note is None:
        return dict(_NOT_OPEN)
    deleted = await session.delete_current()
    logger.info("Tool delete_note invoked — id=%s, deleted=%s", note.id, deleted)
    return {"deleted": deleted, "note_id": note.id, "status": "success"}


# ---------------------------------------------------------------------------
# Tools: editing
# ---------------------------------------------------------------------------


@mcp.tool()
async def set_note_title(title: str) -> dict:
    """Change the title of the open note (committed after a short pause)."""
    try:
        session.edit_title(title)
    except EditorNotOpenError:
        return dict(_NOT_OPEN)
    return _editor_status()


@mcp.tool()
async def set_section_title(toggle_id: int, title: str) -> dict:
    """Change a section heading of the open note.

    Args:
        toggle_id: Section id.
        title: New heading text.
    """
    try:
        ok = session.edit_toggle_title(toggle_id, title)
    except EditorNotOpenError:
        return dict(_NOT_OPEN)
    if not ok:
        return {"error": f"Section {toggle_id} not found", "status": "error"}
    return _editor_status()


@mcp.tool()
async def type_in_section(toggle_id: int, text: str) -> dict:
    """Replace the body text of a section, as if typed by the user.

    Args:
        toggle_id: Section id.
        text: Full new body text.
    """
    try:
        region = renderer.find_region(toggle_id)
        if region is not None:
            region.value = text
            session.focus_toggle(toggle_id)
        ok = session.edit_toggle_content(toggle_id, text)
    except EditorNotOpenError:
        return dict(_NOT_OPEN)
    if not ok:
        return {"error": f"Section {toggle_id} not found", "status": "error"}
    return _editor_status()


@mcp.tool()
async def scroll_section(toggle_id: int, scroll_top: int) -> dict:
    """Scroll a section body. The offset is clamped to the content height."""
    region = renderer.find_region(toggle_id)
    if region is None:
        return {"error": f"Section {toggle_id} is not rendered", "status": "error"}
    region.scroll_top = scroll_top
    return {"toggle_id": toggle_id, "scroll_top": region.scroll_top, "status": "success"}


@mcp.tool()
async def toggle_section(toggle_id: int, wait: bool = True) -> dict:
    """Open or close a section.

    Rapid repeated calls are coalesced; calls made while a previous toggle is
    still being applied are dropped.

    Args:
        toggle_id: Section id.
        wait: Wait until the change has been applied before returning.
    """
    try:
        accepted = session.request_toggle(toggle_id)
    except EditorNotOpenError:
        return dict(_NOT_OPEN)
    if accepted and wait:
        await session.settle()
    logger.info("Tool toggle_section invoked — id=%s, accepted=%s", toggle_id, accepted)
    return {**_editor_status(), "accepted": accepted}


@mcp.tool()
async def add_section() -> dict:
    """Append a new, open, empty section to the open note."""
    try:
        toggle = await session.add_toggle()
    except EditorNotOpenError:
        return dict(_NOT_OPEN)
    return {**_editor_status(), "toggle_id": toggle.id if toggle else None}


@mcp.tool()
async def undo() -> dict:
    """Undo the last change to the open note."""
    try:
        applied = await session.undo()
    except EditorNotOpenError:
        return dict(_NOT_OPEN)
    return {**_editor_status(), "applied": applied}


@mcp.tool()
async def redo() -> dict:
    """Redo the last undone change to the open note."""
    try:
        applied = await session.redo()
    except EditorNotOpenError:
        return dict(_NOT_OPEN)
    return {**_editor_status(), "applied": applied}


@mcp.tool()
async def view_state() -> dict:
    """Describe the rendered editor: per-section scroll, caret and focus."""
    if not session.is_open:
        return dict(_NOT_OPEN)
    regions = []
    for toggle_id in renderer.rendered_region_ids():
        region = renderer.find_region(toggle_id)
        regions.append(
            {
                "toggle_id": toggle_id,
                "is_open": region.is_open,
                "scroll_top": region.scroll_top,
                "scroll_height": region.scroll_height,
                "selection": list(region.selection_range),
                "focused": region.is_focused,
            }
        )
    return {
        "container_scroll_top": renderer.container_scroll_top,
        "last_active_toggle_id": session.last_active_toggle_id,
        "regions": regions,
        **_editor_status(),
    }


# ---------------------------------------------------------------------------
# Tools: import / export
# ---------------------------------------------------------------------------


@mcp.tool()
async def export_note() -> dict:
    """Export the open note as a JSON document."""
    data = notes.export_note(session.current_note)
    if data is None:
        return dict(_NOT_OPEN)
    return {"json": data, "status": "success"}


@mcp.tool()
async def import_note(json_text: str) -> dict:
    """Add a note from a JSON document produced by export_note.

    Args:
        json_text: The exported note JSON.
    """
    await _ensure_ready()
    ok = await notes.import_note(json_text)
    logger.info("Tool import_note invoked — success=%s", ok)
    if not ok:
        return {"error": "The document is not a valid note.", "status": "error"}
    return {"status": "success", "total_notes": notes.count}


@mcp.tool()
def health_check() -> dict:
    """Check whether the Note Editor server is healthy.

    Returns:
        Dictionary with server status, note count, and timestamp.
    """
    logger.info("Tool health_check invoked")
    return {
        "status": "healthy",
        "server": "note-editor",
        "total_notes": notes.count,
        "editor_open": session.is_open,
        "timestamp": datetime.now(UTC).isoformat(),
    }


# ---------------------------------------------------------------------------
# Entry-point
# ---------------------------------------------------------------------------
if __name__ == "__main__":
    start_http_server(settings.metrics_port)
    logger.info("Starting Note Editor MCP server on port %d ...", settings.editor_port)
    mcp.run(transport="sse")
