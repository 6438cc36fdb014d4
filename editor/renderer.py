"""Renderer contract and an in-memory implementation of it.

The reconciliation protocol treats the renderer as a black box: every
render destroys and recreates all regions, so a region handle obtained
before a render is never valid after it. Callers resolve regions by id
through ``find_region`` each time they need one.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Optional, Protocol

from notes.models import Note

logger = logging.getLogger(__name__)

DEFAULT_CLIENT_HEIGHT = 100
DEFAULT_LINE_HEIGHT = 20


class Region(Protocol):
    """A rendered, scrollable text area for one toggle."""

    scroll_top: int
    selection_range: tuple[int, int]

    @property
    def scroll_height(self) -> int: ...

    @property
    def text_content(self) -> str: ...

    @property
    def is_focused(self) -> bool: ...

    def focus(self) -> None: ...


class Renderer(Protocol):
    container_scroll_top: int

    def render_toggle_list(self, note: Note) -> None: ...

    def find_region(self, toggle_id: int) -> Optional[Region]: ...

    def rendered_region_ids(self) -> list[int]: ...

    async def next_frame(self) -> None: ...


Layout = Callable[[str, bool], int]


def line_layout(client_height: int = DEFAULT_CLIENT_HEIGHT, line_height: int = DEFAULT_LINE_HEIGHT) -> Layout:
    """Scroll height from line count; collapsed sections have no height."""

    def _layout(text: str, is_open: bool) -> int:
        if not is_open:
            return 0
        lines = text.count("\n") + 1
        return max(client_height, lines * line_height)

    return _layout


class HeadlessRegion:
    """In-memory stand-in for a textarea."""

    def __init__(
        self,
        owner: HeadlessRenderer,
        toggle_id: int,
        text: str,
        is_open: bool,
        client_height: int,
    ) -> None:
        self._owner = owner
        self.toggle_id = toggle_id
        self.is_open = is_open
        self.client_height = client_height
        self._value = text
        self._scroll_top = 0
        self._selection = (0, 0)

    # -- content --------------------------------------------------------

    @property
    def value(self) -> str:
        return self._value

    @value.setter
    def value(self, text: str) -> None:
        """Simulate typing: replace the text and put the caret at the end."""
        self._value = text
        self._selection = (len(text), len(text))
        self.scroll_top = self._scroll_top

    @property
    def text_content(self) -> str:
        return self._value

    # -- geometry -------------------------------------------------------

    @property
    def scroll_height(self) -> int:
        return self._owner.layout(self._value, self.is_open)

    @property
    def scroll_top(self) -> int:
        return self._scroll_top

    @scroll_top.setter
    def scroll_top(self, value: int) -> None:
        limit = max(0, self.scroll_height - self.client_height)
        self._scroll_top = min(max(0, int(value)), limit)

    # -- caret / focus --------------------------------------------------

    @property
    def selection_range(self) -> tuple[int, int]:
        return self._selection

    @selection_range.setter
    def selection_range(self, value: tuple[int, int]) -> None:
        size = len(self._value)
        start, end = (min(max(0, v), size) for v in value)
        self._selection = (start, max(start, end))

    @property
    def is_focused(self) -> bool:
        return self._owner.focused_id == self.toggle_id and self._owner.find_region(self.toggle_id) is self

    def focus(self) -> None:
        self._owner.focused_id = self.toggle_id


class HeadlessRenderer:
    """Keeps a rendered toggle list in memory, one region per toggle."""

    def __init__(
        self,
        layout: Optional[Layout] = None,
        client_height: int = DEFAULT_CLIENT_HEIGHT,
        frame_interval: float = 0.0,
    ) -> None:
        self.layout = layout or line_layout(client_height)
        self.client_height = client_height
        self.frame_interval = frame_interval
        self.container_scroll_top = 0
        self.focused_id: Optional[int] = None
        self.title = ""
        self.render_count = 0
        self._regions: dict[int, HeadlessRegion] = {}

    def render_toggle_list(self, note: Note) -> None:
        """Throw away every region and build fresh ones from ``note``."""
        self._regions = {
            t.id: HeadlessRegion(self, t.id, t.content, t.is_open, self.client_height)
            for t in note.toggles
        }
        self.title = note.title
        self.focused_id = None
        self.container_scroll_top = 0
        self.render_count += 1
        logger.debug("Rendered %d regions for note %s", len(self._regions), note.id)

    def clear(self) -> None:
        """Remove the editor view entirely."""
        self._regions = {}
        self.focused_id = None
        self.container_scroll_top = 0
        self.title = ""

    def find_region(self, toggle_id: int) -> Optional[HeadlessRegion]:
        return self._regions.get(toggle_id)

    def rendered_region_ids(self) -> list[int]:
        return list(self._regions)

    async def next_frame(self) -> None:
        await asyncio.sleep(self.frame_interval)
