"""Capture and restore per-region viewport state across re-renders.

Captured state is keyed by toggle id and carries a content hash. On
restore the region is looked up again and its live hash compared with the
captured one; regions whose text changed in between are left alone, since
an old offset would point at the wrong place.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Optional

from editor.metrics import REGION_RESTORES
from editor.renderer import Region, Renderer

logger = logging.getLogger(__name__)


def content_hash(text: str) -> int:
    """Order-sensitive 32-bit rolling hash (``h * 31 + c``). Not cryptographic."""
    h = 0
    for ch in text:
        h = (h * 31 + ord(ch)) & 0xFFFFFFFF
    return h - (1 << 32) if h & 0x80000000 else h


@dataclass(frozen=True)
class ScrollState:
    """Viewport state of one region at capture time."""

    scroll_top: int
    scroll_height: int
    selection_start: int = 0
    selection_end: int = 0
    is_focused: bool = False
    content_hash: Optional[int] = None


@dataclass
class RestoreReport:
    """Outcome of one restoration pass."""

    restored: list[int] = field(default_factory=list)
    stale: list[int] = field(default_factory=list)
    missing: list[int] = field(default_factory=list)


def rescaled_scroll_top(state: ScrollState, new_height: int) -> int:
    """Keep the relative position when the content reflowed."""
    if state.scroll_height and new_height != state.scroll_height:
        return round(state.scroll_top * new_height / state.scroll_height)
    return state.scroll_top


class ScrollStateTracker:
    """Reads and reapplies region viewport state through a renderer."""

    def __init__(self, renderer: Renderer, followup_delay: float = 0.1) -> None:
        self.renderer = renderer
        self.followup_delay = followup_delay

    def capture(self, region_ids: Iterable[int]) -> dict[int, ScrollState]:
        """Snapshot the viewport of every listed region that is rendered."""
        captured: dict[int, ScrollState] = {}
        for region_id in region_ids:
            region = self.renderer.find_region(region_id)
            if region is None:
                continue
            start, end = region.selection_range
            captured[region_id] = ScrollState(
                scroll_top=region.scroll_top,
                scroll_height=region.scroll_height,
                selection_start=start,
                selection_end=end,
                is_focused=region.is_focused,
                content_hash=content_hash(region.text_content),
            )
        return captured

    def restore(self, captured: dict[int, ScrollState]) -> RestoreReport:
        """One restoration pass. Hash mismatches and missing regions are skipped."""
        report = RestoreReport()
        for region_id, state in captured.items():
            region = self.renderer.find_region(region_id)
            if region is None:
                report.missing.append(region_id)
                REGION_RESTORES.labels(outcome="missing").inc()
                continue
            if state.content_hash is not None and content_hash(region.text_content) != state.content_hash:
                logger.debug("Region %s content changed since capture, skipping", region_id)
                report.stale.append(region_id)
                REGION_RESTORES.labels(outcome="stale").inc()
                continue
            self._apply(region, state)
            report.restored.append(region_id)
            REGION_RESTORES.labels(outcome="restored").inc()
        return report

    @staticmethod
    def _apply(region: Region, state: ScrollState) -> None:
        region.scroll_top = rescaled_scroll_top(state, region.scroll_height)
        if state.is_focused:
            region.focus()
            region.selection_range = (state.selection_start, state.selection_end)

    async def restore_two_pass(
        self,
        captured: dict[int, ScrollState],
        container_scroll_top: Optional[int] = None,
    ) -> tuple[RestoreReport, RestoreReport]:
        """Restore after the next frame, then again after the follow-up delay.

        Exceptions from the renderer propagate to the caller.
        """
        await self.renderer.next_frame()
        if container_scroll_top is not None:
            self.renderer.container_scroll_top = container_scroll_top
        first = self.restore(captured)

        await asyncio.sleep(self.followup_delay)
        second = self.restore(captured)
        logger.debug(
            "Two-pass restore: pass1 restored=%d stale=%d, pass2 restored=%d stale=%d",
            len(first.restored),
            len(first.stale),
            len(second.restored),
            len(second.stale),
        )
        return first, second

    def reset(self, region_ids: Optional[Iterable[int]] = None) -> None:
        """Hard reset: every region and the container back to the top."""
        ids = self.renderer.rendered_region_ids() if region_ids is None else region_ids
        for region_id in ids:
            region = self.renderer.find_region(region_id)
            if region is not None:
                region.scroll_top = 0
        self.renderer.container_scroll_top = 0
