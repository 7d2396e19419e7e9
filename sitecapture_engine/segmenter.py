from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Callable

from loguru import logger

from .types import PageGeometry, Segment

GEOMETRY_SCRIPT = """() => ({
  totalHeight: document.documentElement.scrollHeight,
  viewportHeight: window.innerHeight,
  viewportWidth: window.innerWidth,
})"""


def compute_scroll_offsets(total_height: int, viewport_height: int) -> list[int]:
    """Scroll offsets covering the page with viewport-sized segments.

    Every segment starts at ``i * viewport_height`` except the last one, which is
    pinned to the bottom of the page (``max(0, total - viewport)``) so it never
    captures blank space past the end of the document. Only the last segment can
    overlap its predecessor.
    """
    if viewport_height <= 0:
        raise ValueError(f"viewport_height must be > 0, got {viewport_height}")

    n = max(1, math.ceil(total_height / viewport_height))
    offsets = [i * viewport_height for i in range(n - 1)]
    offsets.append(max(0, total_height - viewport_height))
    return offsets


async def read_page_geometry(page: Any, scale_factor: float) -> PageGeometry:
    dims = await page.evaluate(GEOMETRY_SCRIPT)
    return PageGeometry(
        total_height=int(dims["totalHeight"]),
        viewport_height=int(dims["viewportHeight"]),
        viewport_width=int(dims["viewportWidth"]),
        scale_factor=float(scale_factor),
    )


@dataclass
class ViewportSegmenter:
    settle_ms: int = 100
    screenshot_timeout_ms: int = 60_000

    async def capture(
        self,
        page: Any,
        geometry: PageGeometry,
        on_segment: Callable[[int, int], None] | None = None,
    ) -> list[Segment]:
        """Capture one viewport screenshot per scroll offset, strictly in order.

        Each scroll must settle before the next screenshot, so segments are never
        captured concurrently.
        """
        offsets = compute_scroll_offsets(geometry.total_height, geometry.viewport_height)
        total = len(offsets)
        logger.info(f"[Capture] {total} segments, page height: {geometry.total_height}px")

        segments: list[Segment] = []
        for i, offset in enumerate(offsets):
            await page.evaluate("(y) => window.scrollTo(0, y)", offset)
            await page.wait_for_timeout(self.settle_ms)
            buf = await page.screenshot(
                full_page=False,
                type="png",
                animations="disabled",
                caret="hide",
                timeout=self.screenshot_timeout_ms,
            )
            segments.append(Segment(index=i, scroll_offset=offset, image_bytes=buf))
            logger.debug(f"[Capture] Segment {i + 1}/{total} at y={offset}")
            if on_segment is not None:
                on_segment(i + 1, total)

        return segments
