from __future__ import annotations

from io import BytesIO
from typing import Sequence

from loguru import logger
from PIL import Image

from .errors import CompositionError
from .types import CompositeImage, PageGeometry, Segment
from .utils import UNREADABLE_IMAGE_ERRORS, encode_png

# Uncovered canvas must stay visually neutral regardless of the page background.
CANVAS_BACKGROUND = (255, 255, 255, 255)


def segment_paste_offsets(count: int, geometry: PageGeometry) -> list[int]:
    """Vertical paste offsets (device px) mirroring the capture-time bottom-pinning."""
    offsets = [round(i * geometry.viewport_height * geometry.scale_factor) for i in range(count - 1)]
    if count > 0:
        offsets.append(max(0, geometry.image_height - geometry.segment_image_height))
    return offsets


def composite_segments(segments: Sequence[Segment], geometry: PageGeometry) -> CompositeImage:
    """Stitch ordered viewport segments into one image of the exact page height.

    Segments are pasted in capture order; on overlap (only possible for the last
    segment) the later paste wins. A segment whose width does not match the
    canvas makes the whole image unusable.
    """
    if not segments:
        raise CompositionError("no segments to composite")

    width = geometry.image_width
    height = geometry.image_height
    if width <= 0 or height <= 0:
        raise CompositionError(f"invalid canvas size {width}x{height}")

    logger.info(f"[Capture] Compositing into {width}x{height}px image")

    ordered = sorted(segments, key=lambda s: s.index)
    offsets = segment_paste_offsets(len(ordered), geometry)

    canvas = Image.new("RGBA", (width, height), CANVAS_BACKGROUND)
    try:
        for seg, top in zip(ordered, offsets):
            try:
                with Image.open(BytesIO(seg.image_bytes)) as img:
                    tile = img.convert("RGBA")
            except UNREADABLE_IMAGE_ERRORS as e:
                raise CompositionError(f"segment {seg.index} is not a readable image: {e}") from e

            if tile.width != width:
                raise CompositionError(
                    f"segment {seg.index} width {tile.width}px does not match canvas width {width}px"
                )
            canvas.paste(tile, (0, top))

        return CompositeImage(width=width, height=height, image_bytes=encode_png(canvas))
    finally:
        canvas.close()
