from __future__ import annotations

import math
from io import BytesIO

from loguru import logger
from PIL import Image

from .types import Chunk
from .utils import UNREADABLE_IMAGE_ERRORS, encode_png

DEFAULT_MAX_CHUNK_HEIGHT = 4000


def chunk_row_ranges(height: int, max_chunk_height: int) -> list[tuple[int, int]]:
    """Row ranges ``[top, bottom)`` tiling ``height`` forward with no overlap."""
    if max_chunk_height <= 0:
        raise ValueError(f"max_chunk_height must be > 0, got {max_chunk_height}")
    n = math.ceil(height / max_chunk_height)
    return [(i * max_chunk_height, min(height, (i + 1) * max_chunk_height)) for i in range(n)]


def split_image(image_bytes: bytes, max_chunk_height: int = DEFAULT_MAX_CHUNK_HEIGHT) -> list[Chunk]:
    """Split an image taller than ``max_chunk_height`` into height-bounded PNG chunks.

    Unlike segment capture there is no bottom-pinning: slicing a static image
    cannot produce blank space, so plain forward tiling is used and only the last
    chunk may be shorter.

    Fail-open: an unreadable image or one with a zero dimension is returned as a
    single unsplit chunk.
    """
    try:
        img = Image.open(BytesIO(image_bytes))
        width, height = int(img.width), int(img.height)
    except UNREADABLE_IMAGE_ERRORS as e:
        logger.warning(f"[OCR] Image metadata unavailable ({e}); processing as a single chunk")
        return [Chunk(index=0, image_bytes=image_bytes, height_px=0)]

    with img:
        if not width or not height:
            return [Chunk(index=0, image_bytes=image_bytes, height_px=height)]

        if height <= max_chunk_height:
            return [Chunk(index=0, image_bytes=image_bytes, height_px=height)]

        ranges = chunk_row_ranges(height, max_chunk_height)
        logger.info(f"[OCR] Splitting image into {len(ranges)} chunks (height: {height}px)")

        chunks: list[Chunk] = []
        for i, (top, bottom) in enumerate(ranges):
            piece = img.crop((0, top, width, bottom))
            try:
                chunks.append(Chunk(index=i, image_bytes=encode_png(piece), height_px=bottom - top))
            finally:
                piece.close()
        return chunks
