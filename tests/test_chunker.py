"""Image chunking for the vision backend's height limit."""
from __future__ import annotations

from io import BytesIO

import numpy as np
import pytest
from PIL import Image

from conftest import png_bytes, row_coded_image
from sitecapture_engine.chunker import chunk_row_ranges, split_image
from sitecapture_engine.utils import COMPOSITE_MAX_PIXELS, read_image_size


def _decode(image_bytes: bytes) -> np.ndarray:
    with Image.open(BytesIO(image_bytes)) as img:
        return np.asarray(img.convert("RGB"))


# ═══════════════════════════════════════════════════════════════════════════════
# ROW RANGES
# ═══════════════════════════════════════════════════════════════════════════════

class TestChunkRowRanges:
    def test_forward_tiling(self):
        assert chunk_row_ranges(9000, 4000) == [(0, 4000), (4000, 8000), (8000, 9000)]

    def test_exact_multiple(self):
        assert chunk_row_ranges(8000, 4000) == [(0, 4000), (4000, 8000)]

    def test_invalid_limit(self):
        with pytest.raises(ValueError):
            chunk_row_ranges(100, 0)


# ═══════════════════════════════════════════════════════════════════════════════
# SPLITTING
# ═══════════════════════════════════════════════════════════════════════════════

class TestSplitImage:
    def test_tall_image_split_into_bounded_chunks(self):
        data = png_bytes(row_coded_image(4, 9000))
        chunks = split_image(data, 4000)

        assert [c.height_px for c in chunks] == [4000, 4000, 1000]
        assert [c.index for c in chunks] == [0, 1, 2]
        assert [read_image_size(c.image_bytes) for c in chunks] == [(4, 4000), (4, 4000), (4, 1000)]

    def test_chunks_tile_source_without_overlap(self):
        src = row_coded_image(3, 2500)
        chunks = split_image(png_bytes(src), 1000)

        stacked = np.concatenate([_decode(c.image_bytes) for c in chunks], axis=0)
        assert sum(c.height_px for c in chunks) == 2500
        assert np.array_equal(stacked, np.asarray(src))

    def test_image_within_limit_is_identity(self):
        data = png_bytes(row_coded_image(4, 4000))
        chunks = split_image(data, 4000)
        assert len(chunks) == 1
        assert chunks[0].image_bytes is data
        assert chunks[0].height_px == 4000

    def test_unreadable_image_fails_open(self):
        chunks = split_image(b"\x00garbage", 4000)
        assert len(chunks) == 1
        assert chunks[0].image_bytes == b"\x00garbage"

    def test_every_chunk_within_limit(self):
        chunks = split_image(png_bytes(row_coded_image(2, 7777)), 1000)
        assert len(chunks) == 8
        assert all(0 < c.height_px <= 1000 for c in chunks)

    def test_resplitting_chunks_is_identity(self):
        chunks = split_image(png_bytes(row_coded_image(2, 9000)), 4000)
        for c in chunks:
            again = split_image(c.image_bytes, 4000)
            assert len(again) == 1
            assert again[0].image_bytes is c.image_bytes


# ═══════════════════════════════════════════════════════════════════════════════
# PIXEL CEILING
# ═══════════════════════════════════════════════════════════════════════════════

class TestPixelCeiling:
    def test_tall_composites_allowed_by_default(self):
        assert Image.MAX_IMAGE_PIXELS is None or Image.MAX_IMAGE_PIXELS >= COMPOSITE_MAX_PIXELS

    def test_oversized_image_fails_open_as_single_chunk(self, monkeypatch):
        data = png_bytes(row_coded_image(10, 9000))
        monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 10_000)

        chunks = split_image(data, 4000)
        assert len(chunks) == 1
        assert chunks[0].image_bytes is data
        assert read_image_size(data) == (0, 0)
