from __future__ import annotations

import re
from dataclasses import dataclass
from io import BytesIO
from pathlib import Path

from loguru import logger
from PIL import Image

from .utils import UNREADABLE_IMAGE_ERRORS, encode_png, ensure_dir

_SAFE_ID = re.compile(r"^[A-Za-z0-9_-]+$")


@dataclass
class ImageStore:
    """Capture images on local disk: <root>/<job_id>.png (lossless) and .jpg (compressed)."""

    root: Path
    max_jpeg_height: int = 16000  # JPEG caps at 65535px; stay well below
    jpeg_quality: int = 85

    def __post_init__(self):
        self.root = Path(self.root)

    def _path(self, job_id: str, ext: str) -> Path:
        if not _SAFE_ID.fullmatch(job_id or ""):
            raise ValueError(f"unsafe job id: {job_id!r}")
        return self.root / f"{job_id}.{ext}"

    def _to_jpeg(self, png_bytes: bytes) -> bytes:
        with Image.open(BytesIO(png_bytes)) as img:
            rgb = img.convert("RGB")
        if rgb.height > self.max_jpeg_height:
            logger.info(f"[Storage] Resizing image from {rgb.height}px to {self.max_jpeg_height}px height")
            width = max(1, round(rgb.width * self.max_jpeg_height / rgb.height))
            rgb = rgb.resize((width, self.max_jpeg_height), Image.LANCZOS)
        with BytesIO() as buf:
            rgb.save(buf, format="JPEG", quality=self.jpeg_quality)
            return buf.getvalue()

    def save(self, job_id: str, png_bytes: bytes) -> Path:
        """Write the PNG and its JPEG copy; returns the path downloads will serve.

        A PNG that cannot be decoded for the JPEG copy is kept alone (loads then
        fall back to it) rather than failing the job.
        """
        png_path = self._path(job_id, "png")
        jpg_path = self._path(job_id, "jpg")
        ensure_dir(self.root)

        png_path.write_bytes(png_bytes)
        try:
            jpeg_bytes = self._to_jpeg(png_bytes)
        except UNREADABLE_IMAGE_ERRORS as e:
            logger.warning(f"[Storage] JPEG conversion failed for {job_id}, keeping PNG only: {e}")
            return png_path
        jpg_path.write_bytes(jpeg_bytes)

        logger.info(
            f"[Storage] Saved {jpg_path.name} "
            f"({len(png_bytes) / 1024 / 1024:.2f}MB -> {len(jpeg_bytes) / 1024 / 1024:.2f}MB)"
        )
        return jpg_path

    def load(self, job_id: str) -> tuple[bytes, str] | None:
        """Return (bytes, "jpg"|"png"), preferring the compressed JPEG."""
        try:
            candidates = [(self._path(job_id, "jpg"), "jpg"), (self._path(job_id, "png"), "png")]
        except ValueError:
            return None
        for path, fmt in candidates:
            if path.is_file():
                return path.read_bytes(), fmt
        return None

    def thumbnail(self, job_id: str, width: int = 400) -> bytes | None:
        """PNG preview scaled to exactly ``width`` px wide (narrower images are enlarged)."""
        found = self.load(job_id)
        if found is None:
            return None
        with Image.open(BytesIO(found[0])) as img:
            height = max(1, round(img.height * width / img.width))
            thumb = img.resize((width, height), Image.LANCZOS)
        return encode_png(thumb)
