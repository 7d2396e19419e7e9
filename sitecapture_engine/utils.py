from __future__ import annotations

import json
import os
import sys
from datetime import datetime, timezone
from io import BytesIO
from pathlib import Path
from typing import Any

from loguru import logger
from PIL import Image


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


def ensure_dir(path: str | Path) -> None:
    Path(path).mkdir(parents=True, exist_ok=True)


def write_json(path: str | Path, data: Any) -> None:
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, ensure_ascii=False, indent=2)


def load_json(path: str | Path) -> Any:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def clamp_int(v: int, lo: int, hi: int) -> int:
    return int(max(lo, min(hi, int(v))))


# Captures are rendered locally, not untrusted uploads: allow pages up to
# 0x3FFF x 0x3FFF pixels before Pillow treats them as decompression bombs.
COMPOSITE_MAX_PIXELS = 0x3FFF * 0x3FFF

# Errors meaning "cannot decode this image"; callers fail open on them.
UNREADABLE_IMAGE_ERRORS = (OSError, ValueError, Image.DecompressionBombError)


def allow_tall_composites() -> None:
    """Raise Pillow's pixel ceiling to COMPOSITE_MAX_PIXELS (never lowers it)."""
    if Image.MAX_IMAGE_PIXELS is not None and Image.MAX_IMAGE_PIXELS < COMPOSITE_MAX_PIXELS:
        Image.MAX_IMAGE_PIXELS = COMPOSITE_MAX_PIXELS


allow_tall_composites()


def encode_png(image: Image.Image) -> bytes:
    with BytesIO() as buf:
        image.save(buf, format="PNG")
        return buf.getvalue()


def read_image_size(image_bytes: bytes) -> tuple[int, int]:
    """Return (width, height) of an encoded image, or (0, 0) when unreadable."""
    try:
        with Image.open(BytesIO(image_bytes)) as img:
            return int(img.width), int(img.height)
    except UNREADABLE_IMAGE_ERRORS:
        return 0, 0


def setup_logging(level: str | None = None) -> None:
    """Install a single stderr sink. Level defaults to $SITECAPTURE_LOG_LEVEL or INFO."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=(level or os.environ.get("SITECAPTURE_LOG_LEVEL", "INFO")).upper(),
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <7}</level> | {message}",
    )
