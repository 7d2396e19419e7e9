"""Shared in-process fakes for the browser page and the vision backend."""
from __future__ import annotations

from io import BytesIO
from typing import Any

import numpy as np
from PIL import Image

from sitecapture_engine.freeze import FREEZE_SCRIPT, LAZY_CONTENT_SCRIPT
from sitecapture_engine.segmenter import GEOMETRY_SCRIPT


def png_bytes(img: Image.Image) -> bytes:
    buf = BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def row_coded_image(width: int, height: int) -> Image.Image:
    """RGB image whose pixel rows encode their own y coordinate (R = y % 256, G = y // 256)."""
    ys = np.arange(height, dtype=np.int64)
    arr = np.zeros((height, width, 3), dtype=np.uint8)
    arr[:, :, 0] = (ys % 256)[:, None]
    arr[:, :, 1] = ((ys // 256) % 256)[:, None]
    return Image.fromarray(arr)


class FakePage:
    """Minimal stand-in for a Playwright page over a static, row-coded document."""

    def __init__(self, total_height: int, viewport_height: int, viewport_width: int, scale: float = 2.0):
        self.total_height = total_height
        self.viewport_height = viewport_height
        self.viewport_width = viewport_width
        self.scale = scale
        self.scroll_y = 0
        self.url = "https://example.com/landing"
        self.document = row_coded_image(round(viewport_width * scale), round(total_height * scale))
        self.calls: list[tuple[str, Any]] = []
        self.freeze_result: dict[str, int] = {"fixed": 1, "sticky": 2}
        self.screenshot_error: Exception | None = None

    def _scroll_to(self, y: int) -> None:
        self.scroll_y = max(0, min(int(y), self.total_height - self.viewport_height))

    async def goto(self, url: str, **kwargs: Any) -> None:
        self.calls.append(("goto", url))

    async def wait_for_timeout(self, ms: int) -> None:
        self.calls.append(("wait", ms))

    async def title(self) -> str:
        return "Landing"

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        self.calls.append(("evaluate", script if arg is None else (script, arg)))
        if script == GEOMETRY_SCRIPT:
            return {
                "totalHeight": self.total_height,
                "viewportHeight": self.viewport_height,
                "viewportWidth": self.viewport_width,
            }
        if script == FREEZE_SCRIPT:
            return dict(self.freeze_result)
        if script == LAZY_CONTENT_SCRIPT:
            return None
        if "scrollTo(0, y)" in script:
            self._scroll_to(arg)
            return None
        if "scrollTo(0, 0)" in script:
            self._scroll_to(0)
            return None
        if "scrollBy" in script:
            self._scroll_to(self.scroll_y + self.viewport_height)
            return None
        if "scrollHeight" in script:
            return self.total_height
        raise AssertionError(f"unexpected script: {script[:60]}")

    async def screenshot(self, **kwargs: Any) -> bytes:
        self.calls.append(("screenshot", self.scroll_y))
        if self.screenshot_error is not None:
            raise self.screenshot_error
        top = round(self.scroll_y * self.scale)
        bottom = top + round(self.viewport_height * self.scale)
        return png_bytes(self.document.crop((0, top, self.document.width, bottom)))


class FakeBackend:
    """Scripted vision backend.

    ``replies`` maps a chunk's image bytes to either a reply string or a list of
    outcomes consumed one call at a time (an Exception instance is raised).
    """

    def __init__(self, replies: dict[bytes, Any] | None = None, default: str = "text", reflow: Any = None):
        self.model = "fake-vision-1"
        self.replies = dict(replies or {})
        self.default = default
        self.reflow = reflow
        self.extract_calls: list[bytes] = []
        self.generate_calls: list[str] = []

    async def extract_text(self, image_bytes: bytes, prompt: str) -> str:
        self.extract_calls.append(image_bytes)
        outcome = self.replies.get(image_bytes, self.default)
        if isinstance(outcome, list):
            outcome = outcome.pop(0) if len(outcome) > 1 else outcome[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def generate_text(self, prompt: str) -> str:
        self.generate_calls.append(prompt)
        if isinstance(self.reflow, Exception):
            raise self.reflow
        if self.reflow is None:
            # Echo the input text back unchanged.
            return prompt.split("Input text:\n", 1)[1].rsplit("\n\nTidied text:", 1)[0]
        return self.reflow


async def no_sleep(_seconds: float) -> None:
    return None
