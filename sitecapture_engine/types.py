from __future__ import annotations

from dataclasses import dataclass, field
from typing import Awaitable, Callable, TypeVar

T = TypeVar("T")

# Deferred unit of work; identity is its position in the submitted sequence.
WorkUnit = Callable[[], Awaitable[T]]


@dataclass(frozen=True)
class PageGeometry:
    total_height: int  # CSS px (document scrollHeight)
    viewport_height: int  # CSS px
    viewport_width: int  # CSS px
    scale_factor: float  # device pixels per CSS px

    @property
    def image_width(self) -> int:
        return round(self.viewport_width * self.scale_factor)

    @property
    def image_height(self) -> int:
        return round(self.total_height * self.scale_factor)

    @property
    def segment_image_height(self) -> int:
        return round(self.viewport_height * self.scale_factor)


@dataclass(frozen=True)
class Segment:
    index: int  # 0-based, top-to-bottom
    scroll_offset: int  # CSS px
    image_bytes: bytes  # PNG


@dataclass(frozen=True)
class CompositeImage:
    width: int
    height: int
    image_bytes: bytes  # PNG


@dataclass(frozen=True)
class Chunk:
    index: int
    image_bytes: bytes
    height_px: int


@dataclass(frozen=True)
class FreezeStats:
    fixed: int = 0
    sticky: int = 0


@dataclass(frozen=True)
class CaptureResult:
    final_url: str
    page_title: str
    image: CompositeImage
    geometry: PageGeometry
    freeze_stats: FreezeStats


@dataclass
class OcrResult:
    text: str
    model_identifier: str
    warnings: list[str] = field(default_factory=list)
