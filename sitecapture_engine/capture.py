from __future__ import annotations

import asyncio
import time
from typing import Any, Callable

from loguru import logger

from .compositor import composite_segments
from .config import CaptureConfig
from .errors import CaptureError
from .freeze import auto_scroll, freeze_fixed_elements, load_lazy_content
from .segmenter import ViewportSegmenter, read_page_geometry
from .types import CaptureResult

StageCallback = Callable[[str, int], None]

BROWSER_ARGS = ["--no-sandbox", "--disable-setuid-sandbox"]

# Segment capture maps onto 10-50% of the job progress.
_CAPTURE_PROGRESS_START = 10
_CAPTURE_PROGRESS_SPAN = 40


def build_context_options(devices: dict[str, Any], cfg: CaptureConfig) -> dict[str, Any]:
    """Playwright context kwargs for the configured device preset."""
    if cfg.device not in devices:
        raise CaptureError(f"Unknown device preset: {cfg.device}")
    options = dict(devices[cfg.device])
    options.pop("default_browser_type", None)
    options["device_scale_factor"] = cfg.device_scale_factor
    options["extra_http_headers"] = {
        "Referer": cfg.referer,
        "Accept-Language": cfg.accept_language,
    }
    return options


async def prepare_page(page: Any, url: str, cfg: CaptureConfig) -> None:
    """Navigate and let dynamic content settle, leaving the page scrolled to the top."""
    await page.goto(url, wait_until="load", timeout=cfg.navigation_timeout_ms)
    logger.info(f"[Capture] Requested: {url}")
    logger.info(f"[Capture] Final URL: {page.url}")

    await page.wait_for_timeout(cfg.post_load_wait_ms)
    await load_lazy_content(page)
    await auto_scroll(page, max_rounds=cfg.scroll_rounds, wait_ms=cfg.scroll_wait_ms)

    await page.evaluate("() => window.scrollTo(0, 0)")
    await page.wait_for_timeout(cfg.settle_wait_ms)


async def capture_page(page: Any, cfg: CaptureConfig, on_stage: StageCallback | None = None) -> CaptureResult:
    """Freeze, segment and composite an already-prepared page."""

    def stage(name: str, progress: int) -> None:
        if on_stage is not None:
            on_stage(name, progress)

    freeze_stats = await freeze_fixed_elements(page)
    geometry = await read_page_geometry(page, cfg.device_scale_factor)

    segmenter = ViewportSegmenter(settle_ms=cfg.segment_settle_ms, screenshot_timeout_ms=cfg.screenshot_timeout_ms)
    segments = await segmenter.capture(
        page,
        geometry,
        on_segment=lambda done, total: stage(
            "capturing", round(done / total * _CAPTURE_PROGRESS_SPAN) + _CAPTURE_PROGRESS_START
        ),
    )

    stage("compositing", 50)
    image = await asyncio.to_thread(composite_segments, segments, geometry)

    return CaptureResult(
        final_url=page.url,
        page_title=await page.title(),
        image=image,
        geometry=geometry,
        freeze_stats=freeze_stats,
    )


async def capture_full_page(url: str, cfg: CaptureConfig, on_stage: StageCallback | None = None) -> CaptureResult:
    """Capture ``url`` as one full-page image.

    Navigation and screenshot timeouts are fatal: they surface as CaptureError
    and are never retried here.
    """
    from playwright.async_api import Error as PlaywrightError
    from playwright.async_api import async_playwright

    def stage(name: str, progress: int) -> None:
        if on_stage is not None:
            on_stage(name, progress)

    logger.info(f"[Capture] Starting capture for: {url}")
    start = time.perf_counter()
    try:
        async with async_playwright() as p:
            stage("launching", 5)
            browser = await p.chromium.launch(headless=True, args=BROWSER_ARGS)
            try:
                context = await browser.new_context(**build_context_options(p.devices, cfg))
                try:
                    page = await context.new_page()
                    stage("loading", 10)
                    await prepare_page(page, url, cfg)
                    result = await capture_page(page, cfg, on_stage=on_stage)
                finally:
                    await context.close()
            finally:
                await browser.close()
                logger.debug("[Capture] Browser closed")
    except PlaywrightError as e:
        raise CaptureError(f"Capture failed for {url}: {e}") from e

    logger.info(
        f"[Capture] Done: {result.image.width}x{result.image.height}px "
        f"in {time.perf_counter() - start:.1f}s"
    )
    return result
