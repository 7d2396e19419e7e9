from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Protocol, Sequence

from loguru import logger

from .capture import capture_full_page
from .chunker import split_image
from .cleaner import pre_clean
from .config import EngineConfig, OcrConfig
from .errors import ImageTooLargeError, MissingCredentialsError, OcrError, QuotaExceededError
from .executor import RetryPolicy, run_with_concurrency_limit, with_retry
from .ocr import GeminiVisionBackend, VisionBackend, extract_chunk_text, reflow_text
from .types import CaptureResult, Chunk, OcrResult
from .utils import read_image_size

ProgressCallback = Callable[[int, int], None]
StatusCallback = Callable[[str], None]


class ProgressReporter(Protocol):
    """Observer injected into CapturePipeline; the job layer decides what to do with it."""

    def stage(self, status: str, progress: int) -> None: ...

    def ocr_progress(self, completed: int, total: int) -> None: ...

    def ocr_status(self, phase: str) -> None: ...

    def completed(self, text: str, error: str | None = None) -> None: ...


def _to_chunks(image: bytes | Sequence[bytes], max_chunk_height: int) -> list[Chunk]:
    if isinstance(image, (bytes, bytearray)):
        return split_image(bytes(image), max_chunk_height)
    # Pre-chunked input (e.g. lossless per-segment PNGs): no re-encoding.
    return [Chunk(index=i, image_bytes=buf, height_px=read_image_size(buf)[1]) for i, buf in enumerate(image)]


def _classify_failure(exc: Exception) -> OcrError:
    if isinstance(exc, OcrError):
        return exc
    message = str(exc)
    if "RESOURCE_EXHAUSTED" in message or "quota" in message.lower():
        return QuotaExceededError("Vision backend quota exhausted. Wait a while and retry.")
    if "too large" in message.lower() or "payload size" in message.lower():
        return ImageTooLargeError("Image is too large for the vision backend. Capture the page in parts.")
    return OcrError(f"OCR failed: {message}")


@dataclass
class OcrPipeline:
    backend: VisionBackend
    cfg: OcrConfig = field(default_factory=OcrConfig)
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep

    @classmethod
    def from_env(cls, cfg: OcrConfig) -> "OcrPipeline":
        """Raises MissingCredentialsError before any work when no API key is configured."""
        return cls(backend=GeminiVisionBackend.from_env(cfg), cfg=cfg)

    @property
    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(max_retries=self.cfg.max_retries, base_delay_s=self.cfg.retry_base_delay_s)

    async def run(
        self,
        image: bytes | Sequence[bytes],
        *,
        on_progress: ProgressCallback | None = None,
        on_status_change: StatusCallback | None = None,
    ) -> OcrResult:
        """extracting -> cleaning -> done.

        Extraction failures are fatal (no partial text). A failed reflow degrades
        to the rule-cleaned text.
        """
        start = time.perf_counter()
        chunks = await asyncio.to_thread(_to_chunks, image, self.cfg.max_chunk_height)
        total = len(chunks)
        logger.info(f"[OCR] Processing {total} chunk(s) with concurrency limit {self.cfg.concurrency}")

        def unit_for(chunk: Chunk) -> Callable[[], Awaitable[str]]:
            return lambda: extract_chunk_text(self.backend, chunk.image_bytes)

        def chunk_done(completed: int, total_: int) -> None:
            logger.info(f"[OCR] Chunk {completed}/{total_} completed")
            if on_progress is not None:
                on_progress(completed, total_)

        try:
            texts = await run_with_concurrency_limit(
                [unit_for(c) for c in chunks],
                self.cfg.concurrency,
                retry=self.retry_policy,
                on_unit_done=chunk_done,
                sleep=self.sleep,
            )
        except Exception as e:
            logger.error(f"[OCR] Extraction failed: {e}")
            raise _classify_failure(e) from e

        combined = "\n\n".join(texts).strip()
        logger.info(f"[OCR] Raw extraction completed: {len(combined)} chars")

        cleaned = pre_clean(combined)
        logger.info(f"[OCR] Pre-cleaned: {len(cleaned)} chars")

        if on_status_change is not None:
            on_status_change("cleaning")

        warnings: list[str] = []
        if total > 1:
            warnings.append(f"Image was split into {total} chunks for processing")

        text = cleaned
        if cleaned:
            try:
                text = await with_retry(
                    lambda: reflow_text(self.backend, cleaned),
                    self.retry_policy,
                    label="reflow",
                    sleep=self.sleep,
                )
            except Exception as e:
                logger.warning(f"[OCR] Post-processing failed, returning pre-cleaned text: {e}")
                warnings.append("Reflow failed; returning rule-cleaned text")
                text = cleaned

        logger.info(f"[OCR] Final output {len(text)} chars in {time.perf_counter() - start:.1f}s")
        return OcrResult(text=text, model_identifier=self.backend.model, warnings=warnings)


OcrFactory = Callable[[OcrConfig], OcrPipeline]
CaptureFn = Callable[..., Awaitable[CaptureResult]]


@dataclass
class CapturePipeline:
    """capture -> store -> OCR for one job, reporting through a ProgressReporter."""

    cfg: EngineConfig
    store: Any  # ImageStore
    capture_fn: CaptureFn = capture_full_page
    ocr_factory: OcrFactory = OcrPipeline.from_env

    async def run(self, job_id: str, url: str, reporter: ProgressReporter) -> OcrResult | None:
        """Capture failures propagate (fatal for the job); OCR failures are absorbed into the report."""
        result = await self.capture_fn(url, self.cfg.capture, on_stage=reporter.stage)
        await asyncio.to_thread(self.store.save, job_id, result.image.image_bytes)

        reporter.stage("ocr_starting", 55)
        try:
            ocr = self.ocr_factory(self.cfg.ocr)
        except MissingCredentialsError as e:
            logger.warning(f"[OCR] Skipped for job {job_id}: {e}")
            reporter.completed("", str(e))
            return None

        try:
            ocr_result = await ocr.run(
                result.image.image_bytes,
                on_progress=reporter.ocr_progress,
                on_status_change=reporter.ocr_status,
            )
        except OcrError as e:
            logger.error(f"[OCR Error] job {job_id}: {e}")
            reporter.completed("", f"OCR error: {e}")
            return None

        reporter.completed(ocr_result.text)
        return ocr_result
