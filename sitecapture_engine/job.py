from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Coroutine

from loguru import logger

from .utils import clamp_int, utc_now_iso

DEFAULT_RETENTION_S = 60 * 60

# OCR extraction maps onto 55-85% of the job progress.
_OCR_PROGRESS_START = 55
_OCR_PROGRESS_SPAN = 30


class JobStatus(str, Enum):
    STARTING = "starting"
    LAUNCHING = "launching"
    LOADING = "loading"
    CAPTURING = "capturing"
    COMPOSITING = "compositing"
    OCR_STARTING = "ocr_starting"
    OCR_PROCESSING = "ocr_processing"
    OCR_CLEANING = "ocr_cleaning"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass
class Job:
    job_id: str
    status: JobStatus = JobStatus.STARTING
    progress: int = 0
    ocr_text: str | None = None
    error: str | None = None
    ocr_chunks: tuple[int, int] | None = None
    created_at: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"status": self.status.value, "progress": self.progress}
        if self.error is not None:
            out["error"] = self.error
        if self.ocr_text is not None:
            out["ocrText"] = self.ocr_text
        if self.ocr_chunks is not None:
            out["ocrChunks"] = {"current": self.ocr_chunks[0], "total": self.ocr_chunks[1]}
        return out


def new_job_id() -> str:
    """Time-ordered, URL- and filename-safe job id."""
    return f"{int(time.time() * 1000):x}{uuid.uuid4().hex[:8]}"


class JobRegistry:
    """Job records plus one supervised task per job.

    Each job's task runs the work, records a failure on the job if it raises,
    then holds the record for the retention window before removing it. Only
    cooperative tasks on one event loop mutate the records, so no locking.
    """

    def __init__(self, retention_s: float = DEFAULT_RETENTION_S):
        self.retention_s = float(retention_s)
        self._jobs: dict[str, Job] = {}
        self._tasks: dict[str, asyncio.Task[None]] = {}

    def __contains__(self, job_id: str) -> bool:
        return job_id in self._jobs

    def __len__(self) -> int:
        return len(self._jobs)

    def create(self) -> Job:
        job = Job(job_id=new_job_id())
        self._jobs[job.job_id] = job
        return job

    def get(self, job_id: str) -> Job | None:
        return self._jobs.get(job_id)

    def update(self, job_id: str, **changes: Any) -> None:
        job = self._jobs.get(job_id)
        if job is None:
            return
        for key, value in changes.items():
            setattr(job, key, value)

    def delete(self, job_id: str) -> None:
        self._jobs.pop(job_id, None)

    def spawn(self, job_id: str, work: Coroutine[Any, Any, Any]) -> asyncio.Task[None]:
        task = asyncio.create_task(self._supervise(job_id, work), name=f"job-{job_id}")
        self._tasks[job_id] = task
        task.add_done_callback(lambda _t: self._tasks.pop(job_id, None))
        return task

    async def _supervise(self, job_id: str, work: Coroutine[Any, Any, Any]) -> None:
        try:
            await work
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception(f"[Job] {job_id} failed")
            self.update(job_id, status=JobStatus.ERROR, progress=0, error=str(e))

        await asyncio.sleep(self.retention_s)
        self.delete(job_id)
        logger.debug(f"[Job] {job_id} expired")

    async def shutdown(self) -> None:
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)


@dataclass
class JobProgressReporter:
    """Adapts pipeline progress callbacks onto one job record."""

    registry: JobRegistry
    job_id: str

    def stage(self, status: str, progress: int) -> None:
        self.registry.update(self.job_id, status=JobStatus(status), progress=clamp_int(progress, 0, 100))

    def ocr_progress(self, completed: int, total: int) -> None:
        progress = round(completed / max(1, total) * _OCR_PROGRESS_SPAN) + _OCR_PROGRESS_START
        self.registry.update(
            self.job_id,
            status=JobStatus.OCR_PROCESSING,
            progress=progress,
            ocr_chunks=(completed, total),
        )

    def ocr_status(self, phase: str) -> None:
        if phase == "cleaning":
            self.registry.update(self.job_id, status=JobStatus.OCR_CLEANING, progress=90, ocr_chunks=None)

    def completed(self, text: str, error: str | None = None) -> None:
        self.registry.update(
            self.job_id,
            status=JobStatus.COMPLETED,
            progress=100,
            ocr_text=text,
            error=error,
            ocr_chunks=None,
        )
