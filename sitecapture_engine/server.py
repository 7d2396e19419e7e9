"""HTTP API for capture jobs (FastAPI).

  POST /api/capture            {"url": ...} -> {"jobId": ...}
  GET  /api/status/{job_id}    job progress
  GET  /api/download/{job_id}  captured image (JPEG, PNG fallback)
  GET  /api/preview/{job_id}   400px-wide PNG thumbnail
  GET  /api/ocr/{job_id}       {"text": ...}
"""

from __future__ import annotations

import asyncio
import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, Response
from loguru import logger
from pydantic import BaseModel

from .config import EngineConfig, load_config
from .job import JobProgressReporter, JobRegistry
from .pipeline import CapturePipeline
from .store import ImageStore


class CaptureRequest(BaseModel):
    url: Optional[str] = None


def create_app(
    cfg: EngineConfig | None = None,
    *,
    registry: JobRegistry | None = None,
    store: ImageStore | None = None,
    pipeline: CapturePipeline | None = None,
) -> FastAPI:
    cfg = cfg or load_config()
    registry = registry or JobRegistry(retention_s=cfg.server.job_retention_s)
    store = store or ImageStore(Path(cfg.server.workspace) / "captures")
    pipeline = pipeline or CapturePipeline(cfg=cfg, store=store)

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        if not os.environ.get("GEMINI_API_KEY"):
            logger.warning("GEMINI_API_KEY is not set. OCR will not work.")
        yield
        await registry.shutdown()

    app = FastAPI(title="Site Capture API", version="1.0", lifespan=lifespan)
    app.state.registry = registry
    app.state.store = store

    @app.exception_handler(HTTPException)
    async def error_body(_request: Request, exc: HTTPException) -> JSONResponse:
        # Clients read failures from an "error" key.
        return JSONResponse({"error": exc.detail}, status_code=exc.status_code, headers=exc.headers)

    @app.post("/api/capture")
    async def capture(req: CaptureRequest) -> JSONResponse:
        url = (req.url or "").strip()
        if not url:
            raise HTTPException(400, "URL is required")

        job = registry.create()
        registry.spawn(job.job_id, pipeline.run(job.job_id, url, JobProgressReporter(registry, job.job_id)))
        return JSONResponse({"jobId": job.job_id})

    @app.get("/api/status/{job_id}")
    async def status(job_id: str) -> JSONResponse:
        job = registry.get(job_id)
        if job is None:
            raise HTTPException(404, "Job not found")
        return JSONResponse(job.to_dict())

    @app.get("/api/download/{job_id}")
    async def download(job_id: str) -> Response:
        found = await asyncio.to_thread(store.load, job_id)
        if found is None:
            raise HTTPException(404, "Image not found")
        data, fmt = found
        return Response(
            content=data,
            media_type="image/jpeg" if fmt == "jpg" else "image/png",
            headers={"Content-Disposition": f"attachment; filename=capture-{job_id}.{fmt}"},
        )

    @app.get("/api/preview/{job_id}")
    async def preview(job_id: str) -> Response:
        thumb = await asyncio.to_thread(store.thumbnail, job_id)
        if thumb is None:
            raise HTTPException(404, "Image not found")
        return Response(content=thumb, media_type="image/png")

    @app.get("/api/ocr/{job_id}")
    async def ocr_text(job_id: str) -> JSONResponse:
        job = registry.get(job_id)
        if job is None:
            raise HTTPException(404, "Job not found")
        return JSONResponse({"text": job.ocr_text or ""})

    return app


def run_server(cfg: EngineConfig, host: str | None = None, port: int | None = None) -> None:
    import uvicorn

    host = host or cfg.server.host
    port = port or cfg.server.port
    logger.info(f"Site Capture API running at http://{host}:{port}")
    uvicorn.run(create_app(cfg), host=host, port=port, log_level="info")
