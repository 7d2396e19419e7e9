from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

from .utils import load_json

DEFAULT_OCR_MODEL = "gemini-2.0-flash"


@dataclass(frozen=True)
class CaptureConfig:
    device: str = "iPhone 13 Pro"
    device_scale_factor: float = 3.0
    navigation_timeout_ms: int = 120_000
    screenshot_timeout_ms: int = 60_000
    post_load_wait_ms: int = 5_000
    scroll_rounds: int = 50
    scroll_wait_ms: int = 300
    settle_wait_ms: int = 1_000
    segment_settle_ms: int = 100
    referer: str = "https://www.google.com/"
    accept_language: str = "ja-JP,ja;q=0.9,en-US;q=0.8,en;q=0.7"


@dataclass(frozen=True)
class OcrConfig:
    model: str = DEFAULT_OCR_MODEL
    max_chunk_height: int = 4000
    concurrency: int = 3
    max_retries: int = 3
    retry_base_delay_s: float = 2.0
    extract_temperature: float = 0.1
    reflow_temperature: float = 0.2
    max_output_tokens: int = 8192


@dataclass(frozen=True)
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 3100
    workspace: str = "./workspace"
    job_retention_s: float = 3600.0


@dataclass(frozen=True)
class EngineConfig:
    capture: CaptureConfig = field(default_factory=CaptureConfig)
    ocr: OcrConfig = field(default_factory=OcrConfig)
    server: ServerConfig = field(default_factory=ServerConfig)


def _section(cls: type, data: dict[str, Any] | None) -> Any:
    known = {f.name for f in fields(cls)}
    return cls(**{k: v for k, v in (data or {}).items() if k in known})


def load_config(config_path: str | Path | None = None) -> EngineConfig:
    """Build the engine config from an optional JSON file plus environment overrides.

    Missing file sections fall back to the dataclass defaults; unknown keys are ignored.
    """
    data: dict[str, Any] = {}
    if config_path is not None and Path(config_path).exists():
        data = load_json(config_path)

    ocr_data = dict(data.get("ocr", {}))
    if os.environ.get("GEMINI_OCR_MODEL"):
        ocr_data["model"] = os.environ["GEMINI_OCR_MODEL"]

    server_data = dict(data.get("server", {}))
    if os.environ.get("SITECAPTURE_WORKSPACE"):
        server_data["workspace"] = os.environ["SITECAPTURE_WORKSPACE"]
    if os.environ.get("PORT"):
        server_data["port"] = int(os.environ["PORT"])

    return EngineConfig(
        capture=_section(CaptureConfig, data.get("capture")),
        ocr=_section(OcrConfig, ocr_data),
        server=_section(ServerConfig, server_data),
    )
