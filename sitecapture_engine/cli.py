from __future__ import annotations

import argparse
import asyncio
from pathlib import Path

from dotenv import load_dotenv
from loguru import logger

from .capture import capture_full_page
from .config import EngineConfig, load_config
from .errors import CaptureError, MissingCredentialsError, OcrError
from .pipeline import OcrPipeline
from .types import OcrResult
from .utils import ensure_dir, setup_logging, write_json

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="sitecapture")
    p.add_argument("--config", default=str(Path("config") / "default.json"), help="Config path")
    p.add_argument("--log-level", default=None, help="Log level (default: $SITECAPTURE_LOG_LEVEL or INFO)")
    sub = p.add_subparsers(dest="command", required=True)

    cap = sub.add_parser("capture", help="Capture a URL as one full-page image")
    cap.add_argument("url", help="Page URL")
    cap.add_argument("-o", "--out", default="capture.png", help="Output PNG path")
    cap.add_argument("--ocr", action="store_true", help="Also extract the page text")
    cap.add_argument("--text-out", default=None, help="Write extracted text here instead of stdout")
    cap.add_argument("--meta", default=None, help="Write capture metadata (JSON) here")

    ocr = sub.add_parser("ocr", help="Extract text from image(s); several images are treated as ordered chunks")
    ocr.add_argument("images", nargs="+", help="Image path(s), top to bottom")
    ocr.add_argument("--out", default=None, help="Write extracted text here instead of stdout")

    serve = sub.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default=None)
    serve.add_argument("--port", type=int, default=None)

    return p


def _emit_text(result: OcrResult, out: str | None) -> None:
    for w in result.warnings:
        logger.warning(f"[OCR] {w}")
    if out:
        ensure_dir(Path(out).parent)
        Path(out).write_text(result.text, encoding="utf-8")
        print(f"text={out} chars={len(result.text)} model={result.model_identifier}")
    else:
        print(result.text)


def cmd_capture(args: argparse.Namespace, cfg: EngineConfig) -> int:
    # Fail before launching a browser when OCR cannot run anyway.
    ocr = OcrPipeline.from_env(cfg.ocr) if args.ocr else None

    try:
        result = asyncio.run(capture_full_page(args.url, cfg.capture))
    except CaptureError as e:
        print(f"capture_failed: {e}")
        return EXIT_FAILED

    out = Path(args.out)
    ensure_dir(out.parent)
    out.write_bytes(result.image.image_bytes)
    print(
        f"image={out} width={result.image.width} height={result.image.height} "
        f"fixed={result.freeze_stats.fixed} sticky={result.freeze_stats.sticky}"
    )
    print(f"final_url={result.final_url}")

    if args.meta:
        g = result.geometry
        write_json(
            args.meta,
            {
                "url": args.url,
                "final_url": result.final_url,
                "title": result.page_title,
                "image": {"path": str(out), "width": result.image.width, "height": result.image.height},
                "page": {
                    "total_height": g.total_height,
                    "viewport_height": g.viewport_height,
                    "viewport_width": g.viewport_width,
                    "scale_factor": g.scale_factor,
                },
                "frozen": {"fixed": result.freeze_stats.fixed, "sticky": result.freeze_stats.sticky},
            },
        )

    if ocr is None:
        return EXIT_OK

    try:
        ocr_result = asyncio.run(ocr.run(result.image.image_bytes))
    except OcrError as e:
        print(f"ocr_failed: {e}")
        return EXIT_FAILED
    _emit_text(ocr_result, args.text_out)
    return EXIT_OK


def cmd_ocr(args: argparse.Namespace, cfg: EngineConfig) -> int:
    paths = [Path(p) for p in args.images]
    missing = [str(p) for p in paths if not p.is_file()]
    if missing:
        print(f"missing: {', '.join(missing)}")
        return EXIT_CONFIG

    ocr = OcrPipeline.from_env(cfg.ocr)
    images = [p.read_bytes() for p in paths]
    source = images[0] if len(images) == 1 else images

    try:
        result = asyncio.run(ocr.run(source))
    except OcrError as e:
        print(f"ocr_failed: {e}")
        return EXIT_FAILED
    _emit_text(result, args.out)
    return EXIT_OK


def cmd_serve(args: argparse.Namespace, cfg: EngineConfig) -> int:
    from .server import run_server

    run_server(cfg, host=args.host, port=args.port)
    return EXIT_OK


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    load_dotenv()
    setup_logging(args.log_level)

    try:
        cfg = load_config(args.config)
    except (OSError, ValueError, TypeError) as e:
        print(f"config_error: {e}")
        return EXIT_CONFIG

    try:
        if args.command == "capture":
            return cmd_capture(args, cfg)

        if args.command == "ocr":
            return cmd_ocr(args, cfg)

        if args.command == "serve":
            return cmd_serve(args, cfg)
    except MissingCredentialsError as e:
        print(f"config_error: {e}")
        return EXIT_CONFIG

    raise SystemExit(2)


if __name__ == "__main__":
    raise SystemExit(main())
