from __future__ import annotations

import os
import re
from dataclasses import dataclass
from typing import Any, Protocol

from loguru import logger

from .config import OcrConfig
from .errors import MissingCredentialsError

EXTRACTION_PROMPT = """Extract ALL text visible in this screenshot.

Also extract text that is rendered inside images:
- banner and advertisement images
- logos
- infographics and diagrams
- captions overlaid on photos
- buttons and icons
- decorative catch copy and headings

Requirements:
- Extract every visible text, whether it is HTML text or part of an image.
- Keep reading order (top to bottom, left to right).
- Separate paragraphs and sections with a blank line.
- For tables, output the cell texts row by row.
- Output only the extracted text, with no explanation or preamble.
- If there is no text at all, output nothing.

Output format: plain text only (empty if there is no text)."""

REFLOW_PROMPT = """Tidy up the line breaks of the following OCR text.

Hard constraints:
- NEVER change the order of the text (keep the top-to-bottom order exactly).
- NEVER delete, omit or summarize any content.
- NEVER restructure or reorganize the text.

Required edits:
1. Join fragments: merge lines that belong to the same sentence or phrase into one line.
   - e.g. "For those who are\\nslightly overweight" -> "For those who are slightly overweight"
   - e.g. "1,000 yen\\nOFF" -> "1,000 yen OFF"
2. Paragraph breaks: insert a blank line between distinct sections or topics
   (heading and body, different products, notes and body text).
3. Typos: fix only clear OCR misrecognitions.

Output format:
- Plain text.
- One sentence or phrase per line.
- Sections separated by a blank line.
- Output all of the text (no deletions).

Input text:
{text}

Tidied text:"""

# Boilerplate replies meaning "there is no text". Exact phrases, not similarity.
NO_TEXT_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"この画像にはテキストが含まれていません"),
    re.compile(r"テキストは.*ありません"),
    re.compile(r"テキストが存在しません"),
    re.compile(r"テキストを抽出できません"),
    re.compile(r"画像にテキストは見つかりません"),
    re.compile(r"^特にありません"),
    re.compile(r"^なし$"),
    re.compile(r"^no text (?:found|detected|present)\.?$", re.IGNORECASE),
    re.compile(r"^(?:this|the) image (?:does not contain|contains no) (?:any )?text\.?$", re.IGNORECASE),
    re.compile(r"^there is no (?:visible )?text(?: in (?:this|the) image)?\.?$", re.IGNORECASE),
)


def normalize_no_text(text: str) -> str:
    """Map "no text found" boilerplate to the empty string."""
    text = (text or "").strip()
    if any(p.search(text) for p in NO_TEXT_PATTERNS):
        return ""
    return text


def guess_mime_type(image_bytes: bytes) -> str:
    if image_bytes[:3] == b"\xff\xd8\xff":
        return "image/jpeg"
    if image_bytes[:4] == b"RIFF" and image_bytes[8:12] == b"WEBP":
        return "image/webp"
    return "image/png"


class VisionBackend(Protocol):
    """Opaque text backend: image bytes in, text out. Errors carry retry signals."""

    model: str

    async def extract_text(self, image_bytes: bytes, prompt: str) -> str: ...

    async def generate_text(self, prompt: str) -> str: ...


@dataclass
class GeminiVisionBackend:
    api_key: str
    model: str
    extract_temperature: float = 0.1
    reflow_temperature: float = 0.2
    max_output_tokens: int = 8192
    _client: Any | None = None

    @classmethod
    def from_env(cls, cfg: OcrConfig) -> "GeminiVisionBackend":
        """Build a backend from $GEMINI_API_KEY, failing fast when it is missing."""
        api_key = os.environ.get("GEMINI_API_KEY", "").strip()
        if not api_key:
            raise MissingCredentialsError("GEMINI_API_KEY is not set. Check your .env file.")
        return cls(
            api_key=api_key,
            model=cfg.model,
            extract_temperature=cfg.extract_temperature,
            reflow_temperature=cfg.reflow_temperature,
            max_output_tokens=cfg.max_output_tokens,
        )

    def _get_client(self) -> Any:
        if self._client is None:
            from google import genai

            self._client = genai.Client(api_key=self.api_key)
        return self._client

    async def _generate(self, contents: list[Any], temperature: float) -> str:
        from google.genai import types

        response = await self._get_client().aio.models.generate_content(
            model=self.model,
            contents=contents,
            config=types.GenerateContentConfig(
                temperature=temperature,
                max_output_tokens=self.max_output_tokens,
            ),
        )
        return (response.text or "").strip()

    async def extract_text(self, image_bytes: bytes, prompt: str) -> str:
        from google.genai import types

        part = types.Part.from_bytes(data=image_bytes, mime_type=guess_mime_type(image_bytes))
        return await self._generate([part, prompt], self.extract_temperature)

    async def generate_text(self, prompt: str) -> str:
        return await self._generate([prompt], self.reflow_temperature)


async def extract_chunk_text(backend: VisionBackend, image_bytes: bytes) -> str:
    """One extraction call; boilerplate "no text" replies become ``""``."""
    raw = await backend.extract_text(image_bytes, EXTRACTION_PROMPT)
    text = normalize_no_text(raw)
    if raw.strip() and not text:
        logger.debug("[OCR] Dropped no-text boilerplate reply")
    return text


async def reflow_text(backend: VisionBackend, text: str) -> str:
    return (await backend.generate_text(REFLOW_PROMPT.format(text=text))).strip()
