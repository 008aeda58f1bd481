"""
OCRClient — Text extraction from images and video frames via Tesseract.

pytesseract is synchronous and CPU-bound, so every recognition runs in a
worker thread (asyncio.to_thread). Frames are processed one at a time.

Graceful degradation: a missing tesseract binary or an unreadable image
yields "" with a logged warning; OCR never fails an analysis.

Mock mode (AI_MOCK_MODE=true) returns a canned caption without touching
tesseract.
"""

import asyncio
import logging
from io import BytesIO

import pytesseract
from PIL import Image

from mediatrust.core.config import settings

logger = logging.getLogger(__name__)

_MOCK_TEXT = "[MOCK] BREAKING: Shocking footage they don't want you to see. Share before it's deleted!"


class OCRClient:
    def __init__(self, languages: str | None = None, mock_mode: bool | None = None) -> None:
        self.languages = languages or settings.ocr_languages
        self.mock_mode = settings.ai_mock_mode if mock_mode is None else mock_mode

    def _recognize(self, image_bytes: bytes) -> str:
        with Image.open(BytesIO(image_bytes)) as img:
            return pytesseract.image_to_string(img.convert("RGB"), lang=self.languages).strip()

    async def extract_text(self, image_bytes: bytes) -> str:
        """Text found in one image, trimmed. "" when nothing is readable."""
        if self.mock_mode:
            return _MOCK_TEXT
        try:
            return await asyncio.to_thread(self._recognize, image_bytes)
        except pytesseract.TesseractNotFoundError:
            logger.warning("tesseract binary not found — OCR disabled")
            return ""
        except Exception as exc:
            logger.warning("OCR failed: %s", exc)
            return ""

    async def extract_text_from_frames(self, frames: list[bytes], max_frames: int | None = None) -> str:
        """
        OCR the first `max_frames` frames, drop duplicate texts, and join the
        distinct ones with blank lines in frame order.
        """
        max_frames = max_frames or settings.ocr_max_frames
        texts: list[str] = []
        for frame in frames[:max_frames]:
            text = await self.extract_text(frame)
            if text and text not in texts:
                texts.append(text)
        return "\n\n".join(texts).strip()


# Module-level singleton
ocr_client = OCRClient()
