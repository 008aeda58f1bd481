"""
credibility.py — Text-credibility enrichment for images and video.

OCR pulls whatever text the media carries (caption overlays, screenshots,
meme text), then the reasoning service rates it Low / Medium / High while
cross-referencing one corroborating signal:

  image → "Image AI Score"       (the consolidated ai_probability)
  video → "Lip-Sync Integrity"   (falls back to the visual AI score when
                                  lip-sync was not computed)

Text shorter than 5 characters is not worth a reasoning call and rates
Medium / 50. Audio is out of scope. This layer never raises: reasoning
failures come back as a sentinel assessment with error=True.
"""

import logging
from typing import Optional

from mediatrust.ai.ocr_client import OCRClient, ocr_client
from mediatrust.ai.reasoning_client import ReasoningClient, reasoning_client
from mediatrust.models.analysis import CredibilityAssessment, MediaCategory

logger = logging.getLogger(__name__)

MIN_TEXT_LENGTH = 5
INSUFFICIENT_TEXT_REASONING = "Insufficient text extracted from the media for credibility analysis."


def insufficient_text_assessment() -> CredibilityAssessment:
    return CredibilityAssessment(
        credibility_rating="Medium",
        score=50,
        reasoning=INSUFFICIENT_TEXT_REASONING,
    )


class CredibilityAnalyzer:
    def __init__(self, ocr: OCRClient | None = None, reasoning: ReasoningClient | None = None) -> None:
        self._ocr = ocr or ocr_client
        self._reasoning = reasoning or reasoning_client

    async def assess(
        self,
        media_category: MediaCategory,
        *,
        image: Optional[bytes] = None,
        frames: Optional[list[bytes]] = None,
        ai_probability: Optional[int] = None,
        lip_sync_integrity: Optional[float] = None,
        language: str = "en",
    ) -> Optional[CredibilityAssessment]:
        """Returns None for media types credibility does not apply to."""
        if media_category is MediaCategory.IMAGE and image is not None:
            text = await self._ocr.extract_text(image)
            signal_label, signal_value = "Image AI Score", ai_probability
        elif media_category is MediaCategory.VIDEO and frames:
            text = await self._ocr.extract_text_from_frames(frames)
            if lip_sync_integrity is not None:
                signal_label, signal_value = "Lip-Sync Integrity", int(round(lip_sync_integrity * 100))
            else:
                signal_label, signal_value = "Video AI Score", ai_probability
        else:
            logger.debug("Credibility skipped for %s (no source material)", media_category.value)
            return None

        text = (text or "").strip()
        if len(text) < MIN_TEXT_LENGTH:
            logger.info("Credibility: %d char(s) of text — rating Medium", len(text))
            return insufficient_text_assessment()

        logger.info("Credibility: assessing %d chars against %s=%s", len(text), signal_label, signal_value)
        return await self._reasoning.assess_credibility(text, signal_label, signal_value, language)


# Module-level singleton
credibility_analyzer = CredibilityAnalyzer()
