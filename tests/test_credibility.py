"""
test_credibility.py — OCR + text-credibility enrichment.
"""

from unittest.mock import AsyncMock, patch

import pytest

from mediatrust.ai.ocr_client import OCRClient
from mediatrust.ai.reasoning_client import ReasoningClient
from mediatrust.models.analysis import CredibilityAssessment, MediaCategory
from mediatrust.services.credibility import (
    INSUFFICIENT_TEXT_REASONING,
    CredibilityAnalyzer,
)


@pytest.fixture()
def ocr():
    client = AsyncMock(spec=OCRClient)
    client.extract_text.return_value = "Real photo of the flood, no filter!"
    client.extract_text_from_frames.return_value = "Leaked footage of the minister"
    return client


@pytest.fixture()
def reasoning():
    client = AsyncMock(spec=ReasoningClient)
    client.assess_credibility.return_value = CredibilityAssessment(
        credibility_rating="Low", score=25, reasoning="Presents generated media as proof."
    )
    return client


class TestCredibilityAnalyzer:
    async def test_image_uses_image_ai_score(self, ocr, reasoning):
        analyzer = CredibilityAnalyzer(ocr=ocr, reasoning=reasoning)
        result = await analyzer.assess(MediaCategory.IMAGE, image=b"img", ai_probability=81, language="ro")

        assert result.credibility_rating == "Low"
        reasoning.assess_credibility.assert_awaited_once_with(
            "Real photo of the flood, no filter!", "Image AI Score", 81, "ro"
        )

    async def test_video_uses_lip_sync_integrity(self, ocr, reasoning):
        analyzer = CredibilityAnalyzer(ocr=ocr, reasoning=reasoning)
        await analyzer.assess(
            MediaCategory.VIDEO, frames=[b"f1", b"f2"], ai_probability=20, lip_sync_integrity=0.63
        )
        ocr.extract_text_from_frames.assert_awaited_once_with([b"f1", b"f2"])
        reasoning.assess_credibility.assert_awaited_once_with(
            "Leaked footage of the minister", "Lip-Sync Integrity", 63, "en"
        )

    async def test_video_without_lip_sync_falls_back_to_visual_score(self, ocr, reasoning):
        analyzer = CredibilityAnalyzer(ocr=ocr, reasoning=reasoning)
        await analyzer.assess(MediaCategory.VIDEO, frames=[b"f1"], ai_probability=20)
        args = reasoning.assess_credibility.await_args.args
        assert args[1:3] == ("Video AI Score", 20)

    async def test_short_text_rates_medium_without_reasoning(self, ocr, reasoning):
        ocr.extract_text.return_value = " ok "
        analyzer = CredibilityAnalyzer(ocr=ocr, reasoning=reasoning)
        result = await analyzer.assess(MediaCategory.IMAGE, image=b"img", ai_probability=10)

        assert result.credibility_rating == "Medium"
        assert result.score == 50
        assert result.reasoning == INSUFFICIENT_TEXT_REASONING
        reasoning.assess_credibility.assert_not_awaited()

    async def test_audio_is_out_of_scope(self, ocr, reasoning):
        analyzer = CredibilityAnalyzer(ocr=ocr, reasoning=reasoning)
        assert await analyzer.assess(MediaCategory.AUDIO, image=b"x") is None
        ocr.extract_text.assert_not_awaited()

    async def test_video_without_frames_is_skipped(self, ocr, reasoning):
        analyzer = CredibilityAnalyzer(ocr=ocr, reasoning=reasoning)
        assert await analyzer.assess(MediaCategory.VIDEO, frames=[]) is None

    async def test_reasoning_sentinel_is_passed_through(self, ocr, reasoning):
        sentinel = CredibilityAssessment(
            error=True, reason_code="credibility_error_unavailable", reasoning="credibility_error_unavailable"
        )
        reasoning.assess_credibility.return_value = sentinel
        analyzer = CredibilityAnalyzer(ocr=ocr, reasoning=reasoning)
        assert await analyzer.assess(MediaCategory.IMAGE, image=b"img") is sentinel


class TestOCRClient:
    async def test_mock_mode_returns_caption(self):
        text = await OCRClient(mock_mode=True).extract_text(b"anything")
        assert text.startswith("[MOCK]")

    async def test_frames_are_deduplicated_and_capped(self):
        client = OCRClient(mock_mode=False)
        outputs = {b"a": "SALE", b"b": "SALE", b"c": "", b"d": "ENDS TODAY", b"e": "never read"}
        with patch.object(client, "_recognize", side_effect=lambda frame: outputs[frame]):
            text = await client.extract_text_from_frames([b"a", b"b", b"c", b"d", b"e"], max_frames=4)
        assert text == "SALE\n\nENDS TODAY"

    async def test_unreadable_image_yields_empty_text(self):
        client = OCRClient(mock_mode=False)
        assert await client.extract_text(b"not an image") == ""

    async def test_missing_binary_yields_empty_text(self, png_1024):
        import pytesseract

        client = OCRClient(mock_mode=False)
        with patch.object(pytesseract, "image_to_string", side_effect=pytesseract.TesseractNotFoundError()):
            assert await client.extract_text(png_1024) == ""

    async def test_romanian_and_english_by_default(self, png_1024):
        import pytesseract

        client = OCRClient(mock_mode=False)
        with patch.object(pytesseract, "image_to_string", return_value=" Știri false \n") as recognize:
            assert await client.extract_text(png_1024) == "Știri false"
        assert client.languages == "ron+eng"
        assert recognize.call_args.kwargs["lang"] == "ron+eng"
