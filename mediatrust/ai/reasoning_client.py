"""
reasoning_client.py — Natural-language interpretation of analysis results.

Three calls, all on top of GeminiClient and bounded by REASONING_TIMEOUT:

  summarize()           2-sentence executive summary of a finished analysis.
                        When both a visual AI score and lip-sync integrity are
                        present the prompt asks the model to explain the gap.
  assess_voice_clone()  1–2 sentences on whether audio metadata + lip-sync
                        suggest a cloned voice.
  assess_credibility()  Credibility rating of text found in the media,
                        cross-referenced with a corroborating signal.

Failure policy: summarize / assess_voice_clone return None; assess_credibility
returns a CredibilityAssessment with error=True and a reason code
(credibility_error_rate_limit / credibility_error_unavailable). Nothing here
raises to the caller.
"""

import asyncio
import json
import logging
import re
from typing import Any, Optional

from google.api_core import exceptions as google_exceptions

from mediatrust.ai.gemini_client import GeminiClient, GeminiModel, gemini_client
from mediatrust.core.config import settings
from mediatrust.models.analysis import CredibilityAssessment
from mediatrust.services.track_extractor import AudioMetadata

logger = logging.getLogger(__name__)

LANG_NAMES = {
    "ro": "Romanian",
    "en": "English",
    "de": "German",
    "fr": "French",
    "es": "Spanish",
    "it": "Italian",
    "pt": "Portuguese",
}

CREDIBILITY_SCORES = {"Low": 25, "Medium": 50, "High": 75}
REASON_RATE_LIMIT = "credibility_error_rate_limit"
REASON_UNAVAILABLE = "credibility_error_unavailable"

_RATE_LIMITED = "rate_limited"
_UNAVAILABLE = "unavailable"

_MAX_CREDIBILITY_TEXT = 4000


# ── Prompts ───────────────────────────────────────────────────────────────────

_ANALYST_SYSTEM = """\
You are an expert media-forensics analyst. Be clinical and professional.
When explaining lip-sync vs. visual AI discrepancies: a lower lip-sync score
often indicates minor lag or compression artefacts, not necessarily a deepfake.
Provide concise 2-sentence explanations."""

_SUMMARY_PROMPT = """\
Analyze these scan results and provide a 2-sentence executive summary:

{data}

IMPORTANT: Respond ONLY in {language}."""

_DISCREPANCY_PROMPT = """\
Why is the Lip-Sync at {lip_sync_pct}% while visual AI is at {ai_pct}%? \
Explain in 2 concise sentences. Use the full JSON below for context:

{data}

IMPORTANT: Respond ONLY in {language}."""

_VOICE_CLONE_SYSTEM = """\
You are an expert media-forensics analyst. Assess whether audio metadata and
lip-sync data suggest synthetic voice cloning. Be concise: 1-2 sentences.
State if there is suspicion of voice cloning (yes/no) and why."""

_VOICE_CLONE_PROMPT = """\
Based on:
- Lip-Sync score: {lip_sync_pct}
- Has audio track: {has_audio}
{metadata}

Is there suspicion of synthetic voice cloning? Answer in 1-2 concise sentences.

IMPORTANT: Respond ONLY in {language}."""

_CREDIBILITY_SYSTEM = """\
You are an expert fact-checker analysing social media posts (screenshots,
memes, photo posts, video captions) for:
1. Emotional manipulation (loaded language, fear-mongering, outrage bait)
2. Out-of-context media (text claiming something the media may not support)
3. Logical fallacies (ad hominem, false dilemma, appeal to emotion, etc.)
4. Credibility signals vs. AI-generation indicators

Cross-reference the text with the corroborating signal: if the media is likely
AI-generated but the text presents it as a "real photo" or "proof", that is a
red flag. Respond with the structured format requested."""

_CREDIBILITY_PROMPT = """\
Analyze this social media post.

Text: {text}

{signal_label}: {signal_value}

Cross-reference for emotional manipulation, out-of-context media, and logical fallacies.

Respond in this EXACT format:

Credibility Rating: [Low|Medium|High]
Red Flags:
- [red flag 1]
- [red flag 2]
(omit this section if none)
Analysis: [2-3 sentences explaining your assessment]

IMPORTANT: Respond ONLY in {language}."""


# ── Parsing helpers ───────────────────────────────────────────────────────────

def language_name(code: Optional[str]) -> str:
    """Map "ro" / "pt-BR" to a language name; unknown codes pass through."""
    if not code:
        return "English"
    return LANG_NAMES.get(code.split("-")[0].lower(), code)


def _pct(value: Optional[float], scale: float = 1.0) -> Optional[int]:
    return None if value is None else int(round(float(value) * scale))


def parse_credibility(text: str) -> CredibilityAssessment:
    """Parse the Credibility Rating / Red Flags / Analysis response format."""
    rating_m = re.search(r"Credibility Rating:\s*(Low|Medium|High)", text, re.IGNORECASE)
    rating = rating_m.group(1).capitalize() if rating_m else "Medium"

    red_flags: list[str] = []
    flags_m = re.search(r"Red Flags:\s*\n(.*?)(?=Analysis:|$)", text, re.DOTALL | re.IGNORECASE)
    if flags_m:
        red_flags = [
            line.lstrip("-•* ").strip()
            for line in flags_m.group(1).strip().splitlines()
            if line.strip()
        ]

    analysis_m = re.search(r"Analysis:\s*(.+)", text, re.DOTALL | re.IGNORECASE)
    reasoning = analysis_m.group(1).strip() if analysis_m else text.strip()

    return CredibilityAssessment(
        credibility_rating=rating,
        score=CREDIBILITY_SCORES[rating],
        reasoning=reasoning,
        red_flags=red_flags,
    )


# ── Client ────────────────────────────────────────────────────────────────────

class ReasoningClient:
    def __init__(self, gemini: GeminiClient | None = None, timeout: float | None = None) -> None:
        self._gemini = gemini or gemini_client
        self.timeout = timeout or settings.reasoning_timeout

    async def _generate(
        self,
        label: str,
        prompt: str,
        response_key: str,
        system_instruction: str,
        model: GeminiModel = GeminiModel.FLASH,
    ) -> tuple[Optional[str], Optional[str]]:
        """Returns (text, None) on success, (None, failure kind) otherwise."""
        try:
            text = await asyncio.wait_for(
                self._gemini.generate(
                    prompt,
                    model=model,
                    response_key=response_key,
                    system_instruction=system_instruction,
                ),
                timeout=self.timeout,
            )
        except google_exceptions.ResourceExhausted:
            logger.warning("Reasoning (%s): rate limit reached", label)
            return None, _RATE_LIMITED
        except asyncio.TimeoutError:
            logger.warning("Reasoning (%s) timed out after %.0fs", label, self.timeout)
            return None, _UNAVAILABLE
        except Exception as exc:
            logger.error("Reasoning (%s) failed: %s", label, exc)
            return None, _UNAVAILABLE

        text = (text or "").strip()
        if not text:
            logger.warning("Reasoning (%s) returned an empty response", label)
            return None, _UNAVAILABLE
        return text, None

    async def summarize(
        self,
        *,
        raw_detection: Optional[dict[str, Any]],
        capability_scores: dict[str, Any],
        metadata: dict[str, Any],
        fake_probability: int,
        status: str,
        ai_probability: Optional[int] = None,
        lip_sync_integrity: Optional[float] = None,
        language: str = "en",
    ) -> Optional[str]:
        """Executive summary of a finished analysis, or None on failure."""
        data = json.dumps(
            {
                "detection": raw_detection,
                "capability_scores": capability_scores,
                "metadata": metadata,
                "fake_probability": fake_probability,
                "status": status,
            },
            indent=2,
            default=str,
        )
        lang = language_name(language)

        if ai_probability is not None and lip_sync_integrity is not None:
            prompt = _DISCREPANCY_PROMPT.format(
                lip_sync_pct=_pct(lip_sync_integrity, 100),
                ai_pct=ai_probability,
                data=data,
                language=lang,
            )
            response_key = "lip_sync_discrepancy"
        else:
            prompt = _SUMMARY_PROMPT.format(data=data, language=lang)
            response_key = "executive_summary"

        text, _ = await self._generate("summary", prompt, response_key, _ANALYST_SYSTEM)
        return text

    async def assess_voice_clone(
        self,
        audio_metadata: Optional[AudioMetadata],
        lip_sync_integrity: Optional[float],
        has_audio: bool = True,
        language: str = "en",
    ) -> Optional[str]:
        """Voice-clone suspicion in 1–2 sentences, or None on failure."""
        lip_sync_pct = _pct(lip_sync_integrity, 100)
        prompt = _VOICE_CLONE_PROMPT.format(
            lip_sync_pct=f"{lip_sync_pct}%" if lip_sync_pct is not None else "N/A",
            has_audio=has_audio,
            metadata=audio_metadata.as_prompt_block() if audio_metadata else "Audio metadata: not analyzed",
            language=language_name(language),
        )
        text, _ = await self._generate("voice clone", prompt, "voice_clone", _VOICE_CLONE_SYSTEM)
        return text

    async def assess_credibility(
        self,
        text: str,
        signal_label: str,
        signal_value: Optional[int],
        language: str = "en",
    ) -> CredibilityAssessment:
        """
        Rate the credibility of extracted text.

        Args:
            text:          OCR text from the media.
            signal_label:  Name of the corroborating signal, e.g. "Image AI Score".
            signal_value:  That signal as a 0–100 percentage, or None.
            language:      Response language code.
        """
        prompt = _CREDIBILITY_PROMPT.format(
            text=text[:_MAX_CREDIBILITY_TEXT],
            signal_label=signal_label,
            signal_value=f"{signal_value}%" if signal_value is not None else "N/A",
            language=language_name(language),
        )
        response, failure = await self._generate(
            "credibility", prompt, "credibility", _CREDIBILITY_SYSTEM, model=GeminiModel.PRO
        )
        if response is None:
            reason = REASON_RATE_LIMIT if failure == _RATE_LIMITED else REASON_UNAVAILABLE
            return CredibilityAssessment(error=True, reason_code=reason, reasoning=reason)
        return parse_credibility(response)


# Module-level singleton
reasoning_client = ReasoningClient()
