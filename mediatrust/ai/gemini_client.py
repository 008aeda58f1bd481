"""
GeminiClient — Async wrapper around Google Generative AI SDK.

Backs every reasoning call the analysis pipeline makes (executive summary,
voice-clone assessment, text credibility). Two models:
  - GeminiModel.PRO   → gemini-1.5-pro   (longer, structured answers)
  - GeminiModel.FLASH → gemini-1.5-flash (short interpretations)

Two runtime modes (set via AI_MOCK_MODE env var):
  - MOCK mode (default): returns deterministic canned responses.
    Use for tests and local dev without API keys.
  - REAL mode: makes actual Gemini API calls.
    Requires GEMINI_API_KEY to be set.

Extension pattern: add new mock response keys to _MOCK_RESPONSES and
reference them in generate() calls via the response_key parameter.
"""

import logging
from enum import Enum
from typing import Any

from mediatrust.core.config import settings

logger = logging.getLogger(__name__)


class GeminiModel(str, Enum):
    PRO = "gemini-1.5-pro"
    FLASH = "gemini-1.5-flash"


# Canned responses for mock mode.
# Keys map to response_key arguments in generate() calls.
_MOCK_RESPONSES: dict[str, str] = {
    "default": (
        "[MOCK] This is a placeholder Gemini response. "
        "Set AI_MOCK_MODE=false and provide GEMINI_API_KEY for real responses."
    ),
    "executive_summary": (
        "[MOCK] Detection scores are low across every requested capability and no "
        "generator signatures were found. The media is most likely authentic."
    ),
    "lip_sync_discrepancy": (
        "[MOCK] The lower lip-sync score most likely reflects compression or a re-encoded "
        "audio track rather than manipulation. Visual AI indicators remain low."
    ),
    "voice_clone": (
        "[MOCK] No suspicion of voice cloning: bitrate, sample rate and silence "
        "pattern are consistent with a natural recording."
    ),
    "credibility": (
        "Credibility Rating: Medium\n"
        "Red Flags:\n"
        "- [MOCK] Claim is presented without a source\n"
        "Analysis: [MOCK] The text makes an unsourced claim but uses neutral language. "
        "The image score does not contradict the caption."
    ),
}


class GeminiClient:
    """
    Central Gemini interface for the analysis backend.

    Single place for model swaps, cost logging and mock injection.
    Don't instantiate per-request; use the module-level `gemini_client` singleton.
    """

    def __init__(self) -> None:
        self.mock_mode = settings.ai_mock_mode

        if not self.mock_mode:
            if not settings.gemini_api_key:
                logger.warning(
                    "GEMINI_API_KEY not set — falling back to mock mode. "
                    "Set AI_MOCK_MODE=true to silence this warning."
                )
                self.mock_mode = True
            else:
                # Lazy import: only pull in the heavy SDK if we're in real mode
                import google.generativeai as genai  # noqa: PLC0415

                genai.configure(api_key=settings.gemini_api_key)
                self._genai = genai

        if self.mock_mode:
            logger.info("GeminiClient initialised in MOCK mode")
        else:
            logger.info("GeminiClient initialised in REAL mode (model: gemini-1.5-*)")

    async def generate(
        self,
        prompt: str,
        model: GeminiModel = GeminiModel.PRO,
        response_key: str = "default",
        system_instruction: str | None = None,
        **generation_kwargs: Any,
    ) -> str:
        """
        Generate text from a Gemini model.

        Args:
            prompt:             The full prompt string.
            model:              Which Gemini model to use.
            response_key:       Mock response key (ignored in real mode).
            system_instruction: Optional system prompt for the model.
            **generation_kwargs: Passed through to GenerativeModel.generate_content_async().

        Returns:
            Generated text string.

        Raises:
            Exception: Propagates Gemini SDK errors in real mode.
        """
        if self.mock_mode:
            return _MOCK_RESPONSES.get(response_key, _MOCK_RESPONSES["default"])

        try:
            gemini_model = self._genai.GenerativeModel(model.value, system_instruction=system_instruction)
            response = await gemini_model.generate_content_async(prompt, **generation_kwargs)
            return response.text
        except Exception as exc:
            logger.error("Gemini API error (model=%s): %s", model.value, exc)
            raise


# Module-level singleton: import and use this everywhere
gemini_client = GeminiClient()
