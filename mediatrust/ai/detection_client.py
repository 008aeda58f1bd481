"""
DetectionClient — AI-generation / deepfake scoring via the detection provider.

Three entry points, one per media shape:
  - detect_image(...)            → POST {base}/check.json            (30s)
  - detect_video_sequential(...) → POST {base}/video/check-sync.json (120s)
  - detect_audio(...)            → POST {base}/audio/check.json      (30s)

Each filters the requested capabilities down to what that endpoint supports
(image: genai/deepfake/quality/type, video: genai/deepfake, audio: genai) and
falls back to genai alone when nothing supported remains. Only the filtered
models are sent, so unrequested models cost no credits.

Every response is normalized to one shape regardless of endpoint:

    {"type": {"ai_generated": 0.81, "deepfake": 0.02, "photo": 0.9, ...},
     "quality": {"score": 0.77},
     "frames": [...],          # video only
     "media": {...}}

Native video responses report per-frame scores; those are collapsed by max.
The native endpoint can also run the temporal-consistency model (`reproach`).
Its max score is reported as `type.reproach` and stands in for
`ai_generated` when genai itself returned no score.

Graceful degradation: missing credentials, transport errors, timeouts, rate
limiting (429) and unexpected payloads all return None with a logged
warning. Nothing is retried. Upstream bodies are logged truncated, never
returned.

Mock mode (AI_MOCK_MODE=true) returns canned normalized responses without
any network traffic.
"""

import logging
from typing import Any, Iterable

import httpx

from mediatrust.core.config import settings
from mediatrust.models.analysis import Capability

logger = logging.getLogger(__name__)


IMAGE_CAPABILITIES = (Capability.GENAI, Capability.DEEPFAKE, Capability.QUALITY, Capability.TYPE)
VIDEO_CAPABILITIES = (Capability.GENAI, Capability.DEEPFAKE)
AUDIO_CAPABILITIES = (Capability.GENAI,)

# Capability → provider model name
_PROVIDER_MODELS = {
    Capability.GENAI: "genai",
    Capability.DEEPFAKE: "deepfake",
    Capability.QUALITY: "quality",
    Capability.TYPE: "type",
}

# Score keys inside the provider's `type` block that belong to a capability.
# Anything else in `type` is an attribute of the TYPE capability.
_TYPE_SCORE_KEYS = {
    "ai_generated": Capability.GENAI,
    "deepfake": Capability.DEEPFAKE,
}

# Per-frame key variants seen in video responses
_GENAI_FRAME_KEYS = ("ai_generated", "genai", "gen-ai")

# Temporal-consistency model, native video only
TEMPORAL_MODEL = "reproach"

_VIDEO_INTERVAL_SECONDS = 2


# Canned normalized responses for mock mode
_MOCK_IMAGE: dict[str, Any] = {
    "type": {"ai_generated": 0.12, "deepfake": 0.04, "photo": 0.93, "illustration": 0.07},
    "quality": {"score": 0.78},
    "media": {"id": "mock-image"},
}
_MOCK_VIDEO_FRAMES: list[dict[str, Any]] = [
    {"info": {"position": 0}, "type": {"ai_generated": 0.08, "deepfake": 0.03, "reproach": 0.06}},
    {"info": {"position": 2}, "type": {"ai_generated": 0.14, "deepfake": 0.05, "reproach": 0.09}},
    {"info": {"position": 4}, "type": {"ai_generated": 0.11, "deepfake": 0.02, "reproach": 0.07}},
]
_MOCK_AUDIO: dict[str, Any] = {
    "type": {"ai_generated": 0.18},
    "media": {"id": "mock-audio"},
}


def filter_capabilities(
    requested: Iterable[Capability],
    supported: Iterable[Capability],
) -> list[Capability]:
    """Keep the supported subset in request order; default to [genai] when empty."""
    supported = set(supported)
    filtered: list[Capability] = []
    for cap in requested:
        cap = Capability(cap)
        if cap in supported and cap not in filtered:
            filtered.append(cap)
    return filtered or [Capability.GENAI]


def _as_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _select_type_block(type_block: dict, capabilities: list[Capability]) -> dict[str, Any]:
    """Keep only the `type` keys that belong to the requested capabilities."""
    selected: dict[str, Any] = {}
    for key, value in type_block.items():
        owner = _TYPE_SCORE_KEYS.get(key, Capability.TYPE)
        if owner in capabilities:
            selected[key] = value
    return selected


def normalize_image_response(data: dict, capabilities: list[Capability]) -> dict[str, Any] | None:
    if not isinstance(data, dict) or data.get("status", "success") != "success":
        return None

    normalized: dict[str, Any] = {
        "type": _select_type_block(data.get("type") or {}, capabilities),
    }
    if Capability.QUALITY in capabilities and isinstance(data.get("quality"), dict):
        normalized["quality"] = {"score": data["quality"].get("score")}
    if data.get("media"):
        normalized["media"] = data["media"]

    if not normalized["type"] and "quality" not in normalized:
        return None
    return normalized


def normalize_video_response(
    data: dict,
    capabilities: list[Capability],
    temporal: bool = False,
) -> dict[str, Any] | None:
    """Collapse per-frame scores by max across frames."""
    if not isinstance(data, dict) or data.get("status", "success") != "success":
        return None
    frames = (data.get("data") or {}).get("frames")
    if not isinstance(frames, list) or not frames:
        return None

    max_genai: float | None = None
    max_deepfake: float | None = None
    max_reproach: float | None = None
    for frame in frames:
        frame_type = frame.get("type") or (frame.get("info") or {}).get("type") or {}
        for key in _GENAI_FRAME_KEYS:
            value = _as_float(frame_type.get(key))
            if value is not None:
                max_genai = value if max_genai is None else max(max_genai, value)
        value = _as_float(frame_type.get("deepfake"))
        if value is not None:
            max_deepfake = value if max_deepfake is None else max(max_deepfake, value)
        value = _as_float(frame_type.get(TEMPORAL_MODEL))
        if value is not None:
            max_reproach = value if max_reproach is None else max(max_reproach, value)

    type_block: dict[str, float] = {}
    if Capability.GENAI in capabilities and max_genai is not None:
        type_block["ai_generated"] = max_genai
    if Capability.DEEPFAKE in capabilities and max_deepfake is not None:
        type_block["deepfake"] = max_deepfake
    if temporal and max_reproach is not None:
        type_block[TEMPORAL_MODEL] = max_reproach
        type_block.setdefault("ai_generated", max_reproach)
    if not type_block:
        return None

    normalized: dict[str, Any] = {"type": type_block, "frames": frames}
    if data.get("media"):
        normalized["media"] = data["media"]
    return normalized


def normalize_audio_response(data: dict, capabilities: list[Capability]) -> dict[str, Any] | None:
    if not isinstance(data, dict) or data.get("status", "success") != "success":
        return None
    type_block = data.get("type") or {}
    score = _as_float(type_block.get("ai_generated"))
    if score is None:
        return None
    normalized: dict[str, Any] = {"type": {"ai_generated": score}}
    if data.get("media"):
        normalized["media"] = data["media"]
    return normalized


class DetectionClient:
    """
    Thin async wrapper around the detection provider's REST API.

    Use the module-level `detection_client` singleton. Tests can build their
    own instance with an httpx transport and explicit credentials.
    """

    def __init__(
        self,
        api_user: str | None = None,
        api_secret: str | None = None,
        base_url: str | None = None,
        mock_mode: bool | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_user = settings.detection_api_user if api_user is None else api_user
        self.api_secret = settings.detection_api_secret if api_secret is None else api_secret
        self.base_url = (base_url or settings.detection_api_url).rstrip("/")
        self.mock_mode = settings.ai_mock_mode if mock_mode is None else mock_mode
        self._transport = transport

        if self.mock_mode:
            logger.info("DetectionClient initialised in MOCK mode")
        elif not (self.api_user and self.api_secret):
            logger.warning(
                "DETECTION_API_USER / DETECTION_API_SECRET not set — "
                "detection calls will return no result."
            )

    @property
    def configured(self) -> bool:
        return bool(self.api_user and self.api_secret)

    async def _post(
        self,
        endpoint: str,
        buffer: bytes,
        filename: str,
        mime_type: str,
        fields: dict[str, str],
        timeout: float,
        label: str,
    ) -> dict | None:
        if not self.configured:
            logger.warning("%s detection skipped — provider credentials missing", label)
            return None

        data = {**fields, "api_user": self.api_user, "api_secret": self.api_secret}
        files = {"media": (filename, buffer, mime_type or "application/octet-stream")}

        async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
            try:
                response = await client.post(f"{self.base_url}/{endpoint}", data=data, files=files)
                response.raise_for_status()
                return response.json()

            except httpx.HTTPStatusError as exc:
                if exc.response.status_code == 429:
                    logger.warning("%s detection: rate limit reached", label)
                else:
                    logger.error(
                        "%s detection API error: %s — %s",
                        label,
                        exc.response.status_code,
                        exc.response.text[:200],
                    )
                return None
            except httpx.TimeoutException:
                logger.warning("%s detection timed out after %.0fs", label, timeout)
                return None
            except ValueError as exc:
                logger.error("%s detection returned a non-JSON body: %s", label, exc)
                return None
            except Exception as exc:
                logger.error("%s detection request failed: %s", label, exc)
                return None

    async def detect_image(
        self,
        buffer: bytes,
        mime_type: str,
        filename: str,
        capabilities: Iterable[Capability],
    ) -> dict[str, Any] | None:
        """
        Score a still image.

        Returns:
            Normalized response dict, or None on any failure.
        """
        caps = filter_capabilities(capabilities, IMAGE_CAPABILITIES)
        if self.mock_mode:
            return normalize_image_response(_MOCK_IMAGE, caps)

        data = await self._post(
            "check.json",
            buffer,
            filename or "image.jpg",
            mime_type,
            {"models": ",".join(_PROVIDER_MODELS[c] for c in caps)},
            settings.detection_image_timeout,
            "Image",
        )
        if data is None:
            return None
        normalized = normalize_image_response(data, caps)
        if normalized is None:
            logger.warning("Image detection: unexpected response structure (status=%s)", data.get("status"))
        return normalized

    async def detect_video_sequential(
        self,
        buffer: bytes,
        mime_type: str,
        filename: str,
        capabilities: Iterable[Capability],
        temporal: bool = False,
    ) -> dict[str, Any] | None:
        """
        Whole-video scoring; per-frame scores are collapsed by max.

        With `temporal`, the temporal-consistency model runs alongside the
        requested ones.
        """
        caps = filter_capabilities(capabilities, VIDEO_CAPABILITIES)
        models = [_PROVIDER_MODELS[c] for c in caps]
        if temporal:
            models.append(TEMPORAL_MODEL)
        if self.mock_mode:
            return normalize_video_response({"data": {"frames": _MOCK_VIDEO_FRAMES}}, caps, temporal)

        data = await self._post(
            "video/check-sync.json",
            buffer,
            filename or "video.mp4",
            mime_type or "video/mp4",
            {
                "models": ",".join(models),
                "interval": str(_VIDEO_INTERVAL_SECONDS),
            },
            settings.detection_video_timeout,
            "Video",
        )
        if data is None:
            return None
        normalized = normalize_video_response(data, caps, temporal)
        if normalized is None:
            logger.warning("Video detection: no usable frame scores in response")
        return normalized

    async def detect_audio(
        self,
        buffer: bytes,
        mime_type: str,
        filename: str,
        capabilities: Iterable[Capability] = (),
    ) -> dict[str, Any] | None:
        """Synthetic-speech scoring for audio uploads (genai only)."""
        caps = filter_capabilities(capabilities, AUDIO_CAPABILITIES)
        if self.mock_mode:
            return normalize_audio_response(_MOCK_AUDIO, caps)

        data = await self._post(
            "audio/check.json",
            buffer,
            filename or "audio.mp3",
            mime_type or "audio/mpeg",
            {"models": ",".join(_PROVIDER_MODELS[c] for c in caps)},
            settings.detection_audio_timeout,
            "Audio",
        )
        if data is None:
            return None
        normalized = normalize_audio_response(data, caps)
        if normalized is None:
            logger.warning("Audio detection: response carried no ai_generated score")
        return normalized


# Module-level singleton
detection_client = DetectionClient()
