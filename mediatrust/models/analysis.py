"""
analysis.py — Pydantic models for the media analysis API.

Per-capability results are a closed tagged union: every cached or freshly
fetched result carries a `capability` discriminator, so the cache, the
consolidation engine and the API response all agree on one shape per
capability instead of reading ad hoc keys.
"""

import logging
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import AfterValidator, BaseModel, Field, TypeAdapter, ValidationError

logger = logging.getLogger(__name__)


# ── Enumerations ────────────────────────────────────────────────────────────────

class Capability(str, Enum):
    GENAI = "genai"
    DEEPFAKE = "deepfake"
    QUALITY = "quality"
    TYPE = "type"
    VOICE_CLONE = "voice_clone"
    LIP_SYNC = "lip_sync"


# Capabilities answered by the external detection provider
DETECTION_CAPABILITIES = frozenset(
    {Capability.GENAI, Capability.DEEPFAKE, Capability.QUALITY, Capability.TYPE}
)


class MediaCategory(str, Enum):
    IMAGE = "image"
    AUDIO = "audio"
    VIDEO = "video"


class VideoEngine(str, Enum):
    FRAME_BASED = "frame_based"
    NATIVE_VIDEO = "native_video"


# ── Per-capability results (tagged union) ─────────────────────────────────────

class GenAIResult(BaseModel):
    capability: Literal["genai"] = "genai"
    probability: float = Field(..., ge=0.0, le=1.0)  # 1.0 = definitely AI-generated


class DeepfakeResult(BaseModel):
    capability: Literal["deepfake"] = "deepfake"
    probability: float = Field(..., ge=0.0, le=1.0)


class QualityResult(BaseModel):
    capability: Literal["quality"] = "quality"
    score: float = Field(..., ge=0.0, le=1.0)  # low = poor quality


class TypeResult(BaseModel):
    """Open attribute map (photo/illustration, camera/software tags)."""

    capability: Literal["type"] = "type"
    attributes: dict[str, Any] = Field(default_factory=dict)


class VoiceCloneResult(BaseModel):
    capability: Literal["voice_clone"] = "voice_clone"
    reasoning: str
    source: str = "reasoning_service"


class LipSyncResult(BaseModel):
    capability: Literal["lip_sync"] = "lip_sync"
    integrity: float = Field(..., ge=0.0, le=1.0)  # 1.0 = audio/video in sync


CapabilityResult = Annotated[
    Union[GenAIResult, DeepfakeResult, QualityResult, TypeResult, VoiceCloneResult, LipSyncResult],
    Field(discriminator="capability"),
]


def _check_capability_tags(results: dict[Capability, Any]) -> dict[Capability, Any]:
    """Every result must be stored under the capability it is tagged with."""
    for capability, result in results.items():
        if result.capability != Capability(capability).value:
            raise ValueError(
                f"result tagged {result.capability!r} stored under {Capability(capability).value!r}"
            )
    return results


# {capability: result} map whose keys agree with the result tags
ResultMap = Annotated[dict[Capability, CapabilityResult], AfterValidator(_check_capability_tags)]

_result_adapter = TypeAdapter(CapabilityResult)
_result_map_adapter = TypeAdapter(dict[Capability, CapabilityResult])


def parse_result_map(raw: dict | None) -> dict[Capability, Any]:
    """
    Validate a stored {capability: result} mapping entry by entry.

    Entries that fail validation, or whose tag disagrees with their key, are
    dropped with a warning so one bad entry does not discard the rest.
    """
    if not raw:
        return {}
    results: dict[Capability, Any] = {}
    for key, value in raw.items():
        try:
            capability = Capability(key)
            result = _result_adapter.validate_python(value)
        except (ValueError, ValidationError) as exc:
            logger.warning("Dropping unreadable cached result %r: %s", key, exc)
            continue
        if result.capability != capability.value:
            logger.warning(
                "Dropping cached result stored under %r but tagged %r", capability.value, result.capability
            )
            continue
        results[capability] = result
    return results


def dump_result_map(results: dict[Capability, Any]) -> dict[str, dict]:
    """Serialise a result map to plain JSON-compatible dicts (for MongoDB)."""
    return _result_map_adapter.dump_python(results, mode="json")


# ── Cache entry ─────────────────────────────────────────────────────────────────

class ResultCacheEntry(BaseModel):
    """Accumulated per-capability results for one content hash."""

    content_hash: str
    results: ResultMap = Field(default_factory=dict)
    requested_capabilities: list[Capability] = Field(default_factory=list)
    updated_at: datetime


# ── Result sub-models ───────────────────────────────────────────────────────────

class LocalSignals(BaseModel):
    """Image-only heuristics derived from embedded capture metadata."""

    missing_camera_metadata: bool = False
    suspicious_resolution: Optional[str] = None   # e.g. "1024x1024"
    matched_generator_tags: list[str] = Field(default_factory=list)


class FileMetadata(BaseModel):
    type: str                                     # effective MIME type
    extension: str
    size: int
    size_formatted: str
    created_at: Optional[str] = None              # EXIF capture timestamp
    resolution: Optional[str] = None
    frames_analyzed: Optional[int] = None
    analysis_method: Optional[str] = None


class CredibilityAssessment(BaseModel):
    """
    Text-credibility enrichment. On upstream failure `error` is True and
    `reason_code` names the cause; rating and score are then None.
    """

    credibility_rating: Optional[Literal["Low", "Medium", "High"]] = None
    score: Optional[int] = None                   # 25 / 50 / 75
    reasoning: str = ""
    red_flags: list[str] = Field(default_factory=list)
    error: bool = False
    reason_code: Optional[str] = None


class ConsolidatedAnalysis(BaseModel):
    """Final output of one analysis run."""

    fake_probability: int = Field(..., ge=0, le=100)
    ai_probability: int = Field(..., ge=0, le=100)
    media_category: MediaCategory
    file_metadata: FileMetadata
    local_signals: LocalSignals
    requested_capabilities: list[Capability]
    per_capability_scores: ResultMap = Field(default_factory=dict)
    raw_detection_response: Optional[dict[str, Any]] = None
    capabilities_fetched_this_call: Optional[list[Capability]] = None
    credibility_assessment: Optional[CredibilityAssessment] = None
    expert_summary: Optional[str] = None
    content_hash: str
    cached: bool = False                          # True if any requested result came from cache


# ── Request model ───────────────────────────────────────────────────────────────

class AnalyzeRequest(BaseModel):
    """Base64-encoded media submitted for analysis."""

    media_b64: str = Field(..., min_length=1, description="Base64-encoded image, audio or video")
    filename: str = Field(default="upload.bin", description="Original filename (extension used as a type hint)")
    mime_type: str = Field(default="", description="Declared MIME type from the uploader")
    capabilities: list[Capability] = Field(default_factory=list, description="Requested capabilities; defaults to genai")
    cached_results: Optional[ResultMap] = Field(
        default=None, description="Previously cached per-capability results to reuse"
    )
    elite: bool = Field(default=False, description="Elite tier: native video engine, lip-sync, voice-clone, summaries")
    video_engine: VideoEngine = VideoEngine.FRAME_BASED
    video_capabilities: list[Capability] = Field(
        default_factory=list, description="Capabilities sent to the whole-video engine (empty = all missing)"
    )
    temporal_consistency: bool = Field(
        default=False, description="Also run the temporal-consistency model on the whole-video engine"
    )
    language: str = Field(default="en", description="Response language for reasoning output")
    credibility_check: bool = Field(default=False, description="Run OCR + text-credibility assessment (elite)")
