"""
consolidation.py — Reduce per-capability results to one fake probability.

Pure functions, no I/O. The formula is a max-of-weighted-signals heuristic,
not a calibrated model:

    genai / deepfake  → contribution = probability
    quality           → contribution = 0.3 if score < 0.4 else 0
    ai_probability    = round(100 × max(contributions))

    video with lip-sync integrity:
        fake_probability = max(ai_probability, round(100 × (1 − integrity)))

Each capability tag has its own extractor (raw provider response → typed
result) and its own contribution function; there are no stringly-typed
fallbacks between tags.

When no detector is available at all (audio/other media, nothing cached),
fallback_probability() returns a bounded size/extension heuristic with a
random jitter term, so it is non-deterministic.
"""

from __future__ import annotations

import math
import random
from typing import Any, Callable, Iterable

from mediatrust.models.analysis import (
    Capability,
    DeepfakeResult,
    GenAIResult,
    MediaCategory,
    QualityResult,
    TypeResult,
)

# ── Weights ────────────────────────────────────────────────────────────────────

_QUALITY_THRESHOLD = 0.4
_QUALITY_CONTRIBUTION = 0.3

# Fallback heuristic (no detector available)
_FALLBACK_BASELINE = 20
_FALLBACK_BASE_SCORE = 15
_FALLBACK_CAP = 95
_FALLBACK_JITTER_MAX = 11

# Keys inside the normalized `type` block that are scores, not attributes
_TYPE_SCORE_KEYS = ("ai_generated", "deepfake", "reproach")


def _round(value: float) -> int:
    """Round half up (round() in Python is banker's rounding)."""
    return int(math.floor(value + 0.5))


def _clamp_pct(value: float) -> int:
    return max(0, min(100, _round(value)))


def _probability(value: Any) -> float | None:
    """Coerce a provider value to a probability in [0, 1], or None if unusable."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or not 0.0 <= number <= 1.0:
        return None
    return number


# ── Extractors: normalized detection response → typed result ──────────────────

def _extract_genai(raw: dict) -> GenAIResult | None:
    value = _probability((raw.get("type") or {}).get("ai_generated"))
    return GenAIResult(probability=value) if value is not None else None


def _extract_deepfake(raw: dict) -> DeepfakeResult | None:
    value = _probability((raw.get("type") or {}).get("deepfake"))
    return DeepfakeResult(probability=value) if value is not None else None


def _extract_quality(raw: dict) -> QualityResult | None:
    quality = raw.get("quality")
    value = _probability(quality.get("score") if isinstance(quality, dict) else quality)
    return QualityResult(score=value) if value is not None else None


def _extract_type(raw: dict) -> TypeResult | None:
    attributes = {
        key: value
        for key, value in (raw.get("type") or {}).items()
        if key not in _TYPE_SCORE_KEYS
    }
    return TypeResult(attributes=attributes) if attributes else None


_EXTRACTORS: dict[Capability, Callable[[dict], Any]] = {
    Capability.GENAI: _extract_genai,
    Capability.DEEPFAKE: _extract_deepfake,
    Capability.QUALITY: _extract_quality,
    Capability.TYPE: _extract_type,
}


def results_from_detection(raw: dict | None, capabilities: Iterable[Capability]) -> dict[Capability, Any]:
    """Pull typed results for `capabilities` out of a normalized detection response."""
    if not raw:
        return {}
    results: dict[Capability, Any] = {}
    for cap in capabilities:
        extractor = _EXTRACTORS.get(cap)
        if extractor is None:
            continue
        result = extractor(raw)
        if result is not None:
            results[cap] = result
    return results


# ── Frame-based averaging ──────────────────────────────────────────────────────

_FRAME_AVERAGED: dict[Capability, tuple[str, type]] = {
    Capability.GENAI: ("probability", GenAIResult),
    Capability.DEEPFAKE: ("probability", DeepfakeResult),
    Capability.QUALITY: ("score", QualityResult),
}


def average_frame_results(
    per_frame: list[dict[Capability, Any]],
    capabilities: Iterable[Capability],
) -> dict[Capability, Any]:
    """
    Arithmetic mean per capability over the frames that returned a value.
    Frames without a value are excluded (not counted as zero); a capability
    no frame answered is left out of the result.
    """
    averaged: dict[Capability, Any] = {}
    for cap in capabilities:
        averaged_field = _FRAME_AVERAGED.get(cap)
        if averaged_field is None:
            continue
        attr, model = averaged_field
        values = [getattr(frame[cap], attr) for frame in per_frame if cap in frame]
        if values:
            averaged[cap] = model(**{attr: sum(values) / len(values)})
    return averaged


# ── Contributions ──────────────────────────────────────────────────────────────

def _genai_contribution(result: GenAIResult) -> float:
    return result.probability


def _deepfake_contribution(result: DeepfakeResult) -> float:
    return result.probability


def _quality_contribution(result: QualityResult) -> float:
    return _QUALITY_CONTRIBUTION if result.score < _QUALITY_THRESHOLD else 0.0


_CONTRIBUTIONS: dict[Capability, Callable[[Any], float]] = {
    Capability.GENAI: _genai_contribution,
    Capability.DEEPFAKE: _deepfake_contribution,
    Capability.QUALITY: _quality_contribution,
}


def capability_contributions(
    results: dict[Capability, Any],
    requested: Iterable[Capability],
) -> list[float]:
    contributions = []
    for cap in requested:
        fn = _CONTRIBUTIONS.get(cap)
        if fn is not None and cap in results:
            contributions.append(fn(results[cap]))
    return contributions


def compute_ai_probability(results: dict[Capability, Any], requested: Iterable[Capability]) -> int:
    """round(100 × max(contributions)), 0 when nothing contributes."""
    contributions = capability_contributions(results, requested)
    return _clamp_pct(100 * max(contributions)) if contributions else 0


def lip_sync_derived_score(integrity: float) -> int:
    return _round(100 * (1 - integrity))


def compute_fake_probability(
    ai_probability: int,
    media_category: MediaCategory,
    lip_sync_integrity: float | None = None,
) -> int:
    fake = ai_probability
    if media_category is MediaCategory.VIDEO and lip_sync_integrity is not None:
        fake = max(ai_probability, lip_sync_derived_score(lip_sync_integrity))
    return max(0, min(100, fake))


# ── Fallback heuristic ─────────────────────────────────────────────────────────

def fallback_probability(
    size: int,
    mime_type: str,
    extension: str = "",
    rng: random.Random | None = None,
) -> int:
    """
    Bounded placeholder score when no detector is available.
    Blends a size/extension score 50/50 with a fixed baseline; includes
    a random jitter of 0–11 points.
    """
    rng = rng or random
    subtype = mime_type.split("/", 1)[1] if mime_type and "/" in mime_type else (extension or "unknown")
    subtype = subtype.lower()
    size_mb = size / (1024 * 1024)

    api_score = _FALLBACK_BASE_SCORE
    if size_mb < 0.01:
        api_score += 25
    elif size_mb < 0.1:
        api_score += 15
    elif size_mb > 20:
        api_score += 10

    if subtype in ("png", "webp"):
        api_score += 8
    if subtype == "webp":
        api_score += 5

    api_score = min(_FALLBACK_CAP, api_score + rng.randint(0, _FALLBACK_JITTER_MAX))
    return _clamp_pct((_FALLBACK_BASELINE + api_score) / 2)


# ── Presentation helpers ───────────────────────────────────────────────────────

def verdict(fake_probability: int) -> tuple[str, int]:
    """("FAKE", fp) when fp ≥ 50, else ("REAL", 100 − fp)."""
    fp = max(0, min(100, fake_probability))
    if fp >= 50:
        return "FAKE", fp
    return "REAL", 100 - fp


def format_file_size(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size / (1024 * 1024):.1f} MB"
