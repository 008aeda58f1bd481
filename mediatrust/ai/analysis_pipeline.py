"""
analysis_pipeline.py — Media analysis orchestrator.

One sequential, awaited pipeline per request:

  1. Classify        image / audio / video from magic bytes → declared MIME → extension
  2. Local signals   EXIF heuristics (images only, no network)
  3. Cache gap       requested − (stored ∪ caller-supplied) results for this content hash
  4. Fetch missing   by media type:
       image  → detect_image
       video  → detect_video_sequential (elite + native engine), else / on failure
                frame-based: extract frames, detect_image per frame, mean per capability
                + elite enrichments: lip-sync integrity, voice-clone reasoning
       audio  → detect_audio, else the local fallback heuristic
  5. Merge           freshly fetched results into the cache (never drops keys)
  6. Consolidate     max-of-weighted-signals → ai / fake probability
  7. Enrich          optional OCR + credibility, optional executive summary (elite)

Only one failure escapes: an image/video request whose detection capabilities
have neither a cached nor a fetched result raises DetectionUnavailableError.
Every other upstream problem degrades to an absent field or a sentinel.

Frame calls are made one at a time to bound provider load. Collaborators are
injected through the constructor so tests can substitute fakes; the module
singleton wires the real adapters.
"""

import logging
import random
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional

from pymongo.errors import PyMongoError

from mediatrust.ai.detection_client import DetectionClient, detection_client
from mediatrust.ai.reasoning_client import ReasoningClient, reasoning_client
from mediatrust.core.config import settings
from mediatrust.core.errors import DetectionUnavailableError
from mediatrust.models.analysis import (
    DETECTION_CAPABILITIES,
    Capability,
    ConsolidatedAnalysis,
    CredibilityAssessment,
    FileMetadata,
    LipSyncResult,
    MediaCategory,
    VideoEngine,
    VoiceCloneResult,
    dump_result_map,
)
from mediatrust.services.consolidation import (
    average_frame_results,
    compute_ai_probability,
    compute_fake_probability,
    fallback_probability,
    format_file_size,
    results_from_detection,
    verdict,
)
from mediatrust.services.credibility import CredibilityAnalyzer, credibility_analyzer
from mediatrust.services.lip_sync import lip_sync_integrity
from mediatrust.services.local_signals import ImageInspection, inspect_image
from mediatrust.services.media_classifier import MediaClassification, classify_media
from mediatrust.services.result_cache import ResultCache, content_hash, get_result_cache
from mediatrust.services.track_extractor import ExtractedTracks, TrackExtractor, track_extractor

logger = logging.getLogger(__name__)

# Capabilities a non-elite caller may request for video
_BASIC_VIDEO_CAPABILITIES = (Capability.GENAI, Capability.DEEPFAKE)


# ── Data classes ──────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class AnalysisOptions:
    elite: bool = False
    video_engine: VideoEngine = VideoEngine.FRAME_BASED
    video_capabilities: tuple[Capability, ...] = ()
    temporal_consistency: bool = False
    language: str = "en"
    credibility_check: bool = False


@dataclass(frozen=True)
class AnalysisRequest:
    buffer: bytes
    mime_type: str = ""
    filename: str = ""
    capabilities: tuple[Capability, ...] = ()
    cached_results: Optional[Mapping[Capability, Any]] = None
    options: AnalysisOptions = field(default_factory=AnalysisOptions)


@dataclass
class _FetchState:
    """Mutable per-run scratch space; never leaves analyze()."""

    fetched: dict[Capability, Any] = field(default_factory=dict)
    raw_detection: Optional[dict[str, Any]] = None
    tracks: Optional[ExtractedTracks] = None
    tracks_attempted: bool = False
    frames_analyzed: Optional[int] = None
    analysis_method: Optional[str] = None


# ── Capability normalization ──────────────────────────────────────────────────

def normalize_capabilities(
    requested: Iterable[Capability],
    media_category: MediaCategory,
    elite: bool,
) -> list[Capability]:
    """
    Ordered, de-duplicated capability list. Empty → [genai]. Non-elite video
    is limited to genai/deepfake (default genai).
    """
    capabilities: list[Capability] = []
    for cap in requested:
        cap = Capability(cap)
        if cap not in capabilities:
            capabilities.append(cap)

    if media_category is MediaCategory.VIDEO and not elite:
        capabilities = [c for c in capabilities if c in _BASIC_VIDEO_CAPABILITIES]

    return capabilities or [Capability.GENAI]


def _detection_subset(capabilities: Iterable[Capability]) -> list[Capability]:
    return [c for c in capabilities if c in DETECTION_CAPABILITIES]


# ── Orchestrator ──────────────────────────────────────────────────────────────

class MediaAnalysisOrchestrator:
    """
    Runs one analysis end to end. Stateless between calls; every collaborator
    is injectable and defaults to its module-level singleton.
    """

    def __init__(
        self,
        detector: DetectionClient | None = None,
        extractor: TrackExtractor | None = None,
        reasoning: ReasoningClient | None = None,
        credibility: CredibilityAnalyzer | None = None,
        cache: ResultCache | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._detector = detector or detection_client
        self._extractor = extractor or track_extractor
        self._reasoning = reasoning or reasoning_client
        self._credibility = credibility or credibility_analyzer
        self._cache = cache
        self._rng = rng or random.Random()

    @property
    def cache(self) -> ResultCache:
        # Resolved per call so a reconnect to MongoDB takes effect without a restart
        return self._cache if self._cache is not None else get_result_cache()

    async def analyze(self, request: AnalysisRequest) -> ConsolidatedAnalysis:
        options = request.options
        buffer = request.buffer

        # ── 1 & 2. Classify + local signals ────────────────────────────────────
        classification = classify_media(buffer, request.mime_type, request.filename)
        category = classification.category
        requested = normalize_capabilities(request.capabilities, category, options.elite)
        key = content_hash(buffer)
        inspection = inspect_image(buffer) if category is MediaCategory.IMAGE else ImageInspection()

        logger.info(
            "Analyzing %s (%s, %d bytes) hash=%s… capabilities=%s elite=%s",
            request.filename or "upload", category.value, len(buffer), key[:12],
            [c.value for c in requested], options.elite,
        )

        # ── 3. Cache gap ───────────────────────────────────────────────────────
        known = await self._load_cached(key, request.cached_results)
        cached = {cap: known[cap] for cap in requested if cap in known}
        missing = [cap for cap in requested if cap not in cached]
        logger.info(
            "Cache: %d hit(s), missing=%s", len(cached), [c.value for c in missing]
        )

        # ── 4. Fetch missing ───────────────────────────────────────────────────
        state = _FetchState()
        if category is MediaCategory.IMAGE:
            await self._fetch_image(request, classification, missing, state)
        elif category is MediaCategory.VIDEO:
            await self._fetch_video(request, classification, missing, cached, state)
        else:
            await self._fetch_audio(request, classification, missing, state)

        merged = {**cached, **state.fetched}

        # ── Fatal: visual media with no detection result at all ────────────────
        requested_detection = _detection_subset(requested)
        if (
            category in (MediaCategory.IMAGE, MediaCategory.VIDEO)
            and requested_detection
            and not any(cap in merged for cap in requested_detection)
        ):
            logger.error("No detection result for %s hash=%s…", category.value, key[:12])
            raise DetectionUnavailableError(category.value)

        # ── 5. Persist only what this call fetched ─────────────────────────────
        if state.fetched:
            await self._store(key, state.fetched, requested)

        # ── 6. Consolidate ─────────────────────────────────────────────────────
        lip_sync = merged.get(Capability.LIP_SYNC) if Capability.LIP_SYNC in requested else None
        integrity = lip_sync.integrity if lip_sync is not None else None

        if category is MediaCategory.AUDIO and not any(cap in merged for cap in requested_detection):
            fake_probability = fallback_probability(
                len(buffer), classification.mime_type, classification.extension, self._rng
            )
            ai_probability = fake_probability
            state.analysis_method = "local_heuristic"
            logger.info("No detector result for audio — fallback heuristic=%d", fake_probability)
        else:
            ai_probability = compute_ai_probability(merged, requested)
            fake_probability = compute_fake_probability(ai_probability, category, integrity)

        file_metadata = FileMetadata(
            type=classification.mime_type,
            extension=classification.extension,
            size=len(buffer),
            size_formatted=format_file_size(len(buffer)),
            created_at=inspection.created_at,
            resolution=inspection.resolution,
            frames_analyzed=state.frames_analyzed,
            analysis_method=state.analysis_method,
        )

        # ── 7. Enrichments ─────────────────────────────────────────────────────
        credibility: Optional[CredibilityAssessment] = None
        if options.credibility_check and options.elite and category is not MediaCategory.AUDIO:
            credibility = await self._assess_credibility(
                request, classification, ai_probability, integrity, state
            )

        expert_summary: Optional[str] = None
        if options.elite:
            status, _ = verdict(fake_probability)
            expert_summary = await self._reasoning.summarize(
                raw_detection=state.raw_detection,
                capability_scores=dump_result_map(merged),
                metadata=file_metadata.model_dump(),
                fake_probability=fake_probability,
                status=status,
                ai_probability=ai_probability if integrity is not None else None,
                lip_sync_integrity=integrity,
                language=options.language,
            )

        logger.info(
            "Analysis complete hash=%s… fake=%d ai=%d fetched=%s",
            key[:12], fake_probability, ai_probability, [c.value for c in state.fetched],
        )

        return ConsolidatedAnalysis(
            fake_probability=fake_probability,
            ai_probability=ai_probability,
            media_category=category,
            file_metadata=file_metadata,
            local_signals=inspection.signals,
            requested_capabilities=requested,
            per_capability_scores=merged,
            raw_detection_response=state.raw_detection,
            capabilities_fetched_this_call=list(state.fetched) or None,
            credibility_assessment=credibility,
            expert_summary=expert_summary,
            content_hash=key,
            cached=bool(cached),
        )

    # ── Cache ─────────────────────────────────────────────────────────────────

    async def _load_cached(
        self,
        key: str,
        supplied: Optional[Mapping[Capability, Any]],
    ) -> dict[Capability, Any]:
        """Stored results overlaid with caller-supplied ones."""
        known: dict[Capability, Any] = {}
        try:
            entry = await self.cache.find(key)
        except PyMongoError as exc:
            logger.error("Result cache read failed — treating as miss: %s", exc)
            entry = None
        if entry is not None:
            known.update(entry.results)
        for cap, result in (supplied or {}).items():
            cap = Capability(cap)
            tag = getattr(result, "capability", None)
            if tag != cap.value:
                logger.warning("Ignoring supplied result for %s tagged %r", cap.value, tag)
                continue
            known[cap] = result
        return known

    async def _store(self, key: str, fetched: dict[Capability, Any], requested: list[Capability]) -> None:
        try:
            await self.cache.merge(key, fetched, requested)
        except PyMongoError as exc:
            logger.error("Result cache write failed — results not persisted: %s", exc)

    # ── Branches ──────────────────────────────────────────────────────────────

    async def _fetch_image(
        self,
        request: AnalysisRequest,
        classification: MediaClassification,
        missing: list[Capability],
        state: _FetchState,
    ) -> None:
        detection_missing = _detection_subset(missing)
        if not detection_missing:
            return
        state.analysis_method = "image_detection"
        state.raw_detection = await self._detector.detect_image(
            request.buffer, classification.mime_type, request.filename, detection_missing
        )
        state.fetched.update(results_from_detection(state.raw_detection, detection_missing))

    async def _fetch_audio(
        self,
        request: AnalysisRequest,
        classification: MediaClassification,
        missing: list[Capability],
        state: _FetchState,
    ) -> None:
        detection_missing = _detection_subset(missing)
        if not detection_missing:
            return
        state.analysis_method = "audio_detection"
        state.raw_detection = await self._detector.detect_audio(
            request.buffer, classification.mime_type, request.filename, detection_missing
        )
        state.fetched.update(results_from_detection(state.raw_detection, detection_missing))

    async def _fetch_video(
        self,
        request: AnalysisRequest,
        classification: MediaClassification,
        missing: list[Capability],
        cached: dict[Capability, Any],
        state: _FetchState,
    ) -> None:
        options = request.options
        detection_missing = _detection_subset(missing)

        if detection_missing and options.elite and options.video_engine is VideoEngine.NATIVE_VIDEO:
            await self._detect_native_video(request, classification, detection_missing, state)

        if detection_missing and state.raw_detection is None:
            await self._detect_frames(request, classification, detection_missing, state)

        if not options.elite:
            return

        # ── Elite enrichments ──────────────────────────────────────────────────
        if Capability.LIP_SYNC in missing:
            tracks = await self._tracks(request, classification, state)
            if tracks is not None:
                integrity = lip_sync_integrity(
                    tracks.audio_length, len(tracks.frames), tracks.interval_seconds
                )
                state.fetched[Capability.LIP_SYNC] = LipSyncResult(integrity=integrity)
                logger.info("Lip-sync integrity %.2f (audio=%d bytes)", integrity, tracks.audio_length)
            else:
                logger.info("Lip-sync skipped — track extraction failed")

        if Capability.VOICE_CLONE in missing:
            tracks = await self._tracks(request, classification, state)
            if tracks is not None:
                lip_sync = state.fetched.get(Capability.LIP_SYNC) or cached.get(Capability.LIP_SYNC)
                metadata = await self._extractor.probe_audio(tracks.audio) if tracks.audio else None
                reasoning = await self._reasoning.assess_voice_clone(
                    metadata,
                    lip_sync.integrity if lip_sync is not None else None,
                    has_audio=tracks.audio is not None,
                    language=options.language,
                )
                if reasoning:
                    state.fetched[Capability.VOICE_CLONE] = VoiceCloneResult(reasoning=reasoning)
            else:
                logger.info("Voice-clone assessment skipped — track extraction failed")

    async def _detect_native_video(
        self,
        request: AnalysisRequest,
        classification: MediaClassification,
        detection_missing: list[Capability],
        state: _FetchState,
    ) -> None:
        selected = request.options.video_capabilities
        native = [c for c in detection_missing if c in selected] if selected else list(detection_missing)
        native = native or list(detection_missing)

        raw = await self._detector.detect_video_sequential(
            request.buffer,
            classification.mime_type,
            request.filename,
            native,
            temporal=request.options.temporal_consistency,
        )
        if raw is None:
            logger.warning("Native video detection unavailable — falling back to frame-based")
            return
        state.raw_detection = raw
        state.analysis_method = "native_video"
        state.frames_analyzed = len(raw.get("frames") or []) or None
        state.fetched.update(results_from_detection(raw, detection_missing))

    async def _detect_frames(
        self,
        request: AnalysisRequest,
        classification: MediaClassification,
        detection_missing: list[Capability],
        state: _FetchState,
    ) -> None:
        tracks = await self._tracks(request, classification, state)
        if tracks is None:
            logger.warning("Frame-based detection unavailable — no frames extracted")
            return

        per_frame: list[dict[Capability, Any]] = []
        frame_responses: list[dict[str, Any]] = []
        for index, frame in enumerate(tracks.frames):
            raw = await self._detector.detect_image(
                frame, "image/jpeg", f"frame_{index:03d}.jpg", detection_missing
            )
            if raw is None:
                continue
            frame_responses.append(raw)
            per_frame.append(results_from_detection(raw, detection_missing))

        state.analysis_method = "frame_based"
        state.frames_analyzed = len(tracks.frames)
        state.fetched.update(average_frame_results(per_frame, detection_missing))
        if frame_responses:
            state.raw_detection = {"frames": frame_responses}
        logger.info(
            "Frame-based detection: %d/%d frame(s) scored", len(frame_responses), len(tracks.frames)
        )

    async def _tracks(
        self,
        request: AnalysisRequest,
        classification: MediaClassification,
        state: _FetchState,
    ) -> Optional[ExtractedTracks]:
        """Extract once per run; later callers reuse the result (including a failure)."""
        if not state.tracks_attempted:
            state.tracks_attempted = True
            state.tracks = await self._extractor.extract(
                request.buffer,
                classification.extension,
                settings.frame_interval_seconds,
                settings.max_frames,
            )
        return state.tracks

    # ── Credibility ───────────────────────────────────────────────────────────

    async def _assess_credibility(
        self,
        request: AnalysisRequest,
        classification: MediaClassification,
        ai_probability: int,
        integrity: Optional[float],
        state: _FetchState,
    ) -> Optional[CredibilityAssessment]:
        category = classification.category
        if category is MediaCategory.IMAGE:
            return await self._credibility.assess(
                category,
                image=request.buffer,
                ai_probability=ai_probability,
                language=request.options.language,
            )

        tracks = await self._tracks(request, classification, state)
        if tracks is None:
            logger.info("Credibility skipped — no frames to read text from")
            return None
        return await self._credibility.assess(
            category,
            frames=tracks.frames,
            ai_probability=ai_probability,
            lip_sync_integrity=integrity,
            language=request.options.language,
        )


# Module-level singleton
analysis_orchestrator = MediaAnalysisOrchestrator()
