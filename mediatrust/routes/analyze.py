"""
analyze.py — Media analysis endpoints.

Routes:
  POST /api/v1/analyze                      — run the analysis pipeline on one upload
  GET  /api/v1/analyze/cache/{content_hash} — inspect accumulated cached results

HOW THE DATA FLOWS
──────────────────
1. The client reads the file with FileReader.readAsDataURL() and sends either
   the raw base64 or the full data: URL as media_b64, plus the filename and
   declared MIME type as type hints.
2. The payload is decoded here; bad base64 → 422, too large → 413.
3. MediaAnalysisOrchestrator classifies the bytes, reuses cached results for
   the content hash, fetches only the missing capabilities, and consolidates.
4. If an image/video ends up with no detection result at all, the endpoint
   answers 503 with Retry-After. Upstream error bodies are never forwarded.

No authentication — tiering (elite) is passed by the caller.
"""

import base64
import binascii
import logging

from fastapi import APIRouter, HTTPException, Request, status

from mediatrust.ai import analysis_pipeline
from mediatrust.ai.analysis_pipeline import AnalysisOptions, AnalysisRequest
from mediatrust.core.config import settings
from mediatrust.core.errors import DetectionUnavailableError
from mediatrust.core.rate_limit import limiter
from mediatrust.models.analysis import AnalyzeRequest, ConsolidatedAnalysis, ResultCacheEntry
from mediatrust.services.result_cache import get_result_cache

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/analyze", tags=["analyze"])

RETRY_AFTER_SECONDS = 30


def _decode_media(media_b64: str) -> bytes:
    """Decode raw base64 or a data: URL. Raises HTTPException(422) on bad input."""
    data = media_b64.strip()
    if data.startswith("data:") and "," in data:
        data = data.split(",", 1)[1]
    try:
        buffer = base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError):
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="media_b64 is not valid base64",
        )
    if not buffer:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="media_b64 decodes to an empty file",
        )
    return buffer


# ── Endpoints ──────────────────────────────────────────────────────────────────

@router.post("", response_model=ConsolidatedAnalysis, status_code=200)
@limiter.limit(settings.analyze_rate_limit)
async def analyze_media(request: Request, payload: AnalyzeRequest):
    """
    Estimate how likely an image, audio clip or video is AI-generated or manipulated.

    Returns fake_probability / ai_probability (0–100), per-capability scores,
    local EXIF signals, file metadata and, for elite callers, optional
    credibility and executive-summary enrichments.
    """
    buffer = _decode_media(payload.media_b64)

    max_bytes = settings.max_upload_mb * 1024 * 1024
    if len(buffer) > max_bytes:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File exceeds the {settings.max_upload_mb} MB upload limit",
        )

    analysis_request = AnalysisRequest(
        buffer=buffer,
        mime_type=payload.mime_type,
        filename=payload.filename,
        capabilities=tuple(payload.capabilities),
        cached_results=payload.cached_results,
        options=AnalysisOptions(
            elite=payload.elite,
            video_engine=payload.video_engine,
            video_capabilities=tuple(payload.video_capabilities),
            temporal_consistency=payload.temporal_consistency,
            language=payload.language,
            credibility_check=payload.credibility_check,
        ),
    )

    try:
        # Module attribute lookup so tests can patch the singleton
        return await analysis_pipeline.analysis_orchestrator.analyze(analysis_request)
    except DetectionUnavailableError as exc:
        logger.warning("Analysis of %s aborted: detection unavailable", exc.media_category)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=exc.message,
            headers={"Retry-After": str(RETRY_AFTER_SECONDS)},
        )


@router.get("/cache/{content_hash}", response_model=ResultCacheEntry)
async def get_cached_results(content_hash: str):
    """Accumulated per-capability results for a SHA-256 content hash."""
    entry = await get_result_cache().find(content_hash.lower())
    if entry is None:
        raise HTTPException(status_code=404, detail="No cached results for this content hash")
    return entry
