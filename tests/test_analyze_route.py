"""
test_analyze_route.py — HTTP surface of the analysis pipeline.

Runs against the real app in mock mode: detection returns canned scores,
the result cache lives in-process, and no network call is made.
"""

import base64
from unittest.mock import AsyncMock, patch

from mediatrust.core.errors import DetectionUnavailableError
from mediatrust.services.result_cache import content_hash


def _b64(buffer: bytes) -> str:
    return base64.b64encode(buffer).decode()


async def _analyze(client, buffer: bytes, **fields):
    body = {"media_b64": _b64(buffer), "filename": "upload.png", "mime_type": "image/png", **fields}
    return await client.post("/api/v1/analyze", json=body)


class TestAnalyzeImage:
    async def test_mock_image_returns_200(self, client, png_1024):
        r = await _analyze(client, png_1024)
        assert r.status_code == 200

        data = r.json()
        assert data["fake_probability"] == 12
        assert data["media_category"] == "image"
        assert data["requested_capabilities"] == ["genai"]
        assert data["per_capability_scores"]["genai"] == {"capability": "genai", "probability": 0.12}
        assert data["local_signals"]["suspicious_resolution"] == "1024x1024"
        assert data["file_metadata"]["type"] == "image/png"
        assert data["content_hash"] == content_hash(png_1024)
        assert data["cached"] is False

    async def test_data_url_prefix_is_accepted(self, client, png_1024):
        body = {"media_b64": "data:image/png;base64," + _b64(png_1024)}
        r = await client.post("/api/v1/analyze", json=body)
        assert r.status_code == 200

    async def test_second_request_is_cached(self, client, png_1024):
        await _analyze(client, png_1024)
        r = await _analyze(client, png_1024)
        assert r.json()["cached"] is True
        assert r.json()["capabilities_fetched_this_call"] is None

    async def test_quality_and_type_capabilities(self, client, png_1024):
        r = await _analyze(client, png_1024, capabilities=["quality", "type"])
        scores = r.json()["per_capability_scores"]
        assert scores["quality"]["score"] == 0.78
        assert scores["type"]["attributes"]["photo"] == 0.93
        # quality 0.78 is above the low-quality threshold
        assert r.json()["fake_probability"] == 0


class TestAnalyzeOtherMedia:
    async def test_mock_audio(self, client, wav_bytes):
        r = await _analyze(client, wav_bytes, filename="clip.wav", mime_type="audio/wav")
        assert r.status_code == 200
        assert r.json()["media_category"] == "audio"
        assert r.json()["fake_probability"] == 18

    async def test_undecodable_video_is_503(self, client, mp4_bytes):
        r = await _analyze(client, mp4_bytes, filename="clip.mp4", mime_type="video/mp4")
        assert r.status_code == 503
        assert r.headers["retry-after"] == "30"


class TestAnalyzeValidation:
    async def test_invalid_base64_is_422(self, client):
        r = await client.post("/api/v1/analyze", json={"media_b64": "***not base64***"})
        assert r.status_code == 422

    async def test_missing_media_is_422(self, client):
        r = await client.post("/api/v1/analyze", json={"filename": "a.png"})
        assert r.status_code == 422

    async def test_empty_payload_is_422(self, client):
        r = await client.post("/api/v1/analyze", json={"media_b64": "data:image/png;base64,"})
        assert r.status_code == 422

    async def test_unknown_capability_is_422(self, client, png_1024):
        r = await _analyze(client, png_1024, capabilities=["telepathy"])
        assert r.status_code == 422

    async def test_cached_result_under_wrong_capability_is_422(self, client, png_1024):
        r = await _analyze(
            client,
            png_1024,
            cached_results={"genai": {"capability": "deepfake", "probability": 0.4}},
        )
        assert r.status_code == 422

    async def test_matching_cached_result_is_reused(self, client, png_1024):
        r = await _analyze(
            client,
            png_1024,
            cached_results={"genai": {"capability": "genai", "probability": 0.4}},
        )
        assert r.status_code == 200
        assert r.json()["fake_probability"] == 40
        assert r.json()["capabilities_fetched_this_call"] is None

    async def test_oversized_upload_is_413(self, client, png_1024, monkeypatch):
        from mediatrust.core.config import settings

        monkeypatch.setattr(settings, "max_upload_mb", 0)
        r = await _analyze(client, png_1024)
        assert r.status_code == 413


class TestDetectionUnavailable:
    async def test_503_with_retry_after(self, client, png_1024):
        failing = AsyncMock(side_effect=DetectionUnavailableError("image"))
        with patch("mediatrust.ai.analysis_pipeline.analysis_orchestrator.analyze", failing):
            r = await _analyze(client, png_1024)

        assert r.status_code == 503
        assert r.headers["retry-after"] == "30"
        assert r.json()["detail"] == DetectionUnavailableError.message


class TestCacheLookup:
    async def test_returns_accumulated_results(self, client, png_1024):
        await _analyze(client, png_1024, capabilities=["genai", "quality"])

        r = await client.get(f"/api/v1/analyze/cache/{content_hash(png_1024)}")
        assert r.status_code == 200
        data = r.json()
        assert set(data["results"]) == {"genai", "quality"}
        assert data["requested_capabilities"] == ["genai", "quality"]

    async def test_unknown_hash_is_404(self, client):
        r = await client.get(f"/api/v1/analyze/cache/{'0' * 64}")
        assert r.status_code == 404


class TestAnalyzeRateLimit:
    async def test_429_when_limit_exceeded(self, client, png_1024):
        from mediatrust.core.rate_limit import limiter

        with patch.object(limiter.limiter, "hit", return_value=False):
            r = await _analyze(client, png_1024)

        assert r.status_code == 429
        assert "error" in r.json()

    async def test_limiter_attached_to_app_state(self, client):
        from mediatrust.core.rate_limit import limiter
        from mediatrust.main import app

        assert app.state.limiter is limiter
