"""
pytest configuration and shared fixtures for the MediaTrust API tests.

Key concern: tests must not require a live MongoDB, detection provider,
Gemini key, ffmpeg or tesseract. We achieve this by:
  1. Patching connect_to_mongo / close_mongo_connection to no-ops so
     FastAPI's lifespan doesn't try to reach a real database.
  2. Setting db_client.client = None (disconnected) so the result cache
     runs in-process and the health check reports "disconnected".
  3. Ensuring AI_MOCK_MODE=true so detection, reasoning and OCR return
     canned responses.
  4. Clearing the in-memory result cache and rate-limit counters between tests.
"""

import io
import os
from unittest.mock import AsyncMock, patch

import pytest
from httpx import ASGITransport, AsyncClient

# Set env vars BEFORE importing the app so Settings picks them up correctly
os.environ.setdefault("AI_MOCK_MODE", "true")
os.environ.setdefault("ENVIRONMENT", "test")


@pytest.fixture(autouse=True)
async def mock_db():
    """
    Patch the MongoDB lifecycle for every test.

    - connect_to_mongo / close_mongo_connection → no-op AsyncMock
    - db_client.client / db_client.db → None (in-memory result cache)
    """
    with (
        patch("mediatrust.core.database.connect_to_mongo", new_callable=AsyncMock),
        patch("mediatrust.core.database.close_mongo_connection", new_callable=AsyncMock),
    ):
        import mediatrust.core.database as db_module
        from mediatrust.core.rate_limit import limiter
        from mediatrust.services.result_cache import memory_cache

        # Save originals so we can restore after the test
        original_client = db_module.db_client.client
        original_db = db_module.db_client.db

        db_module.db_client.client = None
        db_module.db_client.db = None
        memory_cache.clear()
        limiter.reset()

        yield

        db_module.db_client.client = original_client
        db_module.db_client.db = original_db
        memory_cache.clear()


@pytest.fixture()
async def client(mock_db):  # noqa: ARG001 (mock_db must run first)
    """
    HTTPX async test client wired to the FastAPI app.

    Usage:
        async def test_something(client):
            response = await client.get("/health")
            assert response.status_code == 200
    """
    from mediatrust.main import app

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


# ── Media fixtures ─────────────────────────────────────────────────────────────

def _png(width: int = 1024, height: int = 1024) -> bytes:
    from PIL import Image

    buf = io.BytesIO()
    Image.new("RGB", (width, height), color=(120, 80, 200)).save(buf, format="PNG")
    return buf.getvalue()


def _jpeg(width: int = 640, height: int = 480, **exif_tags) -> bytes:
    from PIL import ExifTags, Image

    exif = Image.Exif()
    name_to_id = {name: tag_id for tag_id, name in ExifTags.TAGS.items()}
    for name, value in exif_tags.items():
        exif[name_to_id[name]] = value

    buf = io.BytesIO()
    Image.new("RGB", (width, height), color=(10, 200, 30)).save(buf, format="JPEG", exif=exif)
    return buf.getvalue()


@pytest.fixture()
def make_png():
    """Factory: a decodable PNG of the given size with no EXIF block."""
    return _png


@pytest.fixture()
def make_jpeg():
    """Factory: a JPEG carrying base-IFD EXIF tags, e.g. make_jpeg(Make="Canon")."""
    return _jpeg


@pytest.fixture()
def png_1024() -> bytes:
    return _png(1024, 1024)


@pytest.fixture()
def mp4_bytes() -> bytes:
    """Minimal ISO-BMFF header; sniffed as video/mp4."""
    return b"\x00\x00\x00\x18ftypmp42\x00\x00\x00\x00mp42isom" + b"\x00" * 512


@pytest.fixture()
def wav_bytes() -> bytes:
    """RIFF/WAVE header; sniffed as audio/wav."""
    return b"RIFF\x24\x08\x00\x00WAVEfmt " + b"\x00" * 2048
