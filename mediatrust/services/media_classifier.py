"""
media_classifier.py — Decide image / audio / video for an upload.

Resolution order:
  1. Sniffed type from the leading bytes (magic numbers)
  2. MIME type declared by the uploader
  3. Filename extension

Anything still ambiguous is treated as video — the most capability-rich
path. Classification never fails.
"""

import logging
from dataclasses import dataclass

from mediatrust.models.analysis import MediaCategory

logger = logging.getLogger(__name__)


_MIME_MAP = {
    ".jpg":  "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png":  "image/png",
    ".webp": "image/webp",
    ".gif":  "image/gif",
    ".bmp":  "image/bmp",
    ".tif":  "image/tiff",
    ".tiff": "image/tiff",
    ".heic": "image/heic",
    ".mp3":  "audio/mpeg",
    ".wav":  "audio/wav",
    ".ogg":  "audio/ogg",
    ".flac": "audio/flac",
    ".m4a":  "audio/mp4",
    ".mp4":  "video/mp4",
    ".webm": "video/webm",
    ".mov":  "video/quicktime",
    ".avi":  "video/x-msvideo",
    ".mkv":  "video/x-matroska",
}

# ISO base media brands (bytes 8–12 of an `ftyp` box) that are not plain video
_FTYP_BRANDS = {
    b"M4A ": "audio/mp4",
    b"M4B ": "audio/mp4",
    b"qt  ": "video/quicktime",
    b"heic": "image/heic",
    b"heix": "image/heic",
    b"mif1": "image/heic",
    b"avif": "image/avif",
}


@dataclass(frozen=True)
class MediaClassification:
    category: MediaCategory
    mime_type: str   # effective MIME used for provider calls
    extension: str   # lowercase, without the dot ("bin" when unknown)


def file_extension(filename: str) -> str:
    """Lowercase extension without the dot, or "" if none."""
    return filename.rsplit(".", 1)[-1].lower() if filename and "." in filename else ""


def mime_from_filename(filename: str) -> str:
    """Derive a MIME type from a filename extension."""
    ext = file_extension(filename)
    return _MIME_MAP.get(f".{ext}", "application/octet-stream") if ext else "application/octet-stream"


def sniff_mime(buffer: bytes) -> str | None:
    """Identify the container from its magic bytes. Returns None if unknown."""
    head = buffer[:64]
    if len(head) < 4:
        return None

    if head.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if head.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if head.startswith((b"GIF87a", b"GIF89a")):
        return "image/gif"
    if head.startswith((b"II*\x00", b"MM\x00*")):
        return "image/tiff"
    if head.startswith(b"BM") and len(buffer) > 26:
        return "image/bmp"

    if head.startswith(b"RIFF") and len(head) >= 12:
        form = head[8:12]
        if form == b"WEBP":
            return "image/webp"
        if form == b"WAVE":
            return "audio/wav"
        if form == b"AVI ":
            return "video/x-msvideo"

    if head.startswith(b"OggS"):
        return "audio/ogg"
    if head.startswith(b"fLaC"):
        return "audio/flac"
    if head.startswith(b"ID3"):
        return "audio/mpeg"
    # MPEG audio frame sync: 11 set bits
    if head[0] == 0xFF and (head[1] & 0xE0) == 0xE0:
        return "audio/mpeg"

    if head[4:8] == b"ftyp":
        return _FTYP_BRANDS.get(head[8:12], "video/mp4")
    if head.startswith(b"\x1a\x45\xdf\xa3"):
        return "video/webm" if b"webm" in head else "video/x-matroska"

    return None


def _category_for(mime: str) -> MediaCategory | None:
    prefix = (mime or "").split("/", 1)[0].lower()
    try:
        return MediaCategory(prefix)
    except ValueError:
        return None


def classify_media(buffer: bytes, declared_mime: str = "", filename: str = "") -> MediaClassification:
    """Classify an upload as image, audio or video."""
    ext = file_extension(filename)

    for source, mime in (
        ("sniffed", sniff_mime(buffer)),
        ("declared", declared_mime),
        ("extension", mime_from_filename(filename)),
    ):
        category = _category_for(mime) if mime else None
        if category is not None:
            logger.debug("Classified %r as %s via %s MIME %s", filename, category.value, source, mime)
            return MediaClassification(category=category, mime_type=mime, extension=ext or mime.split("/")[-1])

    logger.info("Could not classify %r (declared=%r) — defaulting to video", filename, declared_mime)
    return MediaClassification(
        category=MediaCategory.VIDEO,
        mime_type=declared_mime or "application/octet-stream",
        extension=ext or "bin",
    )
