"""
local_signals.py — Image-only heuristics from embedded capture metadata.

Three independent signals, all derived without any network call:
  - missing camera metadata: no Make/Model and no (capture timestamp + ExifVersion)
  - suspicious resolution:   canvas size matches a common AI-generator output size
  - generator tags:          Software tag names a known generation tool

Uses Pillow's EXIF reader. A buffer Pillow cannot open yields empty signals.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from io import BytesIO

from PIL import ExifTags, Image

from mediatrust.models.analysis import LocalSignals

logger = logging.getLogger(__name__)

# Default canvas sizes of DALL-E, Midjourney, Stable Diffusion / SDXL
AI_SUSPICIOUS_RESOLUTIONS = frozenset({
    "512x512", "512x768", "768x512", "768x768",
    "1024x1024", "1024x768", "768x1024", "1024x576", "576x1024",
    "1152x896", "896x1152", "1216x832", "832x1216",
    "1344x768", "768x1344",
})

AI_SOFTWARE_TAGS = (
    "DALL-E", "DALL·E", "Midjourney", "Stable Diffusion", "Craiyon",
    "Adobe Firefly", "Leonardo.AI", "Runway", "Kaiber", "Synthesia",
    "ElevenLabs", "Descript", "RunwayML", "Replicate",
)

_EXIF_IFD_POINTER = 0x8769


@dataclass
class ImageInspection:
    signals: LocalSignals = field(default_factory=LocalSignals)
    created_at: str | None = None
    resolution: str | None = None


def _read_tags(img: Image.Image) -> dict[str, object]:
    """Flatten the base IFD and the Exif sub-IFD into {tag name: value}."""
    exif = img.getexif()
    tags: dict[str, object] = {}
    for tag_id, value in exif.items():
        tags[ExifTags.TAGS.get(tag_id, str(tag_id))] = value
    try:
        for tag_id, value in exif.get_ifd(_EXIF_IFD_POINTER).items():
            tags[ExifTags.TAGS.get(tag_id, str(tag_id))] = value
    except (KeyError, ValueError, TypeError) as exc:
        logger.debug("Exif sub-IFD unreadable: %s", exc)
    return tags


def has_camera_metadata(tags: dict[str, object]) -> bool:
    has_make = bool(tags.get("Make"))
    has_model = bool(tags.get("Model"))
    has_datetime = bool(tags.get("DateTimeOriginal") or tags.get("DateTime"))
    has_exif_version = bool(tags.get("ExifVersion"))
    return has_make or has_model or (has_datetime and has_exif_version)


def detect_generator_tags(software: object) -> list[str]:
    """Case-insensitive substring match of the Software tag against known generators."""
    if not software:
        return []
    if isinstance(software, bytes):
        software = software.decode("utf-8", errors="ignore")
    lowered = str(software).lower()
    return [tag for tag in AI_SOFTWARE_TAGS if tag.lower() in lowered]


def _dimensions(tags: dict[str, object], img: Image.Image) -> tuple[int, int] | None:
    width = tags.get("ImageWidth") or tags.get("ExifImageWidth")
    height = tags.get("ImageLength") or tags.get("ExifImageHeight")
    if width and height:
        try:
            return int(width), int(height)
        except (TypeError, ValueError):
            pass
    if img.size and all(img.size):
        return img.size
    return None


def inspect_image(buffer: bytes) -> ImageInspection:
    """Parse capture metadata and derive LocalSignals. Pure; never raises."""
    try:
        img = Image.open(BytesIO(buffer))
        tags = _read_tags(img)
        dims = _dimensions(tags, img)
    except Exception as exc:
        logger.debug("Image metadata not parseable: %s", exc)
        return ImageInspection()

    resolution = f"{dims[0]}x{dims[1]}" if dims else None
    signals = LocalSignals(
        missing_camera_metadata=not has_camera_metadata(tags),
        suspicious_resolution=resolution if resolution in AI_SUSPICIOUS_RESOLUTIONS else None,
        matched_generator_tags=detect_generator_tags(tags.get("Software")),
    )
    created_at = tags.get("DateTimeOriginal") or tags.get("DateTime")
    return ImageInspection(
        signals=signals,
        created_at=str(created_at) if created_at else None,
        resolution=resolution,
    )


def analyze_local_signals(buffer: bytes) -> LocalSignals:
    return inspect_image(buffer).signals
