"""
lip_sync.py — Lip-sync integrity estimate from audio byte-rate vs. frame count.

This is a byte-rate proxy, not audiovisual sync analysis. The sampled frame
count times the sampling interval approximates the clip duration; a 128 kbps
mp3 track runs at ~16 KB/s, so the further the observed byte rate drifts
from that (on a log scale) the lower the integrity.

    duration    = frames × interval
    ratio       = (audio_bytes / duration) / 1000
    deviation   = |log10(max(ratio, 0.1)) − log10(16)|
    integrity   = clamp(1 − 0.4 × deviation, 0, 1)

No usable audio, or fewer than 2 frames, yields the 0.5 sentinel
(neither confirms nor denies sync).
"""

import math

from mediatrust.core.config import settings

LIP_SYNC_SENTINEL = 0.5
IDEAL_KBPS = 16.0
_DEVIATION_WEIGHT = 0.4
_MIN_RATIO = 0.1


def lip_sync_integrity(
    audio_length: int,
    frame_count: int,
    interval_seconds: float,
    min_audio_bytes: int | None = None,
) -> float:
    """Return integrity in [0, 1]; 1.0 = audio rate consistent with the frame timeline."""
    threshold = settings.lip_sync_min_audio_bytes if min_audio_bytes is None else min_audio_bytes
    if audio_length < threshold or frame_count < 2 or interval_seconds <= 0:
        return LIP_SYNC_SENTINEL

    duration = frame_count * interval_seconds
    ratio = (audio_length / duration) / 1000.0
    deviation = abs(math.log10(max(ratio, _MIN_RATIO)) - math.log10(IDEAL_KBPS))
    return max(0.0, min(1.0, 1.0 - deviation * _DEVIATION_WEIGHT))
