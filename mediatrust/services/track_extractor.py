"""
track_extractor.py — Split a video into sampled frames and an audio track.

Runs ffmpeg in a worker thread (asyncio.to_thread) against a per-call
temporary directory:

  frames — one JPEG every `interval` seconds, at most `max_frames`
           (`-vf fps=1/<interval> -frames:v <max> -q:v 2`)
  audio  — mp3 128k (`-vn -acodec libmp3lame -ab 128k`); a separate pass so
           a video with no audio stream still yields frames

The upload is written to the temp dir, every artifact is read back into
memory, and the directory is removed before returning, on success or
failure.

probe_audio() runs ffprobe + the silencedetect filter to build the metadata
block the voice-clone assessment reasons over.

Failure policy: extract() returns None when no frames could be produced
(ffmpeg missing, timeout, undecodable input). Callers treat that as
"frame-based analysis unavailable", never as an error.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import subprocess
import tempfile
from dataclasses import dataclass, field
from pathlib import Path

from mediatrust.core.config import settings

logger = logging.getLogger(__name__)

_SILENCE_FILTER = "silencedetect=noise=-30dB:d=0.5"
_SILENCE_START = re.compile(r"silence_start:\s*(-?[\d.]+)")
_SILENCE_DURATION = re.compile(r"silence_duration:\s*([\d.]+)")


# ── Data classes ──────────────────────────────────────────────────────────────

@dataclass
class ExtractedTracks:
    frames: list[bytes] = field(default_factory=list)   # JPEG bytes, temporal order
    audio: bytes | None = None                          # mp3 bytes, None if no audio stream
    interval_seconds: float = 2.0

    @property
    def audio_length(self) -> int:
        return len(self.audio) if self.audio else 0


@dataclass
class AudioMetadata:
    duration: float | None = None
    sample_rate: int | None = None
    channels: int | None = None
    bit_rate: int | None = None
    codec: str | None = None
    encoder: str | None = None
    silence_segments: int = 0
    total_silence: float = 0.0
    first_silence_start: float | None = None

    def as_prompt_block(self) -> str:
        """Human-readable summary for the reasoning prompt."""
        lines = [
            f"Duration: {self.duration:.2f}s" if self.duration is not None else "Duration: unknown",
            f"Sample rate: {self.sample_rate or 'unknown'} Hz",
            f"Channels: {self.channels or 'unknown'}",
            f"Bit rate: {self.bit_rate or 'unknown'} bps",
            f"Codec: {self.codec or 'unknown'}",
            f"Encoder tag: {self.encoder or 'none'}",
            f"Silence segments (< -30 dB, ≥ 0.5s): {self.silence_segments}",
            f"Total silence: {self.total_silence:.2f}s",
        ]
        if self.duration:
            lines.append(f"Silence ratio: {self.total_silence / self.duration:.1%}")
        return "\n".join(lines)


# ── Subprocess helpers ────────────────────────────────────────────────────────

def _run(cmd: list[str], timeout: float) -> subprocess.CompletedProcess:
    return subprocess.run(
        cmd,
        check=True,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        timeout=timeout,
    )


def _stderr_tail(exc: subprocess.CalledProcessError) -> str:
    stderr = exc.stderr.decode("utf-8", errors="ignore") if exc.stderr else ""
    return stderr.strip()[-200:]


def _frame_command(source: Path, pattern: Path, interval: float, max_frames: int) -> list[str]:
    return [
        settings.ffmpeg_binary,
        "-hide_banner",
        "-loglevel", "error",
        "-y",
        "-i", str(source),
        "-vf", f"fps=1/{interval:g}",
        "-frames:v", str(max_frames),
        "-q:v", "2",
        str(pattern),
    ]


def _audio_command(source: Path, target: Path) -> list[str]:
    return [
        settings.ffmpeg_binary,
        "-hide_banner",
        "-loglevel", "error",
        "-y",
        "-i", str(source),
        "-vn",
        "-acodec", "libmp3lame",
        "-ab", "128k",
        str(target),
    ]


# ── Extractor ─────────────────────────────────────────────────────────────────

class TrackExtractor:
    """Module-level singleton `track_extractor`; stateless apart from settings."""

    def _extract_sync(self, buffer: bytes, extension: str, interval: float, max_frames: int) -> ExtractedTracks | None:
        timeout = settings.extraction_timeout
        with tempfile.TemporaryDirectory(prefix="mediatrust-") as tmp:
            workdir = Path(tmp)
            source = workdir / f"input.{extension or 'bin'}"
            source.write_bytes(buffer)

            try:
                _run(_frame_command(source, workdir / "frame_%03d.jpg", interval, max_frames), timeout)
            except FileNotFoundError:
                logger.error("ffmpeg executable not found (%s)", settings.ffmpeg_binary)
                return None
            except subprocess.TimeoutExpired:
                logger.warning("Frame extraction timed out after %.0fs", timeout)
                return None
            except subprocess.CalledProcessError as exc:
                logger.warning("Frame extraction failed: %s", _stderr_tail(exc))
                return None

            frames = [p.read_bytes() for p in sorted(workdir.glob("frame_*.jpg"))]
            if not frames:
                logger.warning("ffmpeg produced no frames")
                return None

            audio: bytes | None = None
            audio_path = workdir / "audio.mp3"
            try:
                _run(_audio_command(source, audio_path), timeout)
                if audio_path.exists() and audio_path.stat().st_size > 0:
                    audio = audio_path.read_bytes()
            except subprocess.TimeoutExpired:
                logger.warning("Audio extraction timed out — continuing without audio")
            except subprocess.CalledProcessError as exc:
                # Typical for clips with no audio stream
                logger.info("No audio track extracted: %s", _stderr_tail(exc))

        return ExtractedTracks(frames=frames, audio=audio, interval_seconds=interval)

    async def extract(
        self,
        buffer: bytes,
        extension: str = "mp4",
        interval: float | None = None,
        max_frames: int | None = None,
    ) -> ExtractedTracks | None:
        """
        Sample frames and pull the audio track from a video buffer.

        Returns:
            ExtractedTracks with ≥ 1 frame, or None if extraction failed.
        """
        interval = interval or settings.frame_interval_seconds
        max_frames = max_frames or settings.max_frames
        tracks = await asyncio.to_thread(self._extract_sync, buffer, extension, interval, max_frames)
        if tracks is not None:
            logger.info(
                "Extracted %d frame(s) @ %gs, audio=%s bytes",
                len(tracks.frames), interval, tracks.audio_length,
            )
        return tracks

    # ── Audio metadata ────────────────────────────────────────────────────────

    def _probe_sync(self, audio: bytes) -> AudioMetadata | None:
        timeout = settings.extraction_timeout
        with tempfile.TemporaryDirectory(prefix="mediatrust-") as tmp:
            source = Path(tmp) / "audio.mp3"
            source.write_bytes(audio)
            try:
                probe = _run(
                    [
                        settings.ffprobe_binary,
                        "-v", "quiet",
                        "-print_format", "json",
                        "-show_format",
                        "-show_streams",
                        str(source),
                    ],
                    timeout,
                )
                info = json.loads(probe.stdout or b"{}")
            except (FileNotFoundError, subprocess.TimeoutExpired, subprocess.CalledProcessError, ValueError) as exc:
                logger.warning("ffprobe failed: %s", exc)
                return None

            silence_log = ""
            try:
                result = _run(
                    [
                        settings.ffmpeg_binary,
                        "-hide_banner",
                        "-i", str(source),
                        "-af", _SILENCE_FILTER,
                        "-f", "null",
                        "-",
                    ],
                    timeout,
                )
                silence_log = result.stderr.decode("utf-8", errors="ignore")
            except (FileNotFoundError, subprocess.TimeoutExpired, subprocess.CalledProcessError) as exc:
                logger.info("silencedetect unavailable: %s", exc)

        return _parse_audio_metadata(info, silence_log)

    async def probe_audio(self, audio: bytes) -> AudioMetadata | None:
        """Container/stream metadata plus silence statistics for an audio track."""
        return await asyncio.to_thread(self._probe_sync, audio)


def _to_float(value) -> float | None:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _to_int(value) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _parse_audio_metadata(info: dict, silence_log: str) -> AudioMetadata:
    fmt = info.get("format") or {}
    stream = next(
        (s for s in info.get("streams") or [] if s.get("codec_type") == "audio"),
        {},
    )
    tags = {str(k).lower(): v for k, v in (fmt.get("tags") or {}).items()}

    starts = [float(m) for m in _SILENCE_START.findall(silence_log)]
    durations = [float(m) for m in _SILENCE_DURATION.findall(silence_log)]

    return AudioMetadata(
        duration=_to_float(fmt.get("duration")),
        sample_rate=_to_int(stream.get("sample_rate")),
        channels=_to_int(stream.get("channels")),
        bit_rate=_to_int(fmt.get("bit_rate") or stream.get("bit_rate")),
        codec=stream.get("codec_name"),
        encoder=tags.get("encoder"),
        silence_segments=len(starts),
        total_silence=round(sum(durations), 3),
        first_silence_start=starts[0] if starts else None,
    )


# Module-level singleton
track_extractor = TrackExtractor()
