"""
Media inspection via ffprobe.
"""

import json
import logging
from fractions import Fraction
from pathlib import Path
from typing import Any, Dict, Optional

from ..errors import ProbeError
from .models import VideoInfo
from .runner import ProcessRunner

logger = logging.getLogger(__name__)


def _parse_frame_rate(value: Optional[str]) -> float:
    """Parse ffprobe rates such as "30000/1001" or "25"."""
    if not value:
        return 0.0
    try:
        rate = Fraction(value)
    except (ValueError, ZeroDivisionError):
        return 0.0
    return float(rate)


def _parse_duration(stream: Dict[str, Any], fmt: Dict[str, Any]) -> float:
    """Stream duration, falling back to the container's. 0 when unknown."""
    for raw in (stream.get("duration"), fmt.get("duration")):
        try:
            duration = float(raw)
        except (TypeError, ValueError):
            continue
        if duration > 0:
            return duration
    return 0.0


class MediaProbe:
    """Extracts dimensions, duration, codec and frame rate from a local file."""

    def __init__(
        self,
        ffprobe_path: str,
        runner: ProcessRunner,
        timeout: float = 60,
        max_duration: Optional[float] = None,
    ):
        self.ffprobe_path = ffprobe_path
        self.runner = runner
        self.timeout = timeout
        self.max_duration = max_duration

    def build_command(self, path: Path) -> list:
        return [
            self.ffprobe_path,
            "-v", "error",
            "-print_format", "json",
            "-show_format",
            "-show_streams",
            str(path),
        ]

    def parse(self, output: str) -> VideoInfo:
        try:
            data = json.loads(output or "{}")
        except json.JSONDecodeError as e:
            raise ProbeError(f"Unreadable probe output: {e}", code="bad_probe_output")

        streams = data.get("streams") or []
        video = next((s for s in streams if s.get("codec_type") == "video"), None)
        if video is None:
            raise ProbeError("No video stream found", code="no_video_stream")

        try:
            width = int(video.get("width") or 0)
            height = int(video.get("height") or 0)
        except (TypeError, ValueError):
            raise ProbeError(
                f"Unreadable video dimensions {video.get('width')!r}x{video.get('height')!r}",
                code="bad_dimensions",
            )
        if width <= 0 or height <= 0:
            raise ProbeError(f"Invalid video dimensions {width}x{height}", code="bad_dimensions")

        return VideoInfo(
            width=width,
            height=height,
            duration=_parse_duration(video, data.get("format") or {}),
            codec=video.get("codec_name") or "",
            frame_rate=_parse_frame_rate(video.get("avg_frame_rate") or video.get("r_frame_rate")),
            has_audio=any(s.get("codec_type") == "audio" for s in streams),
        )

    async def probe(self, path: Path) -> VideoInfo:
        """
        Inspect ``path``. Never retried: a corrupt file stays corrupt.

        Raises:
            ProbeError: no video stream, non-zero exit, timeout, or a
                duration over the configured limit.
        """
        result = await self.runner.run(self.build_command(path), timeout=self.timeout)
        if not result.ok:
            raise ProbeError(f"ffprobe failed: {result.describe()}", code="probe_failed")

        info = self.parse(result.stdout)
        logger.info(
            f"[Probe] {path.name}: {info.width}x{info.height}, {info.duration:.2f}s, "
            f"codec={info.codec or 'unknown'}, fps={info.frame_rate:.2f}"
        )

        if self.max_duration and info.duration > self.max_duration:
            raise ProbeError(
                f"Video duration ({round(info.duration)}s) exceeds maximum allowed "
                f"duration of {self.max_duration:.0f} seconds",
                code="duration_exceeded",
            )

        return info
