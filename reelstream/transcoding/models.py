"""
Data classes shared by the media layer.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional


@dataclass
class VideoInfo:
    """What the prober learned about the source."""
    width: int
    height: int
    duration: float = 0.0
    codec: str = ""
    frame_rate: float = 0.0
    has_audio: bool = False

    @property
    def aspect_ratio(self) -> float:
        return self.width / self.height if self.height else 0.0


@dataclass(frozen=True)
class QualityTier:
    """A named entry of the compiled quality ladder."""
    name: str
    max_height: int
    video_bitrate_kbps: int
    audio_bitrate_kbps: int


@dataclass(frozen=True)
class TierPlan:
    """A tier with its target dimensions computed for one source."""
    name: str
    width: int
    height: int
    video_bitrate_kbps: int
    audio_bitrate_kbps: int

    @property
    def bandwidth_bps(self) -> int:
        return (self.video_bitrate_kbps + self.audio_bitrate_kbps) * 1000

    @property
    def resolution(self) -> str:
        return f"{self.width}x{self.height}"

    @property
    def playlist_relative_path(self) -> str:
        return f"{self.name}/segments/playlist.m3u8"


@dataclass
class TierResult:
    plan: TierPlan
    playlist_path: Path
    segment_count: int

    @property
    def playlist_relative_path(self) -> str:
        return self.plan.playlist_relative_path


@dataclass
class PreviewArtifact:
    local_path: Path
    size_kb: float
    remote_url: Optional[str] = None
    reduced: bool = False
