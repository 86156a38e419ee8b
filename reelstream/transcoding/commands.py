"""
FFmpeg command building for tier encodes, HLS segmentation, thumbnails
and previews.
"""

import logging
from pathlib import Path
from typing import List

from ..config import PreviewConfig, TranscodingConfig
from .constants import AUDIO_CODEC, SEGMENT_PATTERN, TIER_PLAYLIST_NAME, VIDEO_CODEC
from .models import TierPlan

logger = logging.getLogger(__name__)


def _posix(path: Path) -> str:
    # FFmpeg accepts forward slashes on every platform
    return str(path).replace("\\", "/")


class CommandBuilder:
    """Builds FFmpeg commands for every pipeline stage."""

    def __init__(self, ffmpeg_path: str, transcoding_config: TranscodingConfig):
        self.ffmpeg_path = ffmpeg_path
        self.transcoding_config = transcoding_config

    def _base(self) -> List[str]:
        return [self.ffmpeg_path, "-y", "-hide_banner", "-nostdin"]

    def build_encode_command(self, source: Path, plan: TierPlan, output_path: Path) -> List[str]:
        """
        Full-file encode of one tier.

        Keyframes are forced on every segment boundary so the segmenter can
        stream-copy and still cut exact ``segment_duration`` chunks.
        """
        segment_duration = self.transcoding_config.segment_duration
        video_bitrate = f"{plan.video_bitrate_kbps}k"

        cmd = self._base()
        cmd.extend(["-i", str(source)])
        cmd.extend(["-map", "0:v:0", "-map", "0:a:0?"])

        cmd.extend(["-c:v", VIDEO_CODEC])
        cmd.extend(["-vf", f"scale={plan.width}:{plan.height},format=yuv420p"])
        cmd.extend(["-b:v", video_bitrate])
        cmd.extend(["-maxrate", video_bitrate, "-bufsize", f"{plan.video_bitrate_kbps * 2}k"])
        cmd.extend(["-preset", self.transcoding_config.preset])
        cmd.extend(["-crf", str(self.transcoding_config.crf)])
        cmd.extend([
            "-force_key_frames", f"expr:gte(t,n_forced*{segment_duration})",
            "-sc_threshold", "0",
        ])

        cmd.extend(["-c:a", AUDIO_CODEC, "-b:a", f"{plan.audio_bitrate_kbps}k", "-ac", "2"])
        cmd.extend(["-movflags", "+faststart"])
        cmd.append(str(output_path))
        return cmd

    def build_segment_command(self, encoded_path: Path, segment_dir: Path) -> List[str]:
        """Cut an encoded tier into a static VOD playlist of MPEG-TS segments."""
        segment_duration = self.transcoding_config.segment_duration

        cmd = self._base()
        cmd.extend(["-i", str(encoded_path)])
        cmd.extend(["-map", "0:v:0", "-map", "0:a:0?"])
        cmd.extend(["-c", "copy"])
        cmd.extend([
            "-f", "hls",
            "-hls_time", str(segment_duration),
            "-hls_init_time", str(segment_duration),
            "-hls_list_size", "0",
            "-hls_playlist_type", "vod",
            "-hls_flags", "independent_segments",
            "-hls_segment_type", "mpegts",
            "-hls_segment_filename", _posix(segment_dir / SEGMENT_PATTERN),
            _posix(segment_dir / TIER_PLAYLIST_NAME),
        ])
        return cmd

    def build_thumbnail_command(self, source: Path, output_path: Path, timestamp: float) -> List[str]:
        """Grab a single JPEG frame at ``timestamp`` seconds."""
        cmd = self._base()
        cmd.extend(["-ss", f"{timestamp:.3f}"])
        cmd.extend(["-i", str(source)])
        cmd.extend(["-frames:v", "1", "-q:v", "2"])
        cmd.append(str(output_path))
        return cmd

    def build_preview_command(
        self,
        source: Path,
        output_path: Path,
        width: int,
        height: int,
        duration: float,
        preview_config: PreviewConfig,
        reduced: bool = False,
    ) -> List[str]:
        """Short, muted, fixed-frame-rate MP4 clip from the start of the source."""
        if reduced:
            bitrate, crf, fps = preview_config.reduced_bitrate, preview_config.reduced_crf, preview_config.reduced_fps
        else:
            bitrate, crf, fps = preview_config.bitrate, preview_config.crf, preview_config.fps

        cmd = self._base()
        cmd.extend(["-i", str(source)])
        cmd.extend(["-t", f"{duration:.3f}"])
        cmd.extend(["-map", "0:v:0"])
        cmd.extend(["-c:v", VIDEO_CODEC])
        cmd.extend(["-vf", f"scale={width}:{height}"])
        cmd.extend(["-b:v", bitrate])
        cmd.extend(["-preset", "fast", "-crf", str(crf)])
        cmd.extend(["-r", str(fps), "-g", str(fps)])
        cmd.extend(["-pix_fmt", "yuv420p"])
        cmd.append("-an")
        cmd.extend(["-movflags", "+faststart"])
        cmd.append(str(output_path))
        return cmd
