"""
Constants and presets for transcoding operations.
"""

from typing import Dict, List

from .models import QualityTier


# Ascending by height; every tier carries a strictly higher bitrate than the last
QUALITY_LADDER: List[QualityTier] = [
    QualityTier("240p", 240, 400, 64),
    QualityTier("360p", 360, 800, 96),
    QualityTier("480p", 480, 1200, 96),
    QualityTier("720p", 720, 2500, 128),
    QualityTier("1080p", 1080, 4500, 192),
]

VIDEO_CODEC = "libx264"
AUDIO_CODEC = "aac"

# Staging layout, relative to the output root
MASTER_PLAYLIST_NAME = "master.m3u8"
TIER_PLAYLIST_NAME = "playlist.m3u8"
SEGMENT_DIR_NAME = "segments"
SEGMENT_PATTERN = "segment_%03d.ts"
THUMBNAIL_NAME = "thumbnail.jpg"
PREVIEW_NAME = "preview.mp4"

# Manifests left at a destination by earlier runs (including the old DASH output)
STALE_MANIFEST_NAMES = [MASTER_PLAYLIST_NAME, "master.mpd"]

CONTENT_TYPES: Dict[str, str] = {
    ".m3u8": "application/vnd.apple.mpegurl",
    ".ts": "video/mp2t",
    ".mp4": "video/mp4",
    ".jpg": "image/jpeg",
}
DEFAULT_CONTENT_TYPE = "application/octet-stream"

# Segment integrity
MIN_SEGMENT_SIZE = 1024
TS_SYNC_BYTE = b"\x47"
