"""
Media layer for ReelStream: probing, ladder planning, FFmpeg command
building, tier encoding, HLS manifests, thumbnails and previews.
"""

from .models import VideoInfo, QualityTier, TierPlan, TierResult, PreviewArtifact
from .constants import (
    QUALITY_LADDER,
    MASTER_PLAYLIST_NAME,
    TIER_PLAYLIST_NAME,
    THUMBNAIL_NAME,
    PREVIEW_NAME,
    STALE_MANIFEST_NAMES,
    CONTENT_TYPES,
    DEFAULT_CONTENT_TYPE,
)
from .runner import ProcessResult, ProcessRunner
from .error_classifier import ErrorClassifier, get_error_classifier
from .probe import MediaProbe
from .ladder import plan_ladder, compute_dimensions, preview_dimensions, reduced_preview_dimensions
from .commands import CommandBuilder
from .encoder import TierEncoder
from .manifest import render_master_playlist, write_master_playlist
from .preview import ThumbnailGenerator, PreviewGenerator

__all__ = [
    # Models
    "VideoInfo",
    "QualityTier",
    "TierPlan",
    "TierResult",
    "PreviewArtifact",
    # Constants
    "QUALITY_LADDER",
    "MASTER_PLAYLIST_NAME",
    "TIER_PLAYLIST_NAME",
    "THUMBNAIL_NAME",
    "PREVIEW_NAME",
    "STALE_MANIFEST_NAMES",
    "CONTENT_TYPES",
    "DEFAULT_CONTENT_TYPE",
    # Processes
    "ProcessResult",
    "ProcessRunner",
    "ErrorClassifier",
    "get_error_classifier",
    # Stages
    "MediaProbe",
    "plan_ladder",
    "compute_dimensions",
    "preview_dimensions",
    "reduced_preview_dimensions",
    "CommandBuilder",
    "TierEncoder",
    "render_master_playlist",
    "write_master_playlist",
    "ThumbnailGenerator",
    "PreviewGenerator",
]
