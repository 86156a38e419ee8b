"""
Quality ladder planning. Pure functions, no I/O.
"""

from typing import List, Optional, Sequence, Tuple

from .constants import QUALITY_LADDER
from .models import QualityTier, TierPlan, VideoInfo


def even_width_for_height(source_width: int, source_height: int, target_height: int) -> int:
    """
    Width matching the source aspect ratio at ``target_height``, rounded to
    the nearest even number (ties round up).

    Integer arithmetic keeps the result exact: the returned width is within
    one pixel of ``target_height * source_width / source_height``.
    """
    if source_width <= 0 or source_height <= 0:
        raise ValueError(f"Invalid source dimensions {source_width}x{source_height}")
    width = 2 * ((target_height * source_width + source_height) // (2 * source_height))
    return max(2, width)


def compute_dimensions(source_width: int, source_height: int, max_height: int) -> Tuple[int, int]:
    """Target (width, height) for one tier. Tiers taller than the source are kept."""
    return even_width_for_height(source_width, source_height, max_height), max_height


def plan_ladder(
    video_info: VideoInfo,
    tiers: Optional[Sequence[QualityTier]] = None,
) -> List[TierPlan]:
    """Plan every tier of ``tiers`` (default: the compiled ladder) in table order."""
    tiers = QUALITY_LADDER if tiers is None else tiers
    plans = []
    for tier in tiers:
        width, height = compute_dimensions(video_info.width, video_info.height, tier.max_height)
        plans.append(TierPlan(
            name=tier.name,
            width=width,
            height=height,
            video_bitrate_kbps=tier.video_bitrate_kbps,
            audio_bitrate_kbps=tier.audio_bitrate_kbps,
        ))
    return plans


def preview_dimensions(
    source_width: int,
    source_height: int,
    max_dimension: int,
) -> Tuple[int, int]:
    """
    Scale so the longer side is at most ``max_dimension``, keeping the aspect
    ratio; both sides even.
    """
    if source_width >= source_height:
        width = min(max_dimension, source_width)
        height = round(width * source_height / source_width)
    else:
        height = min(max_dimension, source_height)
        width = round(height * source_width / source_height)
    return _make_even(width), _make_even(height)


def reduced_preview_dimensions(
    width: int,
    height: int,
    scale: float,
    min_dimension: int,
) -> Tuple[int, int]:
    """
    Shrink preview dimensions by ``scale`` on the longer side, never below
    ``min_dimension`` there (nor above the current size).
    """
    landscape = width >= height
    longer, shorter = (width, height) if landscape else (height, width)

    floor = min(min_dimension, longer)
    new_longer = max(floor, round(longer * scale))
    new_shorter = round(new_longer * shorter / longer)

    new_longer, new_shorter = _make_even(new_longer), _make_even(new_shorter)
    return (new_longer, new_shorter) if landscape else (new_shorter, new_longer)


def _make_even(value: int) -> int:
    value = max(2, int(value))
    return value if value % 2 == 0 else value + 1
