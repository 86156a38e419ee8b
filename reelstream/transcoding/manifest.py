"""
HLS master playlist generation.
"""

import logging
from pathlib import Path
from typing import Sequence

from .constants import MASTER_PLAYLIST_NAME
from .models import TierPlan

logger = logging.getLogger(__name__)


def render_master_playlist(plans: Sequence[TierPlan]) -> str:
    """
    Master playlist text: header, version, then one stream entry per tier in
    the order given (the tier table order, lowest bitrate first).
    """
    lines = ["#EXTM3U", "#EXT-X-VERSION:3"]

    for plan in plans:
        lines.append(
            f"#EXT-X-STREAM-INF:BANDWIDTH={plan.bandwidth_bps},"
            f"RESOLUTION={plan.resolution}"
        )
        lines.append(plan.playlist_relative_path)

    return "\n".join(lines) + "\n"


def write_master_playlist(output_dir: Path, plans: Sequence[TierPlan]) -> Path:
    """Write ``master.m3u8`` into ``output_dir`` and return its path."""
    if not plans:
        raise ValueError("Cannot build a master playlist without tiers")

    content = render_master_playlist(plans)
    master_path = output_dir / MASTER_PLAYLIST_NAME
    master_path.write_text(content)

    logger.info(f"[Manifest] Master playlist written with {len(plans)} tier(s)")
    logger.debug(f"[Manifest] Content:\n{content}")
    return master_path
