"""
Poster thumbnail and muted preview clip generation.
"""

import asyncio
import logging
import shutil
from pathlib import Path
from typing import Optional

from ..config import PreviewConfig, TranscodingConfig
from ..errors import JobCancelled, PreviewError, ThumbnailError
from ..workspace import StagingWorkspace
from .commands import CommandBuilder
from .constants import PREVIEW_NAME, THUMBNAIL_NAME
from .ladder import preview_dimensions, reduced_preview_dimensions
from .models import PreviewArtifact, VideoInfo
from .runner import ProcessRunner

logger = logging.getLogger(__name__)


class ThumbnailGenerator:
    """Extracts one still frame near the start of the source."""

    def __init__(self, runner: ProcessRunner, command_builder: CommandBuilder, transcoding_config: TranscodingConfig):
        self.runner = runner
        self.command_builder = command_builder
        self.config = transcoding_config

    def _timestamp(self, video_info: VideoInfo) -> float:
        target = self.config.thumbnail_timestamp
        if 0 < video_info.duration <= target:
            # Short clips: seeking past the end yields no frame
            return video_info.duration / 2
        return target

    async def generate(
        self,
        source: Path,
        video_info: VideoInfo,
        workspace: StagingWorkspace,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Path:
        """
        Write ``thumbnail.jpg`` into the output tree.

        Raises:
            ThumbnailError: extraction failed or produced nothing. Fatal, the
                manifest needs a poster image.
        """
        output_path = workspace.output_dir / THUMBNAIL_NAME
        timestamp = self._timestamp(video_info)
        logger.info(f"[Thumbnail] Extracting frame at {timestamp:.2f}s")

        cmd = self.command_builder.build_thumbnail_command(source, output_path, timestamp)
        result = await self.runner.run(cmd, timeout=self.config.thumbnail_timeout, cancel_event=cancel_event)
        if result.cancelled:
            raise JobCancelled()
        if not result.ok:
            raise ThumbnailError(f"Thumbnail extraction failed: {result.describe()}", code="thumbnail_failed")
        if not output_path.exists() or output_path.stat().st_size == 0:
            raise ThumbnailError("Thumbnail extraction produced no image", code="empty_output")

        return output_path


class PreviewGenerator:
    """
    Produces a short muted clip under a soft byte budget.

    At most two encodes: the first at the configured quality and, when that
    exceeds the budget, one more at reduced dimensions, bitrate and frame
    rate. Whatever the second pass produces is kept. Never raises; any
    failure means "no preview".
    """

    def __init__(
        self,
        runner: ProcessRunner,
        command_builder: CommandBuilder,
        preview_config: PreviewConfig,
        timeout: float = 300,
    ):
        self.runner = runner
        self.command_builder = command_builder
        self.config = preview_config
        self.timeout = timeout

    def duration_for(self, video_info: VideoInfo) -> float:
        if video_info.duration > 0:
            return min(self.config.max_seconds, video_info.duration)
        return self.config.max_seconds

    async def _encode(
        self,
        source: Path,
        output_path: Path,
        width: int,
        height: int,
        duration: float,
        reduced: bool,
        cancel_event: Optional[asyncio.Event],
    ) -> float:
        """Run one preview encode and return the resulting size in KB."""
        cmd = self.command_builder.build_preview_command(
            source, output_path, width, height, duration, self.config, reduced=reduced
        )
        result = await self.runner.run(cmd, timeout=self.timeout, cancel_event=cancel_event)
        if not result.ok:
            raise PreviewError(f"Preview encode failed: {result.describe()}")
        if not output_path.exists() or output_path.stat().st_size == 0:
            raise PreviewError("Preview encode produced no output")
        return output_path.stat().st_size / 1024

    async def _generate(
        self,
        source: Path,
        video_info: VideoInfo,
        workspace: StagingWorkspace,
        cancel_event: Optional[asyncio.Event],
    ) -> PreviewArtifact:
        duration = self.duration_for(video_info)
        width, height = preview_dimensions(video_info.width, video_info.height, self.config.max_dimension)
        logger.info(
            f"[Preview] {video_info.width}x{video_info.height} -> {width}x{height}, {duration:.2f}s"
        )

        first_attempt = workspace.work_dir / "preview_initial.mp4"
        size_kb = await self._encode(source, first_attempt, width, height, duration, False, cancel_event)
        logger.info(f"[Preview] Created: {size_kb:.2f} KB")
        final_path = first_attempt
        reduced = False

        if size_kb > self.config.size_budget_kb:
            small_width, small_height = reduced_preview_dimensions(
                width, height, self.config.reduction_scale, self.config.min_dimension
            )
            logger.warning(
                f"[Preview] {size_kb:.2f} KB exceeds {self.config.size_budget_kb} KB, "
                f"re-encoding at {small_width}x{small_height}"
            )
            second_attempt = workspace.work_dir / "preview_reduced.mp4"
            size_kb = await self._encode(
                source, second_attempt, small_width, small_height, duration, True, cancel_event
            )
            final_path = second_attempt
            reduced = True

            if size_kb > self.config.size_budget_kb:
                logger.warning(
                    f"[Preview] Final size ({size_kb:.2f} KB) exceeds {self.config.size_budget_kb} KB target"
                )

        published_path = workspace.output_dir / PREVIEW_NAME
        shutil.move(str(final_path), str(published_path))
        logger.info(f"[Preview] Final preview size: {size_kb:.2f} KB")
        return PreviewArtifact(local_path=published_path, size_kb=size_kb, reduced=reduced)

    async def generate(
        self,
        source: Path,
        video_info: VideoInfo,
        workspace: StagingWorkspace,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Optional[PreviewArtifact]:
        """Return the preview artifact, or None when it could not be produced."""
        try:
            return await self._generate(source, video_info, workspace, cancel_event)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"[Preview] Failed to generate preview, continuing without it: {e}")
            (workspace.output_dir / PREVIEW_NAME).unlink(missing_ok=True)
            return None
