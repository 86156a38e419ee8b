"""
Per-tier encoding and HLS segmentation.
"""

import asyncio
import logging
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from ..concurrency import gather_or_cancel
from ..config import TranscodingConfig
from ..errors import EncodeError, JobCancelled, SegmentError
from ..workspace import StagingWorkspace
from .commands import CommandBuilder
from .constants import MIN_SEGMENT_SIZE, TIER_PLAYLIST_NAME, TS_SYNC_BYTE
from .error_classifier import ErrorClassifier, get_error_classifier
from .models import TierPlan, TierResult
from .runner import ProcessResult, ProcessRunner

logger = logging.getLogger(__name__)


class TierEncoder:
    """Encodes each planned tier, then segments it into an HLS playlist."""

    def __init__(
        self,
        runner: ProcessRunner,
        command_builder: CommandBuilder,
        transcoding_config: TranscodingConfig,
        classifier: Optional[ErrorClassifier] = None,
    ):
        self.runner = runner
        self.command_builder = command_builder
        self.config = transcoding_config
        self.classifier = classifier or get_error_classifier()

    def _failure(
        self,
        error_cls,
        stage: str,
        plan: TierPlan,
        result: ProcessResult,
    ) -> EncodeError:
        if result.timed_out:
            code = "timeout"
        else:
            _, code = self.classifier.classify(result.stderr)
        description = self.classifier.get_error_description(result.stderr)
        return error_cls(
            f"{stage} failed for {plan.name} ({description}): {result.describe()}",
            tier=plan.name,
            returncode=result.returncode,
            code=code,
        )

    async def encode_tier(
        self,
        source: Path,
        plan: TierPlan,
        workspace: StagingWorkspace,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> TierResult:
        """
        Run both stages for one tier.

        Raises:
            EncodeError: the full-file encode failed or produced nothing.
            SegmentError: segmentation failed or its output is unusable.
            JobCancelled: the job was cancelled while a stage was running.
        """
        encoded_path = workspace.tier_work_dir(plan.name) / f"{plan.name}.mp4"
        segment_dir = workspace.tier_segment_dir(plan.name)

        logger.info(f"[Encode] {plan.name}: {plan.resolution} @ {plan.video_bitrate_kbps}k")
        cmd = self.command_builder.build_encode_command(source, plan, encoded_path)
        result = await self.runner.run(cmd, timeout=self.config.encode_timeout, cancel_event=cancel_event)
        if result.cancelled:
            raise JobCancelled()
        if not result.ok:
            raise self._failure(EncodeError, "Encode", plan, result)
        if not encoded_path.exists() or encoded_path.stat().st_size == 0:
            raise EncodeError(
                f"Encode produced no output for {plan.name}", tier=plan.name, code="empty_output"
            )

        logger.info(f"[Segment] {plan.name}: cutting {self.config.segment_duration}s segments")
        cmd = self.command_builder.build_segment_command(encoded_path, segment_dir)
        result = await self.runner.run(cmd, timeout=self.config.segment_timeout, cancel_event=cancel_event)
        if result.cancelled:
            raise JobCancelled()
        if not result.ok:
            raise self._failure(SegmentError, "Segmentation", plan, result)

        playlist_path = segment_dir / TIER_PLAYLIST_NAME
        is_valid, error, segment_count = self.validate_playlist(playlist_path)
        if not is_valid:
            raise SegmentError(
                f"Segmentation output invalid for {plan.name}: {error}",
                tier=plan.name,
                code="invalid_output",
            )

        logger.info(f"[Segment] {plan.name}: {segment_count} segments ready")
        return TierResult(plan=plan, playlist_path=playlist_path, segment_count=segment_count)

    async def encode_all(
        self,
        source: Path,
        plans: Sequence[TierPlan],
        workspace: StagingWorkspace,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> List[TierResult]:
        """
        Encode every tier with at most ``max_concurrent_tiers`` running at
        once. Results come back in ``plans`` order whatever order they finish
        in; the first failure cancels the remaining tiers.
        """
        semaphore = asyncio.Semaphore(max(1, self.config.max_concurrent_tiers))
        aborted = False

        async def bounded(plan: TierPlan) -> TierResult:
            nonlocal aborted
            async with semaphore:
                # A waiter can win the slot a failed tier releases before the
                # failure reaches gather_or_cancel
                if aborted or (cancel_event and cancel_event.is_set()):
                    raise JobCancelled()
                try:
                    return await self.encode_tier(source, plan, workspace, cancel_event)
                except BaseException:
                    aborted = True
                    raise

        logger.info(
            f"[Encode] Starting {len(plans)} tier(s), "
            f"up to {self.config.max_concurrent_tiers} at a time"
        )
        return await gather_or_cancel(*(bounded(plan) for plan in plans))

    def validate_playlist(self, playlist_path: Path) -> Tuple[bool, str, int]:
        """
        Validate a tier playlist: it exists, is complete, and every segment it
        references exists and looks like MPEG-TS.

        Returns:
            Tuple of (is_valid, error_message, segment_count)
        """
        if not playlist_path.exists():
            return False, "Playlist not found", 0

        content = playlist_path.read_text()
        if "#EXT-X-ENDLIST" not in content:
            return False, "Playlist is not marked complete", 0

        segment_names = [
            line.strip() for line in content.splitlines()
            if line.strip() and not line.startswith("#")
        ]
        if not segment_names:
            return False, "Playlist references no segments", 0

        segment_files = [playlist_path.parent / name for name in segment_names]
        for segment in segment_files:
            if not segment.exists():
                return False, f"Segment {segment.name} missing", 0

        integrity_ok, integrity_msg = self._check_segment_integrity(segment_files)
        if not integrity_ok:
            return False, integrity_msg, 0

        return True, "", len(segment_files)

    def _check_segment_integrity(self, segment_files: List[Path]) -> Tuple[bool, str]:
        """
        Check segment files: MPEG-TS sync byte on each, minimum size on all
        but the final (possibly short) segment.
        """
        last_index = len(segment_files) - 1
        for index, segment in enumerate(segment_files):
            size = segment.stat().st_size
            if size == 0:
                return False, f"Segment {segment.name} is empty"
            if index < last_index and size < MIN_SEGMENT_SIZE:
                return False, f"Segment {segment.name} too small: {size} bytes"

            with open(segment, "rb") as f:
                header = f.read(1)
            if header != TS_SYNC_BYTE:
                return False, f"Segment {segment.name} missing MPEG-TS sync byte"

        return True, ""
