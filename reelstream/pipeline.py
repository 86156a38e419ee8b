"""
Transcoding pipeline entry point.

One run: fetch -> probe -> plan -> encode tiers (alongside thumbnail and
preview) -> master playlist -> publish -> notify. The staging workspace is
removed whatever happens; the status notification fires exactly once, after
the workspace scope has closed.
"""

import asyncio
import logging
import shutil
from typing import Optional

import httpx

from .concurrency import gather_or_cancel
from .config import ReelStreamConfig, get_config
from .errors import JobCancelled, PipelineError
from .fetcher import SourceFetcher
from .models import PublishedManifest, TierPlaylist, TranscodeJob
from .notifier import StatusNotifier
from .publisher import ArtifactPublisher, ProgressSink
from .storage import ObjectStorage, S3Storage
from .transcoding import (
    MASTER_PLAYLIST_NAME,
    PREVIEW_NAME,
    THUMBNAIL_NAME,
    CommandBuilder,
    MediaProbe,
    PreviewGenerator,
    ProcessRunner,
    ThumbnailGenerator,
    TierEncoder,
    plan_ladder,
    write_master_playlist,
)
from .workspace import staging_workspace

logger = logging.getLogger(__name__)


def find_binary(configured: str, name: str) -> str:
    """Resolve an encoder binary; "auto" means a PATH lookup."""
    if configured and configured != "auto":
        return configured
    return shutil.which(name) or name


def _check_cancelled(cancel_event: Optional[asyncio.Event]) -> None:
    if cancel_event and cancel_event.is_set():
        raise JobCancelled()


class TranscodePipeline:
    """
    Runs transcode jobs. Safe to share between concurrent jobs: every run
    gets its own staging directory and nothing else is mutated per job.
    """

    def __init__(
        self,
        config: Optional[ReelStreamConfig] = None,
        storage: Optional[ObjectStorage] = None,
        runner: Optional[ProcessRunner] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        notifier: Optional[StatusNotifier] = None,
    ):
        self.config = config or get_config()
        tc = self.config.transcoding

        self.runner = runner or ProcessRunner()
        self.storage = storage or S3Storage(self.config.storage)

        ffmpeg = find_binary(tc.ffmpeg_path, "ffmpeg")
        ffprobe = find_binary(tc.ffprobe_path, "ffprobe")
        self.command_builder = CommandBuilder(ffmpeg, tc)

        self.fetcher = SourceFetcher(self.config.fetch, self.config.limits, client=http_client)
        self.probe = MediaProbe(
            ffprobe,
            self.runner,
            timeout=tc.probe_timeout,
            max_duration=self.config.limits.max_duration_seconds,
        )
        self.encoder = TierEncoder(self.runner, self.command_builder, tc)
        self.thumbnails = ThumbnailGenerator(self.runner, self.command_builder, tc)
        self.previews = PreviewGenerator(
            self.runner, self.command_builder, self.config.preview, timeout=tc.preview_timeout
        )
        self.publisher = ArtifactPublisher(self.storage, self.config.storage)
        self.notifier = notifier or StatusNotifier(self.config.notify, client=http_client)

    async def run(
        self,
        job: TranscodeJob,
        cancel_event: Optional[asyncio.Event] = None,
        progress: Optional[ProgressSink] = None,
    ) -> PublishedManifest:
        """
        Run ``job`` to completion and report the outcome.

        Raises:
            PipelineError: the first fatal error. Unexpected exceptions are
                wrapped, with the original chained as ``__cause__``.
        """
        logger.info(f"[Job] {job.job_id}: starting, source={job.source_url}, prefix={job.destination_prefix}")

        try:
            manifest = await self._execute(job, cancel_event, progress)
        except asyncio.CancelledError:
            logger.warning(f"[Job] {job.job_id}: cancelled")
            await asyncio.shield(self.notifier.notify_failure(job.job_id, JobCancelled()))
            raise
        except PipelineError as e:
            logger.error(f"[Job] {job.job_id}: failed ({e.kind}/{e.code}): {e}")
            await self.notifier.notify_failure(job.job_id, e)
            raise
        except Exception as e:
            logger.exception(f"[Job] {job.job_id}: unexpected error: {e}")
            wrapped = PipelineError(f"Unexpected error: {e}", code="internal_error")
            wrapped.__cause__ = e
            await self.notifier.notify_failure(job.job_id, wrapped)
            raise wrapped from e

        logger.info(f"[Job] {job.job_id}: done, master={manifest.master_manifest_url}")
        await self.notifier.notify_success(job.job_id)
        return manifest

    async def _execute(
        self,
        job: TranscodeJob,
        cancel_event: Optional[asyncio.Event],
        progress: Optional[ProgressSink],
    ) -> PublishedManifest:
        async with staging_workspace(job.job_id, self.config.transcoding.temp_directory) as workspace:
            source = workspace.source_path(job.source_url)
            await self.fetcher.fetch(job.source_url, source)
            _check_cancelled(cancel_event)

            video_info = await self.probe.probe(source)
            plans = plan_ladder(video_info)
            logger.info(f"[Job] {job.job_id}: planned {', '.join(f'{p.name}={p.resolution}' for p in plans)}")
            _check_cancelled(cancel_event)

            stages = [
                self.encoder.encode_all(source, plans, workspace, cancel_event),
                self.previews.generate(source, video_info, workspace, cancel_event),
            ]
            if job.existing_thumbnail_url:
                logger.info(f"[Thumbnail] Reusing existing thumbnail {job.existing_thumbnail_url}")
            else:
                stages.append(self.thumbnails.generate(source, video_info, workspace, cancel_event))

            results = await gather_or_cancel(*stages)
            preview = results[1]

            write_master_playlist(workspace.output_dir, plans)
            _check_cancelled(cancel_event)

            urls = await self.publisher.publish_all(
                workspace.output_dir, job.destination_prefix, progress=progress, cancel_event=cancel_event
            )

            if preview is not None:
                preview.remote_url = urls.get(PREVIEW_NAME)

            return PublishedManifest(
                master_manifest_url=urls[MASTER_PLAYLIST_NAME],
                thumbnail_url=job.existing_thumbnail_url or urls[THUMBNAIL_NAME],
                preview_url=preview.remote_url if preview else None,
                duration_seconds=round(video_info.duration),
                tiers=[
                    TierPlaylist(name=plan.name, playlist_url=urls[plan.playlist_relative_path])
                    for plan in plans
                ],
            )


def run_transcode(job: TranscodeJob, config: Optional[ReelStreamConfig] = None, **kwargs) -> PublishedManifest:
    """Blocking entry point: run one job on a fresh event loop."""
    pipeline = TranscodePipeline(config=config, **kwargs)
    return asyncio.run(pipeline.run(job))
