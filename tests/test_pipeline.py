"""
Pipeline-level tests with the fake encoder, in-memory storage and mock HTTP.
"""

import asyncio

import httpx
import pytest

from reelstream.config import NotifyConfig
from reelstream.errors import EncodeError, FetchError, JobCancelled, PipelineError, ProbeError, ThumbnailError
from reelstream.models import TranscodeJob
from reelstream.notifier import StatusNotifier
from reelstream.transcoding.constants import QUALITY_LADDER

from conftest import SOURCE_URL


PREFIX = "reels/reel-1"


def make_job(**overrides):
    fields = dict(job_id="reel-1", source_url=SOURCE_URL, destination_prefix=PREFIX)
    fields.update(overrides)
    return TranscodeJob(**fields)


def staging_entries(staging_root):
    return list(staging_root.iterdir()) if staging_root.exists() else []


class TestSuccess:
    @pytest.mark.asyncio
    async def test_full_package_published(self, pipeline, memory_storage, fake_http, staging_root):
        manifest = await pipeline.run(make_job())

        assert manifest.master_manifest_url == f"https://cdn.test/{PREFIX}/master.m3u8"
        assert manifest.thumbnail_url == f"https://cdn.test/{PREFIX}/thumbnail.jpg"
        assert manifest.preview_url == f"https://cdn.test/{PREFIX}/preview.mp4"
        assert manifest.duration_seconds == 10
        assert [t.name for t in manifest.tiers] == [t.name for t in QUALITY_LADDER]
        assert manifest.tiers[0].playlist_url == f"https://cdn.test/{PREFIX}/240p/segments/playlist.m3u8"

        keys = set(memory_storage.objects)
        for tier in QUALITY_LADDER:
            assert f"{PREFIX}/{tier.name}/segments/playlist.m3u8" in keys
            assert f"{PREFIX}/{tier.name}/segments/segment_000.ts" in keys
            assert f"{PREFIX}/{tier.name}/segments/segment_009.ts" in keys
        assert f"{PREFIX}/master.m3u8" in keys
        # Intermediate encodes and the source are never published
        assert not any(key.endswith(f"{t.name}.mp4") for key in keys for t in QUALITY_LADDER)
        assert not any("source" in key for key in keys)

        assert staging_entries(staging_root) == []
        assert fake_http.status_posts == [{"jobId": "reel-1", "status": "done"}]

    @pytest.mark.asyncio
    async def test_master_lists_tiers_in_table_order(self, pipeline, memory_storage, fake_runner):
        fake_runner.delays = {"240p": 0.05, "360p": 0.04, "480p": 0.03, "720p": 0.02, "1080p": 0.0}
        pipeline.config.transcoding.max_concurrent_tiers = 5
        await pipeline.run(make_job())

        master = memory_storage.objects[f"{PREFIX}/master.m3u8"].decode()
        paths = [line for line in master.splitlines() if line and not line.startswith("#")]
        assert paths == [f"{t.name}/segments/playlist.m3u8" for t in QUALITY_LADDER]

    @pytest.mark.asyncio
    async def test_existing_thumbnail_reused(self, pipeline, fake_runner, memory_storage):
        url = "https://images.test/poster.jpg"
        manifest = await pipeline.run(make_job(existing_thumbnail_url=url))

        assert manifest.thumbnail_url == url
        assert fake_runner.calls_for("thumbnail") == []
        assert f"{PREFIX}/thumbnail.jpg" not in memory_storage.objects

    @pytest.mark.asyncio
    async def test_oversized_preview_still_succeeds(self, pipeline, fake_runner):
        fake_runner.preview_sizes_kb = [800, 420]
        manifest = await pipeline.run(make_job())
        assert len(fake_runner.calls_for("preview")) == 2
        assert manifest.preview_url is not None

    @pytest.mark.asyncio
    async def test_preview_failure_degrades(self, pipeline, fake_runner, memory_storage, fake_http):
        fake_runner.fail_preview = True
        manifest = await pipeline.run(make_job())
        assert manifest.preview_url is None
        assert f"{PREFIX}/preview.mp4" not in memory_storage.objects
        assert fake_http.status_posts[0]["status"] == "done"

    @pytest.mark.asyncio
    async def test_second_run_leaves_one_master(self, pipeline, memory_storage, fake_runner):
        memory_storage.put(f"{PREFIX}/master.mpd", b"<MPD/>")
        await pipeline.run(make_job())

        fake_runner.duration = 6
        await pipeline.run(make_job())

        masters = [k for k in memory_storage.objects if k.startswith(f"{PREFIX}/master.")]
        assert masters == [f"{PREFIX}/master.m3u8"]
        # Segments from the longer first run are gone
        assert f"{PREFIX}/240p/segments/segment_009.ts" not in memory_storage.objects
        assert f"{PREFIX}/240p/segments/segment_005.ts" in memory_storage.objects

    @pytest.mark.asyncio
    async def test_progress_sink(self, pipeline):
        reports = []
        await pipeline.run(make_job(), progress=lambda sent, total: reports.append((sent, total)))
        assert reports
        assert reports[-1][0] == reports[-1][1]


class TestFailures:
    @pytest.mark.asyncio
    async def test_source_404(self, pipeline, fake_http, fake_runner, memory_storage, staging_root):
        with pytest.raises(FetchError) as exc:
            await pipeline.run(make_job(source_url="http://source.test/uploads/missing.mp4"))

        assert exc.value.kind == "source"
        assert memory_storage.objects == {}
        assert fake_runner.calls == []
        assert staging_entries(staging_root) == []

        assert len(fake_http.status_posts) == 1
        post = fake_http.status_posts[0]
        assert post["status"] == "failed"
        assert post["errorDetails"]["name"] == "FetchError"
        assert post["errorDetails"]["code"] == "http_404"

    @pytest.mark.asyncio
    async def test_single_tier_failure_publishes_nothing(
        self, pipeline, fake_runner, memory_storage, fake_http, staging_root
    ):
        fake_runner.fail_encode_tiers = {"480p"}
        with pytest.raises(EncodeError) as exc:
            await pipeline.run(make_job())

        assert exc.value.tier == "480p"
        assert exc.value.kind == "system"
        assert not any(key.startswith(PREFIX) for key in memory_storage.objects)
        assert staging_entries(staging_root) == []
        assert [p["status"] for p in fake_http.status_posts] == ["failed"]

    @pytest.mark.asyncio
    async def test_probe_failure(self, pipeline, fake_runner, memory_storage):
        fake_runner.fail_probe = True
        with pytest.raises(ProbeError):
            await pipeline.run(make_job())
        assert fake_runner.calls_for("encode") == []
        assert memory_storage.objects == {}

    @pytest.mark.asyncio
    async def test_thumbnail_failure_is_fatal(self, pipeline, fake_runner, memory_storage):
        fake_runner.fail_thumbnail = True
        with pytest.raises(ThumbnailError):
            await pipeline.run(make_job())
        assert memory_storage.objects == {}

    @pytest.mark.asyncio
    async def test_upload_failure_rolls_back(self, pipeline, memory_storage, fake_http):
        memory_storage.fail_upload = lambda key: key.endswith("720p/segments/segment_004.ts")
        with pytest.raises(PipelineError) as exc:
            await pipeline.run(make_job())
        assert exc.value.code == "upload_failed"
        assert memory_storage.objects == {}
        assert fake_http.status_posts[0]["status"] == "failed"

    @pytest.mark.asyncio
    async def test_notifier_outage_does_not_fail_job(self, pipeline, fake_http):
        fake_http.status_code_for_posts = 503
        manifest = await pipeline.run(make_job())
        assert manifest.master_manifest_url.endswith("master.m3u8")

    @pytest.mark.asyncio
    async def test_malformed_status_url_keeps_success(self, pipeline, memory_storage):
        pipeline.notifier = StatusNotifier(NotifyConfig(status_url="http://[::1"))
        manifest = await pipeline.run(make_job())
        assert manifest.master_manifest_url == f"https://cdn.test/{PREFIX}/master.m3u8"
        assert f"{PREFIX}/master.m3u8" in memory_storage.objects

    @pytest.mark.asyncio
    async def test_closed_status_client_keeps_success(self, pipeline, fake_http):
        client = httpx.AsyncClient(transport=httpx.MockTransport(fake_http.handler))
        await client.aclose()
        pipeline.notifier = StatusNotifier(pipeline.config.notify, client=client)
        manifest = await pipeline.run(make_job())
        assert manifest.master_manifest_url.endswith("master.m3u8")
        assert fake_http.status_posts == []

    @pytest.mark.asyncio
    async def test_unexpected_error_is_wrapped(self, pipeline, fake_runner, fake_http):
        async def broken(*args, **kwargs):
            raise KeyError("boom")

        pipeline.encoder.encode_all = broken
        with pytest.raises(PipelineError) as exc:
            await pipeline.run(make_job())
        assert exc.value.code == "internal_error"
        assert isinstance(exc.value.__cause__, KeyError)
        assert fake_http.status_posts[0]["status"] == "failed"

    @pytest.mark.asyncio
    async def test_cancel_terminates_encodes(self, pipeline, fake_runner, memory_storage, fake_http, staging_root):
        fake_runner.block_encodes = True
        cancel_event = asyncio.Event()

        async def cancel_soon():
            await asyncio.sleep(0.05)
            cancel_event.set()

        results = await asyncio.gather(
            pipeline.run(make_job(), cancel_event=cancel_event),
            cancel_soon(),
            return_exceptions=True,
        )

        assert isinstance(results[0], JobCancelled)
        assert memory_storage.objects == {}
        assert staging_entries(staging_root) == []
        assert [p["status"] for p in fake_http.status_posts] == ["failed"]
        assert fake_http.status_posts[0]["errorDetails"]["code"] == "cancelled"
