"""
ReelStream Test Configuration and Fixtures

Provides:
- A fake process runner that emulates ffprobe/ffmpeg from their command lines
- An in-memory object store
- Mock HTTP endpoints (source files and status callbacks) via httpx.MockTransport
- Auto-generated test media and a local HTTP server for end-to-end runs
"""

import asyncio
import json
import math
import shutil
import subprocess
import threading
from pathlib import Path
from typing import Callable, Dict, List, Optional, Set, Tuple

import httpx
import pytest
import pytest_asyncio

from reelstream.config import ReelStreamConfig, set_config
from reelstream.pipeline import TranscodePipeline
from reelstream.storage import ObjectStorage
from reelstream.transcoding.runner import ProcessResult


SOURCE_HOST = "http://source.test"
STATUS_URL = "http://status.test/reels/internal/update"
SOURCE_URL = f"{SOURCE_HOST}/uploads/reel.mp4"


# =============================================================================
# FAKE ENCODER / PROBER
# =============================================================================

def classify_command(cmd: List[str]) -> str:
    """Which pipeline stage a command belongs to."""
    if "ffprobe" in Path(cmd[0]).name:
        return "probe"
    if "hls" in cmd:
        return "segment"
    if cmd[-1].endswith(".jpg"):
        return "thumbnail"
    if "-an" in cmd:
        return "preview"
    return "encode"


def _arg(cmd: List[str], flag: str) -> Optional[str]:
    if flag in cmd:
        return cmd[cmd.index(flag) + 1]
    return None


class FakeRunner:
    """
    Stands in for ProcessRunner. Writes plausible output files for every
    stage so downstream validation and publishing see a realistic tree.
    """

    def __init__(
        self,
        width: int = 1920,
        height: int = 1080,
        duration: float = 10.0,
        has_audio: bool = True,
        encoded_size: int = 8192,
        segment_size: int = 2048,
        preview_sizes_kb: Optional[List[float]] = None,
    ):
        self.width = width
        self.height = height
        self.duration = duration
        self.has_audio = has_audio
        self.encoded_size = encoded_size
        self.segment_size = segment_size
        self.preview_sizes_kb = list(preview_sizes_kb or [120])

        self.calls: List[List[str]] = []
        self.completed: List[Tuple[str, str]] = []  # (stage, tier or output name)
        self.delays: Dict[str, float] = {}  # tier -> seconds, applied to the encode stage
        self.fail_encode_tiers: Set[str] = set()
        self.fail_segment_tiers: Set[str] = set()
        self.fail_probe = False
        self.fail_thumbnail = False
        self.fail_preview = False
        self.probe_output: Optional[str] = None
        self.block_encodes = False  # encodes wait until cancelled

    def calls_for(self, stage: str) -> List[List[str]]:
        return [cmd for cmd in self.calls if classify_command(cmd) == stage]

    def probe_json(self) -> str:
        streams = [{
            "codec_type": "video",
            "codec_name": "h264",
            "width": self.width,
            "height": self.height,
            "avg_frame_rate": "30/1",
            "duration": str(self.duration),
        }]
        if self.has_audio:
            streams.append({"codec_type": "audio", "codec_name": "aac"})
        return json.dumps({"streams": streams, "format": {"duration": str(self.duration)}})

    async def run(self, cmd: List[str], timeout: float, cancel_event: Optional[asyncio.Event] = None) -> ProcessResult:
        self.calls.append(list(cmd))
        stage = classify_command(cmd)

        if cancel_event and cancel_event.is_set():
            return ProcessResult(returncode=-2, cancelled=True)

        handler = getattr(self, f"_{stage}")
        return await handler(cmd, cancel_event)

    async def _probe(self, cmd, cancel_event) -> ProcessResult:
        if self.fail_probe:
            return ProcessResult(returncode=1, stderr="moov atom not found\n")
        return ProcessResult(returncode=0, stdout=self.probe_output or self.probe_json())

    async def _encode(self, cmd, cancel_event) -> ProcessResult:
        output = Path(cmd[-1])
        tier = output.stem

        if self.block_encodes:
            while not (cancel_event and cancel_event.is_set()):
                await asyncio.sleep(0.01)
            return ProcessResult(returncode=255, cancelled=True)

        if tier in self.delays:
            await asyncio.sleep(self.delays[tier])
        if tier in self.fail_encode_tiers:
            return ProcessResult(returncode=1, stderr="Error while opening encoder: invalid argument\n")

        output.write_bytes(b"\x00" * self.encoded_size)
        self.completed.append(("encode", tier))
        return ProcessResult(returncode=0)

    async def _segment(self, cmd, cancel_event) -> ProcessResult:
        playlist = Path(cmd[-1])
        tier = playlist.parent.parent.name
        if tier in self.fail_segment_tiers:
            return ProcessResult(returncode=1, stderr="No space left on device\n")

        segment_duration = float(_arg(cmd, "-hls_time") or 1)
        count = max(1, math.ceil(self.duration / segment_duration))
        pattern = Path(_arg(cmd, "-hls_segment_filename")).name

        lines = [
            "#EXTM3U",
            "#EXT-X-VERSION:3",
            f"#EXT-X-TARGETDURATION:{int(segment_duration)}",
            "#EXT-X-MEDIA-SEQUENCE:0",
            "#EXT-X-PLAYLIST-TYPE:VOD",
        ]
        for index in range(count):
            name = pattern % index
            (playlist.parent / name).write_bytes(b"\x47" * self.segment_size)
            lines.extend([f"#EXTINF:{segment_duration:.6f},", name])
        lines.append("#EXT-X-ENDLIST")
        playlist.write_text("\n".join(lines) + "\n")

        self.completed.append(("segment", tier))
        return ProcessResult(returncode=0)

    async def _thumbnail(self, cmd, cancel_event) -> ProcessResult:
        if self.fail_thumbnail:
            return ProcessResult(returncode=1, stderr="Output file is empty, nothing was encoded\n")
        Path(cmd[-1]).write_bytes(b"\xff\xd8\xff\xe0" + b"\x00" * 512)
        self.completed.append(("thumbnail", Path(cmd[-1]).name))
        return ProcessResult(returncode=0)

    async def _preview(self, cmd, cancel_event) -> ProcessResult:
        if self.fail_preview:
            return ProcessResult(returncode=1, stderr="Invalid data found when processing input\n")
        size_kb = self.preview_sizes_kb.pop(0) if len(self.preview_sizes_kb) > 1 else self.preview_sizes_kb[0]
        Path(cmd[-1]).write_bytes(b"\x00" * int(size_kb * 1024))
        self.completed.append(("preview", Path(cmd[-1]).name))
        return ProcessResult(returncode=0)


# =============================================================================
# IN-MEMORY OBJECT STORE
# =============================================================================

class MemoryStorage(ObjectStorage):
    """Dictionary-backed object store with failure injection."""

    def __init__(self, base_url: str = "https://cdn.test"):
        self.base_url = base_url
        self.objects: Dict[str, bytes] = {}
        self.content_types: Dict[str, str] = {}
        self.upload_log: List[str] = []
        self.deleted: List[str] = []
        self.fail_upload: Optional[Callable[[str], bool]] = None
        self.failures_left: Optional[int] = None  # None = fail every time
        self._lock = threading.Lock()

    def put(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> None:
        self.objects[key] = data
        self.content_types[key] = content_type

    def upload_file(self, local_path, key, content_type, callback=None) -> str:
        with self._lock:
            if self.fail_upload and self.fail_upload(key):
                if self.failures_left is None or self.failures_left > 0:
                    if self.failures_left is not None:
                        self.failures_left -= 1
                    raise IOError(f"simulated upload failure for {key}")
            data = Path(local_path).read_bytes()
            self.objects[key] = data
            self.content_types[key] = content_type
            self.upload_log.append(key)
        if callback:
            callback(len(data))
        return self.url_for(key)

    def exists(self, key: str) -> bool:
        return key in self.objects

    def delete(self, key: str) -> None:
        with self._lock:
            self.objects.pop(key, None)
            self.content_types.pop(key, None)
            self.deleted.append(key)

    def list_keys(self, prefix: str) -> List[str]:
        return sorted(key for key in self.objects if key.startswith(prefix))

    def url_for(self, key: str) -> str:
        return f"{self.base_url}/{key}"


# =============================================================================
# MOCK HTTP ENDPOINTS
# =============================================================================

class FakeHttp:
    """
    Routes for httpx.MockTransport: GETs serve registered source files, POSTs
    to the status URL are recorded.
    """

    def __init__(self):
        self.files: Dict[str, bytes] = {"/uploads/reel.mp4": b"\x00\x00\x00\x18ftypmp42" + b"\x00" * 4096}
        self.responses: Dict[str, List] = {}  # path -> queued status codes / exceptions
        self.requests: List[httpx.Request] = []
        self.status_posts: List[dict] = []
        self.status_code_for_posts = 200

    def queue(self, path: str, *outcomes) -> None:
        """Serve ``outcomes`` (ints or exceptions) for ``path`` before the file."""
        self.responses.setdefault(path, []).extend(outcomes)

    def source_requests(self, path: str = "/uploads/reel.mp4") -> List[httpx.Request]:
        return [r for r in self.requests if r.method == "GET" and r.url.path == path]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)

        if request.method == "POST":
            self.status_posts.append(json.loads(request.content))
            return httpx.Response(self.status_code_for_posts, json={"ok": True})

        path = request.url.path
        pending = self.responses.get(path)
        if pending:
            outcome = pending.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return httpx.Response(outcome, content=b"error")

        if path not in self.files:
            return httpx.Response(404, content=b"not found")
        return httpx.Response(200, content=self.files[path])


# =============================================================================
# TEST MEDIA GENERATION
# =============================================================================

class TestMediaGenerator:
    """
    Generates test media files using FFmpeg.
    No external downloads - creates synthetic test videos.
    """

    __test__ = False

    def __init__(self, output_dir: Path):
        self.output_dir = output_dir
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self._ffmpeg = shutil.which("ffmpeg")

    @property
    def has_ffmpeg(self) -> bool:
        return self._ffmpeg is not None and shutil.which("ffprobe") is not None

    def generate_test_video(
        self,
        name: str = "test_video",
        duration: int = 10,
        width: int = 1920,
        height: int = 1080,
        fps: int = 30,
        audio: bool = True,
    ) -> Optional[Path]:
        """Color bars plus a sine tone. None if FFmpeg is unavailable or fails."""
        if not self.has_ffmpeg:
            return None

        output_path = self.output_dir / f"{name}.mp4"
        cmd = [
            self._ffmpeg, "-y",
            "-f", "lavfi",
            "-i", f"testsrc=duration={duration}:size={width}x{height}:rate={fps}",
        ]
        if audio:
            cmd.extend(["-f", "lavfi", "-i", f"sine=frequency=440:duration={duration}"])
        cmd.extend(["-c:v", "libx264", "-preset", "ultrafast", "-pix_fmt", "yuv420p"])
        if audio:
            cmd.extend(["-c:a", "aac", "-b:a", "128k"])
        cmd.append(str(output_path))

        try:
            result = subprocess.run(cmd, capture_output=True, timeout=120)
            if result.returncode == 0 and output_path.exists():
                return output_path
        except (subprocess.TimeoutExpired, OSError) as e:
            print(f"Failed to generate test video: {e}")

        return None


# =============================================================================
# PYTEST FIXTURES
# =============================================================================

@pytest.fixture
def config(tmp_path) -> ReelStreamConfig:
    """Fast, isolated configuration: no retry delays, staging under tmp_path."""
    config = ReelStreamConfig()
    config.transcoding.ffmpeg_path = "ffmpeg"
    config.transcoding.ffprobe_path = "ffprobe"
    config.transcoding.temp_directory = str(tmp_path / "staging")
    config.fetch.backoff_base = 0
    config.storage.bucket = "test-bucket"
    config.storage.retry_delay = 0
    config.notify.status_url = STATUS_URL
    config.logging.level = "WARNING"
    set_config(config)
    yield config
    set_config(None)


@pytest.fixture
def staging_root(config) -> Path:
    return Path(config.transcoding.temp_directory)


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def memory_storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def fake_http() -> FakeHttp:
    return FakeHttp()


@pytest_asyncio.fixture
async def http_client(fake_http):
    async with httpx.AsyncClient(transport=httpx.MockTransport(fake_http.handler)) as client:
        yield client


@pytest.fixture
def pipeline(config, memory_storage, fake_runner, http_client) -> TranscodePipeline:
    return TranscodePipeline(
        config=config,
        storage=memory_storage,
        runner=fake_runner,
        http_client=http_client,
    )


@pytest.fixture(scope="session")
def test_media_dir(tmp_path_factory) -> Path:
    """Session-scoped temp directory for test media."""
    return tmp_path_factory.mktemp("reelstream_test_media")


@pytest.fixture(scope="session")
def media_generator(test_media_dir) -> TestMediaGenerator:
    return TestMediaGenerator(test_media_dir)


@pytest.fixture(scope="session")
def test_video_1080p(media_generator) -> Path:
    """10-second 1920x1080 source, generated once per session."""
    if not media_generator.has_ffmpeg:
        pytest.skip("FFmpeg not available for test media generation")
    path = media_generator.generate_test_video("test_1080p", duration=10, width=1920, height=1080)
    if path is None:
        pytest.skip("Failed to generate test video")
    return path


@pytest.fixture(scope="session")
def http_server(test_media_dir):
    """
    Serve the test media directory over HTTP.
    Required because ReelStream fetches sources via HTTP.
    """
    import socket
    from http.server import HTTPServer, SimpleHTTPRequestHandler

    class QuietHandler(SimpleHTTPRequestHandler):
        def __init__(self, *args, **kwargs):
            super().__init__(*args, directory=str(test_media_dir), **kwargs)

        def log_message(self, format, *args):
            pass

    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("", 0))
        port = s.getsockname()[1]

    server = HTTPServer(("localhost", port), QuietHandler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()

    yield f"http://localhost:{port}"

    server.shutdown()


# =============================================================================
# SKIP CONDITIONS
# =============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "requires_ffmpeg: marks tests that require FFmpeg"
    )


@pytest.fixture
def requires_ffmpeg():
    """Skip test if FFmpeg not available."""
    if not (shutil.which("ffmpeg") and shutil.which("ffprobe")):
        pytest.skip("FFmpeg not available")
