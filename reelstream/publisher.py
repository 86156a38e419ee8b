"""
Publishing of a job's output tree to object storage.
"""

import asyncio
import logging
import threading
from functools import partial
from pathlib import Path
from typing import Callable, Dict, List, Optional, Set

from .config import StorageConfig
from .errors import JobCancelled, PublishError
from .storage import ObjectStorage
from .transcoding.constants import (
    CONTENT_TYPES,
    DEFAULT_CONTENT_TYPE,
    MASTER_PLAYLIST_NAME,
    SEGMENT_DIR_NAME,
    STALE_MANIFEST_NAMES,
)

logger = logging.getLogger(__name__)

ProgressSink = Callable[[int, int], None]


def content_type_for(path: Path) -> str:
    return CONTENT_TYPES.get(path.suffix.lower(), DEFAULT_CONTENT_TYPE)


def object_key(prefix: str, relative_path: str) -> str:
    """Join a destination prefix and a relative path with forward slashes."""
    prefix = prefix.replace("\\", "/").strip("/")
    relative_path = relative_path.replace("\\", "/").lstrip("/")
    return f"{prefix}/{relative_path}" if prefix else relative_path


class _ProgressTracker:
    """Aggregates byte counts reported from upload threads."""

    def __init__(self, total: int, sink: Optional[ProgressSink]):
        self.total = total
        self.sent = 0
        self.sink = sink
        self._lock = threading.Lock()

    def add(self, amount: int) -> None:
        with self._lock:
            self.sent = max(0, min(self.total, self.sent + amount))
            sent = self.sent
        if self.sink:
            try:
                self.sink(sent, self.total)
            except Exception as e:
                logger.debug(f"[Publish] Progress sink error: {e}")


class ArtifactPublisher:
    """
    Uploads every file under a job's output root.

    ``master.m3u8`` goes up last, once everything it references is in place.
    A failed run deletes whatever it uploaded, so a destination never holds
    a partial package from that run.
    """

    def __init__(self, storage: ObjectStorage, config: Optional[StorageConfig] = None):
        self.storage = storage
        self.config = config or StorageConfig()

    async def _call(self, func, *args, **kwargs):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(func, *args, **kwargs))

    async def _call_tracked(self, inflight: Set[asyncio.Future], func, *args):
        """
        Like ``_call``, but the executor future is registered in ``inflight``
        and shielded, so a cancelled caller can still wait for the thread.
        """
        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(None, partial(func, *args))
        inflight.add(future)
        future.add_done_callback(inflight.discard)
        return await asyncio.shield(future)

    async def remove_stale_manifests(self, prefix: str) -> List[str]:
        """Delete manifests left at ``prefix`` by earlier runs. Returns removed keys."""
        removed = []
        for name in STALE_MANIFEST_NAMES:
            key = object_key(prefix, name)
            try:
                if await self._call(self.storage.exists, key):
                    await self._call(self.storage.delete, key)
                    removed.append(key)
                    logger.info(f"[Publish] Removed stale manifest {key}")
            except Exception as e:
                raise PublishError(
                    f"Could not remove stale manifest {key}: {e}", key=key, code="stale_manifest"
                ) from e
        return removed

    async def _upload_one(
        self,
        local_path: Path,
        key: str,
        tracker: _ProgressTracker,
        inflight: Set[asyncio.Future],
    ) -> str:
        """Upload one file, retrying up to ``upload_retries`` times."""
        content_type = content_type_for(local_path)
        attempts = max(1, self.config.upload_retries)
        last_error: Optional[Exception] = None

        for attempt in range(1, attempts + 1):
            attempt_sent = 0

            def on_bytes(amount: int) -> None:
                nonlocal attempt_sent
                attempt_sent += amount
                tracker.add(amount)

            try:
                url = await self._call_tracked(
                    inflight, self.storage.upload_file, local_path, key, content_type, on_bytes
                )
                logger.info(f"[Publish] Uploaded {key} ({content_type})")
                return url
            except Exception as e:
                last_error = e
                tracker.add(-attempt_sent)
                if attempt < attempts:
                    delay = self.config.retry_delay * (2 ** (attempt - 1))
                    logger.warning(
                        f"[Publish] Upload of {key} failed (attempt {attempt}/{attempts}): {e}, "
                        f"retrying in {delay:.1f}s"
                    )
                    await asyncio.sleep(delay)

        raise PublishError(
            f"Upload of {key} failed after {attempts} attempts: {last_error}",
            key=key,
            code="upload_failed",
        )

    async def _rollback(self, keys: List[str]) -> None:
        logger.warning(f"[Publish] Rolling back {len(keys)} uploaded object(s)")
        for key in keys:
            try:
                await self._call(self.storage.delete, key)
            except Exception as e:
                logger.error(f"[Publish] Rollback could not delete {key}: {e}")

    async def _prune_stale_segments(self, prefix: str, output_root: Path, published: Set[str]) -> None:
        """Delete segment objects from earlier runs that this run did not write."""
        for segment_dir in sorted(output_root.glob(f"*/{SEGMENT_DIR_NAME}")):
            if not segment_dir.is_dir():
                continue
            tier_prefix = object_key(prefix, segment_dir.relative_to(output_root).as_posix()) + "/"
            try:
                existing = await self._call(self.storage.list_keys, tier_prefix)
                for key in existing:
                    if key not in published:
                        await self._call(self.storage.delete, key)
                        logger.info(f"[Publish] Pruned stale object {key}")
            except Exception as e:
                logger.warning(f"[Publish] Could not prune stale objects under {tier_prefix}: {e}")

    async def publish_all(
        self,
        output_root: Path,
        prefix: str,
        progress: Optional[ProgressSink] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Dict[str, str]:
        """
        Upload the tree under ``output_root`` to ``prefix``.

        ``progress`` receives ``(bytes_sent, bytes_total)`` and may be called
        from upload worker threads.

        Returns:
            Mapping of relative path (forward slashes) to remote URL.

        Raises:
            PublishError: any file failed after its retries; everything
                uploaded by this call has been deleted again.
            JobCancelled: ``cancel_event`` was set before the master playlist
                went up; uploads from this call are rolled back.
        """
        files = sorted(p for p in output_root.rglob("*") if p.is_file())
        if not files:
            raise PublishError(f"Nothing to publish under {output_root}", code="empty_output")

        master = [p for p in files if p.relative_to(output_root).as_posix() == MASTER_PLAYLIST_NAME]
        others = [p for p in files if p not in master]

        await self.remove_stale_manifests(prefix)

        tracker = _ProgressTracker(sum(p.stat().st_size for p in files), progress)
        semaphore = asyncio.Semaphore(max(1, self.config.upload_concurrency))
        failed = asyncio.Event()
        # Keys are recorded before their upload starts so a rollback also
        # covers uploads that were still running when the run was aborted
        attempted: List[str] = []
        uploaded: List[str] = []
        inflight: Set[asyncio.Future] = set()
        urls: Dict[str, str] = {}

        async def upload(path: Path) -> None:
            async with semaphore:
                if failed.is_set() or (cancel_event and cancel_event.is_set()):
                    return
                relative = path.relative_to(output_root).as_posix()
                key = object_key(prefix, relative)
                attempted.append(key)
                try:
                    urls[relative] = await self._upload_one(path, key, tracker, inflight)
                    uploaded.append(key)
                except Exception:
                    failed.set()
                    raise

        logger.info(f"[Publish] Uploading {len(files)} file(s) to {prefix}/")
        try:
            results = await asyncio.gather(*(upload(p) for p in others), return_exceptions=True)
            errors = [r for r in results if isinstance(r, BaseException)]
            if errors:
                first = errors[0]
                if isinstance(first, PublishError):
                    raise first
                raise PublishError(f"Upload failed: {first}", code="upload_failed") from first

            if cancel_event and cancel_event.is_set():
                raise JobCancelled()

            for path in master:
                await upload(path)
        except (PublishError, JobCancelled, asyncio.CancelledError):
            if inflight:
                logger.info(f"[Publish] Waiting for {len(inflight)} in-flight upload(s) before rollback")
                await asyncio.gather(*list(inflight), return_exceptions=True)
            await self._rollback(attempted)
            raise

        await self._prune_stale_segments(prefix, output_root, set(uploaded))
        logger.info(f"[Publish] Published {len(uploaded)} object(s) under {prefix}/")
        return urls
