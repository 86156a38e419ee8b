"""
Per-job staging directories.

Layout under a job's root::

    input/source.<ext>                 downloaded upload
    work/<tier>/<tier>.mp4             intermediate full-file encodes
    work/preview_*.mp4                 preview attempts
    output/<tier>/segments/...         published tree (playlists, segments,
    output/master.m3u8                 manifest, thumbnail, preview)

Only ``output/`` is published.
"""

import asyncio
import logging
import re
import shutil
import tempfile
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, Optional
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


@dataclass
class StagingWorkspace:
    job_id: str
    root: Path

    @property
    def input_dir(self) -> Path:
        return self.root / "input"

    @property
    def work_dir(self) -> Path:
        return self.root / "work"

    @property
    def output_dir(self) -> Path:
        return self.root / "output"

    def source_path(self, source_url: str) -> Path:
        """Local path for the downloaded source, keeping its extension."""
        suffix = Path(urlparse(source_url).path).suffix.lower()
        if not re.fullmatch(r"\.[a-z0-9]{1,5}", suffix or ""):
            suffix = ".mp4"
        return self.input_dir / f"source{suffix}"

    def tier_work_dir(self, tier_name: str) -> Path:
        path = self.work_dir / tier_name
        path.mkdir(parents=True, exist_ok=True)
        return path

    def tier_segment_dir(self, tier_name: str) -> Path:
        path = self.output_dir / tier_name / "segments"
        path.mkdir(parents=True, exist_ok=True)
        return path

    def create(self) -> None:
        for path in (self.input_dir, self.work_dir, self.output_dir):
            path.mkdir(parents=True, exist_ok=True)


def remove_tree(path: Path) -> bool:
    """Delete ``path`` recursively. Failures are logged, never raised."""
    if not path.exists():
        return True
    try:
        shutil.rmtree(path)
        logger.info(f"[Cleanup] Removed staging directory: {path}")
        return True
    except Exception as e:
        logger.warning(f"[Cleanup] Failed to remove {path}: {e}")
        shutil.rmtree(path, ignore_errors=True)
        return not path.exists()


@asynccontextmanager
async def staging_workspace(
    job_id: str,
    temp_root: Optional[str] = None,
) -> AsyncIterator[StagingWorkspace]:
    """
    Allocate a uniquely named directory for one job and remove it on exit,
    however the body exits. Removal runs in a worker thread so large trees
    don't block the event loop.
    """
    root_dir = Path(temp_root) if temp_root else Path(tempfile.gettempdir())
    root_dir.mkdir(parents=True, exist_ok=True)

    safe_id = _UNSAFE_CHARS.sub("_", job_id)[:64] or "job"
    root = Path(tempfile.mkdtemp(prefix=f"reelstream-{safe_id}-", dir=root_dir))
    workspace = StagingWorkspace(job_id=job_id, root=root)
    workspace.create()
    logger.debug(f"[Cleanup] Allocated staging directory {root} for job {job_id}")

    try:
        yield workspace
    finally:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, remove_tree, root)
