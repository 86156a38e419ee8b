"""
Job queue and management for ReelStream
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, List, Optional

from .config import get_config
from .errors import JobCancelled, PipelineError
from .models import PublishedManifest, TranscodeJob
from .pipeline import TranscodePipeline

logger = logging.getLogger(__name__)


class JobStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = (JobStatus.DONE, JobStatus.FAILED, JobStatus.CANCELLED)


@dataclass
class Job:
    """A submitted transcode job and its progress through the queue."""
    id: str
    request: TranscodeJob
    status: JobStatus = JobStatus.QUEUED
    result: Optional[PublishedManifest] = None
    error: Optional[PipelineError] = None
    bytes_sent: int = 0
    bytes_total: int = 0
    created_at: datetime = field(default_factory=datetime.utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    done_event: asyncio.Event = field(default_factory=asyncio.Event)

    @property
    def error_message(self) -> Optional[str]:
        return str(self.error) if self.error else None

    def to_dict(self) -> dict:
        return {
            "job_id": self.id,
            "status": self.status.value,
            "error_message": self.error_message,
            "error_kind": self.error.kind if self.error else None,
            "result": self.result.model_dump() if self.result else None,
            "created_at": self.created_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


class JobStats:
    """Statistics for job processing."""

    def __init__(self):
        self.total_jobs_processed: int = 0
        self.successful_jobs: int = 0
        self.failed_jobs: int = 0
        self.cancelled_jobs: int = 0
        self.total_bytes_published: int = 0
        self.total_processing_time: float = 0.0
        self.start_time: datetime = datetime.utcnow()

    def record_job_complete(self, job: Job) -> None:
        """Record job completion stats."""
        self.total_jobs_processed += 1

        if job.status == JobStatus.CANCELLED:
            self.cancelled_jobs += 1
        elif job.status == JobStatus.DONE:
            self.successful_jobs += 1
            self.total_bytes_published += job.bytes_total
        else:
            self.failed_jobs += 1

        if job.started_at and job.completed_at:
            self.total_processing_time += (job.completed_at - job.started_at).total_seconds()

    @property
    def average_processing_time(self) -> float:
        """Average wall-clock seconds per successful job."""
        if self.total_processing_time > 0 and self.successful_jobs > 0:
            return self.total_processing_time / self.successful_jobs
        return 0.0

    @property
    def uptime_seconds(self) -> float:
        return (datetime.utcnow() - self.start_time).total_seconds()


class JobManager:
    """Runs submitted jobs on a fixed number of asyncio workers."""

    def __init__(self, pipeline: Optional[TranscodePipeline] = None, concurrency: Optional[int] = None):
        self.config = get_config()
        self.pipeline = pipeline or TranscodePipeline(self.config)
        self.concurrency = concurrency or self.config.worker.concurrency
        self.jobs: Dict[str, Job] = {}
        self.queue: asyncio.Queue = asyncio.Queue()
        self.active_jobs: Dict[str, asyncio.Task] = {}
        self.stats = JobStats()
        self.status_callbacks: List[Callable[[str, JobStatus], None]] = []
        self._workers: List[asyncio.Task] = []
        self._running = False

    async def start(self) -> None:
        """Start the job workers."""
        if self._running:
            return

        self._running = True
        for i in range(max(1, self.concurrency)):
            self._workers.append(asyncio.create_task(self._worker(i)))

        logger.info(f"[Job] Started {len(self._workers)} job workers")

    async def stop(self) -> None:
        """Stop the workers, cancelling whatever is still running."""
        self._running = False

        for job_id, task in list(self.active_jobs.items()):
            self.jobs[job_id].cancel_event.set()
            task.cancel()

        for worker in self._workers:
            worker.cancel()

        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers.clear()

        for job in self.jobs.values():
            if job.status not in TERMINAL_STATUSES:
                self._finish(job, JobStatus.CANCELLED, JobCancelled("Job manager stopped"))

        logger.info("[Job] Job manager stopped")

    async def __aenter__(self) -> "JobManager":
        await self.start()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.stop()

    async def _worker(self, worker_id: int) -> None:
        """Worker coroutine that processes jobs from the queue."""
        logger.debug(f"[Job] Worker {worker_id} started")

        while self._running:
            job_id = await self.queue.get()
            job = self.jobs.get(job_id)

            try:
                if job is None or job.status != JobStatus.QUEUED:
                    continue
                task = asyncio.create_task(self._process_job(job))
                self.active_jobs[job_id] = task
                try:
                    await task
                except asyncio.CancelledError:
                    if not task.done():
                        raise
                    self._finish(job, JobStatus.CANCELLED, JobCancelled())
            finally:
                self.queue.task_done()
                self.active_jobs.pop(job_id, None)

        logger.debug(f"[Job] Worker {worker_id} stopped")

    async def _process_job(self, job: Job) -> None:
        """Run a single job through the pipeline."""
        job.status = JobStatus.PROCESSING
        job.started_at = datetime.utcnow()
        self._notify_status(job.id, JobStatus.PROCESSING)

        def on_progress(sent: int, total: int) -> None:
            job.bytes_sent = sent
            job.bytes_total = total

        try:
            manifest = await self.pipeline.run(job.request, cancel_event=job.cancel_event, progress=on_progress)
        except JobCancelled as e:
            self._finish(job, JobStatus.CANCELLED, e)
        except PipelineError as e:
            self._finish(job, JobStatus.FAILED, e)
        except Exception as e:
            logger.exception(f"[Job] {job.id}: pipeline raised outside its error taxonomy: {e}")
            wrapped = PipelineError(f"Unexpected error: {e}", code="internal_error")
            wrapped.__cause__ = e
            self._finish(job, JobStatus.FAILED, wrapped)
        else:
            job.result = manifest
            self._finish(job, JobStatus.DONE)

    def _finish(self, job: Job, status: JobStatus, error: Optional[PipelineError] = None) -> None:
        if job.status in TERMINAL_STATUSES and job.done_event.is_set():
            return
        job.status = status
        job.error = error
        job.completed_at = datetime.utcnow()
        self.stats.record_job_complete(job)
        job.done_event.set()
        self._notify_status(job.id, status)
        logger.info(f"[Job] {job.id} finished: {status.value}")

    def _notify_status(self, job_id: str, status: JobStatus) -> None:
        """Notify all registered status callbacks."""
        for callback in self.status_callbacks:
            try:
                callback(job_id, status)
            except Exception as e:
                logger.error(f"[Job] Status callback error: {e}")

    def register_status_callback(self, callback: Callable[[str, JobStatus], None]) -> None:
        self.status_callbacks.append(callback)

    async def submit(self, request: TranscodeJob) -> Job:
        """Queue a job. Job ids must be unique among tracked jobs."""
        existing = self.jobs.get(request.job_id)
        if existing and existing.status not in TERMINAL_STATUSES:
            raise ValueError(f"Job {request.job_id} is already {existing.status.value}")

        job = Job(id=request.job_id, request=request)
        self.jobs[job.id] = job
        await self.queue.put(job.id)

        logger.info(f"[Job] Queued job {job.id} for source: {request.source_url}")
        return job

    def get_job(self, job_id: str) -> Optional[Job]:
        return self.jobs.get(job_id)

    async def cancel_job(self, job_id: str) -> bool:
        """
        Cancel a queued or running job. A running job's subprocess is
        terminated and nothing further is published; its staging directory
        is still removed.
        """
        job = self.jobs.get(job_id)
        if not job or job.status in TERMINAL_STATUSES:
            return False

        job.cancel_event.set()
        if job.status == JobStatus.QUEUED:
            self._finish(job, JobStatus.CANCELLED, JobCancelled())

        logger.info(f"[Job] Cancelled job {job_id}")
        return True

    async def wait(self, job_id: str, timeout: Optional[float] = None) -> Job:
        """Wait until ``job_id`` reaches a terminal status."""
        job = self.jobs.get(job_id)
        if job is None:
            raise KeyError(job_id)
        await asyncio.wait_for(job.done_event.wait(), timeout=timeout)
        return job

    def get_queue_length(self) -> int:
        return self.queue.qsize()

    def get_active_count(self) -> int:
        return len(self.active_jobs)

    def get_all_jobs(self) -> List[Job]:
        return list(self.jobs.values())


# Global job manager instance
_job_manager: Optional[JobManager] = None


def get_job_manager() -> JobManager:
    """Get the global job manager instance."""
    global _job_manager
    if _job_manager is None:
        _job_manager = JobManager()
    return _job_manager


def set_job_manager(manager: Optional[JobManager]) -> None:
    global _job_manager
    _job_manager = manager
