"""
Command-line entry point.

    python -m reelstream run --job-id ID --source URL --prefix PREFIX
    python -m reelstream batch jobs.yaml
"""

import asyncio
import json
import logging
import sys
from datetime import datetime, timezone
from typing import List, Optional

import yaml
from pydantic import ValidationError

from .config import LoggingConfig, ReelStreamConfig, get_config, load_config, set_config
from .errors import PipelineError
from .models import TranscodeJob

logger = logging.getLogger("reelstream")


class JsonFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "time": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(entry)


def setup_logging(config: LoggingConfig) -> None:
    """Configure the root logger from the logging section."""
    if config.format == "json":
        formatter: logging.Formatter = JsonFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s %(levelname)-7s %(name)s: %(message)s")

    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if config.file:
        handlers.append(logging.FileHandler(config.file))

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)
    root.setLevel(getattr(logging, config.level.upper(), logging.INFO))

    # boto/urllib3 are chatty at INFO
    for name in ("botocore", "boto3", "s3transfer", "urllib3", "httpx", "httpcore"):
        logging.getLogger(name).setLevel(logging.WARNING)


def load_jobs(path: str) -> List[TranscodeJob]:
    """Read a YAML list of jobs (or a mapping with a ``jobs`` list)."""
    with open(path, "r") as f:
        data = yaml.safe_load(f) or []
    if isinstance(data, dict):
        data = data.get("jobs") or []
    if not isinstance(data, list):
        raise ValueError(f"{path}: expected a list of jobs")
    return [TranscodeJob(**entry) for entry in data]


async def _run_one(config: ReelStreamConfig, job: TranscodeJob) -> int:
    from .pipeline import TranscodePipeline

    pipeline = TranscodePipeline(config)
    try:
        manifest = await pipeline.run(job)
    except PipelineError as e:
        print(json.dumps({"jobId": job.job_id, "status": "failed", "kind": e.kind, "code": e.code, "error": str(e)}))
        return 1

    print(json.dumps(manifest.model_dump(), indent=2))
    return 0


async def _run_batch(config: ReelStreamConfig, jobs: List[TranscodeJob]) -> int:
    from .jobs import JobManager, JobStatus

    async with JobManager(concurrency=config.worker.concurrency) as manager:
        for job in jobs:
            await manager.submit(job)
        finished = [await manager.wait(job.job_id) for job in jobs]

    print(json.dumps([job.to_dict() for job in finished], indent=2))
    return 0 if all(job.status == JobStatus.DONE for job in finished) else 1


def main(argv: Optional[List[str]] = None) -> int:
    import argparse

    parser = argparse.ArgumentParser(prog="reelstream", description="Transcode videos into HLS packages")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Transcode and publish a single video")
    run_parser.add_argument("--job-id", required=True, help="External job identifier")
    run_parser.add_argument("--source", required=True, help="URL of the source video")
    run_parser.add_argument("--prefix", required=True, help="Destination key prefix")
    run_parser.add_argument("--thumbnail-url", help="Reuse this thumbnail instead of extracting one")

    batch_parser = subparsers.add_parser("batch", help="Run a YAML list of jobs through the job queue")
    batch_parser.add_argument("file", help="YAML file listing jobs")

    for sub in (run_parser, batch_parser):
        sub.add_argument("--config", help="Path to a reelstream.yaml file")

    args = parser.parse_args(argv)

    if args.config:
        set_config(load_config(args.config))
    config = get_config()
    setup_logging(config.logging)

    try:
        if args.command == "run":
            job = TranscodeJob(
                job_id=args.job_id,
                source_url=args.source,
                destination_prefix=args.prefix,
                existing_thumbnail_url=args.thumbnail_url,
            )
            return asyncio.run(_run_one(config, job))
        return asyncio.run(_run_batch(config, load_jobs(args.file)))
    except (ValidationError, ValueError, OSError) as e:
        logger.error(f"Invalid input: {e}")
        return 2
    except KeyboardInterrupt:
        logger.warning("Interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
