"""
Subprocess wrapper for the encoder/prober binaries.

Everything that launches ffmpeg or ffprobe goes through a ``ProcessRunner``
so tests can swap in a double exposing the same ``run`` coroutine.
"""

import asyncio
import signal
import subprocess
import sys
import time
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

STDERR_TAIL_LINES = 100


@dataclass
class ProcessResult:
    returncode: int
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out and not self.cancelled

    def describe(self) -> str:
        """Short diagnostic for error messages."""
        if self.cancelled:
            return "[CANCELLED]"
        tail = self.stderr.strip()[-1000:] or "no diagnostic output"
        if self.timed_out:
            return f"[TIMED OUT] {tail}"
        return f"exit code {self.returncode}: {tail}"


class ProcessRunner:
    """Runs a command with a wall-clock timeout and cooperative cancellation."""

    def __init__(self, poll_interval: float = 0.5):
        self.poll_interval = poll_interval

    @staticmethod
    def _interrupt(process: asyncio.subprocess.Process) -> None:
        # ffmpeg treats an interrupt as "finish the file and quit"
        if sys.platform == "win32":
            process.send_signal(signal.CTRL_BREAK_EVENT)
        else:
            process.send_signal(signal.SIGINT)

    async def _graceful_terminate(self, process: asyncio.subprocess.Process) -> None:
        """Stop ``process``: interrupt, then terminate, then kill, each given a grace period."""
        steps = (
            ("interrupt", self._interrupt, 5.0),
            ("terminate", lambda p: p.terminate(), 3.0),
            ("kill", lambda p: p.kill(), None),
        )
        for name, send, grace in steps:
            if process.returncode is not None:
                return
            try:
                send(process)
            except ProcessLookupError:
                return
            except OSError as e:
                logger.debug(f"[Process] {name} failed: {e}")
                continue
            try:
                await asyncio.wait_for(process.wait(), timeout=grace)
            except asyncio.TimeoutError:
                logger.debug(f"[Process] Still running {grace:.0f}s after {name}, escalating")
                continue
            log = logger.warning if name == "kill" else logger.debug
            log(f"[Process] Stopped after {name} (exit {process.returncode})")
            return

    async def run(
        self,
        cmd: List[str],
        timeout: float,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> ProcessResult:
        """
        Run ``cmd`` to completion.

        Stdout and stderr are drained by separate tasks to prevent pipe
        deadlocks. Returns a result with returncode -1 when the process could
        not be started.
        """
        logger.info(f"[Process] Running: {' '.join(cmd[:10])}...")

        kwargs: Dict[str, Any] = {
            "stdout": asyncio.subprocess.PIPE,
            "stderr": asyncio.subprocess.PIPE,
        }
        if sys.platform == "win32":
            kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP

        try:
            process = await asyncio.create_subprocess_exec(*cmd, **kwargs)
        except Exception as e:
            logger.error(f"[Process] Failed to start {cmd[0]}: {e}")
            return ProcessResult(returncode=-1, stderr=str(e))

        stdout_data: List[bytes] = []
        stderr_lines: List[str] = []
        started = time.monotonic()
        timed_out = False
        cancelled = False

        async def read_stdout():
            while True:
                chunk = await process.stdout.read(4096)
                if not chunk:
                    break
                stdout_data.append(chunk)

        async def read_stderr():
            while True:
                line = await process.stderr.readline()
                if not line:
                    break
                stderr_lines.append(line.decode("utf-8", errors="ignore"))
                if len(stderr_lines) > STDERR_TAIL_LINES:
                    stderr_lines.pop(0)

        async def monitor():
            nonlocal timed_out, cancelled
            while process.returncode is None:
                if cancel_event and cancel_event.is_set():
                    cancelled = True
                    logger.info("[Process] Cancellation requested, terminating")
                    await self._graceful_terminate(process)
                    return
                if time.monotonic() - started > timeout:
                    timed_out = True
                    logger.error(f"[Process] Exceeded {timeout:.0f}s, terminating")
                    await self._graceful_terminate(process)
                    return
                await asyncio.sleep(self.poll_interval)

        readers = asyncio.gather(read_stdout(), read_stderr(), return_exceptions=True)
        monitor_task = asyncio.create_task(monitor())

        try:
            await readers
            await asyncio.wait_for(process.wait(), timeout=10.0)
        except asyncio.TimeoutError:
            logger.error("[Process] Did not exit after closing its pipes, force killing")
            await self._graceful_terminate(process)
        except asyncio.CancelledError:
            cancelled = True
            await self._graceful_terminate(process)
            raise
        finally:
            monitor_task.cancel()
            await asyncio.gather(monitor_task, return_exceptions=True)

        return_code = process.returncode
        if return_code is None:
            return_code = -1

        return ProcessResult(
            returncode=return_code,
            stdout=b"".join(stdout_data).decode("utf-8", errors="ignore"),
            stderr="".join(stderr_lines),
            timed_out=timed_out,
            cancelled=cancelled,
        )
