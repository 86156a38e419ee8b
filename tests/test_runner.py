"""
Tests for the subprocess wrapper, using the running Python interpreter as
the child process.
"""

import asyncio
import logging
import sys
import time

import pytest

from reelstream.transcoding.runner import ProcessResult, ProcessRunner


@pytest.fixture
def runner():
    return ProcessRunner(poll_interval=0.05)


def python(code):
    return [sys.executable, "-c", code]


@pytest.mark.asyncio
async def test_captures_stdout_and_exit_code(runner):
    result = await runner.run(python("print('hello')"), timeout=30)
    assert result.ok
    assert result.returncode == 0
    assert result.stdout.strip() == "hello"


@pytest.mark.asyncio
async def test_non_zero_exit_keeps_stderr(runner):
    code = "import sys; sys.stderr.write('Invalid data found\\n'); sys.exit(3)"
    result = await runner.run(python(code), timeout=30)
    assert not result.ok
    assert result.returncode == 3
    assert "Invalid data found" in result.stderr
    assert "exit code 3" in result.describe()


@pytest.mark.asyncio
async def test_stderr_tail_is_bounded(runner):
    code = "import sys\nfor i in range(500): sys.stderr.write(f'line {i}\\n')"
    result = await runner.run(python(code), timeout=30)
    lines = result.stderr.splitlines()
    assert len(lines) == 100
    assert lines[-1] == "line 499"


@pytest.mark.asyncio
async def test_missing_binary(runner):
    result = await runner.run(["/nonexistent/ffmpeg-binary", "-version"], timeout=5)
    assert result.returncode == -1
    assert not result.ok


@pytest.mark.asyncio
async def test_timeout_terminates_process(runner):
    started = time.monotonic()
    result = await runner.run(python("import time; time.sleep(60)"), timeout=0.5)
    assert result.timed_out
    assert not result.ok
    assert "TIMED OUT" in result.describe()
    assert time.monotonic() - started < 20


@pytest.mark.asyncio
async def test_cancel_event_terminates_process(runner):
    cancel_event = asyncio.Event()

    async def cancel_soon():
        await asyncio.sleep(0.3)
        cancel_event.set()

    started = time.monotonic()
    result, _ = await asyncio.gather(
        runner.run(python("import time; time.sleep(60)"), timeout=60, cancel_event=cancel_event),
        cancel_soon(),
    )
    assert result.cancelled
    assert not result.ok
    assert time.monotonic() - started < 20


@pytest.mark.slow
@pytest.mark.skipif(sys.platform == "win32", reason="POSIX signals")
@pytest.mark.asyncio
async def test_interrupt_ignored_escalates_to_terminate(runner, caplog):
    code = "import signal, time; signal.signal(signal.SIGINT, signal.SIG_IGN); time.sleep(60)"
    cancel_event = asyncio.Event()

    async def cancel_soon():
        await asyncio.sleep(1.0)
        cancel_event.set()

    started = time.monotonic()
    with caplog.at_level(logging.DEBUG, logger="reelstream.transcoding.runner"):
        result, _ = await asyncio.gather(
            runner.run(python(code), timeout=60, cancel_event=cancel_event),
            cancel_soon(),
        )

    assert result.cancelled
    assert "Still running 5s after interrupt" in caplog.text
    assert "Stopped after terminate" in caplog.text
    assert time.monotonic() - started < 20

def test_result_describe_cancelled():
    assert ProcessResult(returncode=-2, cancelled=True).describe() == "[CANCELLED]"
