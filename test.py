#!/usr/bin/env python3
"""
ReelStream Test Runner

Usage:
    python test.py            # Run all tests
    python test.py quick      # Skip slow tests
    python test.py unit       # Only tests that need neither FFmpeg nor network
    python test.py e2e        # Only the real-FFmpeg end-to-end tests
    python test.py coverage   # Run with coverage report
    python test.py failed     # Re-run tests that failed last time
    python test.py <name>     # tests/test_<name>.py, or a -k filter
"""

import os
import subprocess
import sys

MODES = {
    "quick": (["-m", "not slow"], "[QUICK] Running quick tests (skipping slow)..."),
    "unit": (
        ["-m", "not requires_ffmpeg and not integration"],
        "[UNIT] Running unit tests (no FFmpeg, no network)...",
    ),
    "e2e": (["-m", "requires_ffmpeg"], "[E2E] Running end-to-end tests against real FFmpeg..."),
    "coverage": (
        ["--cov=reelstream", "--cov-report=term-missing", "--cov-report=html:coverage_html"],
        "[COVERAGE] Running tests with coverage report...",
    ),
    "failed": (["--lf"], "[RETRY] Re-running failed tests..."),
}


def build_command(args):
    cmd = [sys.executable, "-m", "pytest"]
    if not args:
        print("[TEST] Running all tests...\n")
        return cmd + ["tests/", "-v", "--tb=short"]

    name = args[0]
    if name in MODES:
        extra, banner = MODES[name]
        print(f"{banner}\n")
        return cmd + ["tests/", "-v", "--tb=short"] + extra

    test_file = f"tests/test_{name}.py"
    if os.path.exists(test_file):
        print(f"[MODULE] Running {test_file}...\n")
        return cmd + [test_file, "-v", "--tb=short"]

    print(f"[FILTER] Running tests matching '{name}'...\n")
    return cmd + ["tests/", "-v", "--tb=short", "-k", name]


def main():
    os.chdir(os.path.dirname(os.path.abspath(__file__)))
    cmd = build_command(sys.argv[1:])

    try:
        result = subprocess.run(cmd)
    except KeyboardInterrupt:
        print("\n\n[ABORT] Tests interrupted by user")
        return 1

    print("\n" + "=" * 60)
    if result.returncode == 0:
        print("[PASS] All tests passed!")
    else:
        print(f"[FAIL] Tests failed (exit code: {result.returncode})")
    print("=" * 60)
    return result.returncode


if __name__ == "__main__":
    sys.exit(main())
