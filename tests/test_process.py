import sys
import threading
import time

import pytest

from layerkit import CancelToken
from release_build.framework.process import CommandCancelled, output_tail, run_command

SLEEPER = [sys.executable, "-c", "import time; time.sleep(30)"]


def test_run_command_captures_output_and_feeds_input():
    proc = run_command(
        [sys.executable, "-c", "import sys; data = sys.stdin.read(); print(data.upper()); sys.exit(3)"],
        input=b"context",
    )
    assert proc.returncode == 3
    assert proc.stdout.strip() == b"CONTEXT"
    assert "returncode=3" in output_tail(proc)


def test_cancel_kills_a_running_command():
    token = CancelToken()
    timer = threading.Timer(0.2, token.cancel)
    timer.start()
    started = time.monotonic()
    try:
        with pytest.raises(CommandCancelled) as excinfo:
            run_command(SLEEPER, cancel=token, poll_interval=0.05)
    finally:
        timer.cancel()

    assert excinfo.value.expired is False
    assert time.monotonic() - started < 10


def test_deadline_kills_a_running_command():
    started = time.monotonic()
    with pytest.raises(CommandCancelled, match=r"timed out") as excinfo:
        run_command(SLEEPER, cancel=CancelToken(timeout=0.3), poll_interval=0.05)

    assert excinfo.value.expired is True
    assert time.monotonic() - started < 10
