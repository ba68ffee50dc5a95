from __future__ import annotations

import subprocess
from typing import Protocol, Sequence

from layerkit import CancelToken

POLL_INTERVAL_S = 0.2


class CommandCancelled(RuntimeError):
    """Raised when a running command was killed because its token fired."""

    def __init__(self, argv: Sequence[str], *, expired: bool) -> None:
        reason = "timed out" if expired else "was cancelled"
        super().__init__(f"Command {argv[0] if argv else '<empty>'} {reason}")
        self.expired = expired


class CommandRunner(Protocol):
    def __call__(
        self,
        argv: Sequence[str],
        *,
        cancel: CancelToken | None = None,
        input: bytes | None = None,
    ) -> subprocess.CompletedProcess:
        ...


def run_command(
    argv: Sequence[str],
    *,
    cancel: CancelToken | None = None,
    input: bytes | None = None,
    poll_interval: float = POLL_INTERVAL_S,
) -> subprocess.CompletedProcess:
    """Run `argv` capturing output; the caller decides what a failure means.

    The child is polled in short slices so a `cancel()` or an expired deadline
    on `cancel` kills it instead of waiting for it to finish.
    """

    args = list(argv)
    proc = subprocess.Popen(
        args,
        stdin=subprocess.PIPE if input is not None else subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
    )
    pending_input = input
    while True:
        wait = poll_interval
        if cancel is not None:
            remaining = cancel.remaining()
            if remaining is not None:
                wait = min(wait, remaining)
        try:
            # input may only be handed over on the first communicate() call
            stdout, stderr = proc.communicate(pending_input, timeout=max(wait, 0.01))
            return subprocess.CompletedProcess(args, proc.returncode, stdout, stderr)
        except subprocess.TimeoutExpired:
            pending_input = None
        if cancel is not None and (cancel.cancelled or cancel.expired):
            proc.kill()
            proc.communicate()
            raise CommandCancelled(args, expired=not cancel.cancelled)


def output_tail(proc: subprocess.CompletedProcess, *, limit: int = 2000) -> str:
    def _text(value: bytes | str | None) -> str:
        if value is None:
            return ""
        if isinstance(value, bytes):
            value = value.decode("utf-8", errors="replace")
        return value.strip()[-limit:]

    return f"returncode={proc.returncode}. stdout={_text(proc.stdout)!r} stderr={_text(proc.stderr)!r}"
