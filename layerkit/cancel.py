"""Cooperative cancellation shared between the chain walk and build actions."""

from __future__ import annotations

import threading
import time

from layerkit.errors import BuildCancelledError


class CancelToken:
    """Cancellation flag with an optional deadline.

    `cancel()` may be called from another thread or a signal handler. The
    controller checks the token between layers; build actions hand it to the
    commands they run, which poll it and kill the child once it fires.
    """

    def __init__(self, timeout: float | None = None) -> None:
        if timeout is not None and timeout <= 0:
            raise ValueError(f"timeout must be > 0 (got {timeout!r})")
        self._event = threading.Event()
        self._deadline = time.monotonic() + timeout if timeout is not None else None

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def expired(self) -> bool:
        return self._deadline is not None and time.monotonic() >= self._deadline

    def remaining(self) -> float | None:
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def raise_if_cancelled(self, layer: str) -> None:
        if self.cancelled:
            raise BuildCancelledError(layer)
        if self.expired:
            raise BuildCancelledError(layer, expired=True)
