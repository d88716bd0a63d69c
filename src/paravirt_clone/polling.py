from __future__ import annotations

import logging
import threading
import time
from typing import Callable, TypeVar

from .errors import OperationCanceledError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def wait_until(
    probe: Callable[[], T | None],
    *,
    description: str,
    interval_seconds: float,
    timeout_seconds: float,
    on_timeout: Callable[[], Exception],
    cancel_event: threading.Event | None = None,
) -> T:
    """Call ``probe`` until it returns a value, the deadline passes, or the caller cancels.

    Errors raised by ``probe`` propagate immediately; only a ``None`` result
    counts as "not ready yet".
    """
    if interval_seconds <= 0:
        raise ValueError("interval_seconds must be positive")
    if timeout_seconds <= 0:
        raise ValueError("timeout_seconds must be positive")

    event = cancel_event or threading.Event()
    deadline = time.monotonic() + timeout_seconds
    attempt = 0
    while True:
        if event.is_set():
            raise OperationCanceledError(f"canceled while waiting for {description}")

        attempt += 1
        result = probe()
        if result is not None:
            return result

        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise on_timeout()
        logger.debug("Waiting for %s (attempt %d, %.1fs left)", description, attempt, remaining)
        if event.wait(min(interval_seconds, remaining)):
            raise OperationCanceledError(f"canceled while waiting for {description}")
