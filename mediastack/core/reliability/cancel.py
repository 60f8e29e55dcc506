"""
Cancellation — cooperative, checked at wait boundaries.

A cancel token is a plain ``threading.Event``.  Whoever owns the run
(the CLI's SIGINT handler, a test) sets it; long waits race their
delay against it.  In-flight HTTP requests are never interrupted
beyond their own timeout.
"""

from __future__ import annotations

import threading
import time

from mediastack.core.reliability.errors import OperationCancelledError

CancelToken = threading.Event


def is_cancelled(cancel: CancelToken | None) -> bool:
    """Whether the token exists and has been set."""
    return cancel is not None and cancel.is_set()


def wait_or_cancel(delay: float, cancel: CancelToken | None = None) -> None:
    """Block for ``delay`` seconds unless ``cancel`` fires first.

    Raises:
        OperationCancelledError: If the token is (or becomes) set.
    """
    if cancel is None:
        if delay > 0:
            time.sleep(delay)
        return

    if cancel.wait(max(delay, 0.0)):
        raise OperationCancelledError("cancelled while waiting")
