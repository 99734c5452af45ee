"""
Deadline-bounded execution with a tagged result.

The callable runs on a worker thread and receives a ``cancel`` event. When
the deadline passes the event is set and the caller gets ``TimedOut``; the
worker is given a short grace period to notice the event and stop, so a
timed-out job does not keep writing into directories the caller is about to
remove.
"""
from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from concurrent.futures import wait
from dataclasses import dataclass
from typing import Any, Callable, Union

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Ok:
    value: Any


@dataclass(frozen=True)
class TimedOut:
    timeout: float


@dataclass(frozen=True)
class Failed:
    error: Exception


Result = Union[Ok, TimedOut, Failed]


class Cancelled(Exception):
    """Raised inside a worker that observed its cancel event."""


def run_with_deadline(fn: Callable[..., Any], timeout: float, *args: Any,
                      cancel_grace: float = 5.0, **kwargs: Any) -> Result:
    cancel = threading.Event()
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="deadline")
    future = executor.submit(fn, *args, cancel=cancel, **kwargs)
    try:
        return Ok(future.result(timeout=timeout))
    except FutureTimeout:
        cancel.set()
        done, _ = wait([future], timeout=cancel_grace)
        if not done:
            logger.warning("Worker still running %.1fs after cancellation", cancel_grace)
        return TimedOut(timeout)
    except Exception as e:
        return Failed(e)
    finally:
        executor.shutdown(wait=False)
