from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Callable, TypeVar

from .log import get_logger


log = get_logger(__name__)

T = TypeVar("T")


class RetryError(Exception):
    """All attempts failed; ``__cause__`` is the last error."""

    def __init__(self, attempts: int, last_error: BaseException):
        super().__init__(f"operation failed after {attempts} attempts, last error: {last_error}")
        self.attempts = attempts
        self.last_error = last_error


class RetryCancelled(Exception):
    pass


@dataclass(frozen=True)
class RetryPolicy:
    attempts: int = 3
    delay_s: float = 5.0

    def wait_before(self, attempt: int) -> float:
        """Linear backoff: no wait before the first attempt, then one more delay unit each time."""
        return max(0, attempt - 1) * self.delay_s


def retry_call(
    operation: Callable[[], T],
    policy: RetryPolicy,
    stop: threading.Event | None = None,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    what: str = "operation",
) -> T:
    """Run ``operation`` until it succeeds or ``policy.attempts`` is exhausted.

    The wait between attempts is done on ``stop`` so a cancellation wakes it
    up immediately; a cancelled loop raises RetryCancelled instead of making
    the next attempt. ``attempts <= 0`` still makes one attempt.
    """
    attempts = max(1, policy.attempts)
    stop = stop or threading.Event()
    last_error: BaseException | None = None

    for attempt in range(1, attempts + 1):
        if attempt > 1:
            delay = policy.wait_before(attempt)
            log.debug("Retrying %s after %.1fs (attempt %d/%d)", what, delay, attempt, attempts)
            if stop.wait(delay):
                raise RetryCancelled(f"{what} cancelled before attempt {attempt}")
        elif stop.is_set():
            raise RetryCancelled(f"{what} cancelled")

        try:
            return operation()
        except retry_on as e:
            last_error = e
            log.warning("%s failed (attempt %d/%d): %s", what, attempt, attempts, e)

    assert last_error is not None
    raise RetryError(attempts, last_error) from last_error
