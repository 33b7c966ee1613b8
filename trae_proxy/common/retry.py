"""Bounded retry policy and cooperative cancellation.

Both the queue backoff of the upstream stream and the automatic continuation
of truncated answers are "try again a bounded number of times, maybe after a
delay, unless the caller went away" loops; they share these helpers.
"""

import threading
import time
from dataclasses import dataclass


class Cancellation:
    """Cancellation signal for one inbound request.

    Set when the downstream client disconnects. Waiting on it doubles as an
    interruptible sleep.
    """

    def __init__(self):
        self._event = threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    def sleep(self, seconds: float) -> bool:
        """Sleep for ``seconds``; return False if cancelled before or during it."""
        if seconds <= 0:
            return not self.cancelled
        return not self._event.wait(seconds)


@dataclass(frozen=True)
class RetryPolicy:
    """How many times to retry and how long to wait between attempts."""

    max_attempts: int
    delay: float = 0.0
    backoff: float = 1.0

    def budget(self) -> "RetryBudget":
        """Return fresh per-use retry state."""
        return RetryBudget(self)


class RetryBudget:
    """Mutable attempt counter for a single use of a RetryPolicy."""

    def __init__(self, policy: RetryPolicy):
        self.policy = policy
        self.attempts = 0

    @property
    def exhausted(self) -> bool:
        return self.attempts >= self.policy.max_attempts

    def next_delay(self) -> float:
        return self.policy.delay * (self.policy.backoff ** self.attempts)

    def consume(self, cancellation: Cancellation = None) -> bool:
        """Charge one attempt and wait out its delay.

        Returns False when the budget is exhausted or the wait was cancelled;
        the caller must stop retrying in both cases.
        """
        if self.exhausted:
            return False
        if cancellation is not None and cancellation.cancelled:
            return False
        delay = self.next_delay()
        self.attempts += 1
        if cancellation is None:
            if delay > 0:
                time.sleep(delay)
            return True
        return cancellation.sleep(delay)
