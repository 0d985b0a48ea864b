"""Exponential backoff schedule for retried reload requests."""

import random
import time
from collections.abc import Callable
from dataclasses import dataclass, field

DEFAULT_INITIAL_INTERVAL = 0.5
DEFAULT_MULTIPLIER = 1.5
DEFAULT_RANDOMIZATION_FACTOR = 0.5
DEFAULT_MAX_INTERVAL = 60.0
DEFAULT_MAX_ELAPSED_TIME = 10.0


@dataclass
class ExponentialBackoff:
    """Randomized exponential backoff with a cap on total elapsed time.

    Each interval is ``initial * multiplier ** n`` (capped at ``max_interval``)
    jittered by +/- ``randomization_factor``. ``next_delay`` returns None once
    sleeping again would go past ``max_elapsed_time``.
    """

    initial_interval: float = DEFAULT_INITIAL_INTERVAL
    multiplier: float = DEFAULT_MULTIPLIER
    randomization_factor: float = DEFAULT_RANDOMIZATION_FACTOR
    max_interval: float = DEFAULT_MAX_INTERVAL
    max_elapsed_time: float = DEFAULT_MAX_ELAPSED_TIME
    clock: Callable[[], float] = time.monotonic
    jitter: Callable[[], float] = random.random

    _current: float = field(init=False, default=0.0)
    _started_at: float = field(init=False, default=0.0)

    def __post_init__(self) -> None:
        self.reset()

    def reset(self) -> None:
        """Start a fresh retry sequence."""
        self._current = self.initial_interval
        self._started_at = self.clock()

    @property
    def elapsed(self) -> float:
        return self.clock() - self._started_at

    def next_delay(self) -> float | None:
        """Return the next sleep in seconds, or None when the budget is spent."""
        delta = self.randomization_factor * self._current
        low = self._current - delta
        high = self._current + delta
        delay = low + self.jitter() * (high - low)

        self._current = min(self._current * self.multiplier, self.max_interval)

        if self.elapsed + delay > self.max_elapsed_time:
            return None
        return delay
