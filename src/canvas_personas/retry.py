"""Exponential backoff with jitter for outbound calls."""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass, field
from typing import Callable, TypeVar

from canvas_personas.errors import RateLimitedError, is_retryable

logger = logging.getLogger(__name__)

T = TypeVar("T")


def compute_backoff(
    attempt: int,
    *,
    initial_delay: float,
    max_delay: float,
    jitter_fraction: float = 0.0,
    rng: Callable[[], float] = random.random,
) -> float:
    """Delay before retry number ``attempt`` (1-indexed).

    ``initial_delay * 2**(attempt - 1)`` capped at ``max_delay``, then shifted by a
    uniform jitter in ``[-delay * jitter_fraction, +delay * jitter_fraction]`` and
    clamped to be non-negative.
    """

    if attempt < 1:
        raise ValueError("attempt must be >= 1")
    delay = min(max_delay, initial_delay * (2 ** (attempt - 1)))
    if jitter_fraction > 0:
        spread = delay * jitter_fraction
        delay += (rng() * 2 - 1) * spread
    return max(0.0, delay)


class RetryAborted(Exception):
    """Raised by a sleep function to stop retrying (e.g. on shutdown)."""


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Retry a callable on retryable remote errors.

    ``sleep`` may raise :class:`RetryAborted` (or return ``True``) to abandon the
    remaining attempts; the last error is then re-raised unchanged.
    """

    initial_delay: float = 1.0
    max_delay: float = 32.0
    max_attempts: int = 5
    jitter_fraction: float = 0.1
    sleep: Callable[[float], bool | None] = field(default=time.sleep, compare=False)
    rng: Callable[[], float] = field(default=random.random, compare=False)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.initial_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be >= 0")
        if not 0.0 <= self.jitter_fraction <= 1.0:
            raise ValueError("jitter_fraction must be within [0, 1]")

    def backoff(self, attempt: int) -> float:
        return compute_backoff(
            attempt,
            initial_delay=self.initial_delay,
            max_delay=self.max_delay,
            jitter_fraction=self.jitter_fraction,
            rng=self.rng,
        )

    def execute(self, operation: Callable[[], T], *, name: str | None = None) -> T:
        label = name or getattr(operation, "__name__", "operation")
        for attempt in range(1, self.max_attempts + 1):
            try:
                return operation()
            except Exception as e:
                if not is_retryable(e):
                    logger.debug(
                        "Non-retryable failure",
                        extra={"operation": label, "attempt": attempt, "error": str(e)},
                    )
                    raise
                if attempt == self.max_attempts:
                    logger.warning(
                        "All attempts failed",
                        extra={"operation": label, "attempts": attempt, "error": str(e)},
                    )
                    raise

                delay = self.backoff(attempt)
                if isinstance(e, RateLimitedError) and e.retry_after is not None:
                    delay = e.retry_after
                logger.info(
                    "Attempt failed, retrying",
                    extra={
                        "operation": label,
                        "attempt": attempt,
                        "max_attempts": self.max_attempts,
                        "delay_seconds": round(delay, 3),
                        "error": str(e),
                    },
                )
                try:
                    stop = self.sleep(delay)
                except RetryAborted:
                    stop = True
                if stop:
                    raise e
        raise AssertionError("unreachable")  # pragma: no cover
