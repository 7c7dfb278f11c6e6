"""Retry policy — exponential backoff with jitter for transient failures."""

import logging
import random
import time
from dataclasses import dataclass, field
from typing import Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _always(exc: BaseException) -> bool:
    return True


@dataclass(frozen=True)
class RetryPolicy:
    """How many times, how long, and on which errors to retry.

    ``max_retries`` counts additional attempts, so a policy with
    ``max_retries=2`` makes at most three calls.
    """

    max_retries: int = 2
    base_delay: float = 0.5
    max_delay: float = 4.0
    jitter: float = 0.3
    is_retryable: Callable[[BaseException], bool] = field(default=_always)

    def delay_for(self, attempt: int, rng: random.Random | None = None) -> float:
        """Return the sleep before retry number *attempt* (0-based).

        The base delay doubles per attempt, is capped at ``max_delay``, and
        gets ``uniform(0, jitter)`` seconds added on top.
        """
        backoff = min(self.max_delay, self.base_delay * (2**attempt))
        spread = (rng or random).uniform(0, self.jitter) if self.jitter else 0.0
        return backoff + spread


class RetryExhaustedError(Exception):
    """Every allowed attempt failed with a retryable error."""

    def __init__(self, attempts: int, last_error: BaseException) -> None:
        super().__init__(f"gave up after {attempts} attempts: {last_error}")
        self.attempts = attempts
        self.last_error = last_error


def call_with_retry(
    fn: Callable[[], T],
    policy: RetryPolicy,
    sleep: Callable[[float], None] = time.sleep,
    rng: random.Random | None = None,
) -> tuple[T, int]:
    """Call *fn* until it succeeds or the policy gives up.

    Non-retryable errors propagate immediately, unchanged.

    Args:
        fn: Zero-argument callable performing one attempt.
        policy: Retry limits, delays, and the retryable-error predicate.
        sleep: Blocking sleep, injectable for tests.
        rng: Source of jitter, injectable for deterministic tests.

    Returns:
        The result of the first successful attempt and the number of
        attempts it took.

    Raises:
        RetryExhaustedError: When ``max_retries + 1`` attempts all failed
            with retryable errors.
    """
    attempt = 0
    while True:
        try:
            return fn(), attempt + 1
        except Exception as exc:
            if not policy.is_retryable(exc):
                raise
            if attempt >= policy.max_retries:
                raise RetryExhaustedError(attempt + 1, exc) from exc
            delay = policy.delay_for(attempt, rng)
            logger.warning(
                "Transient failure on attempt %d (%s); retrying in %.2fs",
                attempt + 1,
                exc,
                delay,
            )
            sleep(delay)
            attempt += 1
