"""Tests for the retry policy and runner."""

import random
from unittest.mock import MagicMock

import pytest

from career_ai.retry import RetryExhaustedError, RetryPolicy, call_with_retry


class Transient(Exception):
    pass


class Permanent(Exception):
    pass


def _policy(max_retries: int = 2) -> RetryPolicy:
    return RetryPolicy(
        max_retries=max_retries,
        base_delay=0.5,
        max_delay=4.0,
        jitter=0.0,
        is_retryable=lambda exc: isinstance(exc, Transient),
    )


class TestDelayFor:
    def test_exponential_growth(self) -> None:
        p = _policy()
        assert [p.delay_for(n) for n in range(4)] == [0.5, 1.0, 2.0, 4.0]

    def test_capped_at_max_delay(self) -> None:
        assert _policy().delay_for(10) == 4.0

    def test_jitter_is_bounded(self) -> None:
        p = RetryPolicy(base_delay=1.0, max_delay=1.0, jitter=0.3)
        rng = random.Random(7)
        delays = [p.delay_for(0, rng) for _ in range(50)]
        assert all(1.0 <= d <= 1.3 for d in delays)


class TestCallWithRetry:
    def test_first_try_success(self) -> None:
        sleep = MagicMock()
        result, attempts = call_with_retry(lambda: "ok", _policy(), sleep=sleep)
        assert (result, attempts) == ("ok", 1)
        sleep.assert_not_called()

    def test_succeeds_on_attempt_n_plus_one(self) -> None:
        fn = MagicMock(side_effect=[Transient(), Transient(), "ok"])
        sleep = MagicMock()
        result, attempts = call_with_retry(fn, _policy(max_retries=2), sleep=sleep)
        assert result == "ok"
        assert attempts == 3
        assert [c.args[0] for c in sleep.call_args_list] == [0.5, 1.0]

    def test_fails_after_n_plus_one_transient_failures(self) -> None:
        fn = MagicMock(side_effect=Transient("boom"))
        sleep = MagicMock()
        with pytest.raises(RetryExhaustedError) as exc_info:
            call_with_retry(fn, _policy(max_retries=2), sleep=sleep)
        assert exc_info.value.attempts == 3
        assert isinstance(exc_info.value.last_error, Transient)
        assert fn.call_count == 3
        assert sleep.call_count == 2

    def test_non_retryable_propagates_immediately(self) -> None:
        fn = MagicMock(side_effect=Permanent("400"))
        sleep = MagicMock()
        with pytest.raises(Permanent):
            call_with_retry(fn, _policy(), sleep=sleep)
        assert fn.call_count == 1
        sleep.assert_not_called()

    def test_zero_retries(self) -> None:
        fn = MagicMock(side_effect=Transient())
        with pytest.raises(RetryExhaustedError):
            call_with_retry(fn, _policy(max_retries=0), sleep=MagicMock())
        assert fn.call_count == 1
