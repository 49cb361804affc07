import pytest

from tools.backoff import call_with_retry, fixed_backoff


class Flaky(RuntimeError):
    pass


def test_fixed_backoff_schedule():
    assert list(fixed_backoff(max_attempts=3, delay=0.5)) == [(1, 0.5), (2, 0.5), (3, 0.5)]
    with pytest.raises(ValueError):
        list(fixed_backoff(max_attempts=0))
    with pytest.raises(ValueError):
        list(fixed_backoff(delay=-1))


def test_call_with_retry_recovers_after_transient_error():
    attempts = []
    sleeps = []

    def func():
        attempts.append(1)
        if len(attempts) == 1:
            raise Flaky("once")
        return "ok"

    result = call_with_retry(func, retry_on=(Flaky,), label="test", delay=0.25, sleep=sleeps.append)
    assert result == "ok"
    assert sleeps == [0.25]


def test_call_with_retry_reraises_last_error():
    def func():
        raise Flaky("always")

    with pytest.raises(Flaky):
        call_with_retry(func, retry_on=(Flaky,), label="test", max_attempts=3, sleep=lambda _: None)


def test_non_retryable_errors_propagate_immediately():
    attempts = []

    def func():
        attempts.append(1)
        raise KeyError("nope")

    with pytest.raises(KeyError):
        call_with_retry(func, retry_on=(Flaky,), label="test", sleep=lambda _: None)
    assert len(attempts) == 1
