import pytest

from article_autopilot.retry import RetryExhausted, RetryPolicy, RetrySuccess, with_retry


class Flaky:
    def __init__(self, failures, exc=RuntimeError("boom")):
        self.failures = failures
        self.exc = exc
        self.calls = []

    def __call__(self, attempt):
        self.calls.append(attempt)
        if len(self.calls) <= self.failures:
            raise self.exc
        return "ok"


def test_success_after_retries_waits_linearly():
    delays = []
    op = Flaky(failures=2)

    result = with_retry(op, RetryPolicy(max_attempts=3), sleep=delays.append)

    assert isinstance(result, RetrySuccess)
    assert result.value == "ok"
    assert result.attempts == 3
    assert delays == [2.0, 4.0]


def test_exhausted_does_not_wait_after_last_attempt():
    delays = []
    op = Flaky(failures=5)

    result = with_retry(op, RetryPolicy(max_attempts=3, backoff_seconds=1.5), sleep=delays.append)

    assert isinstance(result, RetryExhausted)
    assert result.attempts == 3
    assert not result.aborted
    assert str(result.last_error) == "boom"
    assert op.calls == [1, 2, 3]
    assert delays == [1.5, 3.0]


def test_non_retryable_error_aborts():
    delays = []
    op = Flaky(failures=5, exc=ValueError("fatal"))
    policy = RetryPolicy(max_attempts=3, retry_on=lambda exc: not isinstance(exc, ValueError))

    result = with_retry(op, policy, sleep=delays.append)

    assert isinstance(result, RetryExhausted)
    assert result.aborted
    assert result.attempts == 1
    assert delays == []


def test_single_attempt_policy():
    result = with_retry(lambda attempt: attempt * 10, RetryPolicy(), sleep=lambda s: None)
    assert isinstance(result, RetrySuccess)
    assert result.value == 10


def test_rejects_zero_attempts():
    with pytest.raises(ValueError):
        with_retry(lambda attempt: None, RetryPolicy(max_attempts=0))
