import threading

import pytest

from pfcc.retry import RetryCancelled, RetryError, RetryPolicy, retry_call

from conftest import NoWait


class Flaky:
    def __init__(self, failures, exc=RuntimeError):
        self.failures = failures
        self.exc = exc
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.exc(f"boom {self.calls}")
        return "ok"


def test_first_attempt_success_does_not_wait():
    stop = NoWait()
    op = Flaky(0)
    assert retry_call(op, RetryPolicy(3, 5.0), stop=stop) == "ok"
    assert op.calls == 1
    assert stop.waits == []


def test_linear_backoff_between_attempts():
    stop = NoWait()
    op = Flaky(2)
    assert retry_call(op, RetryPolicy(3, 5.0), stop=stop) == "ok"
    assert op.calls == 3
    assert stop.waits == [5.0, 10.0]


def test_exhaustion_wraps_last_error():
    stop = NoWait()
    op = Flaky(10)
    with pytest.raises(RetryError) as ei:
        retry_call(op, RetryPolicy(3, 1.0), stop=stop)
    assert op.calls == 3
    assert ei.value.attempts == 3
    assert str(ei.value.last_error) == "boom 3"
    assert ei.value.__cause__ is ei.value.last_error
    assert "after 3 attempts" in str(ei.value)


@pytest.mark.parametrize("attempts", [0, -1, 1])
def test_at_least_one_attempt(attempts):
    op = Flaky(10)
    with pytest.raises(RetryError):
        retry_call(op, RetryPolicy(attempts, 1.0), stop=NoWait())
    assert op.calls == 1


def test_errors_outside_retry_on_propagate_immediately():
    op = Flaky(1, exc=KeyError)
    with pytest.raises(KeyError):
        retry_call(op, RetryPolicy(3, 1.0), stop=NoWait(), retry_on=(RuntimeError,))
    assert op.calls == 1


def test_cancelled_before_first_attempt():
    stop = threading.Event()
    stop.set()
    op = Flaky(0)
    with pytest.raises(RetryCancelled):
        retry_call(op, RetryPolicy(3, 1.0), stop=stop)
    assert op.calls == 0


def test_cancelled_during_wait():
    stop = NoWait()

    def op():
        stop.set()
        raise RuntimeError("down")

    with pytest.raises(RetryCancelled):
        retry_call(op, RetryPolicy(3, 5.0), stop=stop)
    assert stop.waits == [5.0]


def test_real_event_wakes_up_without_sleeping_full_delay():
    stop = threading.Event()
    timer = threading.Timer(0.05, stop.set)
    timer.start()
    try:
        with pytest.raises(RetryCancelled):
            retry_call(Flaky(10), RetryPolicy(3, 30.0), stop=stop)
    finally:
        timer.cancel()


def test_wait_before():
    policy = RetryPolicy(attempts=4, delay_s=2.0)
    assert [policy.wait_before(k) for k in (1, 2, 3, 4)] == [0.0, 2.0, 4.0, 6.0]
