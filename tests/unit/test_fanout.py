"""
Tests for the bounded fan-out primitive.
"""
import threading

import pytest

from skyrapport.exceptions import AuthenticationError, ItemLevelError, SyncCancelledError
from skyrapport.network import Deadline
from skyrapport.sync.fanout import TaskResult, attempt, run_batched, summarize


def test_results_in_item_order():
    results = run_batched(list(range(7)), lambda x: x * 10, batch_size=3)
    assert [r.item for r in results] == list(range(7))
    assert [r.value for r in results] == [x * 10 for x in range(7)]


def test_one_failure_does_not_abort_batch():
    def work(x):
        if x == 2:
            raise RuntimeError("account gone")
        return 1

    results = run_batched([1, 2, 3, 4], work, batch_size=4)
    failed = [r for r in results if not r.ok]
    assert len(failed) == 1
    assert failed[0].item == 2
    assert isinstance(failed[0].error, ItemLevelError)
    assert isinstance(failed[0].error.original_error, RuntimeError)

    outcome = summarize(results)
    assert outcome.succeeded == 3
    assert outcome.failed == 1
    assert outcome.total == 3


def test_summarize_is_pure_function_of_results():
    results = [
        TaskResult(item="a", value=5),
        TaskResult(item="b", error=ItemLevelError("b", ValueError())),
        TaskResult(item="c", value=2),
    ]
    assert summarize(results) == summarize(list(results))
    assert summarize(results).total == 7


@pytest.mark.concurrency
def test_concurrency_bounded_by_batch_size():
    active = 0
    peak = 0
    lock = threading.Lock()

    def work(x):
        nonlocal active, peak
        with lock:
            active += 1
            peak = max(peak, active)
        threading.Event().wait(0.01)
        with lock:
            active -= 1
        return x

    run_batched(list(range(12)), work, batch_size=4)
    assert peak <= 4


def test_auth_error_terminates_run_after_batch():
    seen = []
    lock = threading.Lock()

    def work(x):
        with lock:
            seen.append(x)
        if x == 1:
            raise AuthenticationError()
        return x

    with pytest.raises(AuthenticationError):
        run_batched([0, 1, 2, 3, 4], work, batch_size=3)
    # The first batch drained; the second batch never started
    assert sorted(seen) == [0, 1, 2]


def test_cancelled_deadline_stops_before_next_batch():
    deadline = Deadline()
    processed = []

    def work(x):
        processed.append(x)
        deadline.cancel()
        return x

    with pytest.raises(SyncCancelledError):
        run_batched([1, 2, 3], work, batch_size=1, deadline=deadline)
    assert processed == [1]


def test_on_batch_progress():
    progress = []
    run_batched(list(range(5)), lambda x: x, batch_size=2, on_batch=lambda d, t: progress.append((d, t)))
    assert progress == [(2, 5), (4, 5), (5, 5)]


def test_empty_items():
    assert run_batched([], lambda x: x) == []
    assert summarize([]).total == 0


def test_invalid_batch_size():
    with pytest.raises(ValueError):
        run_batched([1], lambda x: x, batch_size=0)


def test_attempt_isolates_ordinary_errors():
    result = attempt("uri", lambda item: 1 / 0)
    assert not result.ok
    assert result.error.item == "uri"


def test_attempt_reraises_run_terminating_errors():
    def expired(item):
        raise AuthenticationError("Token has expired")

    with pytest.raises(AuthenticationError):
        attempt("uri", expired)
