from __future__ import annotations

import threading

import pytest
from conftest import FakeClock, FlakyPushQueue

from notification_relay.common.errors import QueueUnavailableError
from notification_relay.domain.events import Event
from notification_relay.queue.retry import (
    RESULT_DEFERRED,
    RESULT_EMPTY,
    RESULT_MALFORMED,
    RESULT_RELEASED,
    RetryScheduler,
    backoff_seconds,
)


def test_backoff_is_exponential_and_capped() -> None:
    assert [backoff_seconds(k) for k in range(8)] == [1, 2, 4, 8, 16, 32, 60, 60]
    assert backoff_seconds(1000) == 60
    assert backoff_seconds(-3) == 1


def test_backoff_is_monotonic() -> None:
    values = [backoff_seconds(k) for k in range(100)]
    assert values == sorted(values)
    assert max(values) == 60


def _scheduler(queue, settings, clock, sleeps: list[float] | None = None) -> RetryScheduler:
    sink = sleeps if sleeps is not None else []
    return RetryScheduler(queue, settings=settings, clock=clock, sleep=sink.append)


def test_schedule_retry_sets_error_without_incrementing(queue, settings, clock) -> None:
    scheduler = _scheduler(queue, settings, clock)
    event = Event(user_id="u", attempt_count=1, max_attempts=3, last_attempt_at=clock())

    backoff = scheduler.schedule_retry(event, "smtp timeout")

    assert backoff == 2
    assert event.attempt_count == 1
    assert queue.length(settings.queue_retry) == 1
    stored = Event.from_record(queue.range(settings.queue_retry, 0, 0)[0])
    assert stored.last_error == "smtp timeout"
    assert stored.attempt_count == 1


def test_not_ready_event_is_pushed_back_unchanged(queue, settings, clock) -> None:
    sleeps: list[float] = []
    scheduler = _scheduler(queue, settings, clock, sleeps)
    event = Event(user_id="u", attempt_count=1, last_attempt_at=clock())
    raw = event.to_record()
    queue.push(settings.queue_retry, raw)
    clock.advance(1.5)

    assert scheduler.run_once() == RESULT_DEFERRED

    assert queue.range(settings.queue_retry, 0, -1) == [raw]
    assert queue.length(settings.queue_events) == 0
    assert sleeps == [settings.retry_requeue_delay_sec]


def test_ready_event_moves_to_main_queue(queue, settings, clock) -> None:
    scheduler = _scheduler(queue, settings, clock)
    event = Event(user_id="u", attempt_count=2, last_attempt_at=clock())
    raw = event.to_record()
    queue.push(settings.queue_retry, raw)
    clock.advance(4)

    assert scheduler.run_once() == RESULT_RELEASED

    assert queue.length(settings.queue_retry) == 0
    assert queue.range(settings.queue_events, 0, -1) == [raw]


def test_event_without_last_attempt_is_ready(queue, settings, clock) -> None:
    scheduler = _scheduler(queue, settings, clock)
    queue.push(settings.queue_retry, Event(attempt_count=1).to_record())
    assert scheduler.run_once() == RESULT_RELEASED


def test_empty_queue_is_not_an_error(queue, settings, clock) -> None:
    assert _scheduler(queue, settings, clock).run_once() == RESULT_EMPTY


def test_malformed_record_is_dropped(queue, settings, clock) -> None:
    queue.push(settings.queue_retry, "{broken")
    assert _scheduler(queue, settings, clock).run_once() == RESULT_MALFORMED
    assert queue.length(settings.queue_retry) == 0
    assert queue.length(settings.queue_events) == 0


def test_ready_event_can_overtake_waiting_one(queue, settings, clock) -> None:
    scheduler = _scheduler(queue, settings, clock)
    waiting = Event(user_id="waiting", attempt_count=5, last_attempt_at=clock()).to_record()
    ready = Event(user_id="ready", attempt_count=1, last_attempt_at=clock()).to_record()
    queue.push(settings.queue_retry, waiting)
    queue.push(settings.queue_retry, ready)
    clock.advance(3)

    assert scheduler.run_once() == RESULT_DEFERRED
    assert scheduler.run_once() == RESULT_RELEASED

    assert queue.range(settings.queue_events, 0, -1) == [ready]
    assert queue.range(settings.queue_retry, 0, -1) == [waiting]


def test_transient_push_failure_to_main_queue_keeps_record(settings, clock) -> None:
    queue = FlakyPushQueue(settings.queue_events, failures=1)
    record = Event(attempt_count=1, last_attempt_at=clock()).to_record()
    queue.push(settings.queue_retry, record)
    clock.advance(2)

    assert _scheduler(queue, settings, clock).run_once() == RESULT_RELEASED

    assert queue.failed_pushes == 1
    assert queue.range(settings.queue_events, 0, -1) == [record]
    assert queue.total() == 1


def test_transient_push_failure_on_deferral_keeps_record(settings, clock) -> None:
    queue = FlakyPushQueue(settings.queue_retry, failures=0)
    record = Event(attempt_count=3, last_attempt_at=clock()).to_record()
    queue.push(settings.queue_retry, record)
    queue.failures = 2

    assert _scheduler(queue, settings, clock).run_once() == RESULT_DEFERRED

    assert queue.failed_pushes == 2
    assert queue.range(settings.queue_retry, 0, -1) == [record]


def test_outage_during_stop_returns_record_to_retry_queue(settings, clock) -> None:
    queue = FlakyPushQueue(settings.queue_events, failures=100)
    record = Event(attempt_count=1, last_attempt_at=clock()).to_record()
    queue.push(settings.queue_retry, record)
    clock.advance(2)
    stop = threading.Event()
    stop.set()

    assert _scheduler(queue, settings, clock).run_once(stop) == RESULT_DEFERRED

    assert queue.length(settings.queue_events) == 0
    assert queue.range(settings.queue_retry, 0, -1) == [record]


def test_schedule_retry_survives_transient_push_failure(settings, clock) -> None:
    queue = FlakyPushQueue(settings.queue_retry, failures=1)
    event = Event(attempt_count=1, last_attempt_at=clock())

    _scheduler(queue, settings, clock).schedule_retry(event, "provider down")

    assert queue.length(settings.queue_retry) == 1


def test_schedule_retry_raises_after_push_attempts(settings, clock) -> None:
    queue = FlakyPushQueue(settings.queue_retry, failures=100)

    with pytest.raises(QueueUnavailableError):
        _scheduler(queue, settings, clock).schedule_retry(Event(attempt_count=1), "x")

    assert queue.failed_pushes == settings.queue_push_attempts
    assert queue.total() == 0


class _BrokenQueue:
    def __init__(self) -> None:
        self.calls = 0

    def blocking_pop(self, queue_name: str, timeout: float) -> str | None:
        self.calls += 1
        raise QueueUnavailableError("pop_failed", {"queue": queue_name})


def test_run_loop_survives_queue_errors(settings) -> None:
    broken = _BrokenQueue()
    scheduler = RetryScheduler(broken, settings=settings, clock=FakeClock())
    stop = threading.Event()

    t = threading.Thread(target=scheduler.run_loop, args=(stop,), daemon=True)
    t.start()
    try:
        for _ in range(200):
            if broken.calls >= 3:
                break
            stop.wait(0.01)
    finally:
        stop.set()
        t.join(2)

    assert broken.calls >= 3
    assert not t.is_alive()


@pytest.mark.parametrize("attempt_count,wait_sec,expected", [(1, 1.9, RESULT_DEFERRED), (1, 2, RESULT_RELEASED)])
def test_backoff_window_boundary(queue, settings, clock, attempt_count, wait_sec, expected) -> None:
    scheduler = _scheduler(queue, settings, clock)
    queue.push(
        settings.queue_retry,
        Event(attempt_count=attempt_count, last_attempt_at=clock()).to_record(),
    )
    clock.advance(wait_sec)
    assert scheduler.run_once() == expected
