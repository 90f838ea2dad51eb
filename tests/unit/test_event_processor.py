from __future__ import annotations

import threading

from conftest import FakeAdapter, FlakyPushQueue

from notification_relay.domain.events import Event
from notification_relay.queue.dlq import DLQManager
from notification_relay.queue.retry import RESULT_DEFERRED, RESULT_RELEASED, RetryScheduler
from notification_relay.services.event_processor import (
    RESULT_DELIVERED,
    RESULT_DLQ,
    RESULT_EMPTY,
    RESULT_MALFORMED,
    RESULT_RETRY,
    RESULT_UNKNOWN_CHANNEL,
    EventProcessor,
)
from notification_relay.services.ingestion import IngestRequest, ingest_event


def _build(queue, settings, clock, adapters):
    retry = RetryScheduler(queue, settings=settings, clock=clock, sleep=lambda _s: None)
    dlq = DLQManager(queue, settings=settings, clock=clock, sleep=lambda _s: None)
    processor = EventProcessor(
        queue=queue, adapters=adapters, retry=retry, dlq=dlq, settings=settings, clock=clock
    )
    return processor, retry, dlq


def test_successful_delivery_leaves_no_trace(queue, settings, clock) -> None:
    email = FakeAdapter([True])
    processor, _retry, dlq = _build(queue, settings, clock, {"email": email, "sms": FakeAdapter()})
    ingest_event(
        IngestRequest(severity="low", recipient="a@example.com", message="hi"),
        queue=queue,
        adapters=processor.adapters,
        settings=settings,
        clock=clock,
    )

    assert processor.run_once() == RESULT_DELIVERED

    assert email.calls == [("a@example.com", "hi")]
    assert dlq.get_stats() == 0
    assert queue.length(settings.queue_retry) == 0
    assert queue.length(settings.queue_events) == 0


def test_failure_schedules_retry_with_incremented_attempt(queue, settings, clock) -> None:
    processor, _retry, dlq = _build(queue, settings, clock, {"email": FakeAdapter([False])})
    queue.push(settings.queue_events, Event(recipient="a@example.com", max_attempts=3).to_record())

    assert processor.run_once() == RESULT_RETRY

    [raw] = queue.range(settings.queue_retry, 0, -1)
    event = Event.from_record(raw)
    assert event.attempt_count == 1
    assert event.last_error == "provider down"
    assert event.last_attempt_at == clock()
    assert dlq.get_stats() == 0


def test_adapter_exception_is_treated_as_failure(queue, settings, clock) -> None:
    processor, _retry, _dlq = _build(
        queue, settings, clock, {"email": FakeAdapter([ConnectionError("refused")])}
    )
    queue.push(settings.queue_events, Event(recipient="a@example.com").to_record())

    assert processor.run_once() == RESULT_RETRY

    event = Event.from_record(queue.range(settings.queue_retry, 0, 0)[0])
    assert event.last_error == "ConnectionError: refused"


def test_exhausted_event_goes_to_dlq(queue, settings, clock) -> None:
    processor, _retry, dlq = _build(queue, settings, clock, {"email": FakeAdapter([False])})
    queue.push(
        settings.queue_events,
        Event(recipient="a@example.com", attempt_count=2, max_attempts=3).to_record(),
    )

    assert processor.run_once() == RESULT_DLQ

    [event] = dlq.list_events(10)
    assert event.attempt_count == 3
    assert event.last_error == "provider down"
    assert queue.length(settings.queue_retry) == 0


def test_malformed_record_is_discarded(queue, settings, clock) -> None:
    adapter = FakeAdapter()
    processor, _retry, dlq = _build(queue, settings, clock, {"email": adapter})
    queue.push(settings.queue_events, "garbage")

    assert processor.run_once() == RESULT_MALFORMED

    assert adapter.calls == []
    assert dlq.get_stats() == 0
    assert queue.length(settings.queue_retry) == 0


def test_unknown_channel_is_discarded(queue, settings, clock) -> None:
    email = FakeAdapter()
    processor, _retry, dlq = _build(queue, settings, clock, {"email": email})
    queue.push(settings.queue_events, Event(severity="high", recipient="+1555").to_record())

    assert processor.run_once() == RESULT_UNKNOWN_CHANNEL

    assert email.calls == []
    assert dlq.get_stats() == 0
    assert queue.length(settings.queue_retry) == 0


def test_empty_queue_returns_empty(queue, settings, clock) -> None:
    processor, _retry, _dlq = _build(queue, settings, clock, {"email": FakeAdapter()})
    assert processor.run_once() == RESULT_EMPTY


def test_transient_retry_push_failure_keeps_event_in_retry_queue(settings, clock) -> None:
    queue = FlakyPushQueue(settings.queue_retry, failures=1)
    processor, _retry, dlq = _build(queue, settings, clock, {"email": FakeAdapter([False])})
    queue.push(settings.queue_events, Event(recipient="a@example.com").to_record())

    assert processor.run_once() == RESULT_RETRY

    assert queue.failed_pushes == 1
    assert queue.length(settings.queue_retry) == 1
    assert dlq.get_stats() == 0
    stored = Event.from_record(queue.range(settings.queue_retry, 0, 0)[0])
    assert stored.attempt_count == 1


def test_retry_queue_outage_falls_back_to_dlq(settings, clock) -> None:
    queue = FlakyPushQueue(settings.queue_retry, failures=settings.queue_push_attempts)
    processor, _retry, dlq = _build(queue, settings, clock, {"email": FakeAdapter([False])})
    queue.push(settings.queue_events, Event(recipient="a@example.com").to_record())

    assert processor.run_once() == RESULT_DLQ

    assert queue.length(settings.queue_retry) == 0
    [dead] = dlq.list_events(10)
    assert dead.attempt_count == 1
    assert dead.last_error.startswith("retry_queue_unavailable")


def test_transient_dlq_push_failure_still_dead_letters(settings, clock) -> None:
    queue = FlakyPushQueue(settings.queue_dlq, failures=1)
    processor, _retry, dlq = _build(queue, settings, clock, {"email": FakeAdapter([False])})
    queue.push(settings.queue_events, Event(recipient="a@example.com", max_attempts=1).to_record())

    assert processor.run_once() == RESULT_DLQ
    assert dlq.get_stats() == 1


def test_dlq_outage_does_not_raise(settings, clock) -> None:
    queue = FlakyPushQueue(settings.queue_dlq, failures=100)
    processor, _retry, _dlq = _build(queue, settings, clock, {"email": FakeAdapter([False])})
    queue.push(settings.queue_events, Event(recipient="a@example.com", max_attempts=1).to_record())

    assert processor.run_once() == RESULT_DLQ
    assert queue.failed_pushes == settings.queue_push_attempts


def test_high_severity_retries_then_dead_letters(queue, settings, clock) -> None:
    sms = FakeAdapter([False])
    processor, retry, dlq = _build(queue, settings, clock, {"email": FakeAdapter(), "sms": sms})
    ingest_event(
        IngestRequest(severity="high", recipient="+15551234567", message="code 42", max_attempts=2),
        queue=queue,
        adapters=processor.adapters,
        settings=settings,
        clock=clock,
    )

    # попытка 1: ошибка -> очередь ретраев с окном 2с
    assert processor.run_once() == RESULT_RETRY
    clock.advance(1)
    assert retry.run_once() == RESULT_DEFERRED
    clock.advance(1)
    assert retry.run_once() == RESULT_RELEASED

    # попытка 2: ошибка, попытки исчерпаны -> DLQ
    assert processor.run_once() == RESULT_DLQ
    assert retry.run_once() == "empty"

    assert len(sms.calls) == 2
    [dead] = dlq.list_events(10)
    assert dead.attempt_count == 2
    assert dead.max_attempts == 2
    assert dead.last_error == "provider down"
    assert dead.recipient == "+15551234567"
    assert queue.length(settings.queue_events) == 0
    assert queue.length(settings.queue_retry) == 0


def test_attempt_count_matches_failures_until_dlq(queue, settings, clock) -> None:
    processor, retry, dlq = _build(queue, settings, clock, {"email": FakeAdapter([False])})
    queue.push(settings.queue_events, Event(recipient="a@example.com", max_attempts=4).to_record())

    for n in range(1, 4):
        assert processor.run_once() == RESULT_RETRY
        event = Event.from_record(queue.range(settings.queue_retry, 0, 0)[0])
        assert event.attempt_count == n
        clock.advance(60)
        assert retry.run_once() == RESULT_RELEASED

    assert processor.run_once() == RESULT_DLQ
    assert dlq.list_events(1)[0].attempt_count == 4


def test_run_loop_stops_on_signal(queue, settings, clock) -> None:
    adapter = FakeAdapter()
    processor, _retry, _dlq = _build(queue, settings, clock, {"email": adapter})
    queue.push(settings.queue_events, Event(recipient="a@example.com").to_record())
    stop = threading.Event()

    t = threading.Thread(target=processor.run_loop, args=(stop,), daemon=True)
    t.start()
    try:
        for _ in range(200):
            if adapter.calls:
                break
            stop.wait(0.01)
    finally:
        stop.set()
        t.join(2)

    assert adapter.calls == [("a@example.com", "")]
    assert not t.is_alive()
