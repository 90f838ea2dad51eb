"""
Обработчик основной очереди событий.

Алгоритм одной итерации:
- ждём запись из основной очереди
- битая запись -> лог и выброс (повторять нечего, содержимое неизвестно)
- канал без адаптера -> лог и выброс (ошибка конфигурации, без ретраев)
- attempt_count += 1, last_attempt_at = now, вызов адаптера
- успех -> событие больше нигде не хранится
- ошибка -> очередь ретраев, пока should_retry(), иначе DLQ
- очередь ретраев так и не приняла событие -> DLQ

Важно:
- ни одна ошибка не выходит за пределы итерации
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from datetime import datetime

from notification_relay.common.config import Settings, get_settings
from notification_relay.common.errors import MalformedEventError, QueueUnavailableError
from notification_relay.common.logging import get_project_logger
from notification_relay.common.metrics import (
    EVENTS_PROCESSED_TOTAL,
    QUEUE_ERRORS_TOTAL,
    track_delivery_latency,
)
from notification_relay.common.time import utc_now
from notification_relay.delivery.base import DeliveryResult, NotificationAdapter
from notification_relay.delivery.registry import AdapterMap
from notification_relay.domain.events import Event
from notification_relay.domain.routing import determine_channel
from notification_relay.queue.dlq import DLQManager
from notification_relay.queue.retry import RetryScheduler
from notification_relay.queue.service import QueueService

log = get_project_logger()

RESULT_EMPTY = "empty"
RESULT_MALFORMED = "malformed"
RESULT_UNKNOWN_CHANNEL = "unknown_channel"
RESULT_DELIVERED = "delivered"
RESULT_RETRY = "retry"
RESULT_DLQ = "dlq"


class EventProcessor:
    def __init__(
        self,
        *,
        queue: QueueService,
        adapters: AdapterMap,
        retry: RetryScheduler,
        dlq: DLQManager,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.queue = queue
        self.adapters = adapters
        self.retry = retry
        self.dlq = dlq
        self.s = settings or get_settings()
        self._clock = clock

    def run_once(self, stop_event: threading.Event | None = None) -> str:
        raw = self.queue.blocking_pop(self.s.queue_events, timeout=self.s.event_pop_timeout_sec)
        if raw is None:
            return RESULT_EMPTY
        return self.process_record(raw, stop_event)

    def process_record(self, raw: str, stop_event: threading.Event | None = None) -> str:
        try:
            event = Event.from_record(raw)
        except MalformedEventError as e:
            log.error(
                "event_malformed",
                extra={"payload": {"reason": e.message, "details": e.details}},
            )
            EVENTS_PROCESSED_TOTAL.labels(channel="unknown", result=RESULT_MALFORMED).inc()
            return RESULT_MALFORMED

        channel = determine_channel(event)
        adapter = self.adapters.get(channel)
        if adapter is None:
            log.error(
                "event_unknown_channel",
                extra={"payload": {"channel": channel, "event_type": event.event_type}},
            )
            EVENTS_PROCESSED_TOTAL.labels(channel=channel, result=RESULT_UNKNOWN_CHANNEL).inc()
            return RESULT_UNKNOWN_CHANNEL

        event.record_attempt(self._clock())

        error = self._deliver(adapter, channel, event)
        if error is None:
            log.info(
                "event_delivered",
                extra={
                    "payload": {
                        "channel": channel,
                        "event_type": event.event_type,
                        "user_id": event.user_id,
                        "attempt_count": event.attempt_count,
                    }
                },
            )
            EVENTS_PROCESSED_TOTAL.labels(channel=channel, result=RESULT_DELIVERED).inc()
            return RESULT_DELIVERED

        event.last_error = error
        log.warning(
            "event_delivery_failed",
            extra={
                "payload": {
                    "channel": channel,
                    "event_type": event.event_type,
                    "attempt_count": event.attempt_count,
                    "max_attempts": event.max_attempts,
                    "err": error[:200],
                }
            },
        )

        if event.should_retry():
            try:
                self.retry.schedule_retry(event, error, stop_event=stop_event)
            except QueueUnavailableError as e:
                # очередь ретраев недоступна: событие фиксируется в DLQ
                log.error(
                    "event_retry_schedule_failed",
                    extra={
                        "payload": {
                            "event_type": event.event_type,
                            "user_id": event.user_id,
                            "attempt_count": event.attempt_count,
                            "fallback": "dlq",
                            "details": e.details,
                        }
                    },
                )
                error = f"retry_queue_unavailable: {error}"
            else:
                EVENTS_PROCESSED_TOTAL.labels(channel=channel, result=RESULT_RETRY).inc()
                return RESULT_RETRY

        try:
            self.dlq.move_to_dlq(event, error, stop_event=stop_event)
        except QueueUnavailableError as e:
            # событие потеряно: фиксируем в логе целиком, кроме текста сообщения
            log.error(
                "event_dlq_move_failed",
                extra={
                    "payload": {
                        "event_type": event.event_type,
                        "user_id": event.user_id,
                        "attempt_count": event.attempt_count,
                        "details": e.details,
                    }
                },
            )
        EVENTS_PROCESSED_TOTAL.labels(channel=channel, result=RESULT_DLQ).inc()
        return RESULT_DLQ

    def _deliver(self, adapter: NotificationAdapter, channel: str, event: Event) -> str | None:
        """
        None при успехе, иначе текст ошибки. Исключение адаптера = неуспешная доставка.
        """
        try:
            with track_delivery_latency(channel):
                result: DeliveryResult = adapter.send(event.recipient, event.message)
        except Exception as e:
            return f"{type(e).__name__}: {str(e)[:200]}"
        if result.ok:
            return None
        return result.error or "delivery_failed"

    def run_loop(self, stop_event: threading.Event) -> None:
        log.info("event_processor_started", extra={"payload": {"queue": self.s.queue_events}})
        while not stop_event.is_set():
            try:
                self.run_once(stop_event)
            except QueueUnavailableError as e:
                QUEUE_ERRORS_TOTAL.labels(service="event-processor", operation=e.message).inc()
                log.error(
                    "event_processor_queue_error",
                    extra={"payload": {"reason": e.message, "details": e.details}},
                )
                stop_event.wait(self.s.queue_error_backoff_sec)
            except Exception as e:
                log.exception(
                    "event_processor_iteration_failed",
                    extra={"payload": {"err": str(e)[:200]}},
                )
                stop_event.wait(self.s.queue_error_backoff_sec)
        log.info("event_processor_stopped")
