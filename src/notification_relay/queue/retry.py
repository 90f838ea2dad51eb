"""
Retry-планировщик: экспоненциальный backoff поверх очереди ретраев.

Алгоритм одной итерации:
- ограниченно ждём запись из очереди ретраев (таймаут - не ошибка)
- если окно backoff ещё не прошло - кладём ту же запись (байт в байт)
  обратно в очередь ретраев и коротко спим, чтобы не крутиться вхолостую
- иначе перекладываем запись в основную очередь

Важно:
- attempt_count здесь не меняется, его увеличивает только обработчик
- снятая с очереди запись не теряется: push повторяется с паузой
  QUEUE_ERROR_BACKOFF_SEC до успеха или до сигнала остановки
- порядок внутри очереди ретраев не гарантируется: неготовая запись уходит
  в голову и её может обогнать уже готовая
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from datetime import datetime

from notification_relay.common.config import Settings, get_settings
from notification_relay.common.errors import MalformedEventError, QueueUnavailableError
from notification_relay.common.logging import get_project_logger
from notification_relay.common.metrics import QUEUE_ERRORS_TOTAL, RETRY_TRANSITIONS_TOTAL
from notification_relay.common.time import utc_now
from notification_relay.domain.events import Event

from .service import QueueService, push_with_backoff

log = get_project_logger()

BACKOFF_MAX_SEC = 60

RESULT_EMPTY = "empty"
RESULT_MALFORMED = "malformed"
RESULT_DEFERRED = "deferred"
RESULT_RELEASED = "released"


def backoff_seconds(attempt_count: int, *, base: int = 1, cap: int = BACKOFF_MAX_SEC) -> int:
    """
    min(base * 2^attempt_count, cap). С base=1, cap=60: 1, 2, 4, ... 32, 60, 60, ...
    """
    k = max(0, int(attempt_count))
    # большие степени сразу упираются в потолок
    if k >= 32:
        return cap
    return min(base * (1 << k), cap)


class RetryScheduler:
    def __init__(
        self,
        queue: QueueService,
        *,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.queue = queue
        self.s = settings or get_settings()
        self._clock = clock
        self._sleep = sleep

    def backoff_for(self, event: Event) -> int:
        return backoff_seconds(
            event.attempt_count,
            base=self.s.retry_backoff_base_sec,
            cap=self.s.retry_backoff_max_sec,
        )

    def schedule_retry(
        self, event: Event, error: str, *, stop_event: threading.Event | None = None
    ) -> int:
        """
        Поставить событие в очередь ретраев.
        push повторяется QUEUE_PUSH_ATTEMPTS раз, затем QueueUnavailableError
        поднимается вызывающему. Возвращает расчётный backoff (сек).
        """
        event.last_error = error
        backoff = self.backoff_for(event)
        push_with_backoff(
            self.queue,
            self.s.queue_retry,
            event.to_record(),
            backoff_sec=self.s.queue_error_backoff_sec,
            attempts=self.s.queue_push_attempts,
            stop_event=stop_event,
            sleep=self._sleep,
            service="retry-scheduler",
        )
        log.info(
            "event_retry_scheduled",
            extra={
                "payload": {
                    "event_type": event.event_type,
                    "user_id": event.user_id,
                    "attempt_count": event.attempt_count,
                    "max_attempts": event.max_attempts,
                    "backoff_sec": backoff,
                    "err": error[:200],
                }
            },
        )
        return backoff

    def is_ready(self, event: Event, now: datetime) -> bool:
        if event.last_attempt_at is None:
            return True
        elapsed = (now - event.last_attempt_at).total_seconds()
        return elapsed >= self.backoff_for(event)

    def run_once(self, stop_event: threading.Event | None = None) -> str:
        raw = self.queue.blocking_pop(self.s.queue_retry, timeout=self.s.retry_pop_timeout_sec)
        if raw is None:
            return RESULT_EMPTY

        try:
            event = Event.from_record(raw)
        except MalformedEventError as e:
            log.error(
                "retry_event_malformed",
                extra={"payload": {"reason": e.message, "details": e.details}},
            )
            RETRY_TRANSITIONS_TOTAL.labels(result=RESULT_MALFORMED).inc()
            return RESULT_MALFORMED

        if not self.is_ready(event, self._clock()):
            self._hand_off(self.s.queue_retry, raw, event, stop_event)
            RETRY_TRANSITIONS_TOTAL.labels(result=RESULT_DEFERRED).inc()
            self._sleep(self.s.retry_requeue_delay_sec)
            return RESULT_DEFERRED

        if not self._hand_off(self.s.queue_events, raw, event, stop_event):
            RETRY_TRANSITIONS_TOTAL.labels(result=RESULT_DEFERRED).inc()
            return RESULT_DEFERRED
        RETRY_TRANSITIONS_TOTAL.labels(result=RESULT_RELEASED).inc()
        log.info(
            "event_retry_released",
            extra={
                "payload": {
                    "event_type": event.event_type,
                    "user_id": event.user_id,
                    "next_attempt": event.attempt_count + 1,
                    "max_attempts": event.max_attempts,
                }
            },
        )
        return RESULT_RELEASED

    def _hand_off(
        self,
        queue_name: str,
        raw: str,
        event: Event,
        stop_event: threading.Event | None,
    ) -> bool:
        """
        Запись уже снята с очереди ретраев: push повторяется, пока не пройдёт.
        False - запись вернулась в очередь ретраев вместо queue_name.
        При остановке - последняя попытка вернуть её в очередь ретраев.
        """
        try:
            push_with_backoff(
                self.queue,
                queue_name,
                raw,
                backoff_sec=self.s.queue_error_backoff_sec,
                stop_event=stop_event,
                sleep=self._sleep,
                service="retry-scheduler",
            )
            return True
        except QueueUnavailableError:
            if queue_name == self.s.queue_retry:
                self._log_lost(event)
                raise

        try:
            self.queue.push(self.s.queue_retry, raw)
        except QueueUnavailableError:
            self._log_lost(event)
            raise
        return False

    def _log_lost(self, event: Event) -> None:
        log.error(
            "retry_event_lost",
            extra={
                "payload": {
                    "event_type": event.event_type,
                    "user_id": event.user_id,
                    "recipient": event.recipient,
                    "attempt_count": event.attempt_count,
                    "max_attempts": event.max_attempts,
                    "last_error": event.last_error[:200],
                }
            },
        )

    def run_loop(self, stop_event: threading.Event) -> None:
        log.info(
            "retry_scheduler_started",
            extra={"payload": {"queue": self.s.queue_retry, "target": self.s.queue_events}},
        )
        while not stop_event.is_set():
            try:
                self.run_once(stop_event)
            except QueueUnavailableError as e:
                QUEUE_ERRORS_TOTAL.labels(service="retry-scheduler", operation=e.message).inc()
                log.error(
                    "retry_scheduler_queue_error",
                    extra={"payload": {"reason": e.message, "details": e.details}},
                )
                stop_event.wait(self.s.queue_error_backoff_sec)
            except Exception as e:
                log.exception(
                    "retry_scheduler_iteration_failed",
                    extra={"payload": {"err": str(e)[:200]}},
                )
                stop_event.wait(self.s.queue_error_backoff_sec)
        log.info("retry_scheduler_stopped")
