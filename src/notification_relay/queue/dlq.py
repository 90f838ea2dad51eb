"""
DLQ (dead-letter queue) для событий, исчерпавших попытки доставки.

Правила:
- запись кладётся в голову списка -> листинг от самых свежих
- ошибка сериализации логируется и не поднимается (best-effort)
- push повторяется QUEUE_PUSH_ATTEMPTS раз; если очередь так и не ответила,
  QueueUnavailableError поднимается вызывающему
- очистка DLQ вне рамок сервиса
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from datetime import datetime

from notification_relay.common.config import Settings, get_settings
from notification_relay.common.errors import MalformedEventError
from notification_relay.common.logging import get_project_logger
from notification_relay.common.metrics import DLQ_MOVED_TOTAL
from notification_relay.common.time import utc_now
from notification_relay.domain.events import Event
from notification_relay.domain.routing import determine_channel

from .service import QueueService, push_with_backoff

log = get_project_logger()


class DLQManager:
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

    @property
    def queue_name(self) -> str:
        return self.s.queue_dlq

    def move_to_dlq(
        self, event: Event, final_error: str, *, stop_event: threading.Event | None = None
    ) -> bool:
        """
        Возвращает False, если запись не удалось сериализовать (событие залогировано).
        QueueUnavailableError при недоступности очереди.
        """
        event.last_error = final_error
        event.last_attempt_at = self._clock()

        try:
            record = event.to_record()
        except (TypeError, ValueError) as e:
            log.error(
                "dlq_serialize_failed",
                extra={
                    "payload": {
                        "event_type": event.event_type,
                        "user_id": event.user_id,
                        "err": str(e)[:200],
                    }
                },
            )
            return False

        push_with_backoff(
            self.queue,
            self.queue_name,
            record,
            backoff_sec=self.s.queue_error_backoff_sec,
            attempts=self.s.queue_push_attempts,
            stop_event=stop_event,
            sleep=self._sleep,
            service="dlq",
        )
        DLQ_MOVED_TOTAL.labels(channel=determine_channel(event)).inc()
        log.warning(
            "event_moved_to_dlq",
            extra={
                "payload": {
                    "dlq": self.queue_name,
                    "event_type": event.event_type,
                    "user_id": event.user_id,
                    "attempt_count": event.attempt_count,
                    "max_attempts": event.max_attempts,
                    "err": final_error[:200],
                }
            },
        )
        return True

    def get_stats(self) -> int:
        return self.queue.length(self.queue_name)

    def list_events(self, limit: int) -> list[Event]:
        if limit <= 0:
            return []
        out: list[Event] = []
        for raw in self.queue.range(self.queue_name, 0, limit - 1):
            try:
                out.append(Event.from_record(raw))
            except MalformedEventError as e:
                log.warning(
                    "dlq_record_skipped",
                    extra={"payload": {"reason": e.message, "details": e.details}},
                )
        return out
