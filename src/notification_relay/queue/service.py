"""
Сервис очередей: push / blocking pop / length / range.

Семантика (как у Redis-списков):
- push кладёт запись в голову списка (LPUSH)
- blocking_pop забирает из хвоста (BRPOP) -> FIFO
- range(0, n-1) возвращает записи от самой свежей к самой старой

Режимы (QUEUE_MODE):
- redis: RedisQueueService поверх общего клиента
- inline: InMemoryQueueService внутри процесса (dev/тесты)
"""

from __future__ import annotations

import threading
import time
from collections import deque
from collections.abc import Callable
from typing import Protocol

import redis

from notification_relay.common.config import get_settings
from notification_relay.common.errors import QueueUnavailableError
from notification_relay.common.logging import get_project_logger
from notification_relay.common.metrics import QUEUE_ERRORS_TOTAL

from .redis import redis_client

log = get_project_logger()


class QueueService(Protocol):
    def push(self, queue_name: str, record: str) -> None: ...

    def blocking_pop(self, queue_name: str, timeout: float) -> str | None:
        """
        timeout=0 - ждать бесконечно. None - очередь пуста по таймауту.
        """
        ...

    def length(self, queue_name: str) -> int: ...

    def range(self, queue_name: str, start: int, end: int) -> list[str]: ...

    def ping(self) -> bool: ...


class RedisQueueService:
    def __init__(self, client: redis.Redis | None = None) -> None:
        self._client = client

    @property
    def r(self) -> redis.Redis:
        return self._client if self._client is not None else redis_client()

    def push(self, queue_name: str, record: str) -> None:
        try:
            self.r.lpush(queue_name, record)
        except redis.RedisError as e:
            raise QueueUnavailableError(
                "push_failed", {"queue": queue_name, "err": str(e)[:200]}
            ) from e

    def blocking_pop(self, queue_name: str, timeout: float) -> str | None:
        try:
            item = self.r.brpop([queue_name], timeout=timeout)
        except redis.RedisError as e:
            raise QueueUnavailableError(
                "pop_failed", {"queue": queue_name, "err": str(e)[:200]}
            ) from e
        if not item:
            return None
        _key, value = item
        return value

    def length(self, queue_name: str) -> int:
        try:
            return int(self.r.llen(queue_name))
        except redis.RedisError as e:
            raise QueueUnavailableError(
                "length_failed", {"queue": queue_name, "err": str(e)[:200]}
            ) from e

    def range(self, queue_name: str, start: int, end: int) -> list[str]:
        try:
            return list(self.r.lrange(queue_name, start, end))
        except redis.RedisError as e:
            raise QueueUnavailableError(
                "range_failed", {"queue": queue_name, "err": str(e)[:200]}
            ) from e

    def ping(self) -> bool:
        try:
            return bool(self.r.ping())
        except redis.RedisError:
            return False


class InMemoryQueueService:
    """
    Очереди внутри процесса. Только для QUEUE_MODE=inline:
    данные не переживают рестарт.
    """

    def __init__(self) -> None:
        self._queues: dict[str, deque[str]] = {}
        self._cond = threading.Condition()

    def _q(self, queue_name: str) -> deque[str]:
        return self._queues.setdefault(queue_name, deque())

    def push(self, queue_name: str, record: str) -> None:
        with self._cond:
            self._q(queue_name).appendleft(record)
            self._cond.notify_all()

    def blocking_pop(self, queue_name: str, timeout: float) -> str | None:
        deadline = None if not timeout else time.monotonic() + timeout
        with self._cond:
            while True:
                q = self._q(queue_name)
                if q:
                    return q.pop()
                if deadline is None:
                    self._cond.wait()
                    continue
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return None
                self._cond.wait(remaining)

    def length(self, queue_name: str) -> int:
        with self._cond:
            return len(self._q(queue_name))

    def range(self, queue_name: str, start: int, end: int) -> list[str]:
        with self._cond:
            items = list(self._q(queue_name))
        size = len(items)
        # Индексы как у LRANGE: end включительно, отрицательные - с конца
        if start < 0:
            start = max(size + start, 0)
        if end < 0:
            end = size + end
        if start > end or start >= size:
            return []
        return items[start : end + 1]

    def ping(self) -> bool:
        return True


def push_with_backoff(
    queue: QueueService,
    queue_name: str,
    record: str,
    *,
    backoff_sec: float,
    attempts: int | None = None,
    stop_event: threading.Event | None = None,
    sleep: Callable[[float], None] = time.sleep,
    service: str = "queue",
) -> None:
    """
    push с повторами при QueueUnavailableError.

    - attempts=None: повторять, пока push не пройдёт или не выставлен stop_event
    - последняя ошибка поднимается вызывающему
    - при заданном stop_event ожидание прерывается сигналом остановки
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            queue.push(queue_name, record)
            return
        except QueueUnavailableError as e:
            QUEUE_ERRORS_TOTAL.labels(service=service, operation=e.message).inc()
            if attempts is not None and attempt >= attempts:
                raise
            if stop_event is not None and stop_event.is_set():
                raise
            log.warning(
                "queue_push_retry",
                extra={
                    "payload": {
                        "queue": queue_name,
                        "attempt": attempt,
                        "backoff_sec": backoff_sec,
                        "details": e.details,
                    }
                },
            )
            if stop_event is not None:
                stop_event.wait(backoff_sec)
            else:
                sleep(backoff_sec)


_inline_service: InMemoryQueueService | None = None
_inline_lock = threading.Lock()


def get_queue_service() -> QueueService:
    """
    Сервис очередей по QUEUE_MODE. В inline режиме - один экземпляр на процесс,
    чтобы API и воркеры видели одни и те же очереди.
    """
    global _inline_service
    mode = (get_settings().queue_mode or "").strip().lower()
    if mode == "inline":
        with _inline_lock:
            if _inline_service is None:
                _inline_service = InMemoryQueueService()
            return _inline_service
    return RedisQueueService()
