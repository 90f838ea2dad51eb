"""
Рантайм воркеров: обработчик основной очереди и retry-планировщик
в двух независимых потоках. Общаются только через сервис очередей.

Остановка: общий threading.Event. Ожидание в очереди ограничено таймаутом,
поэтому сигнал замечается быстро, а событие в работе дорабатывает текущий шаг.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field

from notification_relay.common.config import Settings, get_settings
from notification_relay.common.logging import get_project_logger
from notification_relay.delivery.registry import AdapterMap, build_adapters
from notification_relay.queue.dlq import DLQManager
from notification_relay.queue.retry import RetryScheduler
from notification_relay.queue.service import QueueService, get_queue_service
from notification_relay.services.event_processor import EventProcessor

log = get_project_logger()


@dataclass
class Pipeline:
    queue: QueueService
    adapters: AdapterMap
    retry: RetryScheduler
    dlq: DLQManager
    processor: EventProcessor
    stop_event: threading.Event = field(default_factory=threading.Event)
    threads: list[threading.Thread] = field(default_factory=list)

    def start(self) -> None:
        if self.threads:
            return
        self.threads = [
            threading.Thread(
                target=self.processor.run_loop,
                args=(self.stop_event,),
                name="event-processor",
                daemon=True,
            ),
            threading.Thread(
                target=self.retry.run_loop,
                args=(self.stop_event,),
                name="retry-scheduler",
                daemon=True,
            ),
        ]
        for t in self.threads:
            t.start()

    def stop(self, timeout: float | None = None) -> None:
        self.stop_event.set()
        for t in self.threads:
            t.join(timeout)
        alive = [t.name for t in self.threads if t.is_alive()]
        if alive:
            log.warning("pipeline_stop_timeout", extra={"payload": {"threads": alive}})
        self.threads = []


def build_pipeline(
    *,
    queue: QueueService | None = None,
    adapters: AdapterMap | None = None,
    settings: Settings | None = None,
) -> Pipeline:
    s = settings or get_settings()
    q = queue if queue is not None else get_queue_service()
    a = adapters if adapters is not None else build_adapters(s)
    retry = RetryScheduler(q, settings=s)
    dlq = DLQManager(q, settings=s)
    processor = EventProcessor(queue=q, adapters=a, retry=retry, dlq=dlq, settings=s)
    return Pipeline(queue=q, adapters=a, retry=retry, dlq=dlq, processor=processor)
