"""
Worker Delivery.

Запускает в одном процессе два независимых цикла:
- обработчик основной очереди (доставка через адаптеры каналов)
- retry-планировщик (backoff и возврат событий в основную очередь)

SIGINT/SIGTERM -> сигнал остановки; циклы дорабатывают текущий шаг и выходят.
"""

from __future__ import annotations

import signal

from notification_relay.common.config import get_settings
from notification_relay.common.logging import get_project_logger, setup_logging
from notification_relay.queue.service import get_queue_service
from notification_relay.services.runtime import build_pipeline

log = get_project_logger()


def main() -> None:
    setup_logging(service="worker-delivery")
    settings = get_settings()

    queue = get_queue_service()
    if not queue.ping():
        # циклы сами переждут недоступность очереди
        log.warning("worker_delivery_queue_unreachable", extra={"payload": {"mode": settings.queue_mode}})

    pipeline = build_pipeline(queue=queue, settings=settings)

    def _on_signal(signum, _frame) -> None:
        log.info("worker_delivery_stop_requested", extra={"payload": {"signal": signum}})
        pipeline.stop_event.set()

    signal.signal(signal.SIGINT, _on_signal)
    signal.signal(signal.SIGTERM, _on_signal)

    pipeline.start()
    log.info(
        "worker_delivery_started",
        extra={
            "payload": {
                "queue": settings.queue_events,
                "retry_queue": settings.queue_retry,
                "dlq": settings.queue_dlq,
                "channels": sorted(pipeline.adapters),
            }
        },
    )

    # wait() с таймаутом, чтобы главный поток успевал обработать сигнал
    while not pipeline.stop_event.wait(1.0):
        pass

    pipeline.stop(timeout=settings.event_pop_timeout_sec + 1)
    log.info("worker_delivery_stopped")


if __name__ == "__main__":
    main()
