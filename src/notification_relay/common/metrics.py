"""
Метрики Prometheus для сервиса.

Назначение:
- Экспорт /metrics
- Счётчики по стадиям доставки: приём, обработка, ретраи, DLQ
- Используется API Gateway и воркерами
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from typing import Protocol

from fastapi import FastAPI, Request
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest

# =============================================================================
# СЧЁТЧИКИ И МЕТРИКИ
# =============================================================================

REQUESTS_TOTAL = Counter(
    "relay_requests_total",
    "Общее количество HTTP запросов",
    ["service", "route", "method", "status"],
)

HTTP_REQUEST_LATENCY_MS = Histogram(
    "relay_http_request_latency_ms",
    "Задержка HTTP запроса (мс)",
    ["service", "route", "method"],
    buckets=(5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000, 10000),
)

EVENTS_INGESTED_TOTAL = Counter(
    "relay_events_ingested_total",
    "Количество принятых событий",
    ["channel"],
)

# result: delivered|retry|dlq|malformed|unknown_channel
EVENTS_PROCESSED_TOTAL = Counter(
    "relay_events_processed_total",
    "Количество обработанных событий основной очереди",
    ["channel", "result"],
)

# result: released|deferred|malformed
RETRY_TRANSITIONS_TOTAL = Counter(
    "relay_retry_transitions_total",
    "Переходы событий в очереди ретраев",
    ["result"],
)

DLQ_MOVED_TOTAL = Counter(
    "relay_dlq_moved_total",
    "Количество событий, отправленных в DLQ",
    ["channel"],
)

QUEUE_ERRORS_TOTAL = Counter(
    "relay_queue_errors_total",
    "Ошибки операций с очередью",
    ["service", "operation"],
)

DELIVERY_LATENCY_MS = Histogram(
    "relay_delivery_latency_ms",
    "Задержка вызова адаптера доставки (мс)",
    ["channel"],
    buckets=(5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000, 10000, 30000),
)

QUEUE_DEPTH = Gauge(
    "relay_queue_depth",
    "Текущая глубина очередей",
    ["queue"],
)

METRICS_COLLECTION_ERRORS_TOTAL = Counter(
    "relay_metrics_collection_errors_total",
    "Ошибки сборки служебных метрик",
    ["source"],
)


class _QueueLength(Protocol):
    def length(self, queue_name: str) -> int: ...


@contextmanager
def track_delivery_latency(channel: str) -> Iterator[None]:
    started = time.perf_counter()
    try:
        yield
    finally:
        elapsed_ms = (time.perf_counter() - started) * 1000
        DELIVERY_LATENCY_MS.labels(channel=channel).observe(elapsed_ms)


def refresh_queue_metrics(queue: _QueueLength, queue_names: Sequence[str]) -> None:
    for name in queue_names:
        try:
            QUEUE_DEPTH.labels(queue=name).set(queue.length(name))
        except Exception:
            METRICS_COLLECTION_ERRORS_TOTAL.labels(source="queue_depth").inc()


def setup_metrics_endpoint(
    app: FastAPI,
    *,
    service: str = "api-gateway",
    refreshers: Sequence[Callable[[], None]] = (),
) -> None:
    """
    Регистрирует endpoint /metrics для Prometheus.
    """

    @app.middleware("http")
    async def http_metrics(request: Request, call_next):
        route = request.url.path
        method = request.method
        started = time.perf_counter()

        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000

        REQUESTS_TOTAL.labels(
            service=service,
            route=route,
            method=method,
            status=str(response.status_code),
        ).inc()
        HTTP_REQUEST_LATENCY_MS.labels(service=service, route=route, method=method).observe(
            elapsed_ms
        )
        return response

    @app.get("/metrics")
    def metrics() -> Response:
        for refresh in refreshers:
            refresh()
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
