"""
API Gateway (FastAPI).

Функции:
- /health
- /metrics
- POST /v1/events - приём уведомлений в основную очередь
- GET /v1/dlq/stats, /v1/dlq/events - read-only просмотр DLQ

В QUEUE_MODE=inline воркеры (обработчик + retry-планировщик) стартуют
внутри процесса API, т.к. очереди живут в памяти процесса.
"""

from __future__ import annotations

from typing import Any

import uvicorn
from fastapi import FastAPI

from apps.api_gateway.deps import adapters_dep
from apps.api_gateway.routers.dlq import router as dlq_router
from apps.api_gateway.routers.events import router as events_router
from notification_relay.common.config import get_settings
from notification_relay.common.logging import get_project_logger, setup_logging
from notification_relay.common.metrics import refresh_queue_metrics, setup_metrics_endpoint
from notification_relay.queue.service import get_queue_service
from notification_relay.services.runtime import Pipeline, build_pipeline

log = get_project_logger()


def _refresh_queue_depths() -> None:
    s = get_settings()
    refresh_queue_metrics(get_queue_service(), [s.queue_events, s.queue_retry, s.queue_dlq])


def _create_app() -> FastAPI:
    app = FastAPI(title="Notification Relay", version="0.1.0")
    settings = get_settings()
    inline_pipeline: list[Pipeline] = []

    setup_metrics_endpoint(
        app, service=settings.service_name, refreshers=[_refresh_queue_depths]
    )

    @app.get("/health")
    def health() -> dict[str, Any]:
        return {"ok": True}

    @app.on_event("startup")
    async def start_inline_workers() -> None:
        if (settings.queue_mode or "").strip().lower() != "inline":
            return
        pipeline = build_pipeline(adapters=adapters_dep(), settings=settings)
        pipeline.start()
        inline_pipeline.append(pipeline)
        log.info("inline_workers_started")

    @app.on_event("shutdown")
    async def stop_inline_workers() -> None:
        while inline_pipeline:
            inline_pipeline.pop().stop(timeout=settings.event_pop_timeout_sec + 1)

    app.include_router(events_router, prefix="/v1")
    app.include_router(dlq_router, prefix="/v1")

    return app


setup_logging()

app = _create_app()


if __name__ == "__main__":
    s = get_settings()
    uvicorn.run(app, host=s.api_host, port=s.api_port)
