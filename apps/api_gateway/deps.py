"""
FastAPI Depends.

Сюда выносим:
- сервис очередей (по QUEUE_MODE)
- реестр адаптеров (строится один раз, дальше только чтение)
- DLQ-менеджер для read-only API
"""

from __future__ import annotations

from fastapi import Depends

from notification_relay.common.config import get_settings
from notification_relay.delivery.registry import AdapterMap, build_adapters
from notification_relay.queue.dlq import DLQManager
from notification_relay.queue.service import QueueService, get_queue_service

_adapters: AdapterMap | None = None


def queue_dep() -> QueueService:
    return get_queue_service()


def adapters_dep() -> AdapterMap:
    global _adapters
    if _adapters is None:
        _adapters = build_adapters(get_settings())
    return _adapters


def dlq_dep(queue: QueueService = Depends(queue_dep)) -> DLQManager:
    return DLQManager(queue, settings=get_settings())
