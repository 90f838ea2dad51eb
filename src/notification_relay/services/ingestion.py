"""
Приём событий от продюсеров и постановка в основную очередь.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from notification_relay.common.config import Settings, get_settings
from notification_relay.common.errors import UnknownChannelError, ValidationError
from notification_relay.common.logging import get_project_logger
from notification_relay.common.metrics import EVENTS_INGESTED_TOTAL
from notification_relay.common.time import utc_now
from notification_relay.delivery.registry import AdapterMap
from notification_relay.domain.events import Event
from notification_relay.domain.routing import determine_channel
from notification_relay.queue.service import QueueService

log = get_project_logger()


@dataclass
class IngestRequest:
    user_id: str = ""
    event_type: str = ""
    message: str = ""
    severity: str = ""
    recipient: str = ""
    max_attempts: int | None = None


@dataclass
class IngestResult:
    status: str
    channel: str
    max_attempts: int


def ingest_event(
    req: IngestRequest,
    *,
    queue: QueueService,
    adapters: AdapterMap,
    settings: Settings | None = None,
    clock: Callable[[], datetime] = utc_now,
) -> IngestResult:
    """
    - max_attempts не задан или 0 -> DEFAULT_MAX_ATTEMPTS
    - канал без адаптера -> UnknownChannelError (в очередь не кладём)
    - QueueUnavailableError пробрасывается вызывающему
    """
    s = settings or get_settings()

    max_attempts = req.max_attempts or s.default_max_attempts
    if max_attempts < 1:
        raise ValidationError("max_attempts must be >= 1", {"max_attempts": max_attempts})

    event = Event(
        user_id=req.user_id,
        event_type=req.event_type,
        message=req.message,
        severity=req.severity,
        recipient=req.recipient,
        attempt_count=0,
        max_attempts=max_attempts,
        created_at=clock(),
    )

    channel = determine_channel(event)
    if channel not in adapters:
        log.warning(
            "ingest_unknown_channel",
            extra={"payload": {"channel": channel, "event_type": event.event_type}},
        )
        raise UnknownChannelError(channel)

    queue.push(s.queue_events, event.to_record())
    EVENTS_INGESTED_TOTAL.labels(channel=channel).inc()
    log.info(
        "event_ingested",
        extra={
            "payload": {
                "channel": channel,
                "event_type": event.event_type,
                "user_id": event.user_id,
                "max_attempts": max_attempts,
            }
        },
    )
    return IngestResult(status="queued", channel=channel, max_attempts=max_attempts)
