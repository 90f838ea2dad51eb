from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from apps.api_gateway.deps import adapters_dep, queue_dep
from notification_relay.common.errors import (
    QueueUnavailableError,
    UnknownChannelError,
    ValidationError,
)
from notification_relay.common.logging import get_project_logger
from notification_relay.delivery.registry import AdapterMap
from notification_relay.queue.service import QueueService
from notification_relay.services.ingestion import IngestRequest, ingest_event

log = get_project_logger()
router = APIRouter()


class EventIn(BaseModel):
    user_id: str = ""
    event_type: str = ""
    message: str = ""
    severity: str = ""
    recipient: str = ""
    max_attempts: int | None = Field(default=None, ge=0)


class EventQueuedResponse(BaseModel):
    status: str
    channel: str
    max_attempts: int


@router.post("/events", response_model=EventQueuedResponse)
def create_event(
    req: EventIn,
    queue: QueueService = Depends(queue_dep),
    adapters: AdapterMap = Depends(adapters_dep),
) -> EventQueuedResponse:
    try:
        result = ingest_event(
            IngestRequest(**req.model_dump()),
            queue=queue,
            adapters=adapters,
        )
    except (UnknownChannelError, ValidationError) as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": e.code, "message": e.message},
        ) from e
    except QueueUnavailableError as e:
        log.error("ingest_queue_unavailable", extra={"payload": {"details": e.details}})
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"code": e.code, "message": e.message},
        ) from e

    return EventQueuedResponse(
        status=result.status, channel=result.channel, max_attempts=result.max_attempts
    )
