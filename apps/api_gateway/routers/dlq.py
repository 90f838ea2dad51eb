"""
Read-only просмотр DLQ для эксплуатации.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel

from apps.api_gateway.deps import dlq_dep
from notification_relay.common.config import get_settings
from notification_relay.common.errors import QueueUnavailableError
from notification_relay.domain.events import Event
from notification_relay.queue.dlq import DLQManager

router = APIRouter()


class DLQStatsResponse(BaseModel):
    dlq_size: int
    status: str


class DLQEventResponse(BaseModel):
    user_id: str
    event_type: str
    message: str
    severity: str
    recipient: str
    attempt_count: int
    max_attempts: int
    last_error: str
    created_at: str | None
    last_attempt_at: str | None


class DLQEventsResponse(BaseModel):
    events: list[DLQEventResponse]
    count: int


def _as_response(event: Event) -> DLQEventResponse:
    return DLQEventResponse(**event.to_dict())


def _unavailable(e: QueueUnavailableError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail={"code": e.code, "message": e.message},
    )


@router.get("/dlq/stats", response_model=DLQStatsResponse)
def dlq_stats(dlq: DLQManager = Depends(dlq_dep)) -> DLQStatsResponse:
    try:
        size = dlq.get_stats()
    except QueueUnavailableError as e:
        raise _unavailable(e) from e
    return DLQStatsResponse(dlq_size=size, status="ok")


@router.get("/dlq/events", response_model=DLQEventsResponse)
def dlq_events(
    limit: int | None = Query(default=None, ge=1),
    dlq: DLQManager = Depends(dlq_dep),
) -> DLQEventsResponse:
    s = get_settings()
    effective = min(limit or s.dlq_list_default_limit, s.dlq_list_max_limit)
    try:
        events = dlq.list_events(effective)
    except QueueUnavailableError as e:
        raise _unavailable(e) from e
    items = [_as_response(e) for e in events]
    return DLQEventsResponse(events=items, count=len(items))
