import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from outbox_service.consumers.outbox_processor import OutboxProcessor
from outbox_service.events.outbox_repository import OutboxRepository
from outbox_service.schemas.outbox import (
    FailedEventsResponse,
    OutboxEventResponse,
    OutboxStatsResponse,
    TickResultResponse,
)
from outbox_service.schemas.response import SuccessResponse

router = APIRouter()
log = logging.getLogger(__name__)


def get_outbox_repository() -> OutboxRepository:
    return OutboxRepository()


def get_outbox_processor(request: Request) -> OutboxProcessor:
    processor = getattr(request.app.state, "outbox_processor", None)
    if processor is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Outbox dispatcher is not configured.")
    return processor


def _to_response(event) -> OutboxEventResponse:
    return OutboxEventResponse(
        id=event.id,
        event_id=event.event_id,
        aggregate_id=event.aggregate_id,
        event_type=event.event_type,
        aggregate_version=event.aggregate_version,
        published=event.published,
        published_at=event.published_at,
        retry_count=event.retry_count,
        last_error=event.last_error,
        dead_lettered=event.dead_lettered,
        created_at=event.created_at,
    )


@router.get("/stats", response_model=SuccessResponse)
async def outbox_stats(repository: OutboxRepository = Depends(get_outbox_repository)):
    """Backlog size and failure counters."""
    stats = await repository.stats()
    return SuccessResponse(data=OutboxStatsResponse(**stats).model_dump())


@router.get("/failed", response_model=SuccessResponse)
async def failed_events(
    min_retries: int = Query(3, ge=1),
    limit: int = Query(100, ge=1, le=1000),
    repository: OutboxRepository = Depends(get_outbox_repository),
):
    """Unpublished events that failed at least ``min_retries`` times, worst first."""
    events = await repository.find_failed_events(min_retries=min_retries, limit=limit)
    data = FailedEventsResponse(min_retries=min_retries, events=[_to_response(e) for e in events])
    return SuccessResponse(data=data.model_dump())


@router.post("/dispatch", response_model=SuccessResponse)
async def dispatch_now(processor: OutboxProcessor = Depends(get_outbox_processor)):
    """Runs one dispatch tick immediately."""
    result = await processor.try_tick()
    if result is None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="A dispatch tick is already running.")
    return SuccessResponse(data=TickResultResponse(**result.as_dict()).model_dump())


@router.post("/{event_id}/requeue", response_model=SuccessResponse)
async def requeue_event(event_id: int, repository: OutboxRepository = Depends(get_outbox_repository)):
    """Moves a dead-lettered event back into the backlog."""
    if not await repository.requeue(event_id):
        raise HTTPException(status_code=404, detail="No dead-lettered event with that id.")
    log.info(f"Outbox event {event_id} requeued by operator.")
    event = await repository.get(event_id)
    return SuccessResponse(data=_to_response(event).model_dump())


@router.delete("/published", response_model=SuccessResponse)
async def purge_published(
    older_than_days: int = Query(30, ge=1),
    repository: OutboxRepository = Depends(get_outbox_repository),
):
    """Deletes published events older than the retention window."""
    deleted = await repository.delete_old_published_events(older_than_days=older_than_days)
    log.info(f"Purged {deleted} published outbox events older than {older_than_days} days.")
    return SuccessResponse(data={"deleted": deleted})
