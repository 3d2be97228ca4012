import logging
from typing import Any

from outbox_service.events.domain_event import DomainEvent
from outbox_service.events.outbox_repository import OutboxRepository
from outbox_service.models.outbox import OutboxEvent

log = logging.getLogger(__name__)

_repository = OutboxRepository()


async def create_outbox_event(event: DomainEvent, conn: Any = None) -> OutboxEvent:
    """
    Creates a new Outbox event record using the provided database connection (transaction).

    CRITICAL: Passing 'conn' ensures the event is created atomically with the business data.
    A PersistenceError raised here must be allowed to escape the caller's
    ``in_transaction()`` block so both writes roll back.
    """
    row = await _repository.append(event, conn=conn)
    log.debug(f"Event {event.event_type} for aggregate {event.aggregate_id} saved to outbox (row {row.id}).")
    return row

