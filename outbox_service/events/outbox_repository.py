import logging
from datetime import timedelta
from typing import Any, Dict, Iterable, List, Optional

from tortoise import timezone
from tortoise.exceptions import BaseORMException
from tortoise.expressions import F, Q

from outbox_service.core.errors import PersistenceError
from outbox_service.events.domain_event import DomainEvent
from outbox_service.models.outbox import OutboxEvent

log = logging.getLogger(__name__)


class OutboxRepository:
    """
    Typed access to the outbox table.

    Every state change is a single conditional UPDATE so concurrent workers
    can never un-publish a row or touch one that is already published.
    """

    async def append(self, event: DomainEvent, conn: Any = None) -> OutboxEvent:
        """
        Inserts the event on the caller's transaction connection.

        Should be called within the same transaction as the aggregate save.
        """
        try:
            return await OutboxEvent.create(
                event_id=event.event_id,
                aggregate_id=event.aggregate_id,
                event_type=event.event_type,
                payload=event.payload,
                aggregate_version=event.aggregate_version,
                caused_by=event.caused_by,
                occurred_on=event.occurred_on,
                published=False,
                retry_count=0,
                using_db=conn,
            )
        except BaseORMException as exc:
            raise PersistenceError(f"Could not append {event.event_type} event {event.event_id}: {exc}") from exc

    async def append_all(self, events: Iterable[DomainEvent], conn: Any = None) -> List[OutboxEvent]:
        rows = []
        for event in events:
            rows.append(await self.append(event, conn=conn))
        return rows

    def _pending(self):
        return OutboxEvent.filter(published=False, dead_lettered=False)

    async def find_unpublished(self, limit: int = 100) -> List[OutboxEvent]:
        """Oldest pending events first; an empty list when the backlog is drained."""
        return await self._pending().order_by("created_at", "id").limit(limit)

    async def claim_unpublished(self, limit: int, worker_id: str, lease_seconds: int) -> List[OutboxEvent]:
        """
        Claims up to ``limit`` pending events for ``worker_id``.

        A row is claimed by a conditional UPDATE that only matches when no
        other worker holds a live lease, so two workers never both win the
        same row. Rows of a crashed worker come back once its lease expires.
        """
        now = timezone.now()
        lease_expired = Q(locked_until__isnull=True) | Q(locked_until__lte=now)
        candidates = await self._pending().filter(lease_expired).order_by("created_at", "id").limit(limit)

        locked_until = now + timedelta(seconds=lease_seconds)
        claimed = []
        for event in candidates:
            updated = await (
                OutboxEvent.filter(id=event.id, published=False, dead_lettered=False)
                .filter(lease_expired)
                .update(locked_by=worker_id, locked_until=locked_until)
            )
            if updated:
                event.locked_by = worker_id
                event.locked_until = locked_until
                claimed.append(event)
        if len(claimed) < len(candidates):
            log.debug(f"Worker {worker_id} lost {len(candidates) - len(claimed)} claims to other workers.")
        return claimed

    async def release_claim(self, event_id: int, worker_id: str) -> None:
        await OutboxEvent.filter(id=event_id, locked_by=worker_id).update(locked_by=None, locked_until=None)

    async def mark_as_published(self, event_id: int) -> bool:
        """
        Marks an event as successfully published.

        Idempotent: returns False and changes nothing when the row was
        already published.
        """
        updated = await OutboxEvent.filter(id=event_id, published=False).update(
            published=True,
            published_at=timezone.now(),
            locked_by=None,
            locked_until=None,
        )
        return updated > 0

    async def record_failure(self, event_id: int, error_message: str) -> bool:
        """Increments retry count and records the error. Published rows are immutable."""
        updated = await OutboxEvent.filter(id=event_id, published=False).update(
            retry_count=F("retry_count") + 1,
            last_error=error_message,
        )
        return updated > 0

    async def mark_dead_lettered(self, event_id: int, error_message: str) -> bool:
        updated = await OutboxEvent.filter(id=event_id, published=False, dead_lettered=False).update(
            dead_lettered=True,
            dead_lettered_at=timezone.now(),
            last_error=error_message,
            locked_by=None,
            locked_until=None,
        )
        return updated > 0

    async def requeue(self, event_id: int) -> bool:
        """Puts a dead-lettered event back in the backlog. ``retry_count`` is kept."""
        updated = await OutboxEvent.filter(id=event_id, published=False, dead_lettered=True).update(
            dead_lettered=False,
            dead_lettered_at=None,
        )
        return updated > 0

    async def get(self, event_id: int) -> Optional[OutboxEvent]:
        return await OutboxEvent.get_or_none(id=event_id)

    async def find_failed_events(self, min_retries: int = 3, limit: int = 100) -> List[OutboxEvent]:
        """Find events that have failed multiple times (for manual investigation)."""
        return await (
            OutboxEvent.filter(published=False, retry_count__gte=min_retries)
            .order_by("-retry_count", "created_at")
            .limit(limit)
        )

    async def delete_old_published_events(self, older_than_days: int = 30) -> int:
        """Retention cleanup. Only published rows are eligible."""
        cutoff = timezone.now() - timedelta(days=older_than_days)
        return await OutboxEvent.filter(published=True, published_at__lt=cutoff).delete()

    async def stats(self) -> Dict[str, Any]:
        pending = await self._pending().count()
        oldest = await self._pending().order_by("created_at", "id").first()
        return {
            "pending": pending,
            "published": await OutboxEvent.filter(published=True).count(),
            "dead_lettered": await OutboxEvent.filter(published=False, dead_lettered=True).count(),
            "failing": await self._pending().filter(retry_count__gt=0).count(),
            "oldest_pending_at": oldest.created_at if oldest else None,
        }
