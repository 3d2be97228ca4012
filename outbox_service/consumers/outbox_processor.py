import asyncio
import logging
import uuid
from dataclasses import asdict, dataclass
from enum import Enum
from typing import List, Optional

from outbox_service.consumers.retry_policy import RetryPolicy
from outbox_service.core.config import (
    BATCH_SIZE,
    CLAIM_ENABLED,
    CLAIM_LEASE_SECONDS,
    TOPIC_PREFIX,
)
from outbox_service.core.errors import TransientPublishError
from outbox_service.events.outbox_repository import OutboxRepository
from outbox_service.messaging.publisher import BrokerPublisher
from outbox_service.models.outbox import OutboxEvent
from outbox_service.schemas.outbox import OutboxEnvelope

log = logging.getLogger(__name__)


class DispatchOutcome(str, Enum):
    PUBLISHED = "published"
    FAILED = "failed"
    DEAD_LETTERED = "dead_lettered"


@dataclass
class TickResult:
    fetched: int = 0
    published: int = 0
    failed: int = 0
    dead_lettered: int = 0

    @property
    def has_failures(self) -> bool:
        return self.failed > 0 or self.dead_lettered > 0

    def as_dict(self):
        return asdict(self)


def topic_for(event_type: str, prefix: str = TOPIC_PREFIX) -> str:
    return f"{prefix}.{event_type}"


class OutboxProcessor:
    """
    Drains the outbox backlog one tick at a time.

    Each tick fetches (or claims) a batch of the oldest unpublished rows and
    publishes them concurrently, one task per row. Outcomes are settled
    independently: a failed row is recorded and left for a later tick, and
    never fails the tick as a whole. Only errors outside the per-row work,
    such as the fetch query, propagate to the caller.
    """

    def __init__(
        self,
        repository: OutboxRepository,
        publisher: BrokerPublisher,
        retry_policy: Optional[RetryPolicy] = None,
        batch_size: int = BATCH_SIZE,
        topic_prefix: str = TOPIC_PREFIX,
        worker_id: Optional[str] = None,
        claim_enabled: bool = CLAIM_ENABLED,
        claim_lease_seconds: int = CLAIM_LEASE_SECONDS,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        retry_policy = retry_policy or RetryPolicy()
        if claim_enabled and retry_policy.worst_case_duration() >= claim_lease_seconds:
            # Otherwise a second worker could claim a row whose attempt is still running
            raise ValueError(
                f"Retry policy can hold a row for {retry_policy.worst_case_duration()}s, "
                f"which does not fit the {claim_lease_seconds}s claim lease"
            )
        self._repository = repository
        self._publisher = publisher
        self._retry_policy = retry_policy
        self._batch_size = batch_size
        self._topic_prefix = topic_prefix
        self._worker_id = worker_id or f"worker-{uuid.uuid4().hex[:8]}"
        self._claim_enabled = claim_enabled
        self._claim_lease_seconds = claim_lease_seconds
        self._tick_lock = asyncio.Lock()

    @property
    def worker_id(self) -> str:
        return self._worker_id

    @property
    def is_busy(self) -> bool:
        return self._tick_lock.locked()

    async def tick(self) -> TickResult:
        """Runs one dispatch pass. Waits for a tick already in flight to finish first."""
        async with self._tick_lock:
            return await self._run_tick()

    async def try_tick(self) -> Optional[TickResult]:
        """Runs a tick unless one is in flight, in which case returns None."""
        if self._tick_lock.locked():
            log.debug("Tick already in flight, skipping.")
            return None
        return await self.tick()

    async def _fetch_batch(self) -> List[OutboxEvent]:
        if self._claim_enabled:
            return await self._repository.claim_unpublished(
                limit=self._batch_size,
                worker_id=self._worker_id,
                lease_seconds=self._claim_lease_seconds,
            )
        return await self._repository.find_unpublished(self._batch_size)

    async def _run_tick(self) -> TickResult:
        events = await self._fetch_batch()
        if not events:
            log.debug("No unpublished events found")
            return TickResult()

        log.info(f"Found {len(events)} unpublished events to process")

        # Tasks are created in created_at order, so publish attempts for one
        # aggregate start in the order the events were written.
        outcomes = await asyncio.gather(
            *(self._dispatch(event) for event in events),
            return_exceptions=True,
        )

        result = TickResult(fetched=len(events))
        for event, outcome in zip(events, outcomes):
            if isinstance(outcome, BaseException):
                # The store failed while recording the outcome; the row stays pending.
                log.error(f"Could not settle event {event.id}: {outcome!r}")
                result.failed += 1
            elif outcome is DispatchOutcome.PUBLISHED:
                result.published += 1
            elif outcome is DispatchOutcome.DEAD_LETTERED:
                result.dead_lettered += 1
            else:
                result.failed += 1

        log.info(
            f"Tick done: {result.published} published, {result.failed} failed, "
            f"{result.dead_lettered} dead-lettered of {result.fetched}"
        )
        return result

    async def _dispatch(self, event: OutboxEvent) -> DispatchOutcome:
        """Settles one event and gives its claim back unless it was published."""
        outcome = None
        try:
            outcome = await self._publish_with_retries(event)
            return outcome
        finally:
            # mark_as_published clears the claim itself
            if self._claim_enabled and outcome is not DispatchOutcome.PUBLISHED:
                await self._repository.release_claim(event.id, self._worker_id)

    async def _publish_once(self, topic: str, event: OutboxEvent, value: bytes) -> None:
        timeout = self._retry_policy.attempt_timeout
        try:
            await asyncio.wait_for(self._publisher.publish(topic, event.aggregate_id, value), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise TransientPublishError(f"Publish to {topic} timed out after {timeout}s") from e

    async def _publish_with_retries(self, event: OutboxEvent) -> DispatchOutcome:
        """Publishes a single event, retrying inside the tick as the policy allows."""
        topic = topic_for(event.event_type, self._topic_prefix)
        value = OutboxEnvelope.from_row(event).to_bytes()
        attempt = 0

        while True:
            attempt += 1
            try:
                log.debug(f"Publishing event {event.event_type} for aggregate {event.aggregate_id}")
                await self._publish_once(topic, event, value)
            except Exception as e:
                error_message = str(e) or e.__class__.__name__
                log.warning(f"Failed to publish event {event.id} (attempt {attempt}): {error_message}")
                await self._repository.record_failure(event.id, error_message)
                retry_count = event.retry_count + attempt

                if self._retry_policy.should_dead_letter(retry_count, e):
                    await self._repository.mark_dead_lettered(event.id, error_message)
                    log.error(
                        f"Event {event.id} ({event.event_type}) dead-lettered after "
                        f"{retry_count} failures: {error_message}"
                    )
                    return DispatchOutcome.DEAD_LETTERED

                if not self._retry_policy.should_retry_in_tick(attempt, e):
                    return DispatchOutcome.FAILED

                await asyncio.sleep(self._retry_policy.backoff(attempt))
                continue

            if await self._repository.mark_as_published(event.id):
                log.info(f"Event {event.id} published successfully to {topic}")
            else:
                log.info(f"Event {event.id} was already marked published")
            return DispatchOutcome.PUBLISHED
