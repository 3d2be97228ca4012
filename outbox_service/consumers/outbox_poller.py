import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from outbox_service.consumers.outbox_processor import OutboxProcessor
from outbox_service.consumers.retry_policy import RetryPolicy
from outbox_service.consumers.scheduler import OutboxScheduler
from outbox_service.core.config import LOG_LEVEL, WORKER_ID
from outbox_service.core.db import close_db, init_db
from outbox_service.events.outbox_repository import OutboxRepository
from outbox_service.messaging.publisher import BrokerPublisher, create_publisher

log = logging.getLogger(__name__)


@dataclass
class OutboxComponents:
    publisher: BrokerPublisher
    processor: OutboxProcessor
    scheduler: OutboxScheduler

    async def start(self):
        await self.publisher.start()
        self.scheduler.start()

    async def stop(self):
        await self.scheduler.stop()
        await self.publisher.stop()


def build_outbox_components(publisher: Optional[BrokerPublisher] = None) -> OutboxComponents:
    """Wires repository, publisher, processor and scheduler from configuration."""
    publisher = publisher or create_publisher()
    processor = OutboxProcessor(
        repository=OutboxRepository(),
        publisher=publisher,
        retry_policy=RetryPolicy.from_config(),
        worker_id=WORKER_ID,
    )
    return OutboxComponents(publisher=publisher, processor=processor, scheduler=OutboxScheduler(processor))


async def start_outbox_poller():
    """Main loop for the standalone dispatcher service."""
    await init_db()
    components = build_outbox_components()
    await components.start()
    log.info(f"--- Outbox Poller Service Started ({components.processor.worker_id}) ---")

    try:
        await asyncio.Event().wait()
    finally:
        await components.stop()
        await close_db()


if __name__ == "__main__":
    logging.basicConfig(level=LOG_LEVEL, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    try:
        asyncio.run(start_outbox_poller())
    except KeyboardInterrupt:
        log.info("Poller service stopped.")
