import json
import logging
from typing import Protocol, runtime_checkable

from outbox_service.core.config import BROKER_BACKEND

log = logging.getLogger(__name__)


@runtime_checkable
class BrokerPublisher(Protocol):
    """
    Delivers one serialized event to a topic.

    ``publish`` returns on success and raises ``TransientPublishError`` or
    ``PermanentPublishError`` when the broker did not take the message.
    """

    async def start(self) -> None: ...

    async def stop(self) -> None: ...

    async def publish(self, topic: str, key: str, value: bytes) -> None: ...


class LoggingPublisher:
    """
    Simulates a message broker by logging every message.
    Useful for local runs without Kafka; nothing leaves the process.
    """

    async def start(self) -> None:
        log.info("Logging publisher ready (no broker connection).")

    async def stop(self) -> None:
        pass

    async def publish(self, topic: str, key: str, value: bytes) -> None:
        envelope = json.loads(value)
        log.info(f"PUBLISH {topic} key={key} event_id={envelope.get('eventId')}")


def create_publisher(backend: str = BROKER_BACKEND) -> BrokerPublisher:
    """Builds the publisher named by ``backend`` ('kafka' or 'logging')."""
    backend = backend.lower()
    if backend == "kafka":
        from outbox_service.messaging.kafka import KafkaPublisher
        return KafkaPublisher()
    if backend == "logging":
        return LoggingPublisher()
    raise ValueError(f"Unknown broker backend: {backend}")
