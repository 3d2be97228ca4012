import asyncio
import logging
from typing import Optional

from aiokafka import AIOKafkaProducer
from aiokafka.errors import KafkaError, KafkaTimeoutError

from outbox_service.core.config import (
    KAFKA_BOOTSTRAP_SERVERS,
    KAFKA_CLIENT_ID,
    KAFKA_RECONNECT_COOLDOWN,
)
from outbox_service.core.errors import PermanentPublishError, TransientPublishError

log = logging.getLogger(__name__)


class KafkaPublisher:
    """
    Publishes outbox messages to Kafka.

    The message key is the aggregate id, so all events of one aggregate land
    on the same partition and keep their relative order.

    While the broker is unreachable only one connect runs at a time, and for
    ``reconnect_cooldown`` seconds after a failed connect publishes fail fast
    with ``TransientPublishError`` instead of dialing the broker again.
    """

    def __init__(
        self,
        bootstrap_servers: str = KAFKA_BOOTSTRAP_SERVERS,
        client_id: str = KAFKA_CLIENT_ID,
        producer_factory=AIOKafkaProducer,
        reconnect_cooldown: float = KAFKA_RECONNECT_COOLDOWN,
    ):
        self._bootstrap_servers = [s.strip() for s in bootstrap_servers.split(",") if s.strip()]
        self._client_id = client_id
        self._producer_factory = producer_factory
        self._producer: Optional[AIOKafkaProducer] = None
        self._start_lock = asyncio.Lock()
        self._reconnect_cooldown = reconnect_cooldown
        self._last_connect_failure: Optional[float] = None

    @property
    def is_connected(self) -> bool:
        return self._producer is not None

    async def start(self) -> None:
        """
        Connects the producer. A broker outage at startup is logged, not raised;
        the next publish tries to connect again.
        """
        async with self._start_lock:
            if self._producer is not None:
                return
            producer = self._producer_factory(
                bootstrap_servers=self._bootstrap_servers,
                client_id=self._client_id,
                acks="all",
                enable_idempotence=True,
            )
            try:
                await producer.start()
            except KafkaError as e:
                log.error(f"Failed to connect Kafka producer to {self._bootstrap_servers}: {e}")
                self._last_connect_failure = asyncio.get_running_loop().time()
                await producer.stop()
                return
            self._producer = producer
            self._last_connect_failure = None
            log.info("Kafka producer connected successfully")

    async def stop(self) -> None:
        producer, self._producer = self._producer, None
        if producer is None:
            return
        try:
            await producer.stop()
            log.info("Kafka producer disconnected")
        except KafkaError as e:
            log.error(f"Error disconnecting Kafka producer: {e}")

    def _in_cooldown(self) -> bool:
        if self._last_connect_failure is None:
            return False
        elapsed = asyncio.get_running_loop().time() - self._last_connect_failure
        return elapsed < self._reconnect_cooldown

    async def _reconnect(self) -> None:
        """Connects on demand, or raises without dialing while a connect is pending or cooling down."""
        if self._start_lock.locked():
            raise TransientPublishError("Kafka producer is connecting")
        if self._in_cooldown():
            raise TransientPublishError("Kafka producer is not connected (reconnect cooling down)")
        await self.start()
        if self._producer is None:
            raise TransientPublishError("Kafka producer is not connected")

    async def publish(self, topic: str, key: str, value: bytes) -> None:
        if self._producer is None:
            await self._reconnect()

        try:
            await self._producer.send_and_wait(topic, value=value, key=key.encode("utf-8"))
        except (KafkaTimeoutError, asyncio.TimeoutError) as e:
            raise TransientPublishError(f"Timed out sending to {topic}: {e}") from e
        except KafkaError as e:
            if e.retriable:
                raise TransientPublishError(f"Failed to send message to topic {topic}: {e}") from e
            raise PermanentPublishError(f"Kafka rejected message for topic {topic}: {e}") from e
        log.debug(f"Message sent to topic {topic}")
