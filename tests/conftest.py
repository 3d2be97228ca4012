import pytest
import pytest_asyncio
from tortoise import Tortoise

from outbox_service.consumers.outbox_processor import OutboxProcessor
from outbox_service.consumers.retry_policy import RetryPolicy
from outbox_service.core.db import MODELS_MODULES
from outbox_service.events.domain_event import DomainEvent
from outbox_service.events.outbox_repository import OutboxRepository
from outbox_service.testing.stub_broker import StubBroker


@pytest_asyncio.fixture
async def db():
    """Fresh in-memory SQLite database with the real schema for every test."""
    await Tortoise.init(
        db_url="sqlite://:memory:",
        modules={"models": MODELS_MODULES},
        use_tz=True,
        timezone="UTC",
    )
    await Tortoise.generate_schemas()
    yield
    await Tortoise.close_connections()


@pytest.fixture
def repository():
    return OutboxRepository()


@pytest.fixture
def broker():
    return StubBroker()


@pytest.fixture
def make_processor(repository, broker):
    """Factory so tests can tweak batch size, retry policy or claiming."""
    def _make(**kwargs):
        kwargs.setdefault("retry_policy", RetryPolicy(base_delay=0, max_delay=0))
        kwargs.setdefault("batch_size", 100)
        kwargs.setdefault("worker_id", "worker-test")
        return OutboxProcessor(repository=repository, publisher=broker, **kwargs)
    return _make


@pytest.fixture
def make_event():
    def _make(aggregate_id="conv-1", event_type="MessageAdded", **kwargs) -> DomainEvent:
        kwargs.setdefault("payload", {"content": "hello"})
        return DomainEvent(event_type=event_type, aggregate_id=aggregate_id, **kwargs)
    return _make
