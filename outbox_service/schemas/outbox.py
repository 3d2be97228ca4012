from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class OutboxEnvelope(BaseModel):
    """Wire format of a published domain event (camelCase JSON)."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    event_id: str
    aggregate_id: str
    event_type: str
    payload: Dict[str, Any]
    aggregate_version: Optional[int] = None
    caused_by: Optional[str] = None
    occurred_on: datetime

    @classmethod
    def from_row(cls, event) -> "OutboxEnvelope":
        return cls(
            event_id=event.event_id,
            aggregate_id=event.aggregate_id,
            event_type=event.event_type,
            payload=event.payload,
            aggregate_version=event.aggregate_version,
            caused_by=event.caused_by,
            occurred_on=event.occurred_on,
        )

    def to_bytes(self) -> bytes:
        return self.model_dump_json(by_alias=True).encode("utf-8")


class OutboxEventResponse(BaseModel):
    """Schema for inspecting an outbox row."""
    id: int
    event_id: str
    aggregate_id: str
    event_type: str
    aggregate_version: Optional[int] = None
    published: bool
    published_at: Optional[datetime] = None
    retry_count: int
    last_error: Optional[str] = None
    dead_lettered: bool
    created_at: datetime


class OutboxStatsResponse(BaseModel):
    pending: int
    published: int
    dead_lettered: int
    failing: int
    oldest_pending_at: Optional[datetime] = None


class TickResultResponse(BaseModel):
    fetched: int
    published: int
    failed: int
    dead_lettered: int


class FailedEventsResponse(BaseModel):
    min_retries: int
    events: List[OutboxEventResponse] = Field(default_factory=list)
