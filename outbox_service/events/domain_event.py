import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

# Topic-safe: the event type becomes the last segment of a dotted topic name
_EVENT_TYPE_RE = re.compile(r"^[A-Za-z0-9_]+$")


def _new_event_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class DomainEvent:
    """
    Something that happened to an aggregate, as emitted by the producer.

    ``event_id`` is assigned here (not by the store) so consumers can
    deduplicate redeliveries. ``occurred_on`` is business time; dispatch
    never changes it.
    """
    event_type: str
    aggregate_id: str
    payload: Dict[str, Any] = field(default_factory=dict)
    event_id: str = field(default_factory=_new_event_id)
    occurred_on: datetime = field(default_factory=_utcnow)
    aggregate_version: Optional[int] = None
    caused_by: Optional[str] = None

    def __post_init__(self):
        if not self.event_type or not _EVENT_TYPE_RE.match(self.event_type):
            raise ValueError(f"Event type must be a topic-safe name without dots or hyphens: {self.event_type!r}")
        if not self.aggregate_id:
            raise ValueError("Domain events require an aggregate id.")
        if self.aggregate_version is not None and self.aggregate_version < 0:
            raise ValueError("Aggregate version cannot be negative.")
