from unittest.mock import AsyncMock, patch
from uuid import uuid4

import pytest

from outbox_service.core.errors import NotFoundError, PersistenceError
from outbox_service.models.conversation import Conversation, Message
from outbox_service.models.outbox import OutboxEvent
from outbox_service.services.conversation_service import (
    create_conversation,
    mark_messages_read,
    send_message,
)


@pytest.mark.asyncio
async def test_create_conversation_emits_conversation_created(db):
    conversation = await create_conversation("alice", ["bob", "alice"], title="Lunch")

    assert conversation.participant_ids == ["alice", "bob"]
    events = await OutboxEvent.all()
    assert len(events) == 1
    assert events[0].event_type == "ConversationCreated"
    assert events[0].aggregate_id == str(conversation.id)
    assert events[0].aggregate_version == 1
    assert events[0].caused_by == "alice"
    assert events[0].payload["participantIds"] == ["alice", "bob"]


@pytest.mark.asyncio
async def test_create_conversation_needs_two_participants(db):
    with pytest.raises(ValueError):
        await create_conversation("alice", ["alice"])

    assert await Conversation.all().count() == 0
    assert await OutboxEvent.all().count() == 0


@pytest.mark.asyncio
async def test_send_message_writes_message_and_event_together(db):
    conversation = await create_conversation("alice", ["bob", "carol"])

    message = await send_message(conversation.id, "alice", "  hi there ")

    stored = await Conversation.get(id=conversation.id)
    assert stored.version == 2
    assert stored.last_message_at is not None
    event = await OutboxEvent.get(event_type="MessageAdded")
    assert event.aggregate_id == str(conversation.id)
    assert event.aggregate_version == 2
    assert event.payload == {
        "messageId": str(message.id),
        "conversationId": str(conversation.id),
        "senderId": "alice",
        "content": "hi there",
        "recipientIds": ["bob", "carol"],
    }


@pytest.mark.asyncio
async def test_outbox_failure_rolls_back_the_message(db):
    """If the event cannot be stored, the aggregate change is not kept either."""
    conversation = await create_conversation("alice", ["bob"])

    failing = AsyncMock(side_effect=PersistenceError("outbox unavailable"))
    with patch("outbox_service.services.conversation_service.create_outbox_event", failing):
        with pytest.raises(PersistenceError):
            await send_message(conversation.id, "alice", "hello")

    assert await Message.all().count() == 0
    assert (await Conversation.get(id=conversation.id)).version == 1
    assert await OutboxEvent.filter(event_type="MessageAdded").count() == 0


@pytest.mark.asyncio
async def test_send_message_rejects_non_participant(db):
    conversation = await create_conversation("alice", ["bob"])

    with pytest.raises(ValueError):
        await send_message(conversation.id, "mallory", "hello")

    assert await Message.all().count() == 0
    assert (await Conversation.get(id=conversation.id)).version == 1


@pytest.mark.asyncio
async def test_send_message_unknown_conversation(db):
    with pytest.raises(NotFoundError):
        await send_message(uuid4(), "alice", "hello")


@pytest.mark.asyncio
async def test_send_message_rejects_empty_content(db):
    conversation = await create_conversation("alice", ["bob"])

    with pytest.raises(ValueError):
        await send_message(conversation.id, "alice", "   ")


@pytest.mark.asyncio
async def test_events_of_one_conversation_are_in_version_order(db):
    conversation = await create_conversation("alice", ["bob"])
    await send_message(conversation.id, "alice", "one")
    await send_message(conversation.id, "bob", "two")

    rows = await OutboxEvent.filter(aggregate_id=str(conversation.id)).order_by("created_at", "id")

    assert [r.event_type for r in rows] == ["ConversationCreated", "MessageAdded", "MessageAdded"]
    assert [r.aggregate_version for r in rows] == [1, 2, 3]


@pytest.mark.asyncio
async def test_mark_messages_read_emits_only_for_changes(db):
    conversation = await create_conversation("alice", ["bob"])
    message = await send_message(conversation.id, "alice", "hello")

    assert await mark_messages_read(conversation.id, "bob", [message.id]) == 1
    assert await mark_messages_read(conversation.id, "bob", [message.id]) == 0

    stored = await Message.get(id=message.id)
    assert stored.read_by == ["alice", "bob"]
    events = await OutboxEvent.filter(event_type="MessagesRead")
    assert len(events) == 1
    assert events[0].payload["messageIds"] == [str(message.id)]
    assert events[0].caused_by == "bob"
