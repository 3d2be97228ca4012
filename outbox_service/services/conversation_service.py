from typing import List, Optional
from uuid import UUID

from tortoise import timezone
from tortoise.expressions import F
from tortoise.transactions import in_transaction

from outbox_service.core.errors import NotFoundError
from outbox_service.events.domain_event import DomainEvent
from outbox_service.events.outbox_utility import create_outbox_event
from outbox_service.models.conversation import Conversation, Message


async def create_conversation(created_by: str, participant_ids: List[str], title: Optional[str] = None) -> Conversation:
    """
    Creates a Conversation and its ConversationCreated event atomically.
    """
    participants = list(dict.fromkeys([created_by, *participant_ids]))
    if len(participants) < 2:
        raise ValueError("A conversation needs at least two participants.")

    async with in_transaction() as conn:
        conversation = await Conversation.create(
            title=title,
            created_by=created_by,
            participant_ids=participants,
            version=1,
            using_db=conn,
        )

        await create_outbox_event(
            DomainEvent(
                event_type="ConversationCreated",
                aggregate_id=str(conversation.id),
                aggregate_version=conversation.version,
                caused_by=created_by,
                payload={
                    "conversationId": str(conversation.id),
                    "title": title,
                    "createdBy": created_by,
                    "participantIds": participants,
                },
            ),
            conn=conn,
        )

    return conversation


async def _bump_version(conversation_id: UUID, conn, **changes) -> Conversation:
    """
    Increments the aggregate version in a single UPDATE (row stays locked until
    commit) and returns the fresh row.
    """
    updated = await Conversation.filter(id=conversation_id).using_db(conn).update(
        version=F("version") + 1, **changes
    )
    if not updated:
        raise NotFoundError("Conversation not found")
    return await Conversation.get(id=conversation_id).using_db(conn)


async def send_message(conversation_id: UUID, sender_id: str, content: str) -> Message:
    """
    FAST PATH: Stores the Message and the MessageAdded event in one transaction.
    Delivery to participants happens asynchronously once the event is published.
    """
    content = content.strip()
    if not content:
        raise ValueError("Message content cannot be empty.")

    async with in_transaction() as conn:
        now = timezone.now()
        conversation = await _bump_version(conversation_id, conn, last_message_at=now)

        if sender_id not in conversation.participant_ids:
            raise ValueError(f"User {sender_id} is not a participant of this conversation.")

        message = await Message.create(
            conversation_id=conversation.id,
            sender_id=sender_id,
            content=content,
            read_by=[sender_id],
            using_db=conn,
        )

        # ATOMIC EVENT: fan-out to recipients is handled by downstream consumers
        await create_outbox_event(
            DomainEvent(
                event_type="MessageAdded",
                aggregate_id=str(conversation.id),
                aggregate_version=conversation.version,
                caused_by=sender_id,
                occurred_on=now,
                payload={
                    "messageId": str(message.id),
                    "conversationId": str(conversation.id),
                    "senderId": sender_id,
                    "content": content,
                    "recipientIds": [p for p in conversation.participant_ids if p != sender_id],
                },
            ),
            conn=conn,
        )

    return message


async def mark_messages_read(conversation_id: UUID, reader_id: str, message_ids: List[UUID]) -> int:
    """
    Marks messages as read by ``reader_id`` and emits MessagesRead.
    Returns how many messages changed.
    """
    if not message_ids:
        raise ValueError("No messages to mark as read.")

    async with in_transaction() as conn:
        conversation = await Conversation.get_or_none(id=conversation_id).using_db(conn)
        if not conversation:
            raise NotFoundError("Conversation not found")
        if reader_id not in conversation.participant_ids:
            raise ValueError(f"User {reader_id} is not a participant of this conversation.")

        messages = await Message.filter(conversation_id=conversation_id, id__in=message_ids).using_db(conn)
        changed = []
        for message in messages:
            if reader_id in message.read_by:
                continue
            message.read_by = [*message.read_by, reader_id]
            await message.save(update_fields=["read_by"], using_db=conn)
            changed.append(str(message.id))

        if not changed:
            return 0

        conversation = await _bump_version(conversation_id, conn)
        await create_outbox_event(
            DomainEvent(
                event_type="MessagesRead",
                aggregate_id=str(conversation.id),
                aggregate_version=conversation.version,
                caused_by=reader_id,
                payload={
                    "conversationId": str(conversation.id),
                    "readerId": reader_id,
                    "messageIds": changed,
                },
            ),
            conn=conn,
        )

    return len(changed)


async def get_conversation(conversation_id: UUID) -> Optional[Conversation]:
    return await Conversation.get_or_none(id=conversation_id)
