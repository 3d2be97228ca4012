import logging
from uuid import UUID

from fastapi import APIRouter, HTTPException, Request, status

from outbox_service.core.errors import NotFoundError
from outbox_service.schemas.conversation import (
    ConversationCreateRequest,
    ConversationResponse,
    MarkReadRequest,
    MarkReadResponse,
    MessageAcceptedResponse,
    MessageSendRequest,
)
from outbox_service.schemas.response import SuccessResponse
from outbox_service.services.conversation_service import (
    create_conversation,
    get_conversation,
    mark_messages_read,
    send_message,
)

router = APIRouter()
log = logging.getLogger(__name__)


def _wake_dispatcher(request: Request):
    """New events were committed; let the in-process dispatcher run early."""
    scheduler = getattr(request.app.state, "outbox_scheduler", None)
    if scheduler is not None:
        scheduler.trigger()


@router.post("/", status_code=status.HTTP_201_CREATED, response_model=SuccessResponse)
async def create_conversation_endpoint(request_data: ConversationCreateRequest):
    """Opens a conversation and records ConversationCreated in the outbox."""
    try:
        conversation = await create_conversation(
            created_by=request_data.created_by,
            participant_ids=request_data.participant_ids,
            title=request_data.title,
        )
    except ValueError as e:
        log.error(f"Value error creating conversation: {e}")
        raise HTTPException(status_code=400, detail=str(e))

    log.info(f"Conversation {conversation.id} created by {request_data.created_by}.")
    data = ConversationResponse(
        id=conversation.id,
        title=conversation.title,
        participant_ids=conversation.participant_ids,
        version=conversation.version,
    ).model_dump()
    return SuccessResponse(data=data)


@router.get("/{conversation_id}", response_model=SuccessResponse)
async def get_conversation_endpoint(conversation_id: UUID):
    conversation = await get_conversation(conversation_id)
    if not conversation:
        raise HTTPException(status_code=404, detail="Conversation not found")
    data = ConversationResponse(
        id=conversation.id,
        title=conversation.title,
        participant_ids=conversation.participant_ids,
        version=conversation.version,
    ).model_dump()
    return SuccessResponse(data=data)


@router.post("/{conversation_id}/messages", status_code=status.HTTP_202_ACCEPTED, response_model=SuccessResponse)
async def send_message_endpoint(conversation_id: UUID, request_data: MessageSendRequest, request: Request):
    """
    Stores a message. Returns 202 Accepted because delivery to participants is async.
    """
    try:
        message = await send_message(conversation_id, request_data.sender_id, request_data.content)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        log.error(f"Value error sending message: {e}")
        raise HTTPException(status_code=400, detail=str(e))

    _wake_dispatcher(request)
    data = MessageAcceptedResponse(
        message_id=message.id,
        conversation_id=conversation_id,
        message="Message stored and queued for delivery.",
    ).model_dump()
    return SuccessResponse(data=data)


@router.post("/{conversation_id}/read", response_model=SuccessResponse)
async def mark_read_endpoint(conversation_id: UUID, request_data: MarkReadRequest):
    try:
        updated = await mark_messages_read(conversation_id, request_data.reader_id, request_data.message_ids)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        log.error(f"Value error marking messages read: {e}")
        raise HTTPException(status_code=400, detail=str(e))
    return SuccessResponse(data=MarkReadResponse(updated=updated).model_dump())
