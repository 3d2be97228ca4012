# outbox_service/models/__init__.py
from .conversation import Conversation, Message
from .outbox import OutboxEvent

# Export all models
__all__ = [
    "Conversation",
    "Message",
    "OutboxEvent",
]
