from tortoise import fields, models
import uuid


class Conversation(models.Model):
    """Chat conversation aggregate. Every state change emits a domain event."""
    id = fields.UUIDField(primary_key=True, default=uuid.uuid4)
    title = fields.CharField(max_length=255, null=True)
    created_by = fields.CharField(max_length=64)
    participant_ids = fields.JSONField(default=list)
    version = fields.IntField(default=1) # Bumped on every mutation, copied to aggregate_version
    last_message_at = fields.DatetimeField(null=True)
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "conversations"
        indexes = [
            ("created_by",),
            ("last_message_at",),  # Recent conversations
        ]


class Message(models.Model):
    id = fields.UUIDField(primary_key=True, default=uuid.uuid4)
    conversation = fields.ForeignKeyField("models.Conversation", related_name="messages")
    sender_id = fields.CharField(max_length=64)
    content = fields.TextField()
    read_by = fields.JSONField(default=list)
    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        table = "messages"
        indexes = [
            ("conversation_id",),
            ("conversation_id", "created_at"),  # Composite: message history
        ]
