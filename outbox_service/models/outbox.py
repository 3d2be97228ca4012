from tortoise import fields, models


class OutboxEvent(models.Model):
    """
    The Outbox table stores domain events atomically with the aggregate change
    that produced them. This is the core of the Transactional Outbox Pattern.

    Rows are append-only from the producer's side. The dispatcher only ever
    flips ``published`` from False to True, bumps ``retry_count`` and manages
    the claim lease. Nothing in the service deletes a pending row.
    """
    id = fields.BigIntField(primary_key=True) # Store-generated, also the ordering tie-breaker
    event_id = fields.CharField(max_length=128, unique=True) # Consumers deduplicate on this
    aggregate_id = fields.CharField(max_length=255) # e.g. conversation id, used as the message key
    event_type = fields.CharField(max_length=255) # e.g. 'MessageAdded'
    payload = fields.JSONField() # The actual event data
    aggregate_version = fields.IntField(null=True)
    caused_by = fields.CharField(max_length=255, null=True)
    occurred_on = fields.DatetimeField()

    published = fields.BooleanField(default=False)
    published_at = fields.DatetimeField(null=True)
    retry_count = fields.IntField(default=0)
    last_error = fields.TextField(null=True)

    dead_lettered = fields.BooleanField(default=False)
    dead_lettered_at = fields.DatetimeField(null=True)

    # Claim lease for multi-worker dispatch
    locked_by = fields.CharField(max_length=64, null=True)
    locked_until = fields.DatetimeField(null=True)

    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        table = "domain_event_outbox"
        indexes = [
            ("published",),
            ("published", "created_at"),                   # Polling unpublished events
            ("published", "dead_lettered", "created_at"),  # Polling, dead letters excluded
            ("aggregate_id",),
            ("event_type",),
        ]

    def __str__(self):
        return f"{self.event_type}#{self.id} ({self.aggregate_id})"
