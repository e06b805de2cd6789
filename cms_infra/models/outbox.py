from enum import Enum
from tortoise import fields, models
import uuid


class OutboxStatus(str, Enum):
    PENDING = "pending"        # Written with the business transaction, waiting for a dispatcher
    PROCESSING = "processing"  # Claimed by a dispatcher tick
    DONE = "done"
    ERROR = "error"            # Terminal; 'attempts' is left for an external retry policy


class OutboxEvent(models.Model):
    """
    The Outbox table stores events atomically with the database transaction
    that produced them. Rows are never deleted here; retention is handled elsewhere.
    """
    id = fields.UUIDField(primary_key=True, default=uuid.uuid4)
    topic = fields.CharField(max_length=128) # e.g., 'post.created'
    payload = fields.JSONField() # Opaque to the store
    status = fields.CharEnumField(OutboxStatus, max_length=16, default=OutboxStatus.PENDING)
    attempts = fields.IntField(default=0)
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "outbox_events"
        indexes = [
            ("status", "created_at"),  # Claiming: oldest pending first
        ]

    def __str__(self):
        return f"{self.topic} ({self.id})"
