import uuid
from typing import Any, Dict
from pydantic import BaseModel, Field


class PublishedEventResponse(BaseModel):
    """Response schema for an event accepted into the outbox (202 Accepted)."""
    event_id: uuid.UUID
    topic: str
    message: str


class OutboxEventResponse(BaseModel):
    """Schema for inspecting a single outbox row."""
    id: uuid.UUID
    topic: str
    status: str
    attempts: int
    payload: Any
    created_at: str
    updated_at: str


class OutboxStatusResponse(BaseModel):
    dispatcher_running: bool
    counts: Dict[str, int] = Field(..., description="Number of outbox rows per status.")
