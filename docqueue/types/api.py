"""
API request and response type definitions.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, model_validator


class EnqueueRequest(BaseModel):
    """Request body for enqueuing one message or a batch."""

    payload: Any = Field(
        default=None, description="Single message payload; anything but a list"
    )
    payloads: list[Any] | None = Field(
        default=None, description="Batch of payloads, one message each"
    )
    delay: int | None = Field(
        default=None, ge=0, description="Seconds before the message may be leased"
    )

    @model_validator(mode="after")
    def check_one_form(self) -> "EnqueueRequest":
        has_payload = "payload" in self.model_fields_set
        if has_payload and self.payloads is not None:
            raise ValueError("Provide either payload or payloads, not both")
        if not has_payload and self.payloads is None:
            raise ValueError("Provide payload or payloads")
        # A list is always a batch at the queue level
        if isinstance(self.payload, list):
            raise ValueError("payload must not be a list; send a batch as payloads")
        return self


class EnqueueResponse(BaseModel):
    """Response body after enqueuing."""

    ids: list[str]


class LeaseRequest(BaseModel):
    """Request body for leasing a message."""

    visibility: int | None = Field(
        default=None, gt=0, description="Lease length in seconds"
    )


class PingRequest(BaseModel):
    """Request body for extending a lease."""

    ack: str = Field(..., description="Lease token")
    visibility: int | None = Field(
        default=None, gt=0, description="New lease length in seconds"
    )


class AckRequest(BaseModel):
    """Request body for acknowledging a message."""

    ack: str = Field(..., description="Lease token")


class MessageIdResponse(BaseModel):
    """Response body carrying the affected message id."""

    id: str


class CleanResponse(BaseModel):
    """Response body after purging done messages."""

    removed: int


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    database: str
    timestamp: datetime

