"""
Handler-related type definitions for the consumer.
"""

from typing import Any

from pydantic import BaseModel


class HandlerResult(BaseModel):
    """
    Result of handling a message.
    Returned by message handlers after processing.
    """

    success: bool
    output: Any = None
    error: str | None = None
