"""
Type definitions for docqueue.
Contains input/output type definitions for all functions, grouped by module.
"""

from docqueue.types.api import (
    AckRequest,
    CleanResponse,
    EnqueueRequest,
    EnqueueResponse,
    HealthResponse,
    LeaseRequest,
    MessageIdResponse,
    PingRequest,
)
from docqueue.types.handler import HandlerResult
from docqueue.types.message import (
    Claimed,
    DeadLetterPolicy,
    Exhausted,
    LeasedMessage,
    LeaseOutcome,
    MessageRecord,
    QueueOptions,
    QueueStats,
)

__all__ = [
    # API types
    "EnqueueRequest",
    "EnqueueResponse",
    "LeaseRequest",
    "PingRequest",
    "AckRequest",
    "MessageIdResponse",
    "CleanResponse",
    "HealthResponse",
    # Message types
    "MessageRecord",
    "LeasedMessage",
    "QueueStats",
    "QueueOptions",
    "DeadLetterPolicy",
    "Claimed",
    "Exhausted",
    "LeaseOutcome",
    # Handler types
    "HandlerResult",
]
