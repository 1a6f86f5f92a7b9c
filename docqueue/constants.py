"""
Application constants.
Centralized location for all constant values used across the application.
"""

from enum import StrEnum


class MessageState(StrEnum):
    """
    Message lifecycle states, derived from a record's columns at a given instant.

    State transitions:
    - DELAYED -> AVAILABLE (visible time reached)
    - AVAILABLE -> LEASED (lease acquired)
    - LEASED -> LEASED (lease renewed)
    - LEASED -> AVAILABLE (lease expired - crash recovery)
    - LEASED -> DONE (acknowledged, or forwarded to the dead-letter queue)
    """

    DELAYED = "delayed"
    AVAILABLE = "available"
    LEASED = "leased"
    DONE = "done"


# Default values
DEFAULT_VISIBILITY_SECONDS = 30
DEFAULT_DELAY_SECONDS = 0
DEFAULT_MAX_RETRIES = 5
MAX_QUEUE_NAME_LENGTH = 255

# Index names
INDEX_QUEUE_POLL = "ix_messages_queue_poll"
INDEX_ACK_UNIQUE = "uq_messages_ack"

# API constants
API_V1_PREFIX = "/v1"

# Metrics names
METRIC_QUEUE_SIZE = "queue_size"
METRIC_QUEUE_IN_FLIGHT = "queue_in_flight"
METRIC_QUEUE_DONE = "queue_done"
METRIC_MESSAGES_ENQUEUED = "messages_enqueued_total"
METRIC_MESSAGES_ACKED = "messages_acked_total"
METRIC_MESSAGES_DEAD_LETTERED = "messages_dead_lettered_total"
METRIC_MESSAGES_PURGED = "messages_purged_total"
METRIC_LEASE_ACQUIRED = "lease_acquired_total"
METRIC_LEASE_UNKNOWN = "lease_unknown_total"
METRIC_HANDLER_DURATION = "handler_duration_seconds"

# Trace span names
SPAN_ENQUEUE = "enqueue"
SPAN_ACQUIRE_LEASE = "acquire_lease"
SPAN_RENEW_LEASE = "renew_lease"
SPAN_ACK_MESSAGE = "ack_message"
SPAN_DEAD_LETTER = "dead_letter"
SPAN_HANDLE_MESSAGE = "handle_message"
