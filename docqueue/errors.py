"""Exception classes for docqueue."""


class QueueError(Exception):
    """Base exception for all docqueue errors."""


class InvalidArgumentError(QueueError, ValueError):
    """Raised when a queue is built or called with an unusable argument."""


class UnknownLeaseError(QueueError):
    """
    Raised when an ack token does not identify an in-flight message.

    The token is unknown, already acknowledged, or its lease has expired.
    Either way the caller no longer owns the message.
    """

    def __init__(self, operation: str, ack: str):
        super().__init__(f"{operation}(): unidentified ack: {ack}")
        self.operation = operation
        self.ack = ack


class DeadLetterError(QueueError):
    """Raised when an exhausted message could not be moved to the dead-letter queue."""

    def __init__(self, queue: str, message_id: str):
        super().__init__(
            f"Failed to dead-letter message {message_id} from queue '{queue}'"
        )
        self.queue = queue
        self.message_id = message_id


class DatabaseNotInitializedError(QueueError, RuntimeError):
    """Raised when a session is requested before init_db() was called."""
