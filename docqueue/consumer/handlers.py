"""
Message handler registry and built-in handlers.

Handlers must be idempotent: delivery is at-least-once, so a message may be
handled again after a consumer crash or an expired lease.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from docqueue.types.handler import HandlerResult
from docqueue.types.message import LeasedMessage

logger = logging.getLogger(__name__)

MessageHandler = Callable[[LeasedMessage], Awaitable[HandlerResult]]

# Payload key naming the handler
TYPE_KEY = "type"

_handlers: dict[str, MessageHandler] = {}


def register_handler(message_type: str) -> Callable[[MessageHandler], MessageHandler]:
    """
    Decorator to register a message handler.

    Args:
        message_type: The ``type`` value of payloads this handler processes.

    Returns:
        Decorator function.

    Example:
        @register_handler("send_email")
        async def handle_send_email(message: LeasedMessage) -> HandlerResult:
            ...
    """
    def decorator(handler: MessageHandler) -> MessageHandler:
        _handlers[message_type] = handler
        logger.debug(f"Registered handler for message type: {message_type}")
        return handler
    return decorator


def get_handler(message_type: str) -> MessageHandler | None:
    """Get the handler for a message type, or None."""
    return _handlers.get(message_type)


def list_handlers() -> list[str]:
    """List all registered message types."""
    return list(_handlers.keys())


def _data(message: LeasedMessage) -> dict[str, Any]:
    if isinstance(message.payload, dict):
        return message.payload.get("data") or {}
    return {}


@register_handler("echo")
async def handle_echo(message: LeasedMessage) -> HandlerResult:
    """Return the payload unchanged."""
    logger.info(
        "Echo message handled",
        extra={"message_id": message.id, "tries": message.tries},
    )
    return HandlerResult(success=True, output={"echo": message.payload})


@register_handler("sleep")
async def handle_sleep(message: LeasedMessage) -> HandlerResult:
    """
    Sleep for ``data.duration_seconds`` (default 1).

    Useful for exercising lease renewal.
    """
    duration = _data(message).get("duration_seconds", 1)
    await asyncio.sleep(duration)
    return HandlerResult(success=True, output={"slept_for": duration})


@register_handler("fail")
async def handle_fail(message: LeasedMessage) -> HandlerResult:
    """Always fail, leaving the message to be retried and eventually dead-lettered."""
    return HandlerResult(
        success=False,
        error=f"Intentional failure on try {message.tries}",
    )


async def execute_message(message: LeasedMessage) -> HandlerResult:
    """
    Handle a message with the handler named by its payload's ``type``.

    Args:
        message: The leased message.

    Returns:
        HandlerResult from the handler; a failed result if there is no
        handler or the handler raised.
    """
    message_type = None
    if isinstance(message.payload, dict):
        message_type = message.payload.get(TYPE_KEY)

    handler = get_handler(message_type) if isinstance(message_type, str) else None

    if handler is None:
        logger.error(
            f"No handler for message type: {message_type}",
            extra={"message_id": message.id},
        )
        return HandlerResult(
            success=False,
            error=f"No handler registered for message type: {message_type}",
        )

    try:
        return await handler(message)
    except Exception as e:
        logger.exception(
            "Handler raised exception",
            extra={"message_id": message.id, "error": str(e)},
        )
        return HandlerResult(
            success=False,
            error=f"Handler exception: {e}",
        )
