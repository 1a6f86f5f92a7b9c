"""
Queue routes.
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Path, Response, status

from docqueue.constants import API_V1_PREFIX, MAX_QUEUE_NAME_LENGTH
from docqueue.db import get_store
from docqueue.db.store import DocumentStore
from docqueue.errors import DeadLetterError, InvalidArgumentError, UnknownLeaseError
from docqueue.queue import Queue
from docqueue.types.api import (
    AckRequest,
    CleanResponse,
    EnqueueRequest,
    EnqueueResponse,
    LeaseRequest,
    MessageIdResponse,
    PingRequest,
)
from docqueue.types.message import LeasedMessage, QueueStats

logger = logging.getLogger(__name__)

router = APIRouter(prefix=f"{API_V1_PREFIX}/queues/{{name}}", tags=["Queues"])


def get_queue(
    name: Annotated[str, Path(min_length=1, max_length=MAX_QUEUE_NAME_LENGTH)],
    store: DocumentStore = Depends(get_store),
) -> Queue:
    """Build the queue named in the path from the configured defaults."""
    return Queue.from_settings(store, name)


QueueDep = Annotated[Queue, Depends(get_queue)]


@router.post(
    "/messages",
    response_model=EnqueueResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Enqueue messages",
    description="Add one payload, or a batch of payloads, to the queue.",
)
async def enqueue(request: EnqueueRequest, queue: QueueDep) -> EnqueueResponse:
    """
    Enqueue one message or a batch.

    Args:
        request: Payload(s) and optional delay.
        queue: The target queue.

    Returns:
        EnqueueResponse with the assigned ids, in payload order.
    """
    try:
        if request.payloads is not None:
            ids = await queue.add(request.payloads, delay=request.delay)
        else:
            ids = [await queue.add(request.payload, delay=request.delay)]
    except InvalidArgumentError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(e),
        )

    return EnqueueResponse(ids=ids)


@router.post(
    "/lease",
    response_model=LeasedMessage,
    responses={status.HTTP_204_NO_CONTENT: {"description": "No message available"}},
    summary="Lease a message",
    description="Lease the oldest available message for the visibility window.",
)
async def lease(
    queue: QueueDep,
    request: LeaseRequest | None = None,
) -> LeasedMessage | Response:
    """
    Lease a message.

    Args:
        queue: The queue to lease from.
        request: Optional visibility override.

    Returns:
        The leased message, or an empty 204 response.
    """
    visibility = request.visibility if request is not None else None
    try:
        message = await queue.get(visibility=visibility)
    except DeadLetterError as e:
        logger.error(str(e), extra={"queue": queue.name})
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=str(e),
        )

    if message is None:
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    return message


@router.post(
    "/ping",
    response_model=MessageIdResponse,
    summary="Extend a lease",
    description="Extend the lease identified by the ack token.",
)
async def ping(request: PingRequest, queue: QueueDep) -> MessageIdResponse:
    """
    Extend a lease.

    Args:
        request: Ack token and optional visibility override.
        queue: The queue holding the message.

    Returns:
        MessageIdResponse with the message id.
    """
    try:
        message_id = await queue.ping(request.ack, visibility=request.visibility)
    except UnknownLeaseError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    return MessageIdResponse(id=message_id)


@router.post(
    "/ack",
    response_model=MessageIdResponse,
    summary="Acknowledge a message",
    description="Mark the message leased under the ack token as done.",
)
async def ack(request: AckRequest, queue: QueueDep) -> MessageIdResponse:
    """
    Acknowledge a message.

    Args:
        request: Ack token.
        queue: The queue holding the message.

    Returns:
        MessageIdResponse with the message id.
    """
    try:
        message_id = await queue.ack(request.ack)
    except UnknownLeaseError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    return MessageIdResponse(id=message_id)


@router.post(
    "/clean",
    response_model=CleanResponse,
    summary="Purge done messages",
    description="Remove every acknowledged message from the queue.",
)
async def clean(queue: QueueDep) -> CleanResponse:
    """Purge acknowledged messages."""
    return CleanResponse(removed=await queue.clean())


@router.get(
    "/stats",
    response_model=QueueStats,
    summary="Queue statistics",
    description="Count the queue's messages by state.",
)
async def stats(queue: QueueDep) -> QueueStats:
    """Get queue statistics."""
    return await queue.stats()
