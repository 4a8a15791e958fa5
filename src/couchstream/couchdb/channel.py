"""Bounded producer/consumer handoff for paginated reads.

A paginator is the sole producer on the send side of a channel and the
caller owns the receive side. The channel capacity bounds how many pages
the producer may run ahead of the consumer: once the buffer is full the
next ``send`` suspends until the consumer takes a page. Closing the receive
side is how a consumer cancels; the producer's next send then fails and the
producer stops without error.

Example:
    ```python
    sender, receiver = open_page_channel(capacity=8)

    async with asyncio.TaskGroup() as tg:
        task = tg.create_task(db.find_batched(query, sender))
        async with receiver:
            async for page in receiver:
                handle(page.rows)

    print(f"{task.result()} rows")
    ```
"""

from __future__ import annotations

import asyncio
from contextlib import suppress
from typing import TYPE_CHECKING, Any

import anyio
from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream

from couchstream.couchdb.models import Page


if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Callable, Coroutine


__all__ = [
    "DEFAULT_CHANNEL_CAPACITY",
    "PageReceiver",
    "PageSender",
    "deliver",
    "iter_pages",
    "open_page_channel",
]


DEFAULT_CHANNEL_CAPACITY = 100

type PageSender = MemoryObjectSendStream[Page[Any]]
type PageReceiver = MemoryObjectReceiveStream[Page[Any]]


def open_page_channel(
    capacity: int = DEFAULT_CHANNEL_CAPACITY,
) -> tuple[PageSender, PageReceiver]:
    """Create a bounded page channel.

    Args:
        capacity: Number of pages the producer may buffer ahead of the
            consumer. Must be at least 1.

    Returns:
        The ``(sender, receiver)`` pair.

    Raises:
        ValueError: If capacity is less than 1.
    """
    if capacity < 1:
        msg = f"Channel capacity must be at least 1, got {capacity}"
        raise ValueError(msg)
    return anyio.create_memory_object_stream[Page[Any]](max_buffer_size=capacity)


async def deliver(sender: PageSender, page: Page[Any]) -> bool:
    """Send a page, suspending while the channel is full.

    Returns:
        True if the page was handed over, False if the receiving side has
        been closed and nothing more should be sent.
    """
    try:
        await sender.send(page)
    except (anyio.BrokenResourceError, anyio.ClosedResourceError):
        return False
    return True


async def iter_pages(
    producer: Callable[[PageSender], Coroutine[Any, Any, int]],
    *,
    capacity: int = DEFAULT_CHANNEL_CAPACITY,
) -> AsyncGenerator[Page[Any], None]:
    """Run a page producer in the background and yield its pages.

    The producer receives the send side of a fresh channel, which is closed
    as soon as the producer returns or fails. Pages are yielded in the order
    they were sent. If the producer fails, its error is raised after every
    page it managed to deliver has been yielded.

    The producer task lives no longer than the generator. Close the
    generator to stop it early; ``contextlib.aclosing`` does so when the
    loop is left by ``break`` or an exception, instead of waiting for
    garbage collection.

    Example:
        ```python
        async with aclosing(iter_pages(producer)) as pages:
            async for page in pages:
                if done(page):
                    break
        ```

    Args:
        producer: Coroutine function that fills the channel, such as a
            bound ``Database.find_batched``.
        capacity: Channel capacity.

    Yields:
        Pages in production order.
    """
    sender, receiver = open_page_channel(capacity)

    async def produce() -> int:
        async with sender:
            return await producer(sender)

    task = asyncio.create_task(produce())
    try:
        async with receiver:
            async for page in receiver:
                yield page
        await task
    finally:
        if not task.done():
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
