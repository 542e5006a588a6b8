"""
Producer/consumer relay between an upstream fragment iterator and the HTTP body.

The producer task reads the upstream iterator and pushes fragments into a
bounded queue. The response drains the queue until the producer closes it,
either cleanly or with the upstream error. If the response stops early (for
example the browser disconnected), the producer is cancelled and the upstream
iterator is closed.
"""

from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass
from typing import AsyncIterator, Optional

DEFAULT_CHANNEL_SIZE = 16


@dataclass(frozen=True)
class _Closed:
    error: Optional[BaseException] = None


class TextChannel:
    """Bounded single-producer, single-consumer channel of text fragments."""

    def __init__(self, maxsize: int = DEFAULT_CHANNEL_SIZE) -> None:
        self._queue: "asyncio.Queue[object]" = asyncio.Queue(maxsize=maxsize)
        self._finished = False

    async def send(self, fragment: str) -> None:
        await self._queue.put(fragment)

    async def close(self, error: Optional[BaseException] = None) -> None:
        await self._queue.put(_Closed(error))

    def __aiter__(self) -> "TextChannel":
        return self

    async def __anext__(self) -> str:
        if self._finished:
            raise StopAsyncIteration
        item = await self._queue.get()
        if isinstance(item, _Closed):
            self._finished = True
            if item.error is not None:
                raise item.error
            raise StopAsyncIteration
        return item  # type: ignore[return-value]


async def _pump(source: AsyncIterator[str], channel: TextChannel) -> None:
    error: Optional[BaseException] = None
    try:
        async for fragment in source:
            await channel.send(fragment)
    except Exception as exc:
        error = exc
    finally:
        aclose = getattr(source, "aclose", None)
        if aclose is not None:
            await aclose()
    await channel.close(error)


async def relay(source: AsyncIterator[str], maxsize: int = DEFAULT_CHANNEL_SIZE) -> AsyncIterator[str]:
    """Yield fragments from source through a TextChannel; upstream errors are re-raised."""
    channel = TextChannel(maxsize)
    producer = asyncio.create_task(_pump(source, channel))
    try:
        async for fragment in channel:
            yield fragment
    finally:
        if not producer.done():
            producer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await producer
