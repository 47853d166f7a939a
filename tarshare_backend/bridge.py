from __future__ import annotations

import asyncio
import concurrent.futures
import logging
from typing import Optional, Union

from .config import BRIDGE_CAPACITY
from .errors import ConsumerGone, ProducerFailed


logger = logging.getLogger(__name__)

# How often a blocked producer checks that the event loop is still alive.
_LIVENESS_POLL_SECONDS = 1.0


class _EndOfStream:
    __slots__ = ()


class _Failure:
    __slots__ = ("exc",)

    def __init__(self, exc: BaseException) -> None:
        self.exc = exc


_EOF = _EndOfStream()

_Item = Union[bytes, _EndOfStream, _Failure]


class ByteBridge:
    """Bounded hand-off from one blocking producer thread to an async consumer.

    Producer side (worker thread): ``send``, ``finish`` and ``fail``. ``send``
    blocks while ``capacity`` chunks are waiting and raises ``ConsumerGone``
    once the consumer has closed the bridge, so a stalled or vanished client
    throttles the producer instead of growing memory.

    Consumer side (event loop): ``await receive()`` or ``async for``, and
    ``close()``. A producer failure is raised as ``ProducerFailed`` after the
    chunks sent before it, never reported as a normal end of stream.

    Chunks are delivered in the order they were sent.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop, capacity: int = BRIDGE_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._loop = loop
        self._capacity = capacity
        self._queue: "asyncio.Queue[_Item]" = asyncio.Queue(maxsize=capacity)
        self._closed = False  # consumer gone
        self._finished = False  # producer sent EOF or failure
        self._exhausted = False  # consumer saw EOF or failure

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        return self._loop

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def closed(self) -> bool:
        return self._closed

    # -- producer side -------------------------------------------------

    def send(self, chunk: bytes) -> None:
        if not chunk:
            return
        self._put(bytes(chunk))

    def finish(self) -> None:
        self._put(_EOF)
        self._finished = True

    def fail(self, exc: BaseException) -> None:
        self._put(_Failure(exc))
        self._finished = True

    def _check_producer_thread(self) -> None:
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self._loop:
            raise RuntimeError("ByteBridge producer methods must not run on the event loop")

    async def _enqueue(self, item: _Item) -> None:
        if self._closed:
            raise ConsumerGone("consumer closed the stream")
        await self._queue.put(item)
        if self._closed:
            raise ConsumerGone("consumer closed the stream")

    def _put(self, item: _Item) -> None:
        self._check_producer_thread()
        if self._finished:
            raise RuntimeError("ByteBridge producer already finished")
        if self._closed:
            raise ConsumerGone("consumer closed the stream")
        try:
            future = asyncio.run_coroutine_threadsafe(self._enqueue(item), self._loop)
        except RuntimeError as e:
            # Event loop already closed: nobody will ever read this.
            raise ConsumerGone(str(e)) from e

        while True:
            try:
                future.result(timeout=_LIVENESS_POLL_SECONDS)
                return
            except concurrent.futures.TimeoutError:
                if self._loop.is_closed() or not self._loop.is_running():
                    future.cancel()
                    raise ConsumerGone("event loop stopped")
            except concurrent.futures.CancelledError as e:
                raise ConsumerGone("stream cancelled") from e

    # -- consumer side -------------------------------------------------

    async def receive(self) -> Optional[bytes]:
        """Next chunk, or None at end of stream."""
        if self._exhausted:
            return None
        if self._closed:
            raise RuntimeError("ByteBridge consumer already closed")
        item = await self._queue.get()
        if isinstance(item, _EndOfStream):
            self._exhausted = True
            return None
        if isinstance(item, _Failure):
            self._exhausted = True
            raise ProducerFailed("archive producer failed") from item.exc
        return item

    def __aiter__(self) -> "ByteBridge":
        return self

    async def __anext__(self) -> bytes:
        chunk = await self.receive()
        if chunk is None:
            raise StopAsyncIteration
        return chunk

    def close(self) -> None:
        """Mark the consumer gone and release a blocked producer.

        Must be called from the event loop thread. Idempotent.
        """
        if self._closed:
            return
        self._closed = True
        dropped = 0
        while True:
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            dropped += 1
        if dropped and not self._exhausted:
            logger.debug("Bridge closed with %d chunk(s) unread", dropped)
