import asyncio
from typing import Optional

from .constants import CHANNEL_CAPACITY
from .errors import ChannelClosed


class NotificationChannel:
    """
    Bounded FIFO of raw notification payloads, one producer and one consumer.

    send() suspends while the channel is full, nothing is ever dropped.
    close() is the consumer saying it is gone: a pending or later send()
    raises ChannelClosed. finish() is the producer saying it is done: recv()
    returns None once the remaining items are drained.
    """

    def __init__(self, capacity: int = CHANNEL_CAPACITY):
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = capacity
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=capacity)
        self._closed = asyncio.Event()
        self._finished = asyncio.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    @property
    def finished(self) -> bool:
        return self._finished.is_set()

    def qsize(self) -> int:
        return self._queue.qsize()

    def full(self) -> bool:
        return self._queue.full()

    async def send(self, payload: bytes, stop: Optional[asyncio.Event] = None) -> bool:
        """
        Enqueue `payload`, waiting for room while the channel is full.

        Returns False without enqueueing if `stop` is set first.
        """
        if self._closed.is_set():
            raise ChannelClosed("receiver closed")
        if stop is not None and stop.is_set():
            return False
        if not self._queue.full():
            self._queue.put_nowait(payload)
            return True
        # full: wait for room, for the consumer to go away or for `stop`
        put = asyncio.ensure_future(self._queue.put(payload))
        waits = [self._closed.wait()]
        if stop is not None:
            waits.append(stop.wait())
        if await _wait_either(put, *waits):
            return True
        if self._closed.is_set():
            raise ChannelClosed("receiver closed")
        return False

    async def recv(self) -> Optional[bytes]:
        """Next payload in arrival order, None once finished and drained."""
        if not self._queue.empty():
            return self._queue.get_nowait()
        if self._finished.is_set():
            return None
        get = asyncio.ensure_future(self._queue.get())
        done = await _wait_either(get, self._finished.wait())
        if done:
            return get.result()
        # finished while waiting, drain anything that raced in
        if not self._queue.empty():
            return self._queue.get_nowait()
        return None

    def close(self):
        self._closed.set()

    def finish(self):
        self._finished.set()

    def __aiter__(self):
        return self

    async def __anext__(self) -> bytes:
        payload = await self.recv()
        if payload is None:
            raise StopAsyncIteration
        return payload


async def _wait_either(task: asyncio.Future, *fallbacks) -> bool:
    """Await `task` unless one of `fallbacks` completes first. True if task won."""
    others = [asyncio.ensure_future(f) for f in fallbacks]
    try:
        done, _ = await asyncio.wait({task, *others}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        task.cancel()
        raise
    finally:
        for other in others:
            other.cancel()
    if task in done:
        return True
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        return False
    # completed between wait() returning and cancel()
    return True
