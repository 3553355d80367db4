import asyncio
from typing import AsyncIterator, Generic, Optional, TypeVar

T = TypeVar("T")

_CLOSED = object()


class ProgressStream(Generic[T]):
    """
    Bounded, single-consumer channel of progress events.

    Publishing never blocks: when the buffer is full the oldest event is
    dropped, so a slow consumer sees the latest state rather than stalling
    the producer. Consume with `async for event in stream`; iteration ends
    after close().
    """

    def __init__(self, maxsize: int = 256):
        self.maxsize = max(1, maxsize)
        # One spare slot so the close marker never evicts an event.
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=self.maxsize + 1)
        self._closed = False
        self.dropped = 0
        self.latest: Optional[T] = None

    @property
    def closed(self) -> bool:
        return self._closed

    def publish(self, event: T) -> None:
        if self._closed:
            return
        self.latest = event
        while self._queue.qsize() >= self.maxsize:
            self._queue.get_nowait()
            self.dropped += 1
        self._queue.put_nowait(event)

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(_CLOSED)

    def __aiter__(self) -> AsyncIterator[T]:
        return self

    async def __anext__(self) -> T:
        item = await self._queue.get()
        if item is _CLOSED:
            # Leave the marker in place so later iterations end too.
            self._queue.put_nowait(_CLOSED)
            raise StopAsyncIteration
        return item
