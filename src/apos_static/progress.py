"""Typed progress events.

The export pipeline publishes ProgressEvent values on a ProgressChannel instead
of calling back into the caller. Subscribers drain their own unbounded queue, so
publishing never blocks or fails the pipeline.

Example:
    >>> channel = ProgressChannel()
    >>> events = channel.subscribe()
    >>> task = asyncio.create_task(export_static(config, progress=channel))
    >>> async for event in events:
    ...     print(event.current, event.message)
"""

import asyncio
from collections.abc import AsyncIterator
from dataclasses import dataclass

TOTAL = 100


@dataclass(frozen=True)
class ProgressEvent:
    """Single progress update on a 0-100 scale."""

    current: int
    total: int
    message: str
    url: str | None = None


class ProgressChannel:
    """Fan-out channel of progress events."""

    def __init__(self) -> None:
        self._queues: list[asyncio.Queue[ProgressEvent | None]] = []
        self._closed = False
        self.last: ProgressEvent | None = None

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(self) -> AsyncIterator[ProgressEvent]:
        """Register a subscriber.

        The subscription starts immediately, so events emitted before the
        iterator is first awaited are still delivered.
        """
        queue: asyncio.Queue[ProgressEvent | None] = asyncio.Queue()
        if self._closed:
            queue.put_nowait(None)
        self._queues.append(queue)
        return self._iterate(queue)

    async def _iterate(
        self, queue: asyncio.Queue[ProgressEvent | None]
    ) -> AsyncIterator[ProgressEvent]:
        try:
            while True:
                event = await queue.get()
                if event is None:
                    return
                yield event
        finally:
            if queue in self._queues:
                self._queues.remove(queue)

    def emit(self, current: int, message: str, url: str | None = None) -> ProgressEvent:
        """Publish an event to every subscriber without waiting."""
        event = ProgressEvent(current=current, total=TOTAL, message=message, url=url)
        self.last = event
        if not self._closed:
            for queue in self._queues:
                queue.put_nowait(event)
        return event

    def close(self) -> None:
        """End every subscription. Later events are dropped."""
        if self._closed:
            return
        self._closed = True
        for queue in self._queues:
            queue.put_nowait(None)


def page_progress(processed: int, pending: int) -> int:
    """Map crawl progress onto the 40-90 rendering band."""
    seen = processed + pending
    if seen == 0:
        return 40
    return 40 + round(50 * processed / seen)
