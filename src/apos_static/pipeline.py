"""Bounded-concurrency batch executor.

A fixed pool of worker tasks drains one batch of items. Each worker claims the
next unclaimed item, awaits the handler, and records any exception as a
PageFailure without stopping itself or the batch.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PageFailure:
    """One item that failed in its handler."""

    url: str
    error: str


@dataclass
class BatchOutcome:
    """Result of running one batch."""

    succeeded: int = 0
    failed: int = 0
    failures: list[PageFailure] = field(default_factory=list)


class BatchExecutor:
    """Runs a handler over a batch with at most ``concurrency`` in flight.

    Example:
        >>> executor = BatchExecutor(concurrency=4)
        >>> outcome = await executor.run(["/", "/about/"], render_page)
        >>> outcome.succeeded
        2
    """

    def __init__(self, concurrency: int) -> None:
        """Initialize executor.

        Args:
            concurrency: Number of worker tasks (must be >= 1)
        """
        if concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {concurrency}")
        self.concurrency = concurrency

    async def run(
        self,
        items: Sequence[str],
        handler: Callable[[str], Awaitable[None]],
    ) -> BatchOutcome:
        """Process every item once and return the aggregate outcome."""
        outcome = BatchOutcome()
        if not items:
            return outcome

        cursor = iter(items)

        async def worker(worker_id: int) -> None:
            # Claiming via next() is atomic: no await between check and take
            for item in cursor:
                try:
                    await handler(item)
                except Exception as e:
                    message = str(e) or type(e).__name__
                    logger.debug(f"Worker {worker_id} failed on {item}: {message}")
                    outcome.failed += 1
                    outcome.failures.append(PageFailure(url=item, error=message))
                else:
                    outcome.succeeded += 1

        workers = min(self.concurrency, len(items))
        tasks = [
            asyncio.create_task(worker(worker_id), name=f"render-worker-{worker_id}")
            for worker_id in range(workers)
        ]
        await asyncio.gather(*tasks)
        return outcome
