"""Crawl frontier.

A deduplicated, growing worklist of raw paths. Identity is the canonical path,
so ``/articles/?page=2`` and ``/articles?page=2`` are one crawl target. Every
mutation happens under one asyncio.Lock; workers only touch the frontier
through add(), take_batch() and mark_processed().
"""

import asyncio
import logging
from collections import deque
from collections.abc import Iterable

from apos_static.urls import canonicalize

logger = logging.getLogger(__name__)


class Frontier:
    """Pending queue plus processed set, keyed by canonical path.

    Entries are never removed from the membership index: a path that was
    claimed once (succeeded or failed) is not queued again.

    Example:
        >>> frontier = Frontier(["/", "/about/"])
        >>> batch = await frontier.take_batch(4)
        >>> await frontier.add(["/contact"])
        ['/contact']
        >>> await frontier.mark_processed("/")
    """

    def __init__(self, seeds: Iterable[str] = ()) -> None:
        self._pending: deque[str] = deque()
        self._known: set[str] = set()
        self._processed: set[str] = set()
        self._lock = asyncio.Lock()

        for path in seeds:
            self._enqueue(path)

    def _enqueue(self, path: str) -> bool:
        identity = canonicalize(path)
        if identity in self._known or identity in self._processed:
            return False
        self._known.add(identity)
        self._pending.append(path)
        return True

    async def add(self, paths: Iterable[str]) -> list[str]:
        """Queue paths whose canonical identity has not been seen.

        Returns:
            The paths that were newly queued, in input order
        """
        async with self._lock:
            added = [path for path in paths if self._enqueue(path)]
        if added:
            logger.debug(f"Queued {len(added)} new path(s)")
        return added

    async def take_batch(self, size: int) -> list[str]:
        """Remove up to ``size`` pending paths, skipping already processed ones."""
        batch: list[str] = []
        async with self._lock:
            while self._pending and len(batch) < size:
                path = self._pending.popleft()
                if canonicalize(path) in self._processed:
                    continue
                batch.append(path)
        return batch

    async def mark_processed(self, path: str) -> None:
        async with self._lock:
            self._processed.add(canonicalize(path))

    async def is_processed(self, path: str) -> bool:
        async with self._lock:
            return canonicalize(path) in self._processed

    @property
    def processed_count(self) -> int:
        return len(self._processed)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def is_empty(self) -> bool:
        return not self._pending
