"""Base response cache interface.

Defines the capability contract every cache backend offers to the caller
(typically a GraphQL response-caching plugin).
"""

from __future__ import annotations

import asyncio
import logging
import math
from abc import ABC, abstractmethod
from collections.abc import Iterable
from datetime import datetime, timedelta, timezone
from typing import Any

from firecache.cache.entities import EntityLike

logger = logging.getLogger(__name__)

DEFAULT_COLLECTION_PATH = "responseCache"


def compute_expire_at(ttl: float | None, now: datetime | None = None) -> datetime | None:
    """Absolute expiry for a TTL in milliseconds; None/inf means never."""
    if ttl is None or not math.isfinite(ttl):
        return None
    now = now or datetime.now(timezone.utc)
    return now + timedelta(milliseconds=ttl)


class ResponseCache(ABC):
    """Abstract base class for entity-indexed response caches."""

    backend_name: str = "base"

    def __init__(self) -> None:
        self._background_tasks: set[asyncio.Task[None]] = set()

    @abstractmethod
    async def set(
        self,
        key: str,
        payload: Any,
        entities: Iterable[EntityLike],
        ttl: float | None = None,
    ) -> None:
        """Store a result under ``key``, replacing any previous entry.

        Args:
            key: Cache key derived by the caller
            payload: JSON-serializable result
            entities: Entities referenced by the result
            ttl: Time to live in milliseconds; None or infinity never expires
        """
        ...

    @abstractmethod
    async def get(self, key: str) -> Any | None:
        """Return the cached result, or None on a miss.

        An entry found past its expiry is deleted in the background and
        reported as a miss.
        """
        ...

    @abstractmethod
    async def invalidate(self, selectors: Iterable[EntityLike]) -> int:
        """Delete every entry referencing any of the selectors.

        Returns:
            Number of entries deleted
        """
        ...

    @abstractmethod
    async def delete_expired_cache_entry(self) -> int:
        """Delete every entry whose expiry has passed.

        Intended to be called periodically by an external scheduler.

        Returns:
            Number of entries deleted
        """
        ...

    def _evict_in_background(self, key: str, coro: Any) -> None:
        """Run an eviction without awaiting it; failures are only logged."""
        task: asyncio.Task[None] = asyncio.create_task(coro)
        self._background_tasks.add(task)

        def _done(t: asyncio.Task[None]) -> None:
            self._background_tasks.discard(t)
            if t.cancelled():
                return
            exc = t.exception()
            if exc is not None:
                logger.warning(f"Failed to evict expired cache entry {key}: {exc}")

        task.add_done_callback(_done)

    async def wait_background_tasks(self) -> None:
        """Wait for pending evictions to finish."""
        while self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)

    async def aclose(self) -> None:
        await self.wait_background_tasks()
