"""Redis response cache.

Redis has no array-membership query, so the entity index is kept as
explicit inverted indexes next to each entry:

    {prefix}:entry:{key}          hash (payload, expireAt, typenames, entityIds)
    {prefix}:typename:{typename}  sorted set of cache keys, all scored 0
    {prefix}:entity:{token}       sorted set of cache keys, all scored 0
    {prefix}:expiry               sorted set of cache keys scored by expireAt (ms)

Scoring index members equally makes ZRANGEBYLEX return them in key order,
which gives invalidation the same ordered, resumable page query as the
Firestore backend. Entry and index updates are written in one MULTI/EXEC,
with the entry keys WATCHed while their current index fields are read.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

import orjson
import redis.asyncio as redis

from firecache.cache.base import DEFAULT_COLLECTION_PATH, ResponseCache, compute_expire_at
from firecache.cache.batch import (
    DEFAULT_CHUNK_SIZE,
    DEFAULT_PAGE_SIZE,
    chunked,
    delete_in_batches,
)
from firecache.cache.codec import (
    ENTITY_IDS_FIELD,
    EXPIRE_AT_FIELD,
    PAYLOAD_FIELD,
    TYPENAMES_FIELD,
    CacheEntry,
    decode_payload,
    encode_payload,
    to_epoch_ms,
)
from firecache.cache.entities import (
    BuildEntityId,
    EntityLike,
    build_entity_id,
    collect_index_fields,
    partition_selectors,
)
from firecache.config import settings
from firecache.observability.logging import LogContext
from firecache.observability.metrics import (
    record_cache_eviction,
    record_cache_hit,
    record_cache_miss,
    record_cache_set,
    record_invalidated,
    record_swept,
)

if TYPE_CHECKING:
    from redis.asyncio import Redis
    from redis.asyncio.client import Pipeline

logger = logging.getLogger(__name__)

# Module-level connection pool
_redis_client: Redis | None = None


async def get_redis() -> Redis:
    """Get or create the Redis client.

    Uses connection pooling for efficient connection management.
    """
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.from_url(  # type: ignore[no-untyped-call]
            settings.redis_url,
            encoding="utf-8",
            decode_responses=False,
        )
    return _redis_client


async def close_redis() -> None:
    """Close Redis connections."""
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None


def _text(value: bytes | str) -> str:
    return value.decode() if isinstance(value, bytes) else value


class RedisResponseCache(ResponseCache):
    """Entity-indexed response cache stored in Redis."""

    backend_name = "redis"

    def __init__(
        self,
        client: Redis,
        prefix: str = DEFAULT_COLLECTION_PATH,
        build_entity_id: BuildEntityId = build_entity_id,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> None:
        super().__init__()
        if chunk_size < 1:
            raise ValueError(f"chunk_size must be at least 1, got {chunk_size}")
        if page_size < 1:
            raise ValueError(f"page_size must be at least 1, got {page_size}")
        self.client = client
        self.prefix = prefix
        self.build_entity_id = build_entity_id
        self.chunk_size = chunk_size
        self.page_size = page_size

    # -------------------------------------------------------------------------
    # Key schema
    # -------------------------------------------------------------------------

    def entry_key(self, key: str) -> str:
        return f"{self.prefix}:entry:{key}"

    def typename_key(self, typename: str) -> str:
        return f"{self.prefix}:typename:{typename}"

    def entity_key(self, entity_id: str) -> str:
        return f"{self.prefix}:entity:{entity_id}"

    @property
    def expiry_key(self) -> str:
        return f"{self.prefix}:expiry"

    # -------------------------------------------------------------------------
    # Hash encoding
    # -------------------------------------------------------------------------

    @staticmethod
    def _to_hash(entry: CacheEntry) -> dict[str, str | bytes]:
        return {
            PAYLOAD_FIELD: entry.payload,
            EXPIRE_AT_FIELD: str(to_epoch_ms(entry.expire_at)) if entry.expire_at else "",
            TYPENAMES_FIELD: orjson.dumps(entry.typenames),
            ENTITY_IDS_FIELD: orjson.dumps(entry.entity_ids),
        }

    @staticmethod
    def _from_hash(key: str, data: dict[Any, Any]) -> CacheEntry:
        fields = {_text(k): v for k, v in data.items()}
        return CacheEntry.from_document(
            key,
            {
                PAYLOAD_FIELD: _text(fields.get(PAYLOAD_FIELD, b"")),
                EXPIRE_AT_FIELD: fields.get(EXPIRE_AT_FIELD),
                TYPENAMES_FIELD: orjson.loads(fields.get(TYPENAMES_FIELD) or b"[]"),
                ENTITY_IDS_FIELD: orjson.loads(fields.get(ENTITY_IDS_FIELD) or b"[]"),
            },
        )

    async def _index_fields(self, keys: Sequence[str]) -> list[tuple[list[str], list[str]]]:
        """Current (typenames, entity_ids) of each key; empty for missing keys."""
        async with self.client.pipeline(transaction=False) as pipe:
            for key in keys:
                pipe.hmget(self.entry_key(key), TYPENAMES_FIELD, ENTITY_IDS_FIELD)
            rows = await pipe.execute()

        return [
            (
                orjson.loads(typenames) if typenames else [],
                orjson.loads(entity_ids) if entity_ids else [],
            )
            for typenames, entity_ids in rows
        ]

    # -------------------------------------------------------------------------
    # Point read/write
    # -------------------------------------------------------------------------

    async def set(
        self,
        key: str,
        payload: Any,
        entities: Iterable[EntityLike],
        ttl: float | None = None,
    ) -> None:
        typenames, entity_ids = collect_index_fields(entities, self.build_entity_id)
        entry = CacheEntry(
            key=key,
            payload=encode_payload(payload),
            expire_at=compute_expire_at(ttl),
            typenames=typenames,
            entity_ids=entity_ids,
        )

        async def write(pipe: Pipeline) -> None:
            # Entry key is WATCHed; a concurrent write makes EXEC retry
            [(old_typenames, old_entity_ids)] = await self._index_fields([key])
            pipe.multi()

            # Drop index memberships of the entry being replaced
            for typename in set(old_typenames) - set(typenames):
                pipe.zrem(self.typename_key(typename), key)
            for entity_id in set(old_entity_ids) - set(entity_ids):
                pipe.zrem(self.entity_key(entity_id), key)

            pipe.hset(self.entry_key(key), mapping=self._to_hash(entry))
            for typename in typenames:
                pipe.zadd(self.typename_key(typename), {key: 0})
            for entity_id in entity_ids:
                pipe.zadd(self.entity_key(entity_id), {key: 0})

            if entry.expire_at is not None:
                pipe.zadd(self.expiry_key, {key: to_epoch_ms(entry.expire_at)})
            else:
                pipe.zrem(self.expiry_key, key)

        await self.client.transaction(write, self.entry_key(key))

        record_cache_set(self.backend_name)

    async def get(self, key: str) -> Any | None:
        data = await self.client.hgetall(self.entry_key(key))
        if not data:
            record_cache_miss(self.backend_name)
            return None

        entry = self._from_hash(key, data)
        if entry.is_expired():
            self._evict_in_background(key, self.delete_entries([key]))
            record_cache_eviction(self.backend_name)
            record_cache_miss(self.backend_name)
            return None

        record_cache_hit(self.backend_name)
        return decode_payload(entry.payload)

    # -------------------------------------------------------------------------
    # Bulk deletion
    # -------------------------------------------------------------------------

    async def delete_entries(self, keys: Sequence[str], indexes: Sequence[str] = ()) -> None:
        """Delete entries and their index memberships in one transaction.

        Keys are also removed from ``indexes``, which clears members left
        behind by an entry that no longer exists.
        """
        if not keys:
            return

        async def remove(pipe: Pipeline) -> None:
            index_fields = await self._index_fields(keys)
            pipe.multi()
            for key, (typenames, entity_ids) in zip(keys, index_fields):
                pipe.delete(self.entry_key(key))
                for typename in typenames:
                    pipe.zrem(self.typename_key(typename), key)
                for entity_id in entity_ids:
                    pipe.zrem(self.entity_key(entity_id), key)
            for index_key in indexes:
                pipe.zrem(index_key, *keys)
            pipe.zrem(self.expiry_key, *keys)

        await self.client.transaction(remove, *(self.entry_key(key) for key in keys))

    async def _delete_by_index(self, index_keys: list[str]) -> int:
        """Delete every entry that is a member of any of the index sets."""

        async def fetch_page(cursor: str | None, limit: int) -> list[str]:
            lower = "-" if cursor is None else f"({cursor}"
            async with self.client.pipeline(transaction=False) as pipe:
                for index_key in index_keys:
                    pipe.zrangebylex(index_key, lower, "+", start=0, num=limit)
                results = await pipe.execute()
            members = sorted({_text(member) for result in results for member in result})
            return members[:limit]

        async def delete_page(keys: Sequence[str]) -> None:
            await self.delete_entries(keys, indexes=index_keys)

        return await delete_in_batches(
            fetch_page, delete_page, lambda key: key, page_size=self.page_size
        )

    async def invalidate(self, selectors: Iterable[EntityLike]) -> int:
        typenames, entity_ids = partition_selectors(selectors, self.build_entity_id)

        with LogContext(operation="invalidate", collection=self.prefix):
            deleted = 0
            try:
                for chunk in chunked(typenames, self.chunk_size):
                    deleted += await self._delete_by_index(
                        [self.typename_key(typename) for typename in chunk]
                    )
                for chunk in chunked(entity_ids, self.chunk_size):
                    deleted += await self._delete_by_index(
                        [self.entity_key(entity_id) for entity_id in chunk]
                    )
            except Exception as e:
                logger.error(
                    f"Invalidation of {len(typenames)} typenames and "
                    f"{len(entity_ids)} entities failed and may be incomplete: {e}"
                )
                raise

            logger.info(
                f"Invalidated {deleted} cache entries "
                f"({len(typenames)} typenames, {len(entity_ids)} entities)"
            )

        record_invalidated(self.backend_name, deleted)
        return deleted

    async def delete_expired_cache_entry(self) -> int:
        now_ms = to_epoch_ms(datetime.now(timezone.utc))

        async def fetch_page(cursor: float | None, limit: int) -> list[tuple[str, float]]:
            # Inclusive lower bound: entries sharing the cursor score were
            # deleted with the previous page, so they cannot repeat.
            lower = "-inf" if cursor is None else cursor
            rows = await self.client.zrangebyscore(
                self.expiry_key, lower, f"({now_ms}", start=0, num=limit, withscores=True
            )
            return [(_text(member), score) for member, score in rows]

        async def delete_page(rows: Sequence[tuple[str, float]]) -> None:
            await self.delete_entries([key for key, _ in rows])

        with LogContext(operation="sweep", collection=self.prefix):
            try:
                deleted = await delete_in_batches(
                    fetch_page, delete_page, lambda row: row[1], page_size=self.page_size
                )
            except Exception as e:
                logger.error(f"Expiry sweep failed and may be incomplete: {e}")
                raise

            logger.info(f"Swept {deleted} expired cache entries")

        record_swept(self.backend_name, deleted)
        return deleted
