"""Response cache factory."""

from __future__ import annotations

from firecache.cache.base import ResponseCache
from firecache.cache.entities import BuildEntityId, build_entity_id
from firecache.cache.firestore import FirestoreCache, get_firestore
from firecache.cache.redis import RedisResponseCache, get_redis
from firecache.config import settings

_cache: ResponseCache | None = None


async def create_cache(
    backend: str | None = None,
    build_entity_id: BuildEntityId = build_entity_id,
) -> ResponseCache:
    """Build a cache for the configured backend using the shared client."""
    backend = (backend or settings.cache_backend).lower()
    if backend == "firestore":
        return FirestoreCache(
            await get_firestore(),
            collection_path=settings.collection_path,
            build_entity_id=build_entity_id,
            chunk_size=settings.invalidation_chunk_size,
            page_size=settings.delete_page_size,
        )
    if backend == "redis":
        return RedisResponseCache(
            await get_redis(),
            prefix=settings.collection_path,
            build_entity_id=build_entity_id,
            chunk_size=settings.invalidation_chunk_size,
            page_size=settings.delete_page_size,
        )
    raise ValueError("Unsupported cache_backend. Supported values: firestore, redis.")


async def get_response_cache() -> ResponseCache:
    """Return a singleton ResponseCache based on settings."""
    global _cache
    if _cache is None:
        _cache = await create_cache()
    return _cache


async def close_response_cache() -> None:
    """Wait for pending evictions and drop the singleton cache."""
    global _cache
    if _cache is not None:
        await _cache.aclose()
        _cache = None
