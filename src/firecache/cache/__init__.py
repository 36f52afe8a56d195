"""Entity-indexed response cache.

Stores serialized results keyed by a cache key and indexed by the entities
they reference:
- set/get by cache key with TTL and lazy eviction on read
- invalidation by typename or by individual entity
- explicit sweep of expired entries, paged to respect store limits
- Firestore (array-membership index) and Redis (inverted index) backends
"""

from firecache.cache.base import DEFAULT_COLLECTION_PATH, ResponseCache
from firecache.cache.batch import chunked, delete_in_batches, delete_query_in_batches
from firecache.cache.codec import CacheEntry
from firecache.cache.entities import BuildEntityId, Entity, build_entity_id
from firecache.cache.factory import close_response_cache, create_cache, get_response_cache
from firecache.cache.firestore import FirestoreCache, close_firestore, get_firestore
from firecache.cache.redis import RedisResponseCache, close_redis, get_redis

__all__ = [
    # Contract
    "ResponseCache",
    "CacheEntry",
    "Entity",
    "BuildEntityId",
    "build_entity_id",
    "DEFAULT_COLLECTION_PATH",
    # Backends
    "FirestoreCache",
    "RedisResponseCache",
    "get_firestore",
    "close_firestore",
    "get_redis",
    "close_redis",
    # Factory
    "create_cache",
    "get_response_cache",
    "close_response_cache",
    # Batched deletion
    "chunked",
    "delete_in_batches",
    "delete_query_in_batches",
]
