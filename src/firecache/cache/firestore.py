"""Firestore response cache.

Each cache entry is one document in the cache collection, keyed by the cache
key. The ``typenames`` and ``entityIds`` array fields index the entities the
cached result references, so invalidation is a set of
``array_contains_any`` queries fed into paginated batch deletes.

Example:
    client = await get_firestore()
    cache = FirestoreCache(client)

    await cache.set("q1", {"users": [...]}, [{"typename": "User", "id": 1}], ttl=60_000)
    await cache.get("q1")
    await cache.invalidate([{"typename": "User", "id": 1}])
    await cache.delete_expired_cache_entry()
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from google.cloud import firestore
from google.cloud.firestore_v1.base_query import FieldFilter
from google.cloud.firestore_v1.field_path import FieldPath

from firecache.cache.base import DEFAULT_COLLECTION_PATH, ResponseCache, compute_expire_at
from firecache.cache.batch import (
    DEFAULT_CHUNK_SIZE,
    DEFAULT_PAGE_SIZE,
    chunked,
    delete_query_in_batches,
)
from firecache.cache.codec import (
    ENTITY_IDS_FIELD,
    EXPIRE_AT_FIELD,
    TYPENAMES_FIELD,
    CacheEntry,
    decode_payload,
    encode_payload,
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
    from google.cloud.firestore import AsyncClient, AsyncCollectionReference

logger = logging.getLogger(__name__)

# Module-level client
_firestore_client: AsyncClient | None = None


async def get_firestore() -> AsyncClient:
    """Get or create the Firestore client.

    The emulator is used when FIRESTORE_EMULATOR_HOST is set. The client
    library only reads it from the process environment, so a value loaded
    from settings is exported there first.
    """
    global _firestore_client
    if _firestore_client is None:
        if settings.firestore_emulator_host:
            os.environ["FIRESTORE_EMULATOR_HOST"] = settings.firestore_emulator_host
        _firestore_client = firestore.AsyncClient(
            project=settings.firestore_project,
            database=settings.firestore_database,
        )
    return _firestore_client


async def close_firestore() -> None:
    """Drop the module-level Firestore client so the next call creates a new one."""
    global _firestore_client
    _firestore_client = None


class FirestoreCache(ResponseCache):
    """Entity-indexed response cache stored in a Firestore collection."""

    backend_name = "firestore"

    def __init__(
        self,
        client: AsyncClient,
        collection_path: str = DEFAULT_COLLECTION_PATH,
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
        self.collection_path = collection_path
        self.build_entity_id = build_entity_id
        self.chunk_size = chunk_size
        self.page_size = page_size

    @property
    def collection(self) -> AsyncCollectionReference:
        return self.client.collection(self.collection_path)

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
        await self.collection.document(key).set(entry.to_document())
        record_cache_set(self.backend_name)

    async def get(self, key: str) -> Any | None:
        ref = self.collection.document(key)
        snapshot = await ref.get()
        if not snapshot.exists:
            record_cache_miss(self.backend_name)
            return None

        data = snapshot.to_dict()
        if not data:
            record_cache_miss(self.backend_name)
            return None

        entry = CacheEntry.from_document(key, data)
        if entry.is_expired():
            self._evict_in_background(key, ref.delete())
            record_cache_eviction(self.backend_name)
            record_cache_miss(self.backend_name)
            return None

        record_cache_hit(self.backend_name)
        return decode_payload(entry.payload)

    # -------------------------------------------------------------------------
    # Bulk deletion
    # -------------------------------------------------------------------------

    async def _delete_by_membership(self, field: str, values: list[str]) -> int:
        deleted = 0
        for chunk in chunked(values, self.chunk_size):
            query = self.collection.where(
                filter=FieldFilter(field, "array_contains_any", chunk)
            ).order_by(FieldPath.document_id(), direction=firestore.Query.ASCENDING)
            deleted += await delete_query_in_batches(
                self.client, query, page_size=self.page_size
            )
        return deleted

    async def invalidate(self, selectors: Iterable[EntityLike]) -> int:
        typenames, entity_ids = partition_selectors(selectors, self.build_entity_id)

        with LogContext(operation="invalidate", collection=self.collection_path):
            try:
                deleted = await self._delete_by_membership(TYPENAMES_FIELD, typenames)
                deleted += await self._delete_by_membership(ENTITY_IDS_FIELD, entity_ids)
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
        now = datetime.now(timezone.utc)
        query = self.collection.where(filter=FieldFilter(EXPIRE_AT_FIELD, "<", now)).order_by(
            EXPIRE_AT_FIELD, direction=firestore.Query.ASCENDING
        )

        with LogContext(operation="sweep", collection=self.collection_path):
            try:
                deleted = await delete_query_in_batches(
                    self.client, query, page_size=self.page_size
                )
            except Exception as e:
                logger.error(f"Expiry sweep failed and may be incomplete: {e}")
                raise

            logger.info(f"Swept {deleted} expired cache entries")

        record_swept(self.backend_name, deleted)
        return deleted
