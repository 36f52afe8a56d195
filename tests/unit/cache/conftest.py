"""In-memory Firestore stand-ins for cache unit tests.

Implements the slice of the async Firestore API the cache uses: document
set/get/delete, ``where(filter=FieldFilter(...))`` with ``array_contains_any``
and ``<``, ``order_by``, ``limit``, ``start_after`` and write batches.
"""

from __future__ import annotations

import copy
from typing import Any

import pytest
import pytest_asyncio

from firecache.cache.firestore import FirestoreCache

DOCUMENT_ID = "__name__"


class FakeSnapshot:
    def __init__(self, reference: FakeDocumentRef, data: dict[str, Any] | None) -> None:
        self.reference = reference
        self.id = reference.id
        self._data = data

    @property
    def exists(self) -> bool:
        return self._data is not None

    def to_dict(self) -> dict[str, Any] | None:
        return copy.deepcopy(self._data) if self._data is not None else None

    def get(self, field: str) -> Any:
        if field == DOCUMENT_ID:
            return self.id
        assert self._data is not None
        return self._data[field]


class FakeDocumentRef:
    def __init__(self, firestore: FakeFirestore, path: str, doc_id: str) -> None:
        self._firestore = firestore
        self.path = path
        self.id = doc_id

    async def set(self, data: dict[str, Any]) -> None:
        self._firestore.documents(self.path)[self.id] = copy.deepcopy(data)

    async def get(self) -> FakeSnapshot:
        return FakeSnapshot(self, self._firestore.documents(self.path).get(self.id))

    async def delete(self) -> None:
        self._firestore.deletes += 1
        if self._firestore.fail_deletes:
            raise RuntimeError("delete unavailable")
        self._firestore.documents(self.path).pop(self.id, None)


class FakeQuery:
    def __init__(
        self,
        collection: FakeCollection,
        filters: tuple[Any, ...] = (),
        order: str | None = None,
        limit: int | None = None,
        after: Any = None,
    ) -> None:
        self._collection = collection
        self._filters = filters
        self._order = order
        self._limit = limit
        self._after = after

    def _copy(self, **changes: Any) -> FakeQuery:
        params = {
            "filters": self._filters,
            "order": self._order,
            "limit": self._limit,
            "after": self._after,
        }
        params.update(changes)
        return FakeQuery(self._collection, **params)

    def where(self, *, filter: Any) -> FakeQuery:
        return self._copy(filters=self._filters + (filter,))

    def order_by(self, field_path: str, direction: str = "ASCENDING") -> FakeQuery:
        assert direction == "ASCENDING"
        return self._copy(order=field_path)

    def limit(self, count: int) -> FakeQuery:
        return self._copy(limit=count)

    def start_after(self, cursor: Any) -> FakeQuery:
        return self._copy(after=cursor)

    @staticmethod
    def _matches(data: dict[str, Any], flt: Any) -> bool:
        value = data.get(flt.field_path)
        if flt.op_string == "array_contains_any":
            assert len(flt.value) <= FakeFirestore.MEMBERSHIP_LIMIT
            return bool(set(value or []) & set(flt.value))
        if flt.op_string == "<":
            return value is not None and value < flt.value
        raise NotImplementedError(flt.op_string)

    def _position(self, snapshot: FakeSnapshot) -> tuple[Any, ...]:
        return (snapshot.get(self._order), snapshot.id)  # type: ignore[arg-type]

    def _is_after_cursor(self, snapshot: FakeSnapshot) -> bool:
        # Snapshot cursors carry the implicit document-id tiebreak; field
        # value cursors compare on the ordered field alone.
        if isinstance(self._after, FakeSnapshot):
            return self._position(snapshot) > self._position(self._after)
        return snapshot.get(self._order) > self._after[self._order]  # type: ignore[arg-type]

    async def get(self) -> list[FakeSnapshot]:
        firestore = self._collection.firestore
        firestore.queries += 1
        docs = firestore.documents(self._collection.path)

        snapshots = [
            FakeSnapshot(self._collection.document(doc_id), copy.deepcopy(data))
            for doc_id, data in docs.items()
            if all(self._matches(data, flt) for flt in self._filters)
        ]
        assert self._order is not None, "paged queries must be ordered"
        snapshots.sort(key=self._position)

        if self._after is not None:
            snapshots = [s for s in snapshots if self._is_after_cursor(s)]
        if self._limit is not None:
            snapshots = snapshots[: self._limit]
        return snapshots


class FakeCollection(FakeQuery):
    def __init__(self, firestore: FakeFirestore, path: str) -> None:
        self.firestore = firestore
        self.path = path
        super().__init__(self)

    def document(self, doc_id: str) -> FakeDocumentRef:
        return FakeDocumentRef(self.firestore, self.path, doc_id)


class FakeWriteBatch:
    def __init__(self, firestore: FakeFirestore) -> None:
        self._firestore = firestore
        self._deletes: list[FakeDocumentRef] = []

    def delete(self, reference: FakeDocumentRef) -> None:
        self._deletes.append(reference)

    async def commit(self) -> None:
        assert len(self._deletes) <= FakeFirestore.BATCH_LIMIT
        if self._firestore.fail_commits:
            self._firestore.fail_commits -= 1
            raise RuntimeError("commit failed")
        self._firestore.commits += 1
        for reference in self._deletes:
            self._firestore.documents(reference.path).pop(reference.id, None)


class FakeFirestore:
    """Stand-in for google.cloud.firestore.AsyncClient."""

    MEMBERSHIP_LIMIT = 10
    BATCH_LIMIT = 500

    def __init__(self) -> None:
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}
        self.queries = 0
        self.commits = 0
        self.deletes = 0
        self.fail_commits = 0
        self.fail_deletes = False

    def documents(self, path: str) -> dict[str, dict[str, Any]]:
        return self._collections.setdefault(path, {})

    def collection(self, path: str) -> FakeCollection:
        return FakeCollection(self, path)

    def batch(self) -> FakeWriteBatch:
        return FakeWriteBatch(self)


@pytest.fixture
def fake_firestore() -> FakeFirestore:
    return FakeFirestore()


@pytest_asyncio.fixture
async def firestore_cache(fake_firestore: FakeFirestore):
    cache = FirestoreCache(fake_firestore)  # type: ignore[arg-type]
    yield cache
    await cache.aclose()
