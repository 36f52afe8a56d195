"""Paginated batch deletion.

Document stores bound both the size of a membership predicate ("IN" /
"array-contains-any" lists) and the number of writes in one atomic batch.
Deleting everything that matches a filter therefore runs as a loop:

1. Fetch up to ``page_size`` matching items after the cursor
2. Stop when the page is empty
3. Delete the page as one atomic batch
4. Move the cursor to the sort key of the last item, yield, repeat

Rerunning after a failure resumes where the previous run stopped, since
already-deleted items no longer match.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import TYPE_CHECKING, Any, TypeVar

if TYPE_CHECKING:
    from google.cloud.firestore import AsyncClient, AsyncQuery, DocumentSnapshot

logger = logging.getLogger(__name__)

# Maximum writes per atomic batch
DEFAULT_PAGE_SIZE = 500

# Maximum values in one membership predicate
DEFAULT_CHUNK_SIZE = 10

T = TypeVar("T")

FetchPage = Callable[[Any, int], Awaitable[Sequence[T]]]
DeletePage = Callable[[Sequence[T]], Awaitable[None]]
CursorOf = Callable[[T], Any]


def chunked(items: Sequence[T], size: int) -> list[list[T]]:
    """Split items into consecutive lists of at most ``size`` elements."""
    if size < 1:
        raise ValueError(f"Chunk size must be at least 1, got {size}")
    return [list(items[i : i + size]) for i in range(0, len(items), size)]


async def delete_in_batches(
    fetch_page: FetchPage[T],
    delete_page: DeletePage[T],
    cursor_of: CursorOf[T],
    page_size: int = DEFAULT_PAGE_SIZE,
) -> int:
    """Delete every item a paged query yields, one atomic page at a time.

    Args:
        fetch_page: Returns up to ``limit`` items after ``cursor`` (None = start)
        delete_page: Deletes one page atomically; errors propagate
        cursor_of: Sort key of an item, used to resume after it
        page_size: Maximum items per page

    Returns:
        Number of items deleted
    """
    if page_size < 1:
        raise ValueError(f"Page size must be at least 1, got {page_size}")

    cursor: Any = None
    deleted = 0
    pages = 0

    while True:
        page = await fetch_page(cursor, page_size)
        if not page:
            break

        await delete_page(page)
        deleted += len(page)
        pages += 1
        logger.debug(f"Deleted page {pages} ({len(page)} items, {deleted} total)")

        cursor = cursor_of(page[-1])
        # Let other tasks run between pages
        await asyncio.sleep(0)

    return deleted


def document_cursor(snapshot: DocumentSnapshot) -> DocumentSnapshot:
    """Cursor for ordered queries: the snapshot itself.

    Firestore appends an implicit document-id ordering to snapshot cursors,
    so paging resumes on (order value, id) even when order values tie.
    """
    return snapshot


async def delete_query_in_batches(
    client: AsyncClient,
    query: AsyncQuery,
    cursor_of: Callable[[DocumentSnapshot], Any] = document_cursor,
    page_size: int = DEFAULT_PAGE_SIZE,
) -> int:
    """Delete every document matched by an ordered Firestore query.

    The query must carry an ``order_by`` whose values ``cursor_of`` returns,
    so ``start_after`` can resume from the last deleted document.
    """

    async def fetch_page(cursor: Any, limit: int) -> Sequence[DocumentSnapshot]:
        page_query = query.limit(limit)
        if cursor is not None:
            page_query = page_query.start_after(cursor)
        return await page_query.get()

    async def delete_page(snapshots: Sequence[DocumentSnapshot]) -> None:
        batch = client.batch()
        for snapshot in snapshots:
            batch.delete(snapshot.reference)
        await batch.commit()

    return await delete_in_batches(fetch_page, delete_page, cursor_of, page_size)
