"""
Scroll-driven pagination helpers built on a QueryObserver.

``InfiniteScrollTrigger`` turns sentinel visibility into next-page loads.
``locate_record`` keeps loading pages until a given record shows up, which
is how deep links such as ``/credentials?credentialId=42`` scroll to and
highlight a row that is not on page 1.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any

from console_query.services.query_cache import QueryObserver

logger = logging.getLogger(__name__)


class InfiniteScrollTrigger:
    """
    Load the next page when the list's bottom sentinel becomes visible.

    Feed it the viewport intersection state of the sentinel element; it
    requests a page only when one exists and none is loading already.
    """

    def __init__(self, observer: QueryObserver) -> None:
        self._observer = observer
        self._task: asyncio.Task | None = None

    @property
    def observer(self) -> QueryObserver:
        return self._observer

    def should_load(self, is_intersecting: bool) -> bool:
        return (
            is_intersecting
            and self._observer.has_next_page
            and not self._observer.is_fetching_next_page
        )

    def on_intersect(self, is_intersecting: bool) -> asyncio.Task | None:
        """
        Handle a sentinel intersection change.

        Returns:
            The task loading the next page, or None if nothing was requested.
        """
        if self._task is not None and not self._task.done():
            return None
        if not self.should_load(is_intersecting):
            return None
        self._task = asyncio.create_task(self._observer.fetch_next_page())
        return self._task


@dataclass(frozen=True)
class RecordLookup:
    """Outcome of ``locate_record``. Not finding the record is not an error."""

    found: bool
    record: dict[str, Any] | None = None
    index: int | None = None
    pages_loaded: int = 0


def _find(items: list[dict[str, Any]], record_id: Any, id_field: str) -> int | None:
    wanted = str(record_id)
    for index, item in enumerate(items):
        if str(item.get(id_field)) == wanted:
            return index
    return None


async def locate_record(
    observer: QueryObserver,
    record_id: Any,
    id_field: str = "id",
    max_pages: int | None = None,
) -> RecordLookup:
    """
    Load pages until the record with ``record_id`` is among the observer's items.

    Stops when the record appears, pagination is exhausted, a fetch fails, or
    ``max_pages`` pages are held. Ids are compared as strings, since deep
    links carry them as text.

    Args:
        observer: The list to search.
        record_id: Identity of the wanted record.
        id_field: Record attribute holding the identity.
        max_pages: Optional cap on the number of held pages.

    Returns:
        RecordLookup with ``found`` False when the record is not in the list.
    """
    await observer.wait_until_idle()
    while True:
        items = observer.items
        index = _find(items, record_id, id_field)
        if index is not None:
            return RecordLookup(
                found=True, record=items[index], index=index, pages_loaded=len(observer.pages),
            )
        if observer.error is not None or not observer.has_next_page:
            break
        if max_pages is not None and len(observer.pages) >= max_pages:
            break
        await observer.fetch_next_page()
        await observer.wait_until_idle()

    logger.info(
        "locate_record_not_found key=%s %s=%s pages=%s",
        observer.key,
        id_field,
        record_id,
        len(observer.pages),
    )
    return RecordLookup(found=False, pages_loaded=len(observer.pages))
