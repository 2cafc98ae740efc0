"""
Incremental, flicker-free cache of paginated list queries.

One ``CacheEntry`` per distinct query (resource kind + filters + search +
order, never page or limit) owns every page fetched for that query. Consumers
read entries through ``QueryObserver`` objects and never touch entry state.

Rules the cache keeps:

- Page 1 is fetched as soon as a key is first observed.
- ``items`` is the last committed snapshot. A refetch (user triggered or from
  invalidation) stages new pages separately and swaps them in with one
  assignment once they have all arrived, so a pending request never empties
  the list.
- Page results are applied by page index, not arrival order.
- A refetch supersedes every in-flight fetch of the same entry. Results of a
  superseded fetch are discarded (generation check), and the tasks are cancelled.
- Errors are stored on the entry; items stay as they were. Nothing retries
  on its own.

Everything runs on one asyncio event loop; ``observe()`` must be called with
the loop running.
"""
import asyncio
import hashlib
import json
import logging
import time
from collections import OrderedDict
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, Literal

from console_query.schemas.filters import AdvancedFilterRequest
from console_query.schemas.pagination import ListPage
from console_query.services.exceptions import ListFetchError
from console_query.shared.api_errors import to_fetch_error

logger = logging.getLogger(__name__)

FetchPage = Callable[[int], Awaitable[ListPage]]
Listener = Callable[[], None]
QueryMode = Literal["advanced", "simple"]


# =============================================================================
# Keys
# =============================================================================


def canonical_json(data: Any) -> str:
    """Serialize JSON-shaped data with sorted keys so equal structures give equal text."""
    return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


@dataclass(frozen=True)
class QueryKey:
    """Stable identity of a list query."""

    resource: str
    mode: QueryMode
    fingerprint: str

    def __str__(self) -> str:
        return f"{self.resource}:{self.mode}:{self.fingerprint[:12]}"


def make_query_key(
    resource: str,
    request: AdvancedFilterRequest,
    mode: QueryMode = "advanced",
    scope: Mapping[str, str | int] | None = None,
) -> QueryKey:
    """
    Build the cache key for a request.

    Only filters, search, order and scope take part; page and limit do not,
    so one key owns all of its pages. The fingerprint is a sha256 over
    canonical JSON, which makes it independent of dict key order.
    """
    payload = request.to_payload()
    identity = {
        "filters": payload.get("filters"),
        "search": payload.get("search"),
        "orderBy": payload.get("orderBy"),
        "scope": {k: str(v) for k, v in scope.items()} if scope else None,
    }
    digest = hashlib.sha256(canonical_json(identity).encode("utf-8")).hexdigest()
    return QueryKey(resource=resource, mode=mode, fingerprint=digest)


# =============================================================================
# Entries
# =============================================================================


@dataclass(eq=False)
class CacheEntry:
    """All pages fetched for one query key, plus fetch state."""

    key: QueryKey
    fetch_page: FetchPage
    pages: list[ListPage] = field(default_factory=list)
    error: ListFetchError | None = None
    is_fetching: bool = False
    is_fetching_next_page: bool = False
    is_stale: bool = False
    updated_at: float | None = None
    generation: int = 0
    snapshot: tuple[dict[str, Any], ...] = ()
    observers: list["QueryObserver"] = field(default_factory=list)
    refetch_task: asyncio.Task | None = None
    next_page_task: asyncio.Task | None = None

    @property
    def items(self) -> list[dict[str, Any]]:
        """Records of every held page, in page order."""
        return list(self.snapshot)

    @property
    def has_data(self) -> bool:
        return bool(self.pages)

    @property
    def has_next_page(self) -> bool:
        """Derived from the most recently fetched page only."""
        return bool(self.pages) and self.pages[-1].pagination.has_next_page

    @property
    def is_loading(self) -> bool:
        """First load in flight: fetching with no page held yet."""
        return self.is_fetching and not self.pages

    @property
    def total(self) -> int | None:
        return self.pages[-1].pagination.total if self.pages else None

    def in_flight(self) -> list[asyncio.Task]:
        return [t for t in (self.refetch_task, self.next_page_task) if t and not t.done()]

    def cancel_fetches(self) -> bool:
        """
        Cancel in-flight fetches and bump the generation.

        Returns:
            True if a full (page 1 onward) fetch was cancelled.
        """
        cancelled_full = self.refetch_task is not None and not self.refetch_task.done()
        for task in self.in_flight():
            task.cancel()
        self.generation += 1
        self.is_fetching = False
        self.is_fetching_next_page = False
        self.refetch_task = None
        self.next_page_task = None
        return cancelled_full

    def notify(self) -> None:
        for observer in list(self.observers):
            observer._notify()


# =============================================================================
# Cache
# =============================================================================


class QueryCache:
    """
    Owner of every cache entry.

    Construct one per application (or per test) and pass it to consumers.

    Args:
        max_idle_entries: How many unobserved entries to keep (LRU). Zero drops
            an entry as soon as its last observer goes away.
        stale_time: Seconds a committed entry counts as fresh. An idle entry
            older than this is refetched in the background when observed again.
        clock: Monotonic time source.
    """

    def __init__(
        self,
        max_idle_entries: int = 50,
        stale_time: float = 0.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._entries: dict[QueryKey, CacheEntry] = {}
        self._idle: OrderedDict[QueryKey, None] = OrderedDict()
        self._max_idle_entries = max_idle_entries
        self._stale_time = stale_time
        self._clock = clock

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: QueryKey) -> bool:
        return key in self._entries

    def observe(self, key: QueryKey, fetch_page: FetchPage) -> "QueryObserver":
        """Start observing a query; page 1 is requested if the key has no data."""
        observer = QueryObserver(self)
        observer.set_query(key, fetch_page)
        return observer

    def get_entry(self, key: QueryKey) -> CacheEntry | None:
        return self._entries.get(key)

    def entries_for(self, resource: str) -> list[CacheEntry]:
        """All entries (observed or idle) of a resource kind."""
        return [e for e in self._entries.values() if e.key.resource == resource]

    def invalidate(self, resource: str) -> int:
        """
        Mark every entry of a resource kind stale.

        Observed entries are refetched in the background right away, keeping
        their current items until the new pages arrive; idle entries are
        refetched when observed again.

        Returns:
            Number of entries marked stale.
        """
        entries = self.entries_for(resource)
        for entry in entries:
            entry.is_stale = True
            if entry.observers:
                self._start_refetch(entry)
        logger.info("query_cache_invalidate resource=%s entries=%s", resource, len(entries))
        return len(entries)

    def clear(self) -> None:
        """Cancel all fetches and drop every entry."""
        for entry in self._entries.values():
            entry.cancel_fetches()
        self._entries.clear()
        self._idle.clear()

    # -- observer bookkeeping -------------------------------------------------

    def _acquire(
        self, key: QueryKey, fetch_page: FetchPage, observer: "QueryObserver",
    ) -> CacheEntry:
        entry = self._entries.get(key)
        if entry is None:
            logger.debug("query_cache_miss key=%s", key)
            entry = CacheEntry(key=key, fetch_page=fetch_page)
            self._entries[key] = entry
            entry.observers.append(observer)
            self._start_refetch(entry)
            return entry

        logger.debug("query_cache_hit key=%s", key)
        was_idle = not entry.observers
        self._idle.pop(key, None)
        entry.fetch_page = fetch_page
        entry.observers.append(observer)
        needs_fetch = entry.is_stale or not entry.pages or (was_idle and self._is_expired(entry))
        if needs_fetch and not entry.is_fetching:
            self._start_refetch(entry)
        return entry

    def _release(self, entry: CacheEntry, observer: "QueryObserver") -> None:
        if observer in entry.observers:
            entry.observers.remove(observer)
        if entry.observers:
            return
        # Nobody shows this key any more: in-flight responses are superseded
        if entry.cancel_fetches():
            entry.is_stale = True
        self._idle[entry.key] = None
        self._idle.move_to_end(entry.key)
        while len(self._idle) > self._max_idle_entries:
            evicted_key, _ = self._idle.popitem(last=False)
            evicted = self._entries.pop(evicted_key, None)
            if evicted is not None:
                evicted.cancel_fetches()
            logger.debug("query_cache_evict key=%s", evicted_key)

    def _is_expired(self, entry: CacheEntry) -> bool:
        if entry.updated_at is None:
            return True
        return self._clock() - entry.updated_at >= self._stale_time

    # -- fetching -------------------------------------------------------------

    def _start_refetch(self, entry: CacheEntry) -> asyncio.Task:
        """Supersede in-flight fetches and reload pages 1..n of the entry."""
        entry.cancel_fetches()
        entry.is_fetching = True
        generation = entry.generation
        page_count = max(1, len(entry.pages))
        entry.refetch_task = asyncio.create_task(
            self._run_refetch(entry, generation, page_count),
            name=f"refetch:{entry.key}",
        )
        entry.notify()
        return entry.refetch_task

    def _start_next_page(self, entry: CacheEntry) -> asyncio.Task | None:
        """Request the page after the last held one, unless pointless or already running."""
        if entry.is_fetching_next_page and entry.next_page_task is not None:
            return entry.next_page_task
        if entry.is_fetching or not entry.has_next_page:
            return None
        page_number = len(entry.pages) + 1
        entry.is_fetching = True
        entry.is_fetching_next_page = True
        entry.next_page_task = asyncio.create_task(
            self._run_next_page(entry, entry.generation, page_number),
            name=f"next_page:{entry.key}:{page_number}",
        )
        entry.notify()
        return entry.next_page_task

    async def _fetch(self, entry: CacheEntry, page_number: int) -> tuple[int, ListPage]:
        logger.debug("query_cache_fetch key=%s page=%s", entry.key, page_number)
        page = await entry.fetch_page(page_number)
        return page_number, page

    async def _run_refetch(self, entry: CacheEntry, generation: int, page_count: int) -> None:
        # Issued in increasing page order; committed by page index once complete
        fetches = [
            asyncio.create_task(self._fetch(entry, n)) for n in range(1, page_count + 1)
        ]
        staged: dict[int, ListPage] = {}
        try:
            for next_done in asyncio.as_completed(fetches):
                page_number, page = await next_done
                staged[page_number] = page
                run = _contiguous_run(staged, page_count)
                if run is not None:
                    break
            else:
                run = None
        except Exception as e:
            if generation == entry.generation:
                self._fail(entry, e)
            return
        finally:
            for task in fetches:
                if not task.done():
                    task.cancel()

        if generation != entry.generation or run is None:
            logger.debug("query_cache_discard_superseded key=%s", entry.key)
            return
        self._commit(entry, run)

    async def _run_next_page(self, entry: CacheEntry, generation: int, page_number: int) -> None:
        try:
            _, page = await self._fetch(entry, page_number)
        except Exception as e:
            if generation == entry.generation:
                self._fail(entry, e)
            return

        if generation != entry.generation or len(entry.pages) != page_number - 1:
            logger.debug(
                "query_cache_discard_superseded key=%s page=%s", entry.key, page_number,
            )
            return
        entry.pages = [*entry.pages, page]
        entry.snapshot = entry.snapshot + tuple(page.data)
        entry.error = None
        entry.is_fetching = False
        entry.is_fetching_next_page = False
        entry.next_page_task = None
        entry.notify()

    def _commit(self, entry: CacheEntry, pages: list[ListPage]) -> None:
        entry.pages = pages
        entry.snapshot = tuple(record for page in pages for record in page.data)
        entry.error = None
        entry.is_stale = False
        entry.is_fetching = False
        entry.is_fetching_next_page = False
        entry.refetch_task = None
        entry.updated_at = self._clock()
        logger.debug(
            "query_cache_commit key=%s pages=%s items=%s", entry.key, len(pages), len(entry.snapshot),
        )
        entry.notify()

    def _fail(self, entry: CacheEntry, error: Exception) -> None:
        entry.error = to_fetch_error(error, entry.key.resource)
        entry.is_fetching = False
        entry.is_fetching_next_page = False
        entry.refetch_task = None
        entry.next_page_task = None
        logger.warning(
            "query_cache_fetch_failed key=%s category=%s error=%s",
            entry.key,
            entry.error.category,
            entry.error.message,
        )
        entry.notify()


def _contiguous_run(staged: dict[int, ListPage], page_count: int) -> list[ListPage] | None:
    """
    Pages 1..k once they have all arrived, where k is the last page or page_count.

    Returns None while a page before the end of the run is still missing.
    """
    run: list[ListPage] = []
    for number in range(1, page_count + 1):
        page = staged.get(number)
        if page is None:
            return None
        run.append(page)
        if not page.pagination.has_next_page:
            break
    return run


# =============================================================================
# Observers
# =============================================================================


class QueryObserver:
    """
    A consumer's view of one query at a time.

    Switching to another key with ``set_query`` keeps the previous items
    visible (``is_placeholder_data``) until the new key has committed data.
    """

    def __init__(self, cache: QueryCache) -> None:
        self._cache = cache
        self._entry: CacheEntry | None = None
        self._placeholder: tuple[dict[str, Any], ...] | None = None
        self._listeners: list[Listener] = []

    @property
    def key(self) -> QueryKey | None:
        return self._entry.key if self._entry else None

    @property
    def entry(self) -> CacheEntry:
        if self._entry is None:
            raise RuntimeError("Observer is closed or has no query")
        return self._entry

    def set_query(self, key: QueryKey, fetch_page: FetchPage) -> None:
        """Point the observer at a (possibly new) query key."""
        if self._entry is not None and self._entry.key == key:
            self._entry.fetch_page = fetch_page
            return
        previous = self._entry
        if previous is not None:
            self._placeholder = tuple(self.items)
            self._cache._release(previous, self)
        self._entry = self._cache._acquire(key, fetch_page, self)
        self._notify()

    def close(self) -> None:
        """Stop observing; the entry becomes idle if nobody else observes it."""
        if self._entry is not None:
            self._cache._release(self._entry, self)
            self._entry = None
        self._listeners.clear()

    # -- state ------------------------------------------------------------------

    @property
    def is_placeholder_data(self) -> bool:
        """True while showing the previous key's items because the new key has none yet."""
        return self._placeholder is not None and not self.entry.has_data

    @property
    def items(self) -> list[dict[str, Any]]:
        if self._entry is None:
            return []
        if self.is_placeholder_data:
            return list(self._placeholder or ())
        return self._entry.items

    @property
    def pages(self) -> list[ListPage]:
        return list(self.entry.pages)

    @property
    def total(self) -> int | None:
        return self.entry.total

    @property
    def is_loading(self) -> bool:
        """First load with nothing at all to show."""
        return self.entry.is_loading and not self.is_placeholder_data

    @property
    def is_fetching(self) -> bool:
        return self.entry.is_fetching

    @property
    def is_fetching_next_page(self) -> bool:
        return self.entry.is_fetching_next_page

    @property
    def has_next_page(self) -> bool:
        return self.entry.has_next_page

    @property
    def error(self) -> ListFetchError | None:
        return self.entry.error

    # -- operations ------------------------------------------------------------

    async def fetch_next_page(self) -> None:
        """
        Load the next page.

        No-op when there is no next page or a full fetch is running; a call
        made while the next page is already loading waits for that request
        instead of issuing another.
        """
        task = self._cache._start_next_page(self.entry)
        if task is not None:
            await asyncio.wait({task})

    async def refetch(self) -> None:
        """Reload every held page; errors end up in ``error``."""
        task = self._cache._start_refetch(self.entry)
        await asyncio.wait({task})

    async def wait_until_idle(self) -> None:
        """Wait until no fetch is in flight for the observed entry."""
        while self._entry is not None:
            pending = self._entry.in_flight()
            if not pending:
                return
            await asyncio.wait(pending)

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        """
        Call ``listener`` whenever the observed state changes.

        Returns:
            A function that removes the listener.
        """
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception:
                logger.exception("query_observer_listener_failed key=%s", self.key)
