"""Shared fixtures for console query tests."""
import asyncio
import math
from collections.abc import AsyncGenerator, Callable, Iterator
from typing import Any

import httpx
import pytest
import respx

from console_query.core.config import get_settings
from console_query.schemas.pagination import ListPage, Pagination
from console_query.services.query_cache import QueryCache

API_URL = "http://console-api.test"


def make_records(count: int, start: int = 1, **fields: Any) -> list[dict[str, Any]]:
    """Records with ids start..start+count-1."""
    return [{"id": i, "name": f"record-{i}", **fields} for i in range(start, start + count)]


def make_page(
    records: list[dict[str, Any]], page: int, limit: int, total: int,
) -> ListPage:
    """One page of ``records`` (already sliced) with consistent pagination."""
    return ListPage(
        data=records,
        pagination=Pagination(
            page=page,
            limit=limit,
            total=total,
            total_pages=math.ceil(total / limit) if total else 0,
        ),
    )


class FakeListApi:
    """
    In-memory list endpoint.

    ``fetch_page`` slices ``records``; ``calls`` records the requested page
    numbers in call order.
    """

    def __init__(self, records: list[dict[str, Any]], limit: int = 20) -> None:
        self.records = records
        self.limit = limit
        self.calls: list[int] = []
        self.error: Exception | None = None

    async def fetch_page(self, page: int) -> ListPage:
        self.calls.append(page)
        await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        start = (page - 1) * self.limit
        return make_page(
            self.records[start:start + self.limit], page, self.limit, len(self.records),
        )


class ControlledListApi:
    """
    List endpoint whose responses are released by the test, one page at a time.

    Each call parks on a future; ``resolve(page, ...)`` or ``fail(page, ...)``
    completes the oldest pending call for that page.
    """

    def __init__(self) -> None:
        self.calls: list[int] = []
        self._pending: dict[int, list[asyncio.Future]] = {}

    async def fetch_page(self, page: int) -> ListPage:
        self.calls.append(page)
        future = asyncio.get_running_loop().create_future()
        self._pending.setdefault(page, []).append(future)
        return await future

    def pending(self, page: int) -> int:
        return len([f for f in self._pending.get(page, []) if not f.done()])

    def _next(self, page: int) -> asyncio.Future:
        for future in self._pending.get(page, []):
            if not future.done():
                return future
        raise AssertionError(f"No pending request for page {page}")

    def resolve(self, page: int, result: ListPage) -> None:
        self._next(page).set_result(result)

    def fail(self, page: int, error: Exception) -> None:
        self._next(page).set_exception(error)


async def settle(rounds: int = 5) -> None:
    """Let scheduled tasks run a few loop iterations."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture(autouse=True)
def clear_settings_cache() -> Iterator[None]:
    """Settings are cached per process; tests that change the environment need a fresh read."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
async def cache() -> AsyncGenerator[QueryCache, None]:
    """An isolated query cache; in-flight fetches are cancelled on teardown."""
    query_cache = QueryCache(max_idle_entries=10)
    yield query_cache
    query_cache.clear()


@pytest.fixture
def credentials_api() -> FakeListApi:
    """45 credentials served 20 per page."""
    return FakeListApi(make_records(45), limit=20)


@pytest.fixture
def controlled_api() -> ControlledListApi:
    return ControlledListApi()


@pytest.fixture
def page_factory() -> Callable[..., ListPage]:
    return make_page


@pytest.fixture
def records_factory() -> Callable[..., list[dict[str, Any]]]:
    return make_records


@pytest.fixture
def list_api_factory() -> Callable[..., FakeListApi]:
    return FakeListApi


@pytest.fixture
def settle_loop() -> Callable[..., Any]:
    """Coroutine function letting scheduled tasks run."""
    return settle


@pytest.fixture
async def http_client() -> AsyncGenerator[httpx.AsyncClient, None]:
    """HTTP client pointed at the mocked API."""
    async with httpx.AsyncClient(base_url=API_URL) as client:
        yield client


@pytest.fixture
def mock_api() -> Iterator[respx.MockRouter]:
    """Context manager for mocking API responses."""
    with respx.mock(base_url=API_URL, assert_all_called=False) as respx_mock:
        yield respx_mock
