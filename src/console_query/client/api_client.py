"""HTTP client helpers for the console REST API list endpoints."""

from collections.abc import Mapping
from typing import Any

import httpx

from console_query.core.config import Settings, get_settings
from console_query.schemas.filters import AdvancedFilterRequest
from console_query.schemas.metadata import FilterMetadata
from console_query.schemas.pagination import ListPage

REQUEST_SOURCE = "console"


def create_http_client(settings: Settings | None = None) -> httpx.AsyncClient:
    """Create an HTTP client pointed at the configured API."""
    settings = settings or get_settings()
    return httpx.AsyncClient(base_url=settings.api_url, timeout=settings.api_timeout)


def _get_headers(token: str) -> dict[str, str]:
    """Get common headers for API requests."""
    headers = {"X-Request-Source": REQUEST_SOURCE}
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return headers


async def api_get(
    client: httpx.AsyncClient,
    path: str,
    token: str,
    params: Mapping[str, Any] | None = None,
) -> Any:
    """Make an authenticated GET request to the API."""
    response = await client.get(
        path,
        params=params,
        headers=_get_headers(token),
    )
    response.raise_for_status()
    return response.json()


async def api_post(
    client: httpx.AsyncClient,
    path: str,
    token: str,
    json: dict[str, Any] | None = None,
) -> Any:
    """Make an authenticated POST request to the API."""
    response = await client.post(
        path,
        json=json,
        headers=_get_headers(token),
    )
    response.raise_for_status()
    return response.json()


async def api_put(
    client: httpx.AsyncClient,
    path: str,
    token: str,
    json: dict[str, Any],
) -> Any:
    """Make an authenticated PUT request to the API."""
    response = await client.put(
        path,
        json=json,
        headers=_get_headers(token),
    )
    response.raise_for_status()
    return response.json()


async def api_delete(
    client: httpx.AsyncClient,
    path: str,
    token: str,
) -> None:
    """Make an authenticated DELETE request to the API."""
    response = await client.delete(path, headers=_get_headers(token))
    response.raise_for_status()


async def list_advanced(
    client: httpx.AsyncClient,
    resource: str,
    request: AdvancedFilterRequest,
    token: str,
) -> ListPage:
    """Fetch one page from ``POST /<resource>/list``."""
    data = await api_post(client, f"/{resource}/list", token, json=request.to_payload())
    return ListPage.model_validate(data)


async def list_simple(  # noqa: PLR0913
    client: httpx.AsyncClient,
    resource: str,
    token: str,
    search: str | None = None,
    page: int = 1,
    limit: int = 20,
    scope: Mapping[str, str | int] | None = None,
) -> ListPage:
    """
    Fetch one page from ``GET /<resource>`` (plain search, default order).

    Args:
        scope: Extra narrowing parameters the page was opened with
            (e.g. ``{"serverId": 4}`` on the credentials page).
    """
    if page < 1 or limit < 1:
        raise ValueError(f"page and limit must be >= 1, got page={page} limit={limit}")
    params: dict[str, Any] = {"page": page, "limit": limit}
    if search:
        params["search"] = search
    if scope:
        params.update(scope)
    data = await api_get(client, f"/{resource}", token, params=params)
    return ListPage.model_validate(data)


async def get_filter_metadata(
    client: httpx.AsyncClient,
    resource: str,
    token: str,
) -> FilterMetadata:
    """Fetch ``GET /<resource>/filter-metadata``."""
    data = await api_get(client, f"/{resource}/filter-metadata", token)
    return FilterMetadata.model_validate(data)
