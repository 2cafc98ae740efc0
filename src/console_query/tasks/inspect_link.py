"""
Shareable link inspector.

Decodes the query state carried by a console list link and shows the request
the list page would send for it. Handy when a shared link "shows the wrong
rows": the decoded filters, the effective order, the cache key and the
canonical form of the link are logged.

Usage:
    python -m console_query.tasks.inspect_link "https://console/credentials?filters=...&orderBy=name:asc"
    python -m console_query.tasks.inspect_link --fetch "<link>"

With ``--fetch`` the first page is requested from the configured API and its
pagination is logged as well.
"""
import argparse
import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from console_query.client.api_client import create_http_client, list_advanced, list_simple
from console_query.core.config import get_settings
from console_query.schemas.filters import AdvancedFilterRequest
from console_query.services.query_cache import QueryKey, make_query_key
from console_query.services.query_composer import build_request, use_advanced_filtering
from console_query.services.url_codec import (
    QUERY_STATE_PARAMS,
    UrlQueryState,
    build_shareable_url,
    state_from_url,
)

logger = logging.getLogger(__name__)


@dataclass
class LinkReport:
    """What a link decodes to."""

    url: str
    resource: str
    state: UrlQueryState
    request: AdvancedFilterRequest
    mode: str
    key: QueryKey
    canonical_url: str
    extra_params: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "resource": self.resource,
            "mode": self.mode,
            "key": str(self.key),
            "request": self.request.to_payload(),
            "groupBy": [g.model_dump(exclude_none=True) for g in self.state.group_by or ()],
            "extraParams": self.extra_params,
            "canonicalUrl": self.canonical_url,
        }


def resource_from_url(url: str) -> str:
    """Resource kind from the last path segment (``/credentials`` -> ``credentials``)."""
    segments = [s for s in httpx.URL(url).path.split("/") if s]
    if not segments:
        raise ValueError(f"Cannot tell the resource kind from {url!r}; pass --resource")
    return segments[-1]


def inspect_link(url: str, resource: str | None = None, limit: int | None = None) -> LinkReport:
    """
    Decode a link into its list request.

    Raises:
        ValueError: If the resource kind cannot be derived from the link.
    """
    settings = get_settings()
    resource = resource or resource_from_url(url)
    state = state_from_url(url)
    request = build_request(
        filters=state.filters,
        search=state.search,
        order_by=state.order_by,
        group_by=state.group_by,
        limit=limit or settings.default_page_size,
    )
    mode = "simple"
    if use_advanced_filtering(state.filters, state.order_by, state.group_by):
        mode = "advanced"
    extra_params = {
        name: value
        for name, value in httpx.URL(url).params.multi_items()
        if name not in QUERY_STATE_PARAMS
    }
    return LinkReport(
        url=url,
        resource=resource,
        state=state,
        request=request,
        mode=mode,
        key=make_query_key(resource, request, mode, extra_params if mode == "simple" else None),
        canonical_url=build_shareable_url(url, state),
        extra_params=extra_params,
    )


async def fetch_first_page(report: LinkReport) -> None:
    """Request page 1 of the link's query and log its pagination."""
    async with create_http_client() as client:
        token = get_settings().api_token
        if report.mode == "advanced":
            page = await list_advanced(client, report.resource, report.request, token)
        else:
            page = await list_simple(
                client,
                report.resource,
                token,
                search=report.request.search,
                limit=report.request.limit,
                scope=report.extra_params,
            )
    logger.info(
        "inspect_link_page resource=%s records=%s total=%s total_pages=%s",
        report.resource,
        len(page.data),
        page.pagination.total,
        page.pagination.total_pages,
    )


def main(argv: list[str] | None = None) -> None:
    """Entry point for running the inspector as a script."""
    parser = argparse.ArgumentParser(description="Decode a console list link.")
    parser.add_argument("url", help="Link to a console list page")
    parser.add_argument("--resource", help="Resource kind (default: last path segment)")
    parser.add_argument("--limit", type=int, help="Page size (default: CONSOLE_PAGE_SIZE)")
    parser.add_argument("--fetch", action="store_true", help="Also request page 1 from the API")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    report = inspect_link(args.url, resource=args.resource, limit=args.limit)
    logger.info("inspect_link_state %s", json.dumps(report.to_dict(), ensure_ascii=False))
    if args.fetch:
        asyncio.run(fetch_first_page(report))


if __name__ == "__main__":
    main()
