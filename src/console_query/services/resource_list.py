"""
Per-page list state wired to the query cache.

A ``ResourceList`` is what a list page (servers, credentials, tasks, ...)
holds: the user's filters, search, order and grouping, the observer showing
the matching records, and the link state for sharing. It picks the simple
path (``GET /<resource>``) or the advanced path (``POST /<resource>/list``)
from the current state, so one visible list never mixes the two.
"""
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, replace

import httpx

from console_query.client.api_client import list_advanced, list_simple
from console_query.core.config import get_settings
from console_query.schemas.filters import (
    AdvancedFilterRequest,
    FilterCondition,
    FilterGroup,
    GroupByItem,
    OrderByItem,
    has_active_filters,
)
from console_query.schemas.metadata import FilterMetadata
from console_query.schemas.pagination import ListPage
from console_query.services.debounce import DebouncedValue
from console_query.services.grouping import RecordGroup, group_records
from console_query.services.query_cache import (
    FetchPage,
    QueryCache,
    QueryKey,
    QueryMode,
    QueryObserver,
    make_query_key,
)
from console_query.services.query_composer import (
    build_request,
    normalize_search,
    use_advanced_filtering,
)
from console_query.services.url_codec import (
    UrlQueryState,
    deserialize_filters_from_url,
    serialize_state,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ListState:
    """The query state a user can change on a list page."""

    filters: FilterCondition | FilterGroup | None = None
    search: str | None = None
    order_by: tuple[OrderByItem, ...] = ()
    group_by: tuple[GroupByItem, ...] = ()

    @property
    def mode(self) -> QueryMode:
        if use_advanced_filtering(self.filters, self.order_by, self.group_by):
            return "advanced"
        return "simple"


class ResourceList:
    """
    Filters, search, order and grouping of one list page, plus its observer.

    Must be created while the event loop is running: the first page is
    requested immediately.

    Args:
        client: HTTP client for the console API.
        cache: Shared query cache.
        resource: Resource kind, e.g. "credentials".
        token: Bearer token; defaults to the configured ``api_token``.
        limit: Page size; defaults to the configured ``default_page_size``.
        scope: Fixed narrowing parameters of the page (e.g. ``{"serverId": 4}``),
            sent on the simple path.
        search_delay: Debounce delay for search input, in seconds.
        metadata: Filter metadata used to validate state read from links.
    """

    def __init__(  # noqa: PLR0913
        self,
        client: httpx.AsyncClient,
        cache: QueryCache,
        resource: str,
        token: str | None = None,
        *,
        limit: int | None = None,
        scope: Mapping[str, str | int] | None = None,
        search_delay: float | None = None,
        metadata: FilterMetadata | None = None,
    ) -> None:
        settings = get_settings()
        self._client = client
        self._cache = cache
        self._resource = resource
        self._token = settings.api_token if token is None else token
        self._limit = limit or settings.default_page_size
        if self._limit < 1:
            raise ValueError(f"limit must be >= 1, got {self._limit}")
        self._scope = dict(scope) if scope else None
        self._metadata = metadata
        self._state = ListState()
        self._search_input: DebouncedValue[str] = DebouncedValue(
            "", delay=search_delay, on_change=self.apply_search,
        )
        self._observer: QueryObserver = cache.observe(self.query_key, self._page_fetcher())

    # -- state ------------------------------------------------------------------

    @property
    def resource(self) -> str:
        return self._resource

    @property
    def state(self) -> ListState:
        return self._state

    @property
    def mode(self) -> QueryMode:
        return self._state.mode

    @property
    def observer(self) -> QueryObserver:
        return self._observer

    @property
    def search_input(self) -> DebouncedValue[str]:
        """Debounced search box value; its published value drives ``state.search``."""
        return self._search_input

    @property
    def metadata(self) -> FilterMetadata | None:
        return self._metadata

    @metadata.setter
    def metadata(self, metadata: FilterMetadata | None) -> None:
        self._metadata = metadata

    def build_request(self, page: int = 1, state: ListState | None = None) -> AdvancedFilterRequest:
        state = state or self._state
        return build_request(
            filters=state.filters,
            search=state.search,
            order_by=state.order_by,
            group_by=state.group_by,
            page=page,
            limit=self._limit,
        )

    @property
    def query_key(self) -> QueryKey:
        scope = self._scope if self.mode == "simple" else None
        return make_query_key(self._resource, self.build_request(), self.mode, scope)

    def groups(self) -> list[RecordGroup]:
        """Loaded records grouped by the current group items."""
        return group_records(self._observer.items, self._state.group_by)

    # -- changes ----------------------------------------------------------------

    def set_filters(self, filters: FilterCondition | FilterGroup | None) -> None:
        """
        Replace the filter tree.

        Raises:
            FilterDepthError: If the tree nests too deep; the state is unchanged.
        """
        self._update(replace(self._state, filters=filters if has_active_filters(filters) else None))

    def set_order_by(self, order_by: OrderByItem | Sequence[OrderByItem] | None) -> None:
        if isinstance(order_by, OrderByItem):
            order_by = (order_by,)
        self._update(replace(self._state, order_by=tuple(order_by or ())))

    def set_group_by(self, group_by: Sequence[GroupByItem] | None) -> None:
        self._update(replace(self._state, group_by=tuple(group_by or ())))

    def set_search(self, text: str) -> None:
        """Feed search box input; the query follows once typing pauses."""
        self._search_input.set(text)

    def apply_search(self, text: str | None) -> None:
        """Apply search text right away, bypassing the debounce."""
        self._update(replace(self._state, search=normalize_search(text)))

    def clear(self) -> None:
        """Drop filters, search, order and grouping."""
        self._search_input.reset("")
        self._update(ListState())

    def _update(self, state: ListState) -> None:
        # Builds the request first so an invalid state is rejected before it is kept
        self.build_request(state=state)
        if state == self._state:
            return
        self._state = state
        self._observer.set_query(self.query_key, self._page_fetcher())
        logger.debug("resource_list_query resource=%s mode=%s", self._resource, self.mode)

    def _page_fetcher(self) -> FetchPage:
        """Bind a page fetcher to the current state."""
        mode = self.mode
        request = self.build_request()
        client = self._client
        resource = self._resource
        token = self._token
        scope = self._scope

        async def fetch_page(page: int) -> ListPage:
            if mode == "advanced":
                return await list_advanced(
                    client, resource, request.model_copy(update={"page": page}), token,
                )
            return await list_simple(
                client,
                resource,
                token,
                search=request.search,
                page=page,
                limit=request.limit,
                scope=scope,
            )

        return fetch_page

    # -- links ------------------------------------------------------------------

    def url_state(self) -> UrlQueryState:
        return UrlQueryState(
            filters=self._state.filters,
            search=self._state.search,
            order_by=self._state.order_by or None,
            group_by=self._state.group_by or None,
        )

    def state_params(self) -> httpx.QueryParams:
        """Query parameters describing the current state, for a shareable link."""
        return serialize_state(self.url_state())

    def apply_url(self, params: httpx.QueryParams | Mapping[str, str] | str) -> UrlQueryState:
        """
        Load state from link parameters, dropping anything that does not decode.

        Returns:
            The decoded state.
        """
        decoded = deserialize_filters_from_url(params, self._metadata)
        self.apply_state(decoded)
        return decoded

    def apply_state(self, state: UrlQueryState) -> None:
        """Replace the whole query state (from a link or a saved preset)."""
        self._search_input.reset(state.search or "")
        self._update(
            ListState(
                filters=state.filters if has_active_filters(state.filters) else None,
                search=normalize_search(state.search),
                order_by=state.order_by or (),
                group_by=state.group_by or (),
            ),
        )

    def close(self) -> None:
        self._search_input.cancel()
        self._observer.close()
