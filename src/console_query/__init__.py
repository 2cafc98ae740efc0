"""Advanced query and cache layer for the operations console list pages."""

from console_query.schemas.filters import (
    AdvancedFilterRequest,
    FilterCondition,
    FilterGroup,
    GroupByItem,
    OrderByItem,
    has_active_filters,
    parse_filter,
)
from console_query.services.query_cache import QueryCache, QueryKey, QueryObserver, make_query_key
from console_query.services.query_composer import build_request
from console_query.services.url_codec import (
    deserialize_filters_from_url,
    serialize_filters_to_url,
)

__all__ = [
    "AdvancedFilterRequest",
    "FilterCondition",
    "FilterGroup",
    "GroupByItem",
    "OrderByItem",
    "QueryCache",
    "QueryKey",
    "QueryObserver",
    "build_request",
    "deserialize_filters_from_url",
    "has_active_filters",
    "make_query_key",
    "parse_filter",
    "serialize_filters_to_url",
]
