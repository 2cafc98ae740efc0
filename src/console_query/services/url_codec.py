"""
Shareable-link codec for list query state.

Query state travels in four query parameters:

    filters  base64url (unpadded) of the compact wire JSON of an active filter tree
    search   free text, verbatim
    orderBy  "key:dir,key:dir"
    groupBy  "key[:dir],key[:dir]"

Absent state is an absent parameter, never an empty placeholder. Parsing is
lenient: a parameter that cannot be decoded or validated resolves to None and a
warning is logged, so a stale or hand-edited link degrades to the unfiltered
list instead of an error. Links from earlier console versions carried raw JSON
in all three structured parameters; those are still read.
"""
import base64
import json
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

import httpx

from console_query.schemas.filters import (
    FilterCondition,
    FilterGroup,
    GroupByItem,
    OrderByItem,
    check_filter_depth,
    filter_to_wire,
    has_active_filters,
    parse_filter,
)
from console_query.schemas.metadata import FilterMetadata
from console_query.services.exceptions import FilterValidationError

logger = logging.getLogger(__name__)

FILTERS_PARAM = "filters"
SEARCH_PARAM = "search"
ORDER_BY_PARAM = "orderBy"
GROUP_BY_PARAM = "groupBy"

QUERY_STATE_PARAMS = (SEARCH_PARAM, FILTERS_PARAM, ORDER_BY_PARAM, GROUP_BY_PARAM)

_LEGACY_JSON_PREFIXES = ("{", "[")

# Longer parameter values are dropped without being decoded
MAX_PARAM_LENGTH = 8192


@dataclass(frozen=True)
class UrlQueryState:
    """Query state decoded from (or destined for) a shareable link."""

    filters: FilterCondition | FilterGroup | None = None
    search: str | None = None
    order_by: tuple[OrderByItem, ...] | None = None
    group_by: tuple[GroupByItem, ...] | None = None


# =============================================================================
# Encoding
# =============================================================================


def encode_filters(filters: FilterCondition | FilterGroup) -> str:
    """Encode a filter tree as unpadded base64url of its compact wire JSON."""
    raw = json.dumps(filter_to_wire(filters), separators=(",", ":"), ensure_ascii=False)
    return base64.urlsafe_b64encode(raw.encode("utf-8")).decode("ascii").rstrip("=")


def encode_order_by(order_by: Sequence[OrderByItem]) -> str:
    """Encode order items as "key:dir,key:dir"."""
    return ",".join(f"{item.key}:{item.direction}" for item in order_by)


def encode_group_by(group_by: Sequence[GroupByItem]) -> str:
    """Encode group items as "key[:dir],..." (direction omitted when unset)."""
    return ",".join(
        f"{item.key}:{item.direction}" if item.direction else item.key for item in group_by
    )


def serialize_filters_to_url(
    filters: FilterCondition | FilterGroup | None = None,
    search: str | None = None,
    order_by: OrderByItem | Sequence[OrderByItem] | None = None,
    group_by: Sequence[GroupByItem] | None = None,
) -> httpx.QueryParams:
    """
    Serialize query state to URL query parameters.

    Args:
        filters: Filter tree; only written when it contains a condition.
        search: Free-text search; only written when non-empty.
        order_by: A single order item or a sequence of them.
        group_by: Group items.

    Returns:
        Query parameters holding only the state that is present.
    """
    params: dict[str, str] = {}
    if search:
        params[SEARCH_PARAM] = search
    if filters is not None and has_active_filters(filters):
        params[FILTERS_PARAM] = encode_filters(filters)
    if isinstance(order_by, OrderByItem):
        order_by = [order_by]
    if order_by:
        params[ORDER_BY_PARAM] = encode_order_by(order_by)
    if group_by:
        params[GROUP_BY_PARAM] = encode_group_by(group_by)
    return httpx.QueryParams(params)


# =============================================================================
# Decoding
# =============================================================================


def _prepare(raw: str) -> str:
    text = raw.strip()
    if len(text) > MAX_PARAM_LENGTH:
        raise ValueError(f"Parameter is {len(text)} characters, limit is {MAX_PARAM_LENGTH}")
    return text


def _load_json(text: str | bytes) -> Any:
    try:
        return json.loads(text)
    except RecursionError as e:
        raise ValueError("JSON nests too deeply") from e


def _b64url_decode(text: str) -> bytes:
    padded = text + "=" * (-len(text) % 4)
    return base64.b64decode(padded, altchars=b"-_", validate=True)


def decode_filters(raw: str) -> FilterCondition | FilterGroup | None:
    """
    Decode a filters parameter.

    Returns:
        The filter tree, or None if it holds no condition.

    Raises:
        ValueError: If the parameter is not a valid, sufficiently shallow tree.
    """
    text = _prepare(raw)
    if text.startswith(_LEGACY_JSON_PREFIXES):
        data = _load_json(text)
    else:
        data = _load_json(_b64url_decode(text).decode("utf-8"))
    try:
        node = check_filter_depth(parse_filter(data))
    except RecursionError as e:
        raise ValueError("Filter tree nests too deeply") from e
    return node if has_active_filters(node) else None


def _split_items(raw: str) -> list[tuple[str, str | None]]:
    items = []
    for part in raw.split(","):
        key, sep, direction = part.strip().partition(":")
        if not key:
            raise ValueError(f"Empty key in {raw!r}")
        items.append((key, direction if sep else None))
    return items


def _legacy_items(raw: str) -> list[Any]:
    data = _load_json(raw)
    return data if isinstance(data, list) else [data]


def decode_order_by(raw: str) -> tuple[OrderByItem, ...] | None:
    """
    Decode an orderBy parameter; a key without direction sorts ascending.

    Raises:
        ValueError: If any item is malformed.
    """
    text = _prepare(raw)
    if text.startswith(_LEGACY_JSON_PREFIXES):
        items = tuple(OrderByItem.model_validate(item) for item in _legacy_items(text))
    else:
        items = tuple(
            OrderByItem(key=key, direction=direction or "asc")
            for key, direction in _split_items(text)
        )
    return items or None


def decode_group_by(raw: str) -> tuple[GroupByItem, ...] | None:
    """
    Decode a groupBy parameter.

    Raises:
        ValueError: If any item is malformed.
    """
    text = _prepare(raw)
    if text.startswith(_LEGACY_JSON_PREFIXES):
        items = tuple(GroupByItem.model_validate(item) for item in _legacy_items(text))
    else:
        items = tuple(
            GroupByItem(key=key, direction=direction or None)
            for key, direction in _split_items(text)
        )
    return items or None


def _drop_invalid(param: str, raw: str, error: Exception) -> None:
    logger.warning(
        "url_state_dropped param=%s error=%s value=%.200s",
        param,
        type(error).__name__,
        raw,
    )


def deserialize_filters_from_url(
    params: httpx.QueryParams | Mapping[str, str] | str,
    metadata: FilterMetadata | None = None,
) -> UrlQueryState:
    """
    Deserialize query state from URL query parameters.

    Never raises on bad input: each malformed parameter resolves to None.

    Args:
        params: Query parameters (or a raw query string).
        metadata: Optional filter metadata; when given, filters with unknown
            fields or illegal operators and order/group keys that are not
            sortable/groupable are dropped as well.

    Returns:
        The decoded state; absent parameters are None.
    """
    query = httpx.QueryParams(params)

    filters = None
    raw_filters = query.get(FILTERS_PARAM)
    if raw_filters:
        try:
            filters = decode_filters(raw_filters)
            if metadata is not None:
                metadata.validate_filter(filters)
        except (ValueError, TypeError, FilterValidationError) as e:
            _drop_invalid(FILTERS_PARAM, raw_filters, e)
            filters = None

    order_by = None
    raw_order_by = query.get(ORDER_BY_PARAM)
    if raw_order_by:
        try:
            order_by = decode_order_by(raw_order_by)
            if metadata is not None and order_by:
                metadata.validate_order_by(order_by)
        except (ValueError, TypeError, FilterValidationError) as e:
            _drop_invalid(ORDER_BY_PARAM, raw_order_by, e)
            order_by = None

    group_by = None
    raw_group_by = query.get(GROUP_BY_PARAM)
    if raw_group_by:
        try:
            group_by = decode_group_by(raw_group_by)
            if metadata is not None and group_by:
                metadata.validate_group_by(group_by)
        except (ValueError, TypeError, FilterValidationError) as e:
            _drop_invalid(GROUP_BY_PARAM, raw_group_by, e)
            group_by = None

    return UrlQueryState(
        filters=filters,
        search=query.get(SEARCH_PARAM) or None,
        order_by=order_by,
        group_by=group_by,
    )


def serialize_state(state: UrlQueryState) -> httpx.QueryParams:
    """Serialize a decoded state back to query parameters."""
    return serialize_filters_to_url(state.filters, state.search, state.order_by, state.group_by)


def build_shareable_url(base_url: str, state: UrlQueryState) -> str:
    """
    Build a shareable link for a list page.

    Query parameters already on ``base_url`` that are not query state (e.g.
    ``credentialId``) are kept; stale query-state parameters are replaced.
    """
    url = httpx.URL(base_url)
    params = url.params
    for name in QUERY_STATE_PARAMS:
        params = params.remove(name)
    params = params.merge(serialize_state(state))
    return str(url.copy_with(params=params))


def state_from_url(url: str, metadata: FilterMetadata | None = None) -> UrlQueryState:
    """Decode the query state carried by a full link."""
    return deserialize_filters_from_url(httpx.URL(url).params, metadata)
