"""
Compose user-selected query state into the canonical list request.

Grouping implies ordering: rows of one group must be contiguous, so group
keys become the leading sort keys, ahead of any user ordering.
"""
from collections.abc import Sequence

from console_query.schemas.filters import (
    AdvancedFilterRequest,
    FilterCondition,
    FilterGroup,
    GroupByItem,
    OrderByItem,
    check_filter_depth,
    has_active_filters,
)


def compose_order_by(
    order_by: Sequence[OrderByItem] | None = None,
    group_by: Sequence[GroupByItem] | None = None,
) -> tuple[OrderByItem, ...] | None:
    """
    Build the effective order sequence from group and order items.

    Group keys come first, each with its group direction (asc when unset).
    User order items whose key is already a group key are dropped; the rest
    keep their relative order.

    Example:
        group_by=[status], order_by=[status desc, priority asc]
        -> (status asc, priority asc)

    Returns:
        The effective order, or None when there is nothing to order by.
    """
    effective: list[OrderByItem] = []
    group_keys: set[str] = set()
    for group in group_by or ():
        if group.key in group_keys:
            continue
        group_keys.add(group.key)
        effective.append(OrderByItem(key=group.key, direction=group.direction or "asc"))
    for item in order_by or ():
        if item.key not in group_keys:
            effective.append(item)
    return tuple(effective) or None


def use_advanced_filtering(
    filters: FilterCondition | FilterGroup | None = None,
    order_by: Sequence[OrderByItem] | None = None,
    group_by: Sequence[GroupByItem] | None = None,
) -> bool:
    """
    Decide between the advanced list path and the simple (search only) path.

    The advanced path is used iff there is an active filter, an order, or a grouping.
    """
    return has_active_filters(filters) or bool(order_by) or bool(group_by)


def normalize_search(search: str | None) -> str | None:
    """Trim search text; blank text means no search."""
    if search is None:
        return None
    trimmed = search.strip()
    return trimmed or None


def build_request(  # noqa: PLR0913
    filters: FilterCondition | FilterGroup | None = None,
    search: str | None = None,
    order_by: Sequence[OrderByItem] | None = None,
    group_by: Sequence[GroupByItem] | None = None,
    page: int = 1,
    limit: int = 20,
) -> AdvancedFilterRequest:
    """
    Build the canonical request for ``POST /<resource>/list``.

    Inactive filters are left out so that "no filter" has a single shape.
    Search is trimmed and passed through; the server ANDs it with the filters.

    Raises:
        FilterDepthError: If the filter tree nests deeper than MAX_FILTER_DEPTH.
        pydantic.ValidationError: If page or limit is below 1.
    """
    check_filter_depth(filters)
    return AdvancedFilterRequest(
        filters=filters if has_active_filters(filters) else None,
        search=normalize_search(search),
        order_by=compose_order_by(order_by, group_by),
        page=page,
        limit=limit,
    )
