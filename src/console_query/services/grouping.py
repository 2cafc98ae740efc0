"""Client-side grouping of loaded list records."""
import json
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

from console_query.schemas.filters import GroupByItem

NULL_GROUP_KEY = "__null__"
NULL_GROUP_LABEL = "(Unassigned)"

_LABEL_ATTRIBUTES = ("name", "title", "email")


@dataclass
class RecordGroup:
    """One group; ``items`` is filled on leaf groups only."""

    key: str
    label: str
    items: list[dict[str, Any]] = field(default_factory=list)
    subgroups: list["RecordGroup"] | None = None

    @property
    def count(self) -> int:
        """Number of records in this group, including all subgroups."""
        if self.subgroups is None:
            return len(self.items)
        return sum(group.count for group in self.subgroups)


def get_value_by_path(record: dict[str, Any], path: str) -> Any:
    """Read a dot-path such as ``service.name``; a missing segment gives None."""
    value: Any = record
    for part in path.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


def _is_empty(value: Any) -> bool:
    return value is None or value == ""


def _group_key(value: Any) -> str:
    if _is_empty(value):
        return NULL_GROUP_KEY
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, dict | list):
        return json.dumps(value, sort_keys=True, separators=(",", ":"))
    return str(value)


def default_group_label(value: Any) -> str:
    """Label for a group value; objects show their name, title or email."""
    if _is_empty(value):
        return NULL_GROUP_LABEL
    if isinstance(value, dict):
        for attribute in _LABEL_ATTRIBUTES:
            if value.get(attribute):
                return str(value[attribute])
    return _group_key(value)


def group_records(
    records: Sequence[dict[str, Any]],
    group_by: Sequence[GroupByItem],
    format_label: Callable[[Any], str] = default_group_label,
) -> list[RecordGroup]:
    """
    Group records by one or more keys, nesting one level per key.

    Groups of a level are sorted by key text in the item's direction (asc
    when unset), case-insensitively; records without a value form a trailing
    ``(Unassigned)`` group whatever the direction. Record order inside a group
    is kept.

    Returns:
        Top-level groups; empty when ``group_by`` is empty.
    """
    if not group_by:
        return []
    return _group_level(list(records), list(group_by), 0, format_label)


def _group_level(
    records: list[dict[str, Any]],
    group_by: list[GroupByItem],
    level: int,
    format_label: Callable[[Any], str],
) -> list[RecordGroup]:
    item = group_by[level]
    buckets: dict[str, list[dict[str, Any]]] = {}
    for record in records:
        key = _group_key(get_value_by_path(record, item.key))
        buckets.setdefault(key, []).append(record)

    keys = sorted(
        (k for k in buckets if k != NULL_GROUP_KEY),
        key=str.casefold,
        reverse=item.direction == "desc",
    )
    if NULL_GROUP_KEY in buckets:
        keys.append(NULL_GROUP_KEY)

    is_leaf = level == len(group_by) - 1
    groups = []
    for key in keys:
        members = buckets[key]
        label = format_label(get_value_by_path(members[0], item.key))
        if is_leaf:
            groups.append(RecordGroup(key=key, label=label, items=members))
        else:
            groups.append(
                RecordGroup(
                    key=key,
                    label=label,
                    subgroups=_group_level(members, group_by, level + 1, format_label),
                ),
            )
    return groups
