"""
Pydantic schemas for advanced list queries.

A filter is a tree: leaves are conditions on a single field, branches are
groups combining their children with ``and``/``or``/``not``. Field names on the
wire follow the list endpoint (``key``/``type``/``condition``/``childs``), while
Python code uses ``field``/``field_type``/``combinator``/``children``.

Example:
    {
        "condition": "and",
        "childs": [
            {"key": "status", "type": "STRING", "operator": "eq", "value": "active"},
            {
                "condition": "or",
                "childs": [
                    {"key": "createdAt", "type": "DATE", "operator": "gte", "value": "lastWeek"},
                    {"key": "priority", "type": "INT", "operator": "in", "value": [1, 2]},
                ],
            },
        ],
    }

All models are frozen, so trees are hashable and compare structurally: two
trees are equal iff they have the same combinators, the same children in the
same order, and the same field/operator/value per condition.
"""
from collections.abc import Iterator
from datetime import UTC, date, datetime
from enum import StrEnum
from typing import Annotated, Any, Literal, get_args

from pydantic import (
    BaseModel,
    ConfigDict,
    Discriminator,
    Field,
    Tag,
    TypeAdapter,
    model_validator,
)

from console_query.services.exceptions import FilterDepthError

# Trees deeper than this are rejected by the composer, the URL codec and preset loading
MAX_FILTER_DEPTH = 16

# Order/group keys: identifiers with optional dot-path segments (e.g. "service.name")
KEY_PATTERN = r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)*$"

FieldType = Literal["INT", "STRING", "FLOAT", "BOOLEAN", "DATE", "DATETIME", "ARRAY", "JSON"]

FilterOperator = Literal[
    "eq",
    "ne",
    "gt",
    "gte",
    "lt",
    "lte",
    "in",
    "notIn",
    "contains",
    "startsWith",
    "endsWith",
    "between",
    "isNull",
    "isNotNull",
]

Combinator = Literal["and", "or", "not"]

SortDirection = Literal["asc", "desc"]

FIELD_TYPES: frozenset[str] = frozenset(get_args(FieldType))
OPERATORS: frozenset[str] = frozenset(get_args(FilterOperator))

BASE_OPERATORS: tuple[FilterOperator, ...] = ("eq", "ne")
NULL_OPERATORS: tuple[FilterOperator, ...] = ("isNull", "isNotNull")
NUMERIC_OPERATORS: tuple[FilterOperator, ...] = ("gt", "gte", "lt", "lte", "in", "notIn")
STRING_OPERATORS: tuple[FilterOperator, ...] = (
    "contains", "startsWith", "endsWith", "in", "notIn",
)
DATE_OPERATORS: tuple[FilterOperator, ...] = ("gt", "gte", "lt", "lte", "between")
ARRAY_OPERATORS: tuple[FilterOperator, ...] = ("in", "notIn")

_LIST_OPERATORS = frozenset({"in", "notIn"})


class RelativeDateToken(StrEnum):
    """
    Symbolic date resolved by the server at query time.

    The client keeps the token as-is for display and serialization; it never
    substitutes a concrete timestamp.
    """

    NOW = "now"
    TODAY = "today"
    YESTERDAY = "yesterday"
    TOMORROW = "tomorrow"
    THIS_WEEK = "thisWeek"
    LAST_WEEK = "lastWeek"
    THIS_MONTH = "thisMonth"
    LAST_MONTH = "lastMonth"
    THIS_YEAR = "thisYear"
    LAST_YEAR = "lastYear"


_RELATIVE_DATE_VALUES = frozenset(t.value for t in RelativeDateToken)


def is_relative_date_token(value: Any) -> bool:
    """Check if a raw value is one of the relative date tokens."""
    return isinstance(value, str) and value in _RELATIVE_DATE_VALUES


def operators_for_type(field_type: FieldType, nullable: bool = False) -> list[FilterOperator]:
    """
    Get the operators legal for a field type.

    Args:
        field_type: The type of the field.
        nullable: Whether the field is optional, which adds isNull/isNotNull.

    Returns:
        Operators in the order the filter panel lists them.
    """
    operators: list[FilterOperator] = list(BASE_OPERATORS)
    if field_type in ("INT", "FLOAT"):
        operators.extend(NUMERIC_OPERATORS)
    elif field_type in ("DATE", "DATETIME"):
        operators.extend(DATE_OPERATORS)
    elif field_type == "ARRAY":
        operators.extend(ARRAY_OPERATORS)
    elif field_type == "STRING":
        operators.extend(STRING_OPERATORS)
    # BOOLEAN and JSON only support eq/ne
    if nullable:
        operators.extend(NULL_OPERATORS)
    return operators


# =============================================================================
# Value coercion
# =============================================================================


def _bad_value(key: str, kind: str) -> ValueError:
    return ValueError(f'Invalid filter value for field "{key}" ({kind})')


def _coerce_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in {"1", "true", "yes"}:
        return True
    if text in {"0", "false", "no"}:
        return False
    raise _bad_value(key, "boolean")


def _coerce_int(key: str, value: Any) -> int:
    if isinstance(value, bool):
        raise _bad_value(key, "integer")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    try:
        return int(str(value).strip())
    except ValueError:
        raise _bad_value(key, "integer") from None


def _coerce_float(key: str, value: Any) -> float:
    if isinstance(value, bool):
        raise _bad_value(key, "number")
    if isinstance(value, int | float):
        return float(value)
    try:
        return float(str(value).strip().replace(",", "."))
    except ValueError:
        raise _bad_value(key, "number") from None


def _coerce_date(key: str, value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    try:
        # Accept either YYYY-MM-DD or a full ISO datetime and take its date part
        if "T" in text or " " in text:
            return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
        return date.fromisoformat(text)
    except ValueError:
        raise _bad_value(key, "date") from None


def _coerce_datetime(key: str, value: Any) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, datetime.min.time())
    else:
        text = str(value).strip()
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            raise _bad_value(key, "datetime") from None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _coerce_scalar(key: str, field_type: str, value: Any) -> Any:  # noqa: PLR0911
    if value is None or isinstance(value, list | tuple | dict):
        raise _bad_value(key, "scalar expected")
    if field_type in ("DATE", "DATETIME") and is_relative_date_token(value):
        return RelativeDateToken(value)
    if field_type == "INT":
        return _coerce_int(key, value)
    if field_type == "FLOAT":
        return _coerce_float(key, value)
    if field_type == "BOOLEAN":
        return _coerce_bool(key, value)
    if field_type == "DATE":
        return _coerce_date(key, value)
    if field_type == "DATETIME":
        return _coerce_datetime(key, value)
    if field_type == "STRING":
        if isinstance(value, str):
            return value
        if isinstance(value, int | float) and not isinstance(value, bool):
            return str(value)
        raise _bad_value(key, "string")
    # ARRAY / JSON hold plain JSON scalars
    if isinstance(value, str | int | float | bool):
        return value
    raise _bad_value(key, "scalar expected")


def coerce_filter_value(key: str, field_type: str, operator: str, value: Any) -> Any:
    """
    Validate and coerce a condition value for its field type and operator.

    Returns:
        None for isNull/isNotNull, a tuple for in/notIn/between, a scalar otherwise.

    Raises:
        ValueError: If the value shape or type does not fit the operator/field type.
    """
    if operator in NULL_OPERATORS:
        if value not in (None, ""):
            raise _bad_value(key, f"{operator} takes no value")
        return None
    if operator in _LIST_OPERATORS:
        if not isinstance(value, list | tuple) or not value:
            raise _bad_value(key, f"{operator} expects a non-empty list")
        return tuple(_coerce_scalar(key, field_type, v) for v in value)
    if operator == "between":
        if not isinstance(value, list | tuple) or len(value) != 2:  # noqa: PLR2004
            raise _bad_value(key, "between expects [start, end]")
        return tuple(_coerce_scalar(key, field_type, v) for v in value)
    return _coerce_scalar(key, field_type, value)


# =============================================================================
# Filter tree
# =============================================================================


class FilterCondition(BaseModel):
    """A single field condition (leaf node)."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    field: str = Field(alias="key", min_length=1)
    field_type: FieldType = Field(alias="type")
    operator: FilterOperator
    value: Any = None
    case_sensitive: bool | None = Field(default=None, alias="caseSensitive")

    @model_validator(mode="before")
    @classmethod
    def coerce_value(cls, data: Any) -> Any:
        """Coerce the raw value according to field type and operator."""
        if not isinstance(data, dict):
            return data
        field_type = data.get("type", data.get("field_type"))
        operator = data.get("operator")
        if field_type not in FIELD_TYPES or operator not in OPERATORS:
            # Let field validation report the unknown type/operator
            return data
        key = str(data.get("key", data.get("field", "")))
        return {
            **data,
            "value": coerce_filter_value(key, field_type, operator, data.get("value")),
        }

    @model_validator(mode="after")
    def check_operator_for_type(self) -> "FilterCondition":
        """Reject operators that the field type can never support."""
        if self.operator not in operators_for_type(self.field_type, nullable=True):
            raise ValueError(
                f'Operator "{self.operator}" is not supported for {self.field_type} '
                f'field "{self.field}"',
            )
        return self

    @property
    def is_relative_date(self) -> bool:
        """Whether the condition holds a server-resolved relative date."""
        values = self.value if isinstance(self.value, tuple) else (self.value,)
        return any(isinstance(v, RelativeDateToken) for v in values)


class FilterGroup(BaseModel):
    """A group of nodes combined with and/or/not (branch node)."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    combinator: Combinator = Field(default="and", alias="condition")
    children: tuple["FilterNode", ...] = Field(default=(), alias="childs")


def _node_kind(value: Any) -> str:
    """Tell conditions and groups apart, for both raw dicts and model instances."""
    if isinstance(value, dict):
        return "condition" if "key" in value or "field" in value else "group"
    return "group" if isinstance(value, FilterGroup) else "condition"


FilterNode = Annotated[
    Annotated[FilterCondition, Tag("condition")] | Annotated[FilterGroup, Tag("group")],
    Discriminator(_node_kind),
]

FilterGroup.model_rebuild()

_filter_adapter: TypeAdapter[FilterCondition | FilterGroup] = TypeAdapter(FilterNode)


def parse_filter(data: Any) -> FilterCondition | FilterGroup:
    """
    Build a filter tree from JSON-shaped data.

    A bare list of nodes is treated as an implicit ``and`` group.

    Raises:
        pydantic.ValidationError: If the data is not a valid filter tree.
    """
    if isinstance(data, FilterCondition | FilterGroup):
        return data
    if isinstance(data, list | tuple):
        data = {"condition": "and", "childs": list(data)}
    return _filter_adapter.validate_python(data)


def filter_to_wire(node: FilterCondition | FilterGroup) -> dict[str, Any]:
    """Serialize a filter tree to the JSON shape the list endpoint accepts."""
    return node.model_dump(mode="json", by_alias=True, exclude_none=True)


def has_active_filters(node: FilterCondition | FilterGroup | None) -> bool:
    """
    Check whether a filter tree contains at least one condition.

    A missing filter, an empty group and a group holding only empty groups are
    all inactive.
    """
    if node is None:
        return False
    if isinstance(node, FilterCondition):
        return True
    return any(has_active_filters(child) for child in node.children)


def filter_depth(node: FilterCondition | FilterGroup | None) -> int:
    """Nesting depth of a tree: 0 for no filter, 1 for a lone condition or empty group."""
    if node is None:
        return 0
    if isinstance(node, FilterCondition):
        return 1
    return 1 + max((filter_depth(child) for child in node.children), default=0)


def check_filter_depth(
    node: FilterCondition | FilterGroup | None,
) -> FilterCondition | FilterGroup | None:
    """
    Return the tree unchanged if it nests no deeper than MAX_FILTER_DEPTH.

    Raises:
        FilterDepthError: If the tree is too deep.
    """
    depth = filter_depth(node)
    if depth > MAX_FILTER_DEPTH:
        raise FilterDepthError(depth, MAX_FILTER_DEPTH)
    return node


def iter_conditions(node: FilterCondition | FilterGroup | None) -> Iterator[FilterCondition]:
    """Yield every condition in the tree, depth-first in child order."""
    if node is None:
        return
    if isinstance(node, FilterCondition):
        yield node
        return
    for child in node.children:
        yield from iter_conditions(child)


# =============================================================================
# Ordering and grouping
# =============================================================================


class OrderByItem(BaseModel):
    """One sort key; sequence position gives primary, secondary, ... order."""

    model_config = ConfigDict(frozen=True)

    key: Annotated[str, Field(pattern=KEY_PATTERN)]
    direction: SortDirection


class GroupByItem(BaseModel):
    """One grouping key; direction defaults to ascending when omitted."""

    model_config = ConfigDict(frozen=True)

    key: Annotated[str, Field(pattern=KEY_PATTERN)]
    direction: SortDirection | None = None


class AdvancedFilterRequest(BaseModel):
    """
    The canonical request body for ``POST /<resource>/list``.

    Grouping never appears here; the query composer folds it into ``order_by``.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    filters: FilterNode | None = None
    search: str | None = None
    order_by: tuple[OrderByItem, ...] | None = Field(default=None, alias="orderBy")
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1)

    def to_payload(self) -> dict[str, Any]:
        """Serialize to the JSON body expected by the list endpoint."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
