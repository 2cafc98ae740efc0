"""
Pydantic schemas for ``GET /<resource>/filter-metadata``.

The metadata drives the filter panel: which fields exist, their types, and
which operators are legal on each. It is also what the URL codec checks
decoded link state against.
"""
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from console_query.schemas.filters import (
    FieldType,
    FilterCondition,
    FilterGroup,
    FilterOperator,
    GroupByItem,
    OrderByItem,
    SortDirection,
    iter_conditions,
)
from console_query.services.exceptions import FilterValidationError


class FieldOption(BaseModel):
    """A select option for enum-like fields."""

    value: str
    label: str


class FilterFieldUI(BaseModel):
    """UI hints for rendering a field's input."""

    model_config = ConfigDict(populate_by_name=True)

    placeholder: str | None = None
    input_type: Literal[
        "text", "number", "email", "date", "datetime", "select", "multiselect", "checkbox",
    ] = Field(default="text", alias="inputType")
    options: list[FieldOption] | None = None
    supports_range: bool | None = Field(default=None, alias="supportsRange")


class FilterFieldMetadata(BaseModel):
    """Metadata for a single filterable field."""

    model_config = ConfigDict(populate_by_name=True)

    key: str
    label: str = ""
    type: FieldType
    operators: list[FilterOperator] = Field(default_factory=list)
    relation: str | None = None
    relation_type: Literal["one", "many"] | None = Field(default=None, alias="relationType")
    searchable: bool = False
    sortable: bool = False
    groupable: bool = False
    enum_values: list[str] | None = Field(default=None, alias="enumValues")
    ui: FilterFieldUI = Field(default_factory=FilterFieldUI)


class DefaultSort(BaseModel):
    """The server's default ordering when no orderBy is sent."""

    key: str
    direction: SortDirection


class FilterMetadata(BaseModel):
    """Complete filter metadata for a resource."""

    model_config = ConfigDict(populate_by_name=True)

    fields: list[FilterFieldMetadata] = Field(default_factory=list)
    default_sort: DefaultSort | None = Field(default=None, alias="defaultSort")
    supported_operators: dict[FieldType, list[FilterOperator]] = Field(
        default_factory=dict, alias="supportedOperators",
    )

    def field(self, key: str) -> FilterFieldMetadata | None:
        """Look up a field by key."""
        for meta in self.fields:
            if meta.key == key:
                return meta
        return None

    @property
    def sortable_keys(self) -> set[str]:
        """Keys usable in orderBy."""
        return {f.key for f in self.fields if f.sortable}

    @property
    def groupable_keys(self) -> set[str]:
        """Keys usable in groupBy."""
        return {f.key for f in self.fields if f.groupable}

    def is_legal(self, condition: FilterCondition) -> bool:
        """Check a condition's field exists and its operator is allowed for that field."""
        meta = self.field(condition.field)
        if meta is None:
            return False
        return condition.operator in meta.operators

    def validate_filter(self, node: FilterCondition | FilterGroup | None) -> None:
        """
        Validate every condition in a tree against this metadata.

        Raises:
            FilterValidationError: On the first condition with an unknown field
                or an operator the field does not support.
        """
        for condition in iter_conditions(node):
            meta = self.field(condition.field)
            if meta is None:
                raise FilterValidationError(condition.field, "unknown field")
            if condition.operator not in meta.operators:
                raise FilterValidationError(
                    condition.field, f'operator "{condition.operator}" not allowed',
                )

    def validate_order_by(self, order_by: list[OrderByItem] | tuple[OrderByItem, ...]) -> None:
        """
        Validate that every order key is sortable.

        Raises:
            FilterValidationError: On the first key that is not sortable.
        """
        sortable = self.sortable_keys
        for item in order_by:
            if item.key not in sortable:
                raise FilterValidationError(item.key, "field is not sortable")

    def validate_group_by(self, group_by: list[GroupByItem] | tuple[GroupByItem, ...]) -> None:
        """
        Validate that every group key is groupable.

        Raises:
            FilterValidationError: On the first key that is not groupable.
        """
        groupable = self.groupable_keys
        for item in group_by:
            if item.key not in groupable:
                raise FilterValidationError(item.key, "field is not groupable")
