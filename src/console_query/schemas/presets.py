"""Pydantic schemas for saved filter presets (``/filter-presets``)."""
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from console_query.schemas.filters import FilterNode, GroupByItem, OrderByItem


class FilterPreset(BaseModel):
    """
    A named filter/order/group combination saved for one console page.

    Stored filter state is read leniently: a preset saved against an older
    field set must still load, so unparseable parts come back as None
    (see ``FilterPresetService``).
    """

    model_config = ConfigDict(populate_by_name=True)

    id: int
    page_id: str = Field(alias="pageId")
    name: str
    filters: FilterNode | None = None
    order_by: list[OrderByItem] | None = Field(default=None, alias="orderBy")
    group_by: list[GroupByItem] | None = Field(default=None, alias="groupBy")
    is_shared: bool = Field(default=False, alias="isShared")
    created_at: datetime | None = Field(default=None, alias="createdAt")
    updated_at: datetime | None = Field(default=None, alias="updatedAt")


class FilterPresetCreate(BaseModel):
    """Schema for creating a filter preset."""

    model_config = ConfigDict(populate_by_name=True)

    page_id: str = Field(alias="pageId", min_length=1)
    name: str = Field(min_length=1, max_length=100)
    filters: FilterNode | None = None
    order_by: list[OrderByItem] | None = Field(default=None, alias="orderBy")
    group_by: list[GroupByItem] | None = Field(default=None, alias="groupBy")
    is_shared: bool = Field(default=False, alias="isShared")

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        """Trim whitespace and reject blank names."""
        stripped = v.strip()
        if not stripped:
            raise ValueError("Preset name cannot be empty")
        return stripped

    def to_payload(self) -> dict[str, Any]:
        """Serialize to the JSON body expected by the presets endpoint."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class FilterPresetUpdate(BaseModel):
    """
    Schema for updating a filter preset.

    Fields left unset are not sent; fields explicitly set to None clear the
    stored value.
    """

    model_config = ConfigDict(populate_by_name=True)

    name: str | None = Field(default=None, min_length=1, max_length=100)
    filters: FilterNode | None = None
    order_by: list[OrderByItem] | None = Field(default=None, alias="orderBy")
    group_by: list[GroupByItem] | None = Field(default=None, alias="groupBy")
    is_shared: bool | None = Field(default=None, alias="isShared")

    def to_payload(self) -> dict[str, Any]:
        """Serialize only the fields the caller set."""
        return self.model_dump(mode="json", by_alias=True, exclude_unset=True)
