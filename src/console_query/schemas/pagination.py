"""Pydantic schemas for paginated list responses."""
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class Pagination(BaseModel):
    """Pagination metadata returned with every list page."""

    model_config = ConfigDict(populate_by_name=True)

    page: int = Field(ge=1)
    limit: int = Field(ge=1)
    total: int = Field(ge=0)
    total_pages: int = Field(alias="totalPages", ge=0)

    @property
    def has_next_page(self) -> bool:
        """A further page exists iff this page is before the last one."""
        return self.page < self.total_pages


class ListPage(BaseModel):
    """
    One page of a list endpoint response.

    Example: {"data": [{"id": 1, ...}], "pagination": {"page": 1, "limit": 20,
    "total": 45, "totalPages": 3}}
    """

    data: list[dict[str, Any]] = Field(default_factory=list)
    pagination: Pagination
