"""Saved filter presets: list, create, update and delete via ``/filter-presets``."""
import asyncio
import logging
from typing import Any

import httpx
from pydantic import TypeAdapter, ValidationError

from console_query.client.api_client import api_delete, api_get, api_post, api_put
from console_query.core.config import get_settings
from console_query.schemas.filters import (
    FilterCondition,
    FilterGroup,
    GroupByItem,
    OrderByItem,
    check_filter_depth,
    parse_filter,
)
from console_query.schemas.presets import FilterPreset, FilterPresetCreate, FilterPresetUpdate
from console_query.services.url_codec import UrlQueryState

logger = logging.getLogger(__name__)

PRESETS_PATH = "/filter-presets"

_order_by_adapter = TypeAdapter(list[OrderByItem])
_group_by_adapter = TypeAdapter(list[GroupByItem])


def _parse_stored_filter(value: Any) -> FilterCondition | FilterGroup | None:
    return check_filter_depth(parse_filter(value))


def parse_preset(raw: Any) -> FilterPreset:
    """
    Build a preset, dropping stored filter/order/group parts that no longer validate
    or nest deeper than MAX_FILTER_DEPTH.

    Raises:
        pydantic.ValidationError: If the preset itself (id, name, ...) is malformed.
    """
    if not isinstance(raw, dict):
        return FilterPreset.model_validate(raw)
    cleaned = dict(raw)
    checks = (
        ("filters", _parse_stored_filter),
        ("orderBy", _order_by_adapter.validate_python),
        ("groupBy", _group_by_adapter.validate_python),
    )
    for name, validate in checks:
        value = cleaned.get(name)
        if value is None:
            continue
        try:
            validate(value)
        except ValueError as e:
            logger.warning(
                "preset_state_dropped preset_id=%s part=%s error=%s",
                raw.get("id"),
                name,
                type(e).__name__,
            )
            cleaned[name] = None
    return FilterPreset.model_validate(cleaned)


def preset_to_state(preset: FilterPreset) -> UrlQueryState:
    """Query state stored in a preset; presets carry no search text."""
    return UrlQueryState(
        filters=preset.filters,
        order_by=tuple(preset.order_by) if preset.order_by else None,
        group_by=tuple(preset.group_by) if preset.group_by else None,
    )


class FilterPresetService:
    """
    Client for the filter preset endpoints.

    Concurrent ``list_presets`` calls for the same page share one request.
    """

    def __init__(self, client: httpx.AsyncClient, token: str | None = None) -> None:
        self._client = client
        self._token = get_settings().api_token if token is None else token
        self._inflight: dict[str | None, asyncio.Task[list[FilterPreset]]] = {}

    async def list_presets(self, page_id: str | None = None) -> list[FilterPreset]:
        """
        List the presets visible to the current user, optionally for one page.

        Raises:
            httpx.HTTPStatusError: If the API rejects the request.
        """
        task = self._inflight.get(page_id)
        if task is None:
            task = asyncio.create_task(self._fetch_presets(page_id))
            self._inflight[page_id] = task
            task.add_done_callback(lambda _: self._inflight.pop(page_id, None))
        else:
            logger.debug("preset_list_shared page_id=%s", page_id)
        # A cancelled caller must not cancel the shared request
        return await asyncio.shield(task)

    async def _fetch_presets(self, page_id: str | None) -> list[FilterPreset]:
        params = {"pageId": page_id} if page_id else None
        data = await api_get(self._client, PRESETS_PATH, self._token, params=params)
        rows = data.get("data", []) if isinstance(data, dict) else data
        presets = []
        for row in rows:
            try:
                presets.append(parse_preset(row))
            except ValidationError as e:
                logger.warning(
                    "preset_skipped preset_id=%s errors=%s",
                    row.get("id") if isinstance(row, dict) else None,
                    e.error_count(),
                )
        return presets

    async def create(self, preset: FilterPresetCreate) -> FilterPreset:
        data = await api_post(self._client, PRESETS_PATH, self._token, json=preset.to_payload())
        return parse_preset(data)

    async def update(self, preset_id: int, changes: FilterPresetUpdate) -> FilterPreset:
        data = await api_put(
            self._client, f"{PRESETS_PATH}/{preset_id}", self._token, json=changes.to_payload(),
        )
        return parse_preset(data)

    async def delete(self, preset_id: int) -> None:
        await api_delete(self._client, f"{PRESETS_PATH}/{preset_id}", self._token)
