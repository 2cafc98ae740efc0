"""Tests for per-page list state wired to the query cache."""
import json
from typing import Any

import httpx
import pytest
import respx
from httpx import Response

from console_query.schemas.filters import FilterCondition, FilterGroup, GroupByItem, OrderByItem
from console_query.schemas.metadata import FilterMetadata
from console_query.services.exceptions import FilterDepthError
from console_query.services.filter_presets import parse_preset, preset_to_state
from console_query.services.query_cache import QueryCache
from console_query.services.resource_list import ListState, ResourceList
from console_query.services.url_codec import encode_filters

RECORDS = [
    {"id": i, "name": f"cred-{i:02d}", "status": "active" if i % 3 else "revoked"}
    for i in range(1, 31)
]

ACTIVE = FilterCondition(key="status", type="STRING", operator="eq", value="active")

METADATA = FilterMetadata.model_validate(
    {
        "fields": [
            {
                "key": "status",
                "type": "STRING",
                "operators": ["eq", "neq"],
                "sortable": True,
                "groupable": True,
            },
            {"key": "name", "type": "STRING", "operators": ["contains"], "sortable": True},
        ],
    },
)


def _page(records: list[dict[str, Any]], page: int, limit: int) -> dict[str, Any]:
    start = (page - 1) * limit
    return {
        "data": records[start:start + limit],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": len(records),
            "totalPages": -(-len(records) // limit),
        },
    }


def _serve_simple(request: httpx.Request) -> Response:
    params = request.url.params
    search = params.get("search")
    records = [r for r in RECORDS if not search or search in r["name"]]
    return Response(200, json=_page(records, int(params["page"]), int(params["limit"])))


def _serve_advanced(request: httpx.Request) -> Response:
    body = json.loads(request.content)
    records = RECORDS
    if body.get("filters"):
        records = [r for r in records if r["status"] == body["filters"]["value"]]
    return Response(200, json=_page(records, body["page"], body["limit"]))


@pytest.fixture
def list_routes(mock_api: respx.MockRouter) -> dict[str, respx.Route]:
    return {
        "simple": mock_api.get("/credentials").mock(side_effect=_serve_simple),
        "advanced": mock_api.post("/credentials/list").mock(side_effect=_serve_advanced),
    }


@pytest.fixture
def make_list(http_client: httpx.AsyncClient, cache: QueryCache) -> Any:
    created: list[ResourceList] = []

    def factory(**kwargs: Any) -> ResourceList:
        options = {"limit": 10, "search_delay": 0.01, **kwargs}
        resource_list = ResourceList(http_client, cache, "credentials", "tok", **options)
        created.append(resource_list)
        return resource_list

    yield factory
    for resource_list in created:
        resource_list.close()


class TestQueryPath:
    """The list picks the simple or advanced endpoint from its state."""

    async def test__initial_state__simple_path_with_scope(
        self, list_routes: dict[str, respx.Route], make_list: Any,
    ) -> None:
        resource_list = make_list(scope={"serverId": 4})
        await resource_list.observer.wait_until_idle()

        assert resource_list.mode == "simple"
        assert len(resource_list.observer.items) == 10
        params = list_routes["simple"].calls[0].request.url.params
        assert params["serverId"] == "4"
        assert params["limit"] == "10"
        assert not list_routes["advanced"].called

    async def test__order_by__switches_to_advanced_path(
        self, list_routes: dict[str, respx.Route], make_list: Any,
    ) -> None:
        resource_list = make_list()
        await resource_list.observer.wait_until_idle()

        resource_list.set_order_by(OrderByItem(key="name", direction="desc"))

        assert resource_list.mode == "advanced"
        assert resource_list.observer.is_placeholder_data
        await resource_list.observer.wait_until_idle()
        body = json.loads(list_routes["advanced"].calls[0].request.content)
        assert body == {"orderBy": [{"key": "name", "direction": "desc"}], "page": 1, "limit": 10}
        assert not resource_list.observer.is_placeholder_data

    async def test__filters__next_page_keeps_request(
        self, list_routes: dict[str, respx.Route], make_list: Any,
    ) -> None:
        resource_list = make_list()
        resource_list.set_filters(ACTIVE)
        await resource_list.observer.wait_until_idle()

        await resource_list.observer.fetch_next_page()

        bodies = [json.loads(c.request.content) for c in list_routes["advanced"].calls]
        assert [b["page"] for b in bodies] == [1, 2]
        assert all(b["filters"]["value"] == "active" for b in bodies)
        assert len(resource_list.observer.items) == 20
        assert all(r["status"] == "active" for r in resource_list.observer.items)

    async def test__scope__not_part_of_advanced_key(
        self, list_routes: dict[str, respx.Route], make_list: Any,
    ) -> None:
        scoped = make_list(scope={"serverId": 4})
        unscoped = make_list()

        assert scoped.query_key != unscoped.query_key
        scoped.set_filters(ACTIVE)
        unscoped.set_filters(ACTIVE)
        assert scoped.query_key == unscoped.query_key

    async def test__bad_limit_rejected(self, make_list: Any) -> None:
        with pytest.raises(ValueError, match="limit"):
            make_list(limit=-1)


class TestStateChanges:
    """Tests for filter, search and grouping changes."""

    async def test__set_search__debounced(
        self, list_routes: dict[str, respx.Route], make_list: Any,
    ) -> None:
        resource_list = make_list()
        await resource_list.observer.wait_until_idle()

        resource_list.set_search("cred-1")
        resource_list.set_search("cred-2")
        assert resource_list.state.search is None

        assert await resource_list.search_input.wait() == "cred-2"
        await resource_list.observer.wait_until_idle()

        assert resource_list.state.search == "cred-2"
        assert resource_list.mode == "simple"
        searches = [c.request.url.params.get("search") for c in list_routes["simple"].calls]
        assert searches == [None, "cred-2"]

    async def test__apply_search__blank_means_no_search(self, make_list: Any) -> None:
        resource_list = make_list()
        resource_list.apply_search("   ")
        assert resource_list.state == ListState()

    async def test__set_filters__too_deep_leaves_state_unchanged(
        self, list_routes: dict[str, respx.Route], make_list: Any,
    ) -> None:
        resource_list = make_list()
        node: FilterCondition | FilterGroup = ACTIVE
        for _ in range(20):
            node = FilterGroup(combinator="and", children=(node,))

        with pytest.raises(FilterDepthError):
            resource_list.set_filters(node)

        assert resource_list.state == ListState()
        assert resource_list.mode == "simple"

    async def test__set_filters__inactive_group_is_no_filter(self, make_list: Any) -> None:
        resource_list = make_list()
        resource_list.set_filters(FilterGroup(combinator="and", children=()))

        assert resource_list.state.filters is None
        assert resource_list.mode == "simple"

    async def test__groups__from_loaded_items(
        self, list_routes: dict[str, respx.Route], make_list: Any,
    ) -> None:
        resource_list = make_list(limit=30)
        resource_list.set_group_by([GroupByItem(key="status")])
        await resource_list.observer.wait_until_idle()

        groups = resource_list.groups()

        body = json.loads(list_routes["advanced"].calls[0].request.content)
        assert body["orderBy"] == [{"key": "status", "direction": "asc"}]
        assert [g.key for g in groups] == ["active", "revoked"]
        assert groups[0].count == 20

    async def test__clear__back_to_simple(
        self, list_routes: dict[str, respx.Route], make_list: Any,
    ) -> None:
        resource_list = make_list()
        resource_list.set_filters(ACTIVE)
        resource_list.apply_search("cred")

        resource_list.clear()

        assert resource_list.state == ListState()
        assert resource_list.search_input.value == ""


class TestLinks:
    """Tests for shareable link state."""

    async def test__state_params__and_apply_url(
        self, list_routes: dict[str, respx.Route], make_list: Any,
    ) -> None:
        source = make_list()
        source.set_filters(ACTIVE)
        source.set_order_by([OrderByItem(key="name", direction="asc")])
        source.apply_search("cred")

        target = make_list(metadata=METADATA)
        target.apply_url(source.state_params())

        assert target.state == source.state
        assert target.query_key == source.query_key
        assert target.search_input.value == "cred"

    async def test__apply_url__drops_illegal_parts(self, make_list: Any) -> None:
        illegal = FilterCondition(key="owner", type="STRING", operator="eq", value="me")
        resource_list = make_list(metadata=METADATA)

        decoded = resource_list.apply_url(
            {"filters": encode_filters(illegal), "groupBy": "name", "search": "x"},
        )

        assert decoded.filters is None
        assert decoded.group_by is None
        assert resource_list.state == ListState(search="x")

    async def test__apply_state__from_preset(
        self, list_routes: dict[str, respx.Route], make_list: Any,
    ) -> None:
        preset = parse_preset(
            {
                "id": 1,
                "pageId": "credentials",
                "name": "Active",
                "filters": ACTIVE.model_dump(by_alias=True),
                "groupBy": [{"key": "status"}],
            },
        )
        resource_list = make_list()
        resource_list.apply_search("old")

        resource_list.apply_state(preset_to_state(preset))

        assert resource_list.state.filters == ACTIVE
        assert resource_list.state.search is None
        assert resource_list.state.group_by == (GroupByItem(key="status"),)
        assert resource_list.mode == "advanced"

    async def test__apply_state__too_deep_preset_filter_dropped(self, make_list: Any) -> None:
        nested: dict[str, Any] = ACTIVE.model_dump(by_alias=True)
        for _ in range(20):
            nested = {"condition": "and", "childs": [nested]}
        preset = parse_preset(
            {"id": 2, "pageId": "credentials", "name": "Deep", "filters": nested},
        )
        resource_list = make_list()

        resource_list.apply_state(preset_to_state(preset))

        assert resource_list.state == ListState()
