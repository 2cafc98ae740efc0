"""Tests for client-side grouping."""
from console_query.schemas.filters import GroupByItem
from console_query.services.grouping import (
    NULL_GROUP_KEY,
    NULL_GROUP_LABEL,
    default_group_label,
    get_value_by_path,
    group_records,
)

TASKS = [
    {"id": 1, "status": "open", "assignee": {"name": "Dana"}, "priority": 2},
    {"id": 2, "status": "done", "assignee": None, "priority": 1},
    {"id": 3, "status": "open", "assignee": {"name": "Ali"}, "priority": 2},
    {"id": 4, "status": "", "assignee": {"name": "Dana"}, "priority": 3},
    {"id": 5, "status": "Blocked", "assignee": {"name": "Ali"}, "priority": 1},
]


class TestGroupRecords:
    """Tests for nesting, ordering and labels of groups."""

    def test__group_records__no_group_items(self) -> None:
        assert group_records(TASKS, []) == []

    def test__group_records__sorted_with_unassigned_last(self) -> None:
        groups = group_records(TASKS, [GroupByItem(key="status")])
        assert [g.key for g in groups] == ["Blocked", "done", "open", NULL_GROUP_KEY]
        assert groups[-1].label == NULL_GROUP_LABEL
        assert [t["id"] for t in groups[2].items] == [1, 3]

    def test__group_records__descending_keeps_unassigned_last(self) -> None:
        groups = group_records(TASKS, [GroupByItem(key="status", direction="desc")])
        assert [g.key for g in groups] == ["open", "done", "Blocked", NULL_GROUP_KEY]

    def test__group_records__dot_path_key(self) -> None:
        groups = group_records(TASKS, [GroupByItem(key="assignee.name")])
        assert [g.label for g in groups] == ["Ali", "Dana", NULL_GROUP_LABEL]
        assert groups[0].count == 2

    def test__group_records__nested_items_only_on_leaves(self) -> None:
        groups = group_records(
            TASKS, [GroupByItem(key="status"), GroupByItem(key="priority", direction="desc")],
        )
        open_group = groups[2]
        assert open_group.items == []
        assert open_group.subgroups is not None
        assert [g.key for g in open_group.subgroups] == ["2"]
        assert open_group.count == 2
        assert all(g.subgroups is None for g in open_group.subgroups)

    def test__group_records__object_value_label(self) -> None:
        groups = group_records(TASKS, [GroupByItem(key="assignee")])
        labels = [g.label for g in groups]
        assert "Dana" in labels
        assert labels[-1] == NULL_GROUP_LABEL


class TestHelpers:
    """Tests for path lookup and labels."""

    def test__get_value_by_path__missing_segment(self) -> None:
        assert get_value_by_path({"a": {"b": 1}}, "a.b") == 1
        assert get_value_by_path({"a": None}, "a.b") is None
        assert get_value_by_path({}, "x") is None

    def test__default_group_label(self) -> None:
        assert default_group_label(None) == NULL_GROUP_LABEL
        assert default_group_label("") == NULL_GROUP_LABEL
        assert default_group_label({"title": "Sprint 4"}) == "Sprint 4"
        assert default_group_label(True) == "true"
        assert default_group_label(5) == "5"
