from __future__ import annotations

import pytest

from control_plane.config.permissions_config import PERMISSION_MATRIX, RESOURCE_TYPES
from control_plane.core.errors import InvalidActionCode, InvalidResourceType
from control_plane.modules.permissions.actions import (
    ActionService,
    actions_for,
    actions_required_for,
    build_code,
    is_valid_code,
    parse_code,
    resource_type_of,
)
from control_plane.modules.permissions.memory_store import InMemoryPermissionStore
from control_plane.modules.permissions.role_cache import RoleCache
from tests.helpers import CHART_ACTIONS, DIRECTORY_ACTIONS, FORM_ACTIONS, TABLE_ACTIONS


class TestCodes:
    def test_build_code(self) -> None:
        assert build_code("form", "read") == "form:read"

    def test_parse_code(self) -> None:
        assert parse_code("table:delete") == ("table", "delete")

    def test_round_trip_over_the_matrix(self) -> None:
        for resource_type, config in RESOURCE_TYPES.items():
            for action_type in config["actions"]:
                assert parse_code(build_code(resource_type, action_type)) == (resource_type, action_type)

    @pytest.mark.parametrize("bad", ["", "table", "table:", "table:read:x", "widget:read", "table:fly"])
    def test_parse_rejects_malformed(self, bad: str) -> None:
        with pytest.raises(InvalidActionCode):
            parse_code(bad)

    def test_build_rejects_unknown_resource_type(self) -> None:
        with pytest.raises(InvalidResourceType):
            build_code("widget", "read")

    def test_is_valid_code_follows_the_matrix(self) -> None:
        assert is_valid_code("form:write")
        assert not is_valid_code("form:delete")
        assert not is_valid_code("chart:write")
        assert not is_valid_code("garbage")


class TestMatrix:
    def test_full_action_sets(self) -> None:
        assert actions_for("table") == set(TABLE_ACTIONS)
        assert actions_for("directory") == set(DIRECTORY_ACTIONS)
        assert len(actions_for("app")) == 5

    def test_form_and_chart_are_restricted(self) -> None:
        assert actions_for("form") == set(FORM_ACTIONS)
        assert actions_for("chart") == set(CHART_ACTIONS)

    def test_unknown_resource_type(self) -> None:
        with pytest.raises(InvalidResourceType):
            actions_for("widget")


class TestNodeTypes:
    def test_package_is_a_directory(self) -> None:
        assert resource_type_of("package") == "directory"
        assert actions_required_for("package") == set(DIRECTORY_ACTIONS)

    @pytest.mark.parametrize("template", ["table", "form", "chart"])
    def test_function_takes_its_template(self, template: str) -> None:
        assert resource_type_of("function", template) == template
        assert actions_required_for("function", template) == actions_for(template)

    def test_workspace_root_is_app(self) -> None:
        assert resource_type_of("app") == "app"

    @pytest.mark.parametrize("template", [None, "", "kanban"])
    def test_function_without_known_template_is_skipped(self, template) -> None:
        assert resource_type_of("function", template) is None
        assert actions_required_for("function", template) == set()

    def test_unknown_kind_is_skipped(self) -> None:
        assert actions_required_for("mystery") == set()


class TestActionService:
    def test_init_default_actions_seeds_every_code_once(self) -> None:
        store = InMemoryPermissionStore()
        actions = ActionService(store, RoleCache(store))

        assert actions.init_default_actions() == len(PERMISSION_MATRIX["actions"])
        assert actions.init_default_actions() == 0
        assert store.count_actions() == len(PERMISSION_MATRIX["actions"])

    def test_seeded_rows_are_system_rows(self) -> None:
        store = InMemoryPermissionStore()
        ActionService(store, RoleCache(store)).init_default_actions()

        action = store.get_action_by_code("form:write")
        assert action is not None
        assert action.is_system
        assert action.created_by == "system"
        assert (action.resource_type, action.action_type) == ("form", "write")

    def test_list_actions_by_resource_type(self) -> None:
        store = InMemoryPermissionStore()
        actions = ActionService(store, RoleCache(store))
        actions.init_default_actions()

        assert [a.code for a in actions.list_actions("chart")] == ["chart:admin", "chart:read"]

    def test_default_permissions_come_from_the_default_role(self, service) -> None:
        assert service.actions.get_default_permissions("table") == ["table:read"]
        assert service.actions.get_default_permissions("app") == ["app:admin"]

    def test_default_permissions_read_through_the_given_cache(self, store, service) -> None:
        cache = RoleCache(store)
        actions = ActionService(store, cache)
        assert actions.get_default_permissions("table") == []

        assert cache.refresh()
        assert actions.get_default_permissions("table") == ["table:read"]

    def test_cache_is_required(self) -> None:
        with pytest.raises(TypeError):
            ActionService(InMemoryPermissionStore())
