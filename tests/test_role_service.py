from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from control_plane.core.errors import (
    DuplicateRole,
    InvalidActionCode,
    InvalidPath,
    InvalidResourceType,
    NotAuthorized,
    NotEffective,
    SystemRoleImmutable,
    UnknownAction,
    UnknownRole,
)
from control_plane.modules.permissions.schemas import SubjectType
from tests.helpers import function_node


class TestSeeding:
    def test_seeds_every_system_role(self, service) -> None:
        keys = {f"{r.resource_type}:{r.code}" for r in service.cache.list_roles()}
        assert keys == {
            "directory:viewer", "directory:developer", "directory:admin",
            "table:viewer", "table:developer", "table:admin",
            "form:viewer", "form:developer", "form:admin",
            "chart:viewer", "chart:admin",
            "app:admin",
        }
        assert all(r.is_system for r in service.cache.list_roles())

    def test_exactly_one_default_per_resource_type(self, service) -> None:
        for resource_type in ("directory", "table", "form", "chart", "app"):
            defaults = [r for r in service.cache.list_roles(resource_type) if r.is_default]
            assert len(defaults) == 1

    def test_reseeding_restores_canonical_permissions(self, service, store, role_ids) -> None:
        table_viewer = role_ids["table:viewer"]
        store.replace_role_permissions(table_viewer, [store.get_action_by_code("table:delete").id])

        assert service.roles.seed_system_roles() == 0
        assert service.cache.get_role_permissions(table_viewer) == {"table": {"table:read"}}

    def test_reseeding_keeps_an_administrator_chosen_default(self, service, role_ids) -> None:
        service.roles.update_role(role_ids["table:developer"], is_default=True)
        service.roles.seed_system_roles()

        assert service.cache.get_default_role("table").code == "developer"


class TestCreateRole:
    def test_creates_role_with_multi_type_permissions(self, service) -> None:
        role = service.roles.create_role(
            name="Reporter",
            code="reporter",
            permissions={"directory": ["directory:read"], "chart": ["chart:read"]},
            description="Reads dashboards",
            created_by="alice",
        )

        assert role.resource_type == "directory"
        assert not role.is_system and not role.is_default
        assert role.permissions == {"directory": ["directory:read"], "chart": ["chart:read"]}
        assert service.cache.get_role_by_code("directory", "reporter") is not None

    def test_rejects_empty_permissions(self, service) -> None:
        with pytest.raises(InvalidResourceType):
            service.roles.create_role(name="Empty", code="empty", permissions={})

    def test_rejects_duplicate_code_in_same_resource_type(self, service) -> None:
        with pytest.raises(DuplicateRole):
            service.roles.create_role(name="Viewer 2", code="viewer", permissions={"table": ["table:read"]})

    def test_same_code_is_allowed_in_another_resource_type(self, service) -> None:
        service.roles.create_role(name="Dev", code="developer", permissions={"chart": ["chart:read"]})
        assert service.cache.get_role_by_code("chart", "developer") is not None

    def test_rejects_action_outside_its_resource_type(self, service) -> None:
        with pytest.raises(InvalidActionCode):
            service.roles.create_role(name="Odd", code="odd", permissions={"table": ["form:read"]})

    def test_rejects_action_invalid_for_resource_type(self, service) -> None:
        with pytest.raises(InvalidActionCode):
            service.roles.create_role(name="Odd", code="odd", permissions={"chart": ["chart:write"]})

    def test_rejects_unknown_action(self, store, clock) -> None:
        from control_plane.modules.permissions.service import PermissionService

        bare = PermissionService(store, clock=clock)
        with pytest.raises(UnknownAction):
            bare.roles.create_role(name="Reader", code="reader", permissions={"table": ["table:read"]})
        assert store.get_role_by("reader", "table") is None


class TestUpdateRole:
    def test_replaces_permission_set_and_refreshes_cache(self, service) -> None:
        role = service.roles.create_role(name="Ops", code="ops", permissions={"table": ["table:read"]})

        updated = service.roles.update_role(role.id, permissions={"table": ["table:write", "table:update"]})

        assert updated.permissions == {"table": ["table:update", "table:write"]}
        assert service.cache.get_role_permissions(role.id) == {"table": {"table:write", "table:update"}}

    def test_system_roles_accept_metadata_edits(self, service, role_ids) -> None:
        updated = service.roles.update_role(role_ids["form:viewer"], name="Form reader", description="Reads")
        assert (updated.name, updated.description, updated.code) == ("Form reader", "Reads", "viewer")

    def test_setting_default_clears_the_previous_one(self, service, role_ids) -> None:
        service.roles.update_role(role_ids["chart:admin"], is_default=True)

        assert service.cache.get_role(role_ids["chart:admin"]).is_default
        assert not service.cache.get_role(role_ids["chart:viewer"]).is_default

    def test_unknown_role(self, service) -> None:
        with pytest.raises(UnknownRole):
            service.roles.update_role("missing", name="x")


class TestDeleteRole:
    def test_system_role_is_immutable(self, service, role_ids) -> None:
        with pytest.raises(SystemRoleImmutable):
            service.roles.delete_role(role_ids["table:viewer"])

    def test_cascades_to_permissions_and_assignments(self, service, store) -> None:
        role = service.roles.create_role(name="Temp", code="temp", permissions={"table": ["table:read"]})
        service.roles.assign_role_to_user("tenantA", "shop", "alice", "temp", "table", "/tenantA/shop/sales")

        service.roles.delete_role(role.id)

        assert service.cache.get_role(role.id) is None
        assert store.get_assignments_by_user("tenantA", "shop", "alice") == []
        assert all(rp.role_id != role.id for rp in store.get_all_role_permissions())

    def test_unknown_role(self, service) -> None:
        with pytest.raises(UnknownRole):
            service.roles.delete_role("missing")


class TestAssignments:
    def test_assign_to_user_defaults_start_to_now(self, service, clock, role_ids) -> None:
        assignment = service.roles.assign_role_to_user(
            "tenantA", "shop", "alice", "viewer", "table", "/tenantA/shop/sales"
        )

        assert assignment.subject_type == SubjectType.USER
        assert assignment.role_id == role_ids["table:viewer"]
        assert assignment.start_time == clock.now
        assert assignment.end_time is None

    def test_assign_to_department(self, service) -> None:
        assignment = service.roles.assign_role_to_department(
            "tenantA", "shop", "/org/eng", "viewer", "form", "/tenantA/shop/forms"
        )
        assert (assignment.subject_type, assignment.subject) == (SubjectType.DEPARTMENT, "/org/eng")

    def test_department_subject_must_be_a_path(self, service) -> None:
        with pytest.raises(InvalidPath):
            service.roles.assign_role_to_department(
                "tenantA", "shop", "org/eng", "viewer", "form", "/tenantA/shop/forms"
            )

    def test_unknown_role_code(self, service) -> None:
        with pytest.raises(UnknownRole):
            service.roles.assign_role_to_user("tenantA", "shop", "alice", "owner", "table", "/tenantA/shop/x")

    def test_path_must_belong_to_the_workspace(self, service) -> None:
        with pytest.raises(NotAuthorized):
            service.roles.assign_role_to_user("tenantA", "shop", "alice", "viewer", "table", "/tenantB/shop/x")

    def test_end_must_follow_start(self, service, clock) -> None:
        with pytest.raises(NotEffective):
            service.roles.assign_role_to_user(
                "tenantA", "shop", "alice", "viewer", "table", "/tenantA/shop/x",
                start_time=clock.now, end_time=clock.now,
            )

    def test_window_is_kept(self, service, clock) -> None:
        end = clock.now + timedelta(days=7)
        assignment = service.roles.assign_role_to_user(
            "tenantA", "shop", "alice", "viewer", "table", "/tenantA/shop/x", end_time=end
        )
        assert assignment.end_time == end

    def test_revoke_user_assignment(self, service) -> None:
        service.roles.assign_role_to_user("tenantA", "shop", "alice", "viewer", "table", "/tenantA/shop/x")

        removed = service.roles.remove_role_from_user("tenantA", "shop", "alice", "viewer", "table", "/tenantA/shop/x")

        assert removed == 1
        assert service.roles.get_user_roles("tenantA", "shop", "alice") == []

    def test_revoke_department_assignment(self, service) -> None:
        service.roles.assign_role_to_department("tenantA", "shop", "/org/eng", "viewer", "form", "/tenantA/shop/f")

        removed = service.roles.remove_role_from_department(
            "tenantA", "shop", "/org/eng", "viewer", "form", "/tenantA/shop/f"
        )

        assert removed == 1
        assert service.roles.get_department_roles("tenantA", "shop", "/org/eng") == []

    def test_listing_is_scoped_to_the_workspace(self, service) -> None:
        service.roles.assign_role_to_user("tenantA", "shop", "alice", "viewer", "table", "/tenantA/shop/x")
        service.roles.assign_role_to_user("tenantA", "blog", "alice", "viewer", "table", "/tenantA/blog/x")

        assert len(service.roles.get_user_roles("tenantA", "shop", "alice")) == 1


class TestQueries:
    def test_get_role_includes_permissions(self, service, role_ids) -> None:
        role = service.roles.get_role(role_ids["form:developer"])
        assert role.permissions == {"form": ["form:read", "form:write"]}

    def test_get_unknown_role(self, service) -> None:
        with pytest.raises(UnknownRole):
            service.roles.get_role("missing")

    def test_list_roles_by_resource_type(self, service) -> None:
        assert [r.code for r in service.roles.list_roles("chart")] == ["admin", "viewer"]

    def test_list_roles_rejects_unknown_type(self, service) -> None:
        with pytest.raises(InvalidResourceType):
            service.roles.list_roles("widget")

    def test_roles_for_request_put_default_first(self, service) -> None:
        roles = service.roles.get_roles_for_permission_request("function", "table")
        assert [r.code for r in roles] == ["viewer", "admin", "developer"]

    def test_roles_for_request_on_a_package(self, service) -> None:
        roles = service.roles.get_roles_for_permission_request("package")
        assert {r.resource_type for r in roles} == {"directory"}

    def test_roles_for_request_needs_a_known_type(self, service) -> None:
        with pytest.raises(InvalidResourceType):
            service.roles.get_roles_for_permission_request("function", None)


class TestNaiveTimes:
    def test_naive_end_time_is_read_as_utc(self, service, clock) -> None:
        assignment = service.roles.assign_role_to_user(
            "tenantA", "shop", "alice", "viewer", "table", "/tenantA/shop/x", end_time=datetime(2030, 1, 1)
        )

        assert assignment.start_time == clock.now
        assert assignment.end_time == datetime(2030, 1, 1, tzinfo=timezone.utc)

    def test_naive_window_still_evaluates(self, service, clock) -> None:
        start = clock.now.replace(tzinfo=None) - timedelta(hours=1)
        service.roles.assign_role_to_user(
            "tenantA", "shop", "bob", "viewer", "table", "/tenantA/shop/sales",
            start_time=start, end_time=start + timedelta(hours=2),
        )

        result = service.calculate_workspace_permissions(
            "tenantA", "shop", "bob", None, [function_node("/tenantA/shop/sales/orders", "table")]
        )

        assert result["/tenantA/shop/sales/orders"]["table:read"] is True
        assert service.check_permission(
            "tenantA", "shop", "bob", None, "/tenantA/shop/sales/orders", "table:read"
        ) is True

    def test_naive_window_is_still_ordered(self, service) -> None:
        with pytest.raises(NotEffective):
            service.roles.assign_role_to_user(
                "tenantA", "shop", "alice", "viewer", "table", "/tenantA/shop/x",
                start_time=datetime(2030, 1, 2), end_time=datetime(2030, 1, 1),
            )
