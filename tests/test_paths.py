from __future__ import annotations

import pytest

from control_plane.core.errors import InvalidPath
from control_plane.modules.permissions import paths


class TestSplit:
    def test_splits_segments(self) -> None:
        assert paths.split("/t/w/a/b") == ["t", "w", "a", "b"]

    @pytest.mark.parametrize("bad", ["", "t/w", "/t/w/", "/t//w", "/"])
    def test_rejects_malformed(self, bad: str) -> None:
        with pytest.raises(InvalidPath):
            paths.split(bad)

    def test_invalid_path_is_a_value_error(self) -> None:
        with pytest.raises(ValueError):
            paths.split("no-slash")

    def test_join_is_inverse_of_split(self) -> None:
        assert paths.join(paths.split("/t/w/x")) == "/t/w/x"


class TestTenantApp:
    def test_first_two_segments(self) -> None:
        assert paths.tenant_app("/tenantA/shop/sales/orders") == ("tenantA", "shop")

    def test_workspace_root(self) -> None:
        assert paths.tenant_app("/tenantA/shop") == ("tenantA", "shop")

    def test_needs_two_segments(self) -> None:
        with pytest.raises(InvalidPath):
            paths.tenant_app("/tenantA")

    def test_app_path(self) -> None:
        assert paths.app_path("tenantA", "shop") == "/tenantA/shop"


class TestAncestors:
    def test_ordered_from_parent_outward(self) -> None:
        assert paths.ancestors("/t/w/a/b/c") == ["/t/w/a/b", "/t/w/a", "/t/w"]

    def test_workspace_root_has_none(self) -> None:
        assert paths.ancestors("/t/w") == []

    def test_direct_child_of_workspace(self) -> None:
        assert paths.ancestors("/t/w/a") == ["/t/w"]


class TestIsAncestorOf:
    def test_equal_paths(self) -> None:
        assert paths.is_ancestor_of("/t/w/a", "/t/w/a")

    def test_strict_prefix(self) -> None:
        assert paths.is_ancestor_of("/t/w", "/t/w/a/b")

    def test_sibling_with_common_prefix_is_not_an_ancestor(self) -> None:
        assert not paths.is_ancestor_of("/t/w/a", "/t/w/ab")

    def test_descendant_is_not_an_ancestor(self) -> None:
        assert not paths.is_ancestor_of("/t/w/a/b", "/t/w/a")


class TestDepartmentChain:
    def test_self_then_parents_below_org(self) -> None:
        assert paths.department_chain("/org/x/y/z") == ["/org/x/y/z", "/org/x/y", "/org/x"]

    def test_top_level_department(self) -> None:
        assert paths.department_chain("/org/eng") == ["/org/eng"]

    def test_bare_org_root_yields_nothing(self) -> None:
        assert paths.department_chain("/org") == []

    def test_other_roots_stop_at_the_root(self) -> None:
        assert paths.department_chain("/corp/a/b") == ["/corp/a/b", "/corp/a", "/corp"]

    def test_rejects_malformed(self) -> None:
        with pytest.raises(InvalidPath):
            paths.department_chain("/org/eng/")
