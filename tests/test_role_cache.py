from __future__ import annotations

import threading
import time

from control_plane.core.errors import StorageError
from control_plane.modules.permissions.actions import ActionService
from control_plane.modules.permissions.memory_store import InMemoryPermissionStore
from control_plane.modules.permissions.role_cache import RoleCache
from control_plane.modules.permissions.role_service import RoleService
from tests.helpers import FixedClock


class FlakyStore(InMemoryPermissionStore):
    """Store whose role listing can be made to fail or block."""

    def __init__(self) -> None:
        super().__init__()
        self.fail = False
        self.loads = 0
        self.gate = None

    def get_all_roles(self):
        self.loads += 1
        if self.gate is not None:
            gate, self.gate = self.gate, None
            gate.wait(timeout=5)
        if self.fail:
            raise StorageError("database unavailable")
        return super().get_all_roles()


def _seeded(store, clock):
    cache = RoleCache(store, refresh_interval=300, clock=clock)
    ActionService(store, cache).init_default_actions()
    RoleService(store, cache, clock=clock).seed_system_roles()
    return cache


class TestSnapshot:
    def test_starts_empty(self) -> None:
        cache = RoleCache(InMemoryPermissionStore())
        assert not cache.is_loaded
        assert cache.list_roles() == []
        assert cache.get_role_permissions("missing") is None

    def test_indexes_by_resource_type_and_code(self, clock: FixedClock) -> None:
        cache = _seeded(InMemoryPermissionStore(), clock)

        table_viewer = cache.get_role_by_code("table", "viewer")
        form_viewer = cache.get_role_by_code("form", "viewer")
        assert table_viewer is not None and form_viewer is not None
        assert table_viewer.id != form_viewer.id
        assert cache.get_role_by_code("chart", "developer") is None

    def test_permissions_grouped_by_resource_type(self, clock: FixedClock) -> None:
        cache = _seeded(InMemoryPermissionStore(), clock)
        developer = cache.get_role_by_code("directory", "developer")

        permissions = cache.get_role_permissions(developer.id)
        assert permissions == {
            "directory": {"directory:read", "directory:write", "directory:update"},
            "table": {"table:read", "table:write", "table:update"},
            "form": {"form:read", "form:write"},
            "chart": {"chart:read"},
        }
        assert cache.get_permission_set(developer.id).codes() >= {"chart:read", "table:write"}
        assert cache.get_permission_set(developer.id).for_resource_type("form") == {"form:read", "form:write"}

    def test_accessors_return_copies(self, clock: FixedClock) -> None:
        cache = _seeded(InMemoryPermissionStore(), clock)
        viewer = cache.get_role_by_code("table", "viewer")

        cache.get_role_permissions(viewer.id)["table"].add("table:admin")
        cache.get_role(viewer.id).name = "changed"

        assert cache.get_role_permissions(viewer.id) == {"table": {"table:read"}}
        assert cache.get_role(viewer.id).name == "Viewer"

    def test_default_role_per_resource_type(self, clock: FixedClock) -> None:
        cache = _seeded(InMemoryPermissionStore(), clock)
        assert cache.get_default_role("directory").code == "viewer"
        assert cache.get_default_role("app").code == "admin"


class TestRefresh:
    def test_failure_keeps_previous_snapshot(self, clock: FixedClock) -> None:
        store = FlakyStore()
        cache = _seeded(store, clock)
        before = len(cache.list_roles())

        store.fail = True
        assert cache.refresh() is False
        assert len(cache.list_roles()) == before
        assert cache.get_role_by_code("table", "viewer") is not None

    def test_first_load_failure_leaves_cache_empty(self) -> None:
        store = FlakyStore()
        store.fail = True
        cache = RoleCache(store)

        assert cache.refresh() is False
        assert not cache.is_loaded

    def test_ensure_fresh_reloads_only_after_interval(self, clock: FixedClock) -> None:
        store = FlakyStore()
        cache = _seeded(store, clock)
        loads = store.loads

        clock.advance(seconds=299)
        cache.ensure_fresh()
        assert store.loads == loads

        clock.advance(seconds=2)
        cache.ensure_fresh()
        assert store.loads == loads + 1
        assert cache.last_loaded_at == clock.now

    def test_sees_roles_written_by_another_process_after_reload(self, clock: FixedClock) -> None:
        store = InMemoryPermissionStore()
        cache = _seeded(store, clock)
        store.create_role({"name": "Auditor", "code": "auditor", "resource_type": "table"})

        assert cache.get_role_by_code("table", "auditor") is None
        cache.refresh()
        assert cache.get_role_by_code("table", "auditor") is not None

    def test_concurrent_refreshes_collapse(self, clock: FixedClock) -> None:
        store = FlakyStore()
        cache = _seeded(store, clock)
        store.loads = 0
        baseline = cache._requested
        gate = threading.Event()
        store.gate = gate

        first = threading.Thread(target=cache.refresh)
        first.start()
        deadline = time.monotonic() + 5
        while store.loads == 0 and time.monotonic() < deadline:
            time.sleep(0.01)

        waiters = [threading.Thread(target=cache.refresh) for _ in range(3)]
        for t in waiters:
            t.start()
        while cache._requested < baseline + 1 + len(waiters) and time.monotonic() < deadline:
            time.sleep(0.01)

        gate.set()
        for t in [first] + waiters:
            t.join(timeout=5)

        # The in-flight load plus one load covering every queued caller
        assert store.loads == 2
