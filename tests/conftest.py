from __future__ import annotations

import pytest

from control_plane.modules.permissions.memory_store import InMemoryPermissionStore
from control_plane.modules.permissions.service import PermissionService
from tests.helpers import FixedClock


@pytest.fixture()
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture()
def store() -> InMemoryPermissionStore:
    return InMemoryPermissionStore()


@pytest.fixture()
def service(store: InMemoryPermissionStore, clock: FixedClock) -> PermissionService:
    """Permission service over a seeded in-memory store."""
    svc = PermissionService(store, clock=clock)
    svc.initialize(seed=True)
    return svc


@pytest.fixture()
def role_ids(service: PermissionService) -> dict:
    """Seeded role ids keyed by "<resource_type>:<code>"."""
    return {f"{r.resource_type}:{r.code}": r.id for r in service.cache.list_roles()}
