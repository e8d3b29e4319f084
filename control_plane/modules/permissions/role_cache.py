"""
Process-wide snapshot of roles and their permission sets.

A refresh builds a new snapshot off-lock and swaps it in under the lock;
readers only hold the lock long enough to grab the current snapshot, then
work on copies.
"""

from datetime import datetime, timedelta
from typing import Dict, List, Optional, Set
import asyncio
import logging
import threading

from control_plane.core.clock import Clock, utcnow
from control_plane.modules.permissions.repository import PermissionStore
from control_plane.modules.permissions.schemas import Role, RolePermissionSet

logger = logging.getLogger(__name__)

DEFAULT_REFRESH_SECONDS = 300


def role_key(resource_type: str, code: str) -> str:
    return f"{resource_type}:{code}"


class _Snapshot:
    __slots__ = ("roles", "role_permissions", "code_index", "loaded_at")

    def __init__(
        self,
        roles: Dict[str, Role],
        role_permissions: Dict[str, Dict[str, Set[str]]],
        code_index: Dict[str, str],
        loaded_at: Optional[datetime],
    ):
        self.roles = roles
        self.role_permissions = role_permissions
        self.code_index = code_index
        self.loaded_at = loaded_at


_EMPTY = _Snapshot({}, {}, {}, None)


class RoleCache:
    def __init__(
        self,
        store: PermissionStore,
        refresh_interval: int = DEFAULT_REFRESH_SECONDS,
        clock: Clock = utcnow,
    ):
        self.store = store
        self.refresh_interval = timedelta(seconds=refresh_interval)
        self.clock = clock
        self._lock = threading.Lock()
        self._loader_lock = threading.Lock()
        self._snapshot = _EMPTY
        # Refresh generations: a caller is satisfied by any load started after its request
        self._requested = 0
        self._loaded = 0
        self._last_result = False

    def _current(self) -> _Snapshot:
        with self._lock:
            return self._snapshot

    def _build_snapshot(self) -> _Snapshot:
        roles = {role.id: role for role in self.store.get_all_roles()}
        actions = {action.id: action for action in self.store.list_actions()}
        role_permissions: Dict[str, Dict[str, Set[str]]] = {role_id: {} for role_id in roles}
        for rp in self.store.get_all_role_permissions():
            action = actions.get(rp.action_id)
            if rp.role_id not in roles or action is None:
                logger.debug(f"Skipping dangling role permission {rp.role_id} -> {rp.action_id}")
                continue
            role_permissions[rp.role_id].setdefault(action.resource_type, set()).add(action.code)
        code_index = {role_key(role.resource_type, role.code): role.id for role in roles.values()}
        return _Snapshot(roles, role_permissions, code_index, self.clock())

    def refresh(self) -> bool:
        """
        Reload the snapshot. Concurrent callers queue on the loader lock and
        return as soon as a load that began after their call has finished.
        Returns False when that load failed; the previous snapshot stays in place.
        """
        with self._lock:
            self._requested += 1
            generation = self._requested

        with self._loader_lock:
            with self._lock:
                if self._loaded >= generation:
                    return self._last_result
                target = self._requested

            try:
                snapshot = self._build_snapshot()
            except Exception as e:
                logger.warning(f"Role cache refresh failed, keeping previous snapshot: {str(e)}")
                ok = False
            else:
                ok = True

            with self._lock:
                if ok:
                    self._snapshot = snapshot
                self._loaded = target
                self._last_result = ok

        if ok:
            logger.debug(f"Role cache loaded {len(snapshot.roles)} roles")
        return ok

    def ensure_fresh(self) -> bool:
        """Refresh when the snapshot was never loaded or is older than the refresh interval."""
        loaded_at = self.last_loaded_at
        if loaded_at is not None and self.clock() - loaded_at < self.refresh_interval:
            return True
        return self.refresh()

    @property
    def last_loaded_at(self) -> Optional[datetime]:
        return self._current().loaded_at

    @property
    def is_loaded(self) -> bool:
        return self.last_loaded_at is not None

    def get_role(self, role_id: str) -> Optional[Role]:
        role = self._current().roles.get(role_id)
        return role.model_copy() if role else None

    def get_role_by_code(self, resource_type: str, code: str) -> Optional[Role]:
        snapshot = self._current()
        role_id = snapshot.code_index.get(role_key(resource_type, code))
        if role_id is None:
            return None
        return snapshot.roles[role_id].model_copy()

    def get_role_permissions(self, role_id: str) -> Optional[Dict[str, Set[str]]]:
        """resource_type -> action codes for the role, or None when the role is not cached."""
        permissions = self._current().role_permissions.get(role_id)
        if permissions is None:
            return None
        return {resource_type: set(codes) for resource_type, codes in permissions.items()}

    def get_permission_set(self, role_id: str) -> Optional[RolePermissionSet]:
        permissions = self.get_role_permissions(role_id)
        if permissions is None:
            return None
        return RolePermissionSet(role_id=role_id, permissions=permissions)

    def list_roles(self, resource_type: Optional[str] = None) -> List[Role]:
        roles = [
            role.model_copy() for role in self._current().roles.values()
            if resource_type is None or role.resource_type == resource_type
        ]
        return sorted(roles, key=lambda r: (r.resource_type, r.code))

    def get_default_role(self, resource_type: str) -> Optional[Role]:
        for role in self._current().roles.values():
            if role.resource_type == resource_type and role.is_default:
                return role.model_copy()
        return None


async def role_cache_refresh_loop(cache: RoleCache, interval: int = DEFAULT_REFRESH_SECONDS):
    """Background task that periodically reloads the role cache"""
    while True:
        await asyncio.sleep(interval)
        try:
            await asyncio.to_thread(cache.refresh)
        except Exception as e:
            logger.error(f"Error in role cache refresh loop: {str(e)}")
