"""
Permission calculator.

Materialises, for one requester inside one workspace, the effective action
set of every node of the service tree. Storage is read once per call (the
batched assignment fetch); everything after that works on in-memory maps.
"""

from typing import Dict, List, Optional, Set, Tuple
import logging

from control_plane.core.clock import Clock, utcnow
from control_plane.core.errors import CacheStale, UnknownRole
from control_plane.modules.permissions import paths
from control_plane.modules.permissions.actions import actions_required_for, build_code, parse_code, resource_type_of
from control_plane.modules.permissions.repository import PermissionStore, Subject
from control_plane.modules.permissions.role_cache import RoleCache
from control_plane.modules.permissions.schemas import (
    ActionType, ResourceType, RoleAssignment, ServiceTreeNode, SubjectType
)

logger = logging.getLogger(__name__)

# resource_path -> resource_type -> action codes
Grants = Dict[str, Dict[str, Set[str]]]

APP_ADMIN = build_code(ResourceType.APP.value, ActionType.ADMIN.value)


def build_subjects(username: str, department_path: Optional[str] = None) -> List[Subject]:
    """The requester followed by every department in its chain."""
    subjects: List[Subject] = [(SubjectType.USER.value, username)]
    if department_path:
        subjects.extend((SubjectType.DEPARTMENT.value, p) for p in paths.department_chain(department_path))
    return subjects


class PermissionCalculator:
    def __init__(self, store: PermissionStore, cache: RoleCache, clock: Clock = utcnow):
        self.store = store
        self.cache = cache
        self.clock = clock

    # Grants

    def load_grants(
        self, tenant: str, workspace: str, username: str, department_path: Optional[str] = None
    ) -> Grants:
        now = self.clock()
        subjects = build_subjects(username, department_path)
        assignments = self.store.get_assignments_by_subjects(tenant, workspace, subjects, now)
        effective = [a for a in assignments if a.is_effective(now)]

        scope = paths.app_path(tenant, workspace)
        effective = [a for a in effective if paths.is_ancestor_of(scope, a.resource_path)]

        try:
            return self._materialize(effective)
        except CacheStale as e:
            logger.info(f"Role cache is missing role {e.message}, reloading")
            self.cache.refresh()
        try:
            return self._materialize(effective)
        except CacheStale as e:
            raise UnknownRole(f"Role {e.message} is assigned but does not exist") from e

    def _materialize(self, assignments: List[RoleAssignment]) -> Grants:
        grants: Grants = {}
        for assignment in assignments:
            permissions = self.cache.get_role_permissions(assignment.role_id)
            if permissions is None:
                raise CacheStale(assignment.role_id)
            by_type = grants.setdefault(assignment.resource_path, {})
            for resource_type, codes in permissions.items():
                by_type.setdefault(resource_type, set()).update(codes)
        return grants

    # Tree walk

    def calculate(
        self,
        tenant: str,
        workspace: str,
        username: str,
        department_path: Optional[str],
        trees: List[ServiceTreeNode]
    ) -> Dict[str, Dict[str, bool]]:
        """Effective permissions of every node with a non-empty required action set"""
        grants = self.load_grants(tenant, workspace, username, department_path)
        app_path = paths.app_path(tenant, workspace)

        result: Dict[str, Dict[str, bool]] = {}
        stack: List[Tuple[ServiceTreeNode, Set[str]]] = [(root, set()) for root in reversed(trees)]
        while stack:
            node, inherited = stack.pop()
            granted = self.evaluate_node(node, inherited, grants, app_path)
            if granted is None:
                child_inherited = inherited
            else:
                result[node.full_code_path] = granted
                child_inherited = inherited | {code for code, ok in granted.items() if ok}
            for child in reversed(node.children):
                stack.append((child, child_inherited))

        logger.debug(f"Calculated permissions of {len(result)} nodes for {username} in {app_path}")
        return result

    def evaluate_node(
        self, node: ServiceTreeNode, inherited: Set[str], grants: Grants, app_path: str
    ) -> Optional[Dict[str, bool]]:
        required = actions_required_for(node.node_kind, node.template_type)
        if not required:
            return None
        resource_type = resource_type_of(node.node_kind, node.template_type)
        granted = {code: False for code in required}
        path = node.full_code_path

        exact = grants.get(path)
        if exact:
            _grant(granted, exact.get(resource_type, ()))

        for ancestor in paths.ancestors(path):
            by_type = grants.get(ancestor)
            if by_type:
                _inherit(granted, by_type, resource_type)

        # Assignments the ancestor list cannot see, e.g. when the walk starts mid-tree
        if not any(granted.values()):
            for assigned_path, by_type in grants.items():
                if paths.is_ancestor_of(assigned_path, path):
                    _inherit(granted, by_type, resource_type)

        app_grants = grants.get(app_path)
        if app_grants and APP_ADMIN in app_grants.get(ResourceType.APP.value, ()):
            _grant_all(granted)

        _grant(granted, inherited)

        if granted.get(build_code(resource_type, ActionType.ADMIN.value)):
            _grant_all(granted)
        return granted

    def get_user_role_permissions(
        self, tenant: str, workspace: str, username: str, department_path: Optional[str] = None
    ) -> Dict[str, List[str]]:
        """Flattened path -> granted action codes, straight from the effective assignments"""
        grants = self.load_grants(tenant, workspace, username, department_path)
        return {
            path: sorted(code for codes in by_type.values() for code in codes)
            for path, by_type in grants.items()
        }


def _grant(granted: Dict[str, bool], codes) -> None:
    for code in codes:
        if code in granted:
            granted[code] = True


def _grant_all(granted: Dict[str, bool]) -> None:
    for code in granted:
        granted[code] = True


def _inherit(granted: Dict[str, bool], by_type: Dict[str, Set[str]], resource_type: str) -> None:
    """Apply the grants held on an ancestor path to a node of resource_type."""
    for code in by_type.get(ResourceType.DIRECTORY.value, ()):
        _, action_type = parse_code(code)
        if action_type == ActionType.ADMIN.value:
            _grant_all(granted)
            return
        translated = f"{resource_type}:{action_type}"
        if translated in granted:
            granted[translated] = True
    _grant(granted, by_type.get(resource_type, ()))
