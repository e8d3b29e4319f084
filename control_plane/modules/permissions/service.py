"""
Composition root of the authorization core.

PermissionService owns the single role cache of the process and wires the
action, role, calculator and approval services around one store.
"""

from typing import Dict, List, Optional
import logging

from control_plane.core.clock import Clock, utcnow
from control_plane.core.errors import NotAuthorized
from control_plane.modules.permissions import paths
from control_plane.modules.permissions.actions import ActionService, is_valid_code, parse_code
from control_plane.modules.permissions.approval_service import ApprovalService
from control_plane.modules.permissions.calculator import PermissionCalculator
from control_plane.modules.permissions.repository import PermissionStore
from control_plane.modules.permissions.role_cache import RoleCache, DEFAULT_REFRESH_SECONDS
from control_plane.modules.permissions.role_service import RoleService
from control_plane.modules.permissions.schemas import (
    NodeKind, ResourceType, RoleAssignment, ServiceTreeNode
)

logger = logging.getLogger(__name__)


class PermissionService:
    def __init__(
        self,
        store: PermissionStore,
        refresh_interval: int = DEFAULT_REFRESH_SECONDS,
        clock: Clock = utcnow
    ):
        self.store = store
        self.clock = clock
        self.cache = RoleCache(store, refresh_interval=refresh_interval, clock=clock)
        self.actions = ActionService(store, self.cache)
        self.roles = RoleService(store, self.cache, clock=clock)
        self.calculator = PermissionCalculator(store, self.cache, clock=clock)
        self.approvals = ApprovalService(store, self.roles, clock=clock)

    def initialize(self, seed: bool = True) -> None:
        """Seed the catalog and system roles (optional) and load the role cache"""
        if seed:
            self.actions.init_default_actions()
            self.roles.seed_system_roles()
        elif not self.cache.refresh():
            logger.warning("Role cache could not be loaded at startup")
        logger.info(f"Permission service ready ({len(self.cache.list_roles())} roles cached)")

    def calculate_workspace_permissions(
        self,
        tenant: str,
        workspace: str,
        username: str,
        department_path: Optional[str],
        trees: List[ServiceTreeNode]
    ) -> Dict[str, Dict[str, bool]]:
        return self.calculator.calculate(tenant, workspace, username, department_path, trees)

    def get_user_role_permissions(
        self, tenant: str, workspace: str, username: str, department_path: Optional[str] = None
    ) -> Dict[str, List[str]]:
        return self.calculator.get_user_role_permissions(tenant, workspace, username, department_path)

    def check_permission(
        self,
        tenant: str,
        workspace: str,
        username: str,
        department_path: Optional[str],
        resource_path: str,
        action_code: str
    ) -> bool:
        """
        Check one action on one node. The node's ancestry is rebuilt from its
        path (workspace root, then directories) and evaluated like a tree walk.
        Workspace administrators are always granted.
        """
        resource_type, _ = parse_code(action_code)
        if not is_valid_code(action_code):
            return False
        if paths.tenant_app(resource_path) != (tenant, workspace):
            raise NotAuthorized(f"{resource_path} does not belong to workspace /{tenant}/{workspace}")

        app_path = paths.app_path(tenant, workspace)
        if username in self.store.get_node_admins(app_path):
            return True

        chain = _node_chain(resource_path, resource_type)
        if not chain:
            return False

        grants = self.calculator.load_grants(tenant, workspace, username, department_path)
        inherited = set()
        granted = {}
        for node in chain:
            result = self.calculator.evaluate_node(node, inherited, grants, app_path)
            if result is None:
                continue
            granted = result
            inherited = inherited | {code for code, ok in result.items() if ok}
        return granted.get(action_code, False)

    def get_resource_permissions(self, tenant: str, workspace: str, resource_path: str) -> List[RoleAssignment]:
        """Every assignment on the node or one of its ancestors, regardless of its window"""
        if paths.tenant_app(resource_path) != (tenant, workspace):
            raise NotAuthorized(f"{resource_path} does not belong to workspace /{tenant}/{workspace}")
        return self.store.get_assignments_by_resource_path(
            tenant, workspace, [resource_path] + paths.ancestors(resource_path)
        )


def _node_chain(resource_path: str, resource_type: str) -> List[ServiceTreeNode]:
    """Workspace root, intermediate directories and the target node, root first."""
    segments = paths.split(resource_path)
    app_node = ServiceTreeNode(full_code_path=paths.join(segments[:2]), node_kind=NodeKind.APP.value)
    if resource_type == ResourceType.APP.value:
        return [app_node] if len(segments) == 2 else []
    if len(segments) == 2:
        return []

    chain = [app_node]
    for i in range(3, len(segments)):
        chain.append(ServiceTreeNode(full_code_path=paths.join(segments[:i]), node_kind=NodeKind.PACKAGE.value))
    if resource_type == ResourceType.DIRECTORY.value:
        target = ServiceTreeNode(full_code_path=resource_path, node_kind=NodeKind.PACKAGE.value)
    else:
        target = ServiceTreeNode(
            full_code_path=resource_path, node_kind=NodeKind.FUNCTION.value, template_type=resource_type
        )
    chain.append(target)
    return chain


def build_permission_service(store: Optional[PermissionStore] = None) -> PermissionService:
    """PermissionService over the configured store and refresh interval"""
    from control_plane.config import settings
    from control_plane.modules.permissions.repository import get_permission_store

    return PermissionService(
        store or get_permission_store(),
        refresh_interval=settings.role_cache_refresh_seconds
    )
