from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional
import logging

from control_plane.config.permissions_config import PERMISSION_MATRIX, RESOURCE_TYPES
from control_plane.core.clock import Clock, as_utc, utcnow
from control_plane.core.errors import (
    DuplicateRole, InvalidActionCode, InvalidResourceType, NotAuthorized, NotEffective,
    SystemRoleImmutable, UnknownAction, UnknownRole
)
from control_plane.modules.permissions import paths
from control_plane.modules.permissions.actions import parse_code, is_valid_code, resource_type_of
from control_plane.modules.permissions.repository import PermissionStore
from control_plane.modules.permissions.role_cache import RoleCache
from control_plane.modules.permissions.schemas import (
    Role, RoleAssignment, RoleWithPermissionsResponse, SubjectType
)

logger = logging.getLogger(__name__)


class RoleService:
    """Role CRUD, role assignment and system role seeding. Every role mutation refreshes the cache."""

    def __init__(self, store: PermissionStore, cache: RoleCache, clock: Clock = utcnow):
        self.store = store
        self.cache = cache
        self.clock = clock

    # Role definitions

    def _resolve_action_ids(self, permissions: Dict[str, Iterable[str]]) -> List[str]:
        """Validate a resource_type -> action codes map and return the matching action ids."""
        action_ids = []
        for resource_type, codes in permissions.items():
            if resource_type not in RESOURCE_TYPES:
                raise InvalidResourceType(f"Unknown resource type: {resource_type!r}")
            for code in codes:
                code_resource_type, _ = parse_code(code)
                if code_resource_type != resource_type or not is_valid_code(code):
                    raise InvalidActionCode(f"Action {code} is not valid for resource type {resource_type}")
                action = self.store.get_action_by_code(code)
                if action is None:
                    raise UnknownAction(f"Action {code} does not exist")
                if action.id not in action_ids:
                    action_ids.append(action.id)
        return action_ids

    def create_role(
        self,
        name: str,
        code: str,
        permissions: Dict[str, Iterable[str]],
        description: Optional[str] = None,
        created_by: Optional[str] = None
    ) -> RoleWithPermissionsResponse:
        """Create a custom role; its primary resource type is the first key of permissions."""
        if not permissions:
            raise InvalidResourceType("A role needs permissions on at least one resource type")
        resource_type = next(iter(permissions))
        if resource_type not in RESOURCE_TYPES:
            raise InvalidResourceType(f"Unknown resource type: {resource_type!r}")
        if self.store.get_role_by(code, resource_type) is not None:
            raise DuplicateRole(f"Role {resource_type}:{code} already exists")

        action_ids = self._resolve_action_ids(permissions)
        role = self.store.create_role({
            "name": name,
            "code": code,
            "resource_type": resource_type,
            "description": description,
            "is_system": False,
            "is_default": False,
            "created_by": created_by
        })
        try:
            self.store.replace_role_permissions(role.id, action_ids)
        except Exception:
            self.store.delete_role(role.id)
            raise

        logger.info(f"Created role {resource_type}:{code} with {len(action_ids)} permissions")
        self.cache.refresh()
        return self.get_role(role.id)

    def update_role(
        self,
        role_id: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
        is_default: Optional[bool] = None,
        permissions: Optional[Dict[str, Iterable[str]]] = None
    ) -> RoleWithPermissionsResponse:
        """Update name, description, default flag and/or replace the permission set. Code and resource type are fixed."""
        role = self.store.get_role(role_id)
        if role is None:
            raise UnknownRole(f"Role {role_id} not found")

        action_ids = self._resolve_action_ids(permissions) if permissions is not None else None

        update_data: Dict[str, Any] = {}
        if name:
            update_data["name"] = name
        if description is not None:
            update_data["description"] = description
        if is_default is False:
            update_data["is_default"] = False
        if update_data:
            self.store.update_role(role_id, update_data)
        if is_default:
            self.store.set_default_role(role_id)
        if action_ids is not None:
            self.store.replace_role_permissions(role_id, action_ids)

        logger.info(f"Updated role {role.resource_type}:{role.code}")
        self.cache.refresh()
        return self.get_role(role_id)

    def delete_role(self, role_id: str) -> None:
        """Delete a custom role together with its permissions and assignments"""
        role = self.store.get_role(role_id)
        if role is None:
            raise UnknownRole(f"Role {role_id} not found")
        if role.is_system:
            raise SystemRoleImmutable(f"System role {role.resource_type}:{role.code} cannot be deleted")
        self.store.delete_role(role_id)
        logger.info(f"Deleted role {role.resource_type}:{role.code}")
        self.cache.refresh()

    def _with_permissions(self, role: Role) -> RoleWithPermissionsResponse:
        permissions = self.cache.get_role_permissions(role.id) or {}
        return RoleWithPermissionsResponse(
            **role.model_dump(),
            permissions={rt: sorted(codes) for rt, codes in permissions.items()}
        )

    def _cached_role(self, role_id: str) -> Optional[Role]:
        role = self.cache.get_role(role_id)
        if role is None:
            # A role created by another process shows up after one reload
            self.cache.refresh()
            role = self.cache.get_role(role_id)
        return role

    def get_role(self, role_id: str) -> RoleWithPermissionsResponse:
        role = self._cached_role(role_id)
        if role is None:
            raise UnknownRole(f"Role {role_id} not found")
        return self._with_permissions(role)

    def get_role_by_code(self, resource_type: str, code: str) -> Role:
        role = self.cache.get_role_by_code(resource_type, code)
        if role is None:
            self.cache.refresh()
            role = self.cache.get_role_by_code(resource_type, code)
        if role is None:
            raise UnknownRole(f"Role {resource_type}:{code} not found")
        return role

    def list_roles(self, resource_type: Optional[str] = None) -> List[RoleWithPermissionsResponse]:
        if resource_type is not None and resource_type not in RESOURCE_TYPES:
            raise InvalidResourceType(f"Unknown resource type: {resource_type!r}")
        self.cache.ensure_fresh()
        return [self._with_permissions(role) for role in self.cache.list_roles(resource_type)]

    def get_roles_for_permission_request(
        self, node_kind: str, template_type: Optional[str] = None
    ) -> List[RoleWithPermissionsResponse]:
        """Roles a user may request on a node of this kind, default role first"""
        resource_type = resource_type_of(node_kind, template_type)
        if resource_type is None:
            raise InvalidResourceType(f"Cannot determine resource type of a {node_kind} node")
        roles = self.list_roles(resource_type)
        return sorted(roles, key=lambda r: (not r.is_default, r.code))

    # Assignments

    def build_assignment(
        self,
        tenant: str,
        workspace: str,
        subject_type: SubjectType,
        subject: str,
        role_id: str,
        resource_path: str,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        created_by: Optional[str] = None
    ) -> Dict[str, Any]:
        """Validate scope and window and return the assignment row to insert."""
        if paths.tenant_app(resource_path) != (tenant, workspace):
            raise NotAuthorized(f"{resource_path} does not belong to workspace /{tenant}/{workspace}")
        if subject_type == SubjectType.DEPARTMENT:
            paths.split(subject)
        start_time = as_utc(start_time) or self.clock()
        end_time = as_utc(end_time)
        if end_time is not None and end_time <= start_time:
            raise NotEffective("end_time must be after start_time")
        return {
            "tenant": tenant,
            "workspace": workspace,
            "subject_type": subject_type,
            "subject": subject,
            "role_id": role_id,
            "resource_path": resource_path,
            "start_time": start_time,
            "end_time": end_time,
            "created_by": created_by
        }

    def _assign(
        self, subject_type: SubjectType, tenant: str, workspace: str, subject: str, role_code: str,
        resource_type: str, resource_path: str, start_time: Optional[datetime],
        end_time: Optional[datetime], created_by: Optional[str]
    ) -> RoleAssignment:
        role = self.get_role_by_code(resource_type, role_code)
        data = self.build_assignment(
            tenant, workspace, subject_type, subject, role.id, resource_path, start_time, end_time, created_by
        )
        assignment = self.store.create_role_assignment(data)
        logger.info(f"Assigned {resource_type}:{role_code} to {subject_type.value} {subject} at {resource_path}")
        return assignment

    def assign_role_to_user(
        self,
        tenant: str,
        workspace: str,
        username: str,
        role_code: str,
        resource_type: str,
        resource_path: str,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        created_by: Optional[str] = None
    ) -> RoleAssignment:
        return self._assign(
            SubjectType.USER, tenant, workspace, username, role_code,
            resource_type, resource_path, start_time, end_time, created_by
        )

    def assign_role_to_department(
        self,
        tenant: str,
        workspace: str,
        department_path: str,
        role_code: str,
        resource_type: str,
        resource_path: str,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        created_by: Optional[str] = None
    ) -> RoleAssignment:
        return self._assign(
            SubjectType.DEPARTMENT, tenant, workspace, department_path, role_code,
            resource_type, resource_path, start_time, end_time, created_by
        )

    def remove_role_from_user(
        self, tenant: str, workspace: str, username: str, role_code: str, resource_type: str, resource_path: str
    ) -> int:
        role = self.get_role_by_code(resource_type, role_code)
        if paths.tenant_app(resource_path) != (tenant, workspace):
            raise NotAuthorized(f"{resource_path} does not belong to workspace /{tenant}/{workspace}")
        removed = self.store.delete_role_assignment_by_user(tenant, workspace, username, role.id, resource_path)
        logger.info(f"Removed {resource_type}:{role_code} from user {username} at {resource_path} ({removed} rows)")
        return removed

    def remove_role_from_department(
        self, tenant: str, workspace: str, department_path: str, role_code: str, resource_type: str, resource_path: str
    ) -> int:
        role = self.get_role_by_code(resource_type, role_code)
        if paths.tenant_app(resource_path) != (tenant, workspace):
            raise NotAuthorized(f"{resource_path} does not belong to workspace /{tenant}/{workspace}")
        removed = self.store.delete_role_assignment_by_department(
            tenant, workspace, department_path, role.id, resource_path
        )
        logger.info(
            f"Removed {resource_type}:{role_code} from department {department_path} at {resource_path} ({removed} rows)"
        )
        return removed

    def get_user_roles(self, tenant: str, workspace: str, username: str) -> List[RoleAssignment]:
        return self.store.get_assignments_by_user(tenant, workspace, username)

    def get_department_roles(self, tenant: str, workspace: str, department_path: str) -> List[RoleAssignment]:
        paths.split(department_path)
        return self.store.get_assignments_by_department(tenant, workspace, department_path)

    # Seeding

    def seed_system_roles(self) -> int:
        """
        Upsert the canonical system roles and re-assert their permission sets.
        The canonical default of a resource type is only applied when that type has no default yet,
        so an administrator's choice survives restarts. Returns the number of roles created.
        """
        created = 0
        for role_config in PERMISSION_MATRIX["roles"]:
            resource_type = role_config["resource_type"]
            code = role_config["code"]
            grouped: Dict[str, List[str]] = {}
            for permission in role_config["permissions"]:
                grouped.setdefault(parse_code(permission)[0], []).append(permission)
            action_ids = self._resolve_action_ids(grouped)
            has_default = any(r.is_default for r in self.store.list_roles_by_resource_type(resource_type))

            role = self.store.get_role_by(code, resource_type)
            if role is None:
                role = self.store.create_role({
                    "name": role_config["name"],
                    "code": code,
                    "resource_type": resource_type,
                    "description": role_config["description"],
                    "is_system": True,
                    "is_default": role_config["is_default"] and not has_default,
                    "created_by": "system"
                })
                created += 1
            else:
                if not role.is_system:
                    self.store.update_role(role.id, {"is_system": True})
                if role_config["is_default"] and not has_default:
                    self.store.set_default_role(role.id)

            self.store.replace_role_permissions(role.id, action_ids)

        logger.info(f"Seeded system roles ({created} created)")
        self.cache.refresh()
        return created
