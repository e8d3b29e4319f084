"""
Persistence contracts of the authorization core and the Supabase-backed store.

Services depend on PermissionStore only; get_permission_store() picks the
implementation from settings.storage_backend.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Set, Tuple
import logging

from supabase import Client

from control_plane.core.errors import DuplicateRole, StorageError, SystemRoleImmutable
from control_plane.modules.permissions.schemas import (
    Action, Role, RolePermission, RoleAssignment, PermissionRequest, RequestStatus, SubjectType
)

logger = logging.getLogger(__name__)

Subject = Tuple[str, str]  # (subject_type, subject)


class PermissionStore(ABC):
    """Storage operations consumed by the role cache and the services."""

    # Actions

    @abstractmethod
    def get_action_by_code(self, code: str) -> Optional[Action]: ...

    @abstractmethod
    def create_action(self, data: Dict[str, Any]) -> Action: ...

    @abstractmethod
    def list_actions(self, resource_type: Optional[str] = None) -> List[Action]: ...

    @abstractmethod
    def count_actions(self) -> int: ...

    # Roles

    @abstractmethod
    def get_all_roles(self) -> List[Role]: ...

    @abstractmethod
    def get_all_role_permissions(self) -> List[RolePermission]: ...

    @abstractmethod
    def get_role(self, role_id: str) -> Optional[Role]: ...

    @abstractmethod
    def get_role_by(self, code: str, resource_type: str) -> Optional[Role]: ...

    @abstractmethod
    def list_roles_by_resource_type(self, resource_type: str) -> List[Role]: ...

    @abstractmethod
    def create_role(self, data: Dict[str, Any]) -> Role:
        """Insert a role; raises DuplicateRole on a (code, resource_type) collision."""

    @abstractmethod
    def update_role(self, role_id: str, data: Dict[str, Any]) -> Optional[Role]: ...

    @abstractmethod
    def set_default_role(self, role_id: str) -> None:
        """Mark the role default and clear the flag on every other role of its resource type, atomically."""

    @abstractmethod
    def delete_role(self, role_id: str) -> None:
        """Delete a non-system role with its permissions and assignments, atomically."""

    @abstractmethod
    def create_role_permission(self, role_id: str, action_id: str) -> None: ...

    @abstractmethod
    def delete_role_permissions_by_role(self, role_id: str) -> None: ...

    @abstractmethod
    def replace_role_permissions(self, role_id: str, action_ids: List[str]) -> None:
        """Swap the whole permission set of a role in one transaction."""

    # Assignments

    @abstractmethod
    def create_role_assignment(self, data: Dict[str, Any]) -> RoleAssignment: ...

    @abstractmethod
    def delete_role_assignment_by_user(
        self, tenant: str, workspace: str, username: str, role_id: str, resource_path: str
    ) -> int: ...

    @abstractmethod
    def delete_role_assignment_by_department(
        self, tenant: str, workspace: str, department_path: str, role_id: str, resource_path: str
    ) -> int: ...

    @abstractmethod
    def get_assignments_by_subjects(
        self, tenant: str, workspace: str, subjects: List[Subject], at_time: datetime
    ) -> List[RoleAssignment]:
        """Every assignment effective at at_time whose subject matches one of the pairs, in one round trip."""

    @abstractmethod
    def get_assignments_by_user(self, tenant: str, workspace: str, username: str) -> List[RoleAssignment]: ...

    @abstractmethod
    def get_assignments_by_department(
        self, tenant: str, workspace: str, department_path: str
    ) -> List[RoleAssignment]: ...

    @abstractmethod
    def get_assignments_by_resource_path(
        self, tenant: str, workspace: str, resource_paths: List[str]
    ) -> List[RoleAssignment]: ...

    # Permission requests

    @abstractmethod
    def create_permission_request(self, data: Dict[str, Any]) -> PermissionRequest: ...

    @abstractmethod
    def get_permission_request(self, request_id: str) -> Optional[PermissionRequest]: ...

    @abstractmethod
    def transition_permission_request(
        self, request_id: str, status: RequestStatus, fields: Dict[str, Any]
    ) -> Optional[PermissionRequest]:
        """Move a pending request to a terminal status; returns None when it is no longer pending."""

    @abstractmethod
    def approve_permission_request(
        self, request_id: str, approved_by: str, approved_at: datetime, assignment: Dict[str, Any]
    ) -> Optional[PermissionRequest]:
        """Approve a pending request and insert its assignment in one transaction; None when not pending."""

    @abstractmethod
    def list_pending_requests_by_resource(self, resource_path: str) -> List[PermissionRequest]: ...

    @abstractmethod
    def list_requests_by_applicant(self, applicant: str) -> List[PermissionRequest]: ...

    # Service tree

    @abstractmethod
    def get_node_admins(self, resource_path: str) -> Set[str]: ...


def _serialize(data: Dict[str, Any]) -> Dict[str, Any]:
    """Make a payload JSON-safe for PostgREST."""
    payload = {}
    for key, value in data.items():
        if isinstance(value, datetime):
            value = value.isoformat()
        elif isinstance(value, Enum):
            value = value.value
        payload[key] = value
    return payload


def _quote(value: str) -> str:
    """Quote a value for a PostgREST logical filter; department paths contain reserved characters."""
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


class SupabasePermissionStore(PermissionStore):
    def __init__(self, supabase: Client):
        self.supabase = supabase

    # Actions

    def get_action_by_code(self, code: str) -> Optional[Action]:
        try:
            result = self.supabase.table("actions")\
                .select("*")\
                .eq("code", code)\
                .limit(1)\
                .execute()
        except Exception as e:
            raise StorageError(f"Failed to load action {code}: {e}") from e
        return Action(**result.data[0]) if result.data else None

    def create_action(self, data: Dict[str, Any]) -> Action:
        try:
            result = self.supabase.table("actions").insert(_serialize(data)).execute()
        except Exception as e:
            raise StorageError(f"Failed to create action {data.get('code')}: {e}") from e
        if not result.data:
            raise StorageError(f"Failed to create action {data.get('code')}")
        return Action(**result.data[0])

    def list_actions(self, resource_type: Optional[str] = None) -> List[Action]:
        try:
            query = self.supabase.table("actions").select("*")
            if resource_type:
                query = query.eq("resource_type", resource_type)
            result = query.order("code").execute()
        except Exception as e:
            raise StorageError(f"Failed to list actions: {e}") from e
        return [Action(**row) for row in result.data or []]

    def count_actions(self) -> int:
        try:
            result = self.supabase.table("actions").select("id", count="exact").execute()
        except Exception as e:
            raise StorageError(f"Failed to count actions: {e}") from e
        return result.count or 0

    # Roles

    def get_all_roles(self) -> List[Role]:
        try:
            result = self.supabase.table("roles").select("*").execute()
        except Exception as e:
            raise StorageError(f"Failed to load roles: {e}") from e
        return [Role(**row) for row in result.data or []]

    def get_all_role_permissions(self) -> List[RolePermission]:
        try:
            result = self.supabase.table("role_permissions").select("id, role_id, action_id").execute()
        except Exception as e:
            raise StorageError(f"Failed to load role permissions: {e}") from e
        return [RolePermission(**row) for row in result.data or []]

    def get_role(self, role_id: str) -> Optional[Role]:
        try:
            result = self.supabase.table("roles")\
                .select("*")\
                .eq("id", role_id)\
                .limit(1)\
                .execute()
        except Exception as e:
            raise StorageError(f"Failed to load role {role_id}: {e}") from e
        return Role(**result.data[0]) if result.data else None

    def get_role_by(self, code: str, resource_type: str) -> Optional[Role]:
        try:
            result = self.supabase.table("roles")\
                .select("*")\
                .eq("code", code)\
                .eq("resource_type", resource_type)\
                .limit(1)\
                .execute()
        except Exception as e:
            raise StorageError(f"Failed to load role {resource_type}:{code}: {e}") from e
        return Role(**result.data[0]) if result.data else None

    def list_roles_by_resource_type(self, resource_type: str) -> List[Role]:
        try:
            result = self.supabase.table("roles")\
                .select("*")\
                .eq("resource_type", resource_type)\
                .order("code")\
                .execute()
        except Exception as e:
            raise StorageError(f"Failed to list {resource_type} roles: {e}") from e
        return [Role(**row) for row in result.data or []]

    def create_role(self, data: Dict[str, Any]) -> Role:
        try:
            result = self.supabase.table("roles").insert(_serialize(data)).execute()
        except Exception as e:
            if "unique" in str(e).lower() or "duplicate" in str(e).lower():
                raise DuplicateRole(f"Role {data.get('resource_type')}:{data.get('code')} already exists") from e
            raise StorageError(f"Failed to create role: {e}") from e
        if not result.data:
            raise StorageError("Failed to create role")
        return Role(**result.data[0])

    def update_role(self, role_id: str, data: Dict[str, Any]) -> Optional[Role]:
        try:
            result = self.supabase.table("roles")\
                .update(_serialize(data))\
                .eq("id", role_id)\
                .execute()
        except Exception as e:
            raise StorageError(f"Failed to update role {role_id}: {e}") from e
        return Role(**result.data[0]) if result.data else None

    def set_default_role(self, role_id: str) -> None:
        try:
            self.supabase.rpc("set_default_role", {"p_role_id": role_id}).execute()
        except Exception as e:
            raise StorageError(f"Failed to set default role {role_id}: {e}") from e

    def delete_role(self, role_id: str) -> None:
        role = self.get_role(role_id)
        if role is not None and role.is_system:
            raise SystemRoleImmutable(f"System role {role.resource_type}:{role.code} cannot be deleted")
        try:
            self.supabase.rpc("delete_role_cascade", {"p_role_id": role_id}).execute()
        except Exception as e:
            raise StorageError(f"Failed to delete role {role_id}: {e}") from e

    def create_role_permission(self, role_id: str, action_id: str) -> None:
        try:
            self.supabase.table("role_permissions").insert({
                "role_id": role_id,
                "action_id": action_id
            }).execute()
        except Exception as e:
            raise StorageError(f"Failed to add permission to role {role_id}: {e}") from e

    def delete_role_permissions_by_role(self, role_id: str) -> None:
        try:
            self.supabase.table("role_permissions")\
                .delete()\
                .eq("role_id", role_id)\
                .execute()
        except Exception as e:
            raise StorageError(f"Failed to clear permissions of role {role_id}: {e}") from e

    def replace_role_permissions(self, role_id: str, action_ids: List[str]) -> None:
        try:
            self.supabase.rpc("replace_role_permissions", {
                "p_role_id": role_id,
                "p_action_ids": list(action_ids)
            }).execute()
        except Exception as e:
            raise StorageError(f"Failed to replace permissions of role {role_id}: {e}") from e

    # Assignments

    def create_role_assignment(self, data: Dict[str, Any]) -> RoleAssignment:
        try:
            result = self.supabase.table("role_assignments").insert(_serialize(data)).execute()
        except Exception as e:
            raise StorageError(f"Failed to create role assignment: {e}") from e
        if not result.data:
            raise StorageError("Failed to create role assignment")
        return RoleAssignment(**result.data[0])

    def _delete_assignment(
        self, tenant: str, workspace: str, subject_type: SubjectType, subject: str, role_id: str, resource_path: str
    ) -> int:
        try:
            result = self.supabase.table("role_assignments")\
                .delete()\
                .eq("tenant", tenant)\
                .eq("workspace", workspace)\
                .eq("subject_type", subject_type.value)\
                .eq("subject", subject)\
                .eq("role_id", role_id)\
                .eq("resource_path", resource_path)\
                .execute()
        except Exception as e:
            raise StorageError(f"Failed to delete role assignment: {e}") from e
        return len(result.data or [])

    def delete_role_assignment_by_user(
        self, tenant: str, workspace: str, username: str, role_id: str, resource_path: str
    ) -> int:
        return self._delete_assignment(tenant, workspace, SubjectType.USER, username, role_id, resource_path)

    def delete_role_assignment_by_department(
        self, tenant: str, workspace: str, department_path: str, role_id: str, resource_path: str
    ) -> int:
        return self._delete_assignment(
            tenant, workspace, SubjectType.DEPARTMENT, department_path, role_id, resource_path
        )

    def get_assignments_by_subjects(
        self, tenant: str, workspace: str, subjects: List[Subject], at_time: datetime
    ) -> List[RoleAssignment]:
        if not subjects:
            return []
        subject_filter = ",".join(
            f"and(subject_type.eq.{subject_type},subject.eq.{_quote(subject)})"
            for subject_type, subject in subjects
        )
        try:
            result = self.supabase.table("role_assignments")\
                .select("*")\
                .eq("tenant", tenant)\
                .eq("workspace", workspace)\
                .or_(subject_filter)\
                .lte("start_time", at_time.isoformat())\
                .execute()
        except Exception as e:
            raise StorageError(f"Failed to load assignments for {tenant}/{workspace}: {e}") from e
        assignments = [RoleAssignment(**row) for row in result.data or []]
        return [a for a in assignments if a.is_effective(at_time)]

    def get_assignments_by_user(self, tenant: str, workspace: str, username: str) -> List[RoleAssignment]:
        return self._list_assignments(tenant, workspace, SubjectType.USER, username)

    def get_assignments_by_department(
        self, tenant: str, workspace: str, department_path: str
    ) -> List[RoleAssignment]:
        return self._list_assignments(tenant, workspace, SubjectType.DEPARTMENT, department_path)

    def _list_assignments(
        self, tenant: str, workspace: str, subject_type: SubjectType, subject: str
    ) -> List[RoleAssignment]:
        try:
            result = self.supabase.table("role_assignments")\
                .select("*")\
                .eq("tenant", tenant)\
                .eq("workspace", workspace)\
                .eq("subject_type", subject_type.value)\
                .eq("subject", subject)\
                .order("created_at", desc=True)\
                .execute()
        except Exception as e:
            raise StorageError(f"Failed to list assignments of {subject}: {e}") from e
        return [RoleAssignment(**row) for row in result.data or []]

    def get_assignments_by_resource_path(
        self, tenant: str, workspace: str, resource_paths: List[str]
    ) -> List[RoleAssignment]:
        if not resource_paths:
            return []
        try:
            result = self.supabase.table("role_assignments")\
                .select("*")\
                .eq("tenant", tenant)\
                .eq("workspace", workspace)\
                .in_("resource_path", list(resource_paths))\
                .order("created_at", desc=True)\
                .execute()
        except Exception as e:
            raise StorageError(f"Failed to list assignments on {resource_paths[0]}: {e}") from e
        return [RoleAssignment(**row) for row in result.data or []]

    # Permission requests

    def create_permission_request(self, data: Dict[str, Any]) -> PermissionRequest:
        try:
            result = self.supabase.table("permission_requests").insert(_serialize(data)).execute()
        except Exception as e:
            raise StorageError(f"Failed to create permission request: {e}") from e
        if not result.data:
            raise StorageError("Failed to create permission request")
        return PermissionRequest(**result.data[0])

    def get_permission_request(self, request_id: str) -> Optional[PermissionRequest]:
        try:
            result = self.supabase.table("permission_requests")\
                .select("*")\
                .eq("id", request_id)\
                .limit(1)\
                .execute()
        except Exception as e:
            raise StorageError(f"Failed to load permission request {request_id}: {e}") from e
        return PermissionRequest(**result.data[0]) if result.data else None

    def transition_permission_request(
        self, request_id: str, status: RequestStatus, fields: Dict[str, Any]
    ) -> Optional[PermissionRequest]:
        update_data = _serialize({**fields, "status": status})
        try:
            # Guarding on the current status makes the transition a compare-and-set
            result = self.supabase.table("permission_requests")\
                .update(update_data)\
                .eq("id", request_id)\
                .eq("status", RequestStatus.PENDING.value)\
                .execute()
        except Exception as e:
            raise StorageError(f"Failed to update permission request {request_id}: {e}") from e
        return PermissionRequest(**result.data[0]) if result.data else None

    def approve_permission_request(
        self, request_id: str, approved_by: str, approved_at: datetime, assignment: Dict[str, Any]
    ) -> Optional[PermissionRequest]:
        try:
            result = self.supabase.rpc("approve_permission_request", {
                "p_request_id": request_id,
                "p_approved_by": approved_by,
                "p_approved_at": approved_at.isoformat(),
                "p_assignment": _serialize(assignment)
            }).execute()
        except Exception as e:
            raise StorageError(f"Failed to approve permission request {request_id}: {e}") from e
        row = result.data[0] if isinstance(result.data, list) and result.data else result.data
        return PermissionRequest(**row) if row else None

    def list_pending_requests_by_resource(self, resource_path: str) -> List[PermissionRequest]:
        try:
            result = self.supabase.table("permission_requests")\
                .select("*")\
                .eq("resource_path", resource_path)\
                .eq("status", RequestStatus.PENDING.value)\
                .order("created_at", desc=True)\
                .execute()
        except Exception as e:
            raise StorageError(f"Failed to list pending requests on {resource_path}: {e}") from e
        return [PermissionRequest(**row) for row in result.data or []]

    def list_requests_by_applicant(self, applicant: str) -> List[PermissionRequest]:
        try:
            result = self.supabase.table("permission_requests")\
                .select("*")\
                .eq("applicant", applicant)\
                .order("created_at", desc=True)\
                .execute()
        except Exception as e:
            raise StorageError(f"Failed to list requests of {applicant}: {e}") from e
        return [PermissionRequest(**row) for row in result.data or []]

    # Service tree

    def get_node_admins(self, resource_path: str) -> Set[str]:
        try:
            result = self.supabase.table("service_tree")\
                .select("admins")\
                .eq("full_code_path", resource_path)\
                .limit(1)\
                .execute()
        except Exception as e:
            raise StorageError(f"Failed to load admins of {resource_path}: {e}") from e
        if not result.data:
            return set()
        return set(result.data[0].get("admins") or [])


def get_permission_store() -> PermissionStore:
    """Build the store configured by settings.storage_backend."""
    from control_plane.config import settings

    if settings.uses_memory_store:
        from control_plane.modules.permissions.memory_store import InMemoryPermissionStore
        logger.info("Using in-memory permission store")
        return InMemoryPermissionStore()

    from control_plane.database.supabase_client import SupabaseClient
    return SupabasePermissionStore(SupabaseClient.get_service_client())
