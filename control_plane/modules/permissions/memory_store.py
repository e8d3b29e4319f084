"""
In-process PermissionStore used for local runs (storage_backend=memory) and tests.
"""

from copy import deepcopy
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Set
import threading
import uuid

from control_plane.core.clock import utcnow
from control_plane.core.errors import DuplicateRole, StorageError, SystemRoleImmutable
from control_plane.modules.permissions.repository import PermissionStore, Subject
from control_plane.modules.permissions.schemas import (
    Action, Role, RolePermission, RoleAssignment, PermissionRequest, RequestStatus, SubjectType
)


class InMemoryPermissionStore(PermissionStore):
    """
    Dict-backed store. A single lock serialises every operation, so each
    call is atomic the same way a transaction would be.
    """

    def __init__(self, node_admins: Optional[Dict[str, Iterable[str]]] = None):
        self._lock = threading.Lock()
        self._actions: Dict[str, Action] = {}
        self._roles: Dict[str, Role] = {}
        self._role_permissions: Dict[str, RolePermission] = {}
        self._assignments: Dict[str, RoleAssignment] = {}
        self._requests: Dict[str, PermissionRequest] = {}
        self._node_admins: Dict[str, Set[str]] = {
            path: set(admins) for path, admins in (node_admins or {}).items()
        }

    def set_node_admins(self, resource_path: str, admins: Iterable[str]) -> None:
        with self._lock:
            self._node_admins[resource_path] = set(admins)

    # Actions

    def get_action_by_code(self, code: str) -> Optional[Action]:
        with self._lock:
            for action in self._actions.values():
                if action.code == code:
                    return action.model_copy()
        return None

    def create_action(self, data: Dict[str, Any]) -> Action:
        with self._lock:
            if any(a.code == data["code"] for a in self._actions.values()):
                raise StorageError(f"Action {data['code']} already exists")
            action = Action(id=str(uuid.uuid4()), created_at=utcnow(), **data)
            self._actions[action.id] = action
            return action.model_copy()

    def list_actions(self, resource_type: Optional[str] = None) -> List[Action]:
        with self._lock:
            actions = [
                a.model_copy() for a in self._actions.values()
                if resource_type is None or a.resource_type == resource_type
            ]
        return sorted(actions, key=lambda a: a.code)

    def count_actions(self) -> int:
        with self._lock:
            return len(self._actions)

    # Roles

    def get_all_roles(self) -> List[Role]:
        with self._lock:
            return [r.model_copy() for r in self._roles.values()]

    def get_all_role_permissions(self) -> List[RolePermission]:
        with self._lock:
            return [rp.model_copy() for rp in self._role_permissions.values()]

    def get_role(self, role_id: str) -> Optional[Role]:
        with self._lock:
            role = self._roles.get(role_id)
            return role.model_copy() if role else None

    def get_role_by(self, code: str, resource_type: str) -> Optional[Role]:
        with self._lock:
            role = self._find_role(code, resource_type)
            return role.model_copy() if role else None

    def _find_role(self, code: str, resource_type: str) -> Optional[Role]:
        for role in self._roles.values():
            if role.code == code and role.resource_type == resource_type:
                return role
        return None

    def list_roles_by_resource_type(self, resource_type: str) -> List[Role]:
        with self._lock:
            roles = [r.model_copy() for r in self._roles.values() if r.resource_type == resource_type]
        return sorted(roles, key=lambda r: r.code)

    def create_role(self, data: Dict[str, Any]) -> Role:
        with self._lock:
            if self._find_role(data["code"], data["resource_type"]) is not None:
                raise DuplicateRole(f"Role {data['resource_type']}:{data['code']} already exists")
            role = Role(id=str(uuid.uuid4()), created_at=utcnow(), **data)
            self._roles[role.id] = role
            return role.model_copy()

    def update_role(self, role_id: str, data: Dict[str, Any]) -> Optional[Role]:
        with self._lock:
            role = self._roles.get(role_id)
            if role is None:
                return None
            updated = role.model_copy(update={**data, "updated_at": utcnow()})
            self._roles[role_id] = updated
            return updated.model_copy()

    def set_default_role(self, role_id: str) -> None:
        with self._lock:
            role = self._roles.get(role_id)
            if role is None:
                raise StorageError(f"Role {role_id} does not exist")
            for other_id, other in list(self._roles.items()):
                if other.resource_type == role.resource_type:
                    self._roles[other_id] = other.model_copy(update={"is_default": other_id == role_id})

    def delete_role(self, role_id: str) -> None:
        with self._lock:
            role = self._roles.get(role_id)
            if role is None:
                return
            if role.is_system:
                raise SystemRoleImmutable(f"System role {role.resource_type}:{role.code} cannot be deleted")
            self._assignments = {k: a for k, a in self._assignments.items() if a.role_id != role_id}
            self._role_permissions = {k: rp for k, rp in self._role_permissions.items() if rp.role_id != role_id}
            del self._roles[role_id]

    def create_role_permission(self, role_id: str, action_id: str) -> None:
        with self._lock:
            self._insert_role_permission(role_id, action_id)

    def _insert_role_permission(self, role_id: str, action_id: str) -> None:
        if role_id not in self._roles:
            raise StorageError(f"Role {role_id} does not exist")
        if action_id not in self._actions:
            raise StorageError(f"Action {action_id} does not exist")
        if any(rp.role_id == role_id and rp.action_id == action_id for rp in self._role_permissions.values()):
            return
        rp = RolePermission(id=str(uuid.uuid4()), role_id=role_id, action_id=action_id)
        self._role_permissions[rp.id] = rp

    def delete_role_permissions_by_role(self, role_id: str) -> None:
        with self._lock:
            self._role_permissions = {k: rp for k, rp in self._role_permissions.items() if rp.role_id != role_id}

    def replace_role_permissions(self, role_id: str, action_ids: List[str]) -> None:
        with self._lock:
            snapshot = dict(self._role_permissions)
            self._role_permissions = {k: rp for k, rp in self._role_permissions.items() if rp.role_id != role_id}
            try:
                for action_id in action_ids:
                    self._insert_role_permission(role_id, action_id)
            except StorageError:
                self._role_permissions = snapshot
                raise

    # Assignments

    def create_role_assignment(self, data: Dict[str, Any]) -> RoleAssignment:
        with self._lock:
            return self._insert_assignment(data).model_copy()

    def _insert_assignment(self, data: Dict[str, Any]) -> RoleAssignment:
        if data["role_id"] not in self._roles:
            raise StorageError(f"Role {data['role_id']} does not exist")
        assignment = RoleAssignment(id=str(uuid.uuid4()), created_at=utcnow(), **data)
        self._assignments[assignment.id] = assignment
        return assignment

    def _delete_assignments(self, tenant, workspace, subject_type, subject, role_id, resource_path) -> int:
        with self._lock:
            doomed = [
                k for k, a in self._assignments.items()
                if a.tenant == tenant and a.workspace == workspace and a.subject_type == subject_type
                and a.subject == subject and a.role_id == role_id and a.resource_path == resource_path
            ]
            for key in doomed:
                del self._assignments[key]
            return len(doomed)

    def delete_role_assignment_by_user(
        self, tenant: str, workspace: str, username: str, role_id: str, resource_path: str
    ) -> int:
        return self._delete_assignments(tenant, workspace, SubjectType.USER, username, role_id, resource_path)

    def delete_role_assignment_by_department(
        self, tenant: str, workspace: str, department_path: str, role_id: str, resource_path: str
    ) -> int:
        return self._delete_assignments(
            tenant, workspace, SubjectType.DEPARTMENT, department_path, role_id, resource_path
        )

    def get_assignments_by_subjects(
        self, tenant: str, workspace: str, subjects: List[Subject], at_time: datetime
    ) -> List[RoleAssignment]:
        wanted = {(SubjectType(subject_type), subject) for subject_type, subject in subjects}
        with self._lock:
            return [
                a.model_copy() for a in self._assignments.values()
                if a.tenant == tenant and a.workspace == workspace
                and (a.subject_type, a.subject) in wanted and a.is_effective(at_time)
            ]

    def get_assignments_by_user(self, tenant: str, workspace: str, username: str) -> List[RoleAssignment]:
        return self._list_assignments(tenant, workspace, SubjectType.USER, username)

    def get_assignments_by_department(
        self, tenant: str, workspace: str, department_path: str
    ) -> List[RoleAssignment]:
        return self._list_assignments(tenant, workspace, SubjectType.DEPARTMENT, department_path)

    def _list_assignments(self, tenant, workspace, subject_type, subject) -> List[RoleAssignment]:
        with self._lock:
            return [
                a.model_copy() for a in self._assignments.values()
                if a.tenant == tenant and a.workspace == workspace
                and a.subject_type == subject_type and a.subject == subject
            ]

    def get_assignments_by_resource_path(
        self, tenant: str, workspace: str, resource_paths: List[str]
    ) -> List[RoleAssignment]:
        paths = set(resource_paths)
        with self._lock:
            return [
                a.model_copy() for a in self._assignments.values()
                if a.tenant == tenant and a.workspace == workspace and a.resource_path in paths
            ]

    # Permission requests

    def create_permission_request(self, data: Dict[str, Any]) -> PermissionRequest:
        with self._lock:
            request = PermissionRequest(id=str(uuid.uuid4()), created_at=utcnow(), **data)
            self._requests[request.id] = request
            return request.model_copy()

    def get_permission_request(self, request_id: str) -> Optional[PermissionRequest]:
        with self._lock:
            request = self._requests.get(request_id)
            return request.model_copy() if request else None

    def transition_permission_request(
        self, request_id: str, status: RequestStatus, fields: Dict[str, Any]
    ) -> Optional[PermissionRequest]:
        with self._lock:
            request = self._requests.get(request_id)
            if request is None or request.status is not RequestStatus.PENDING:
                return None
            updated = request.model_copy(update={**deepcopy(fields), "status": status, "updated_at": utcnow()})
            self._requests[request_id] = updated
            return updated.model_copy()

    def approve_permission_request(
        self, request_id: str, approved_by: str, approved_at: datetime, assignment: Dict[str, Any]
    ) -> Optional[PermissionRequest]:
        with self._lock:
            request = self._requests.get(request_id)
            if request is None or request.status is not RequestStatus.PENDING:
                return None
            created = self._insert_assignment(assignment)
            updated = request.model_copy(update={
                "status": RequestStatus.APPROVED,
                "approved_by": approved_by,
                "approved_at": approved_at,
                "role_assignment_id": created.id,
                "updated_at": utcnow(),
            })
            self._requests[request_id] = updated
            return updated.model_copy()

    def list_pending_requests_by_resource(self, resource_path: str) -> List[PermissionRequest]:
        with self._lock:
            return [
                r.model_copy() for r in self._requests.values()
                if r.resource_path == resource_path and r.status is RequestStatus.PENDING
            ]

    def list_requests_by_applicant(self, applicant: str) -> List[PermissionRequest]:
        with self._lock:
            return [r.model_copy() for r in self._requests.values() if r.applicant == applicant]

    # Service tree

    def get_node_admins(self, resource_path: str) -> Set[str]:
        with self._lock:
            return set(self._node_admins.get(resource_path, set()))
