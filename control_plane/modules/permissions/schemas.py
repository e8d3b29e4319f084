from __future__ import annotations

from pydantic import AwareDatetime, BaseModel, Field
from typing import Optional, List, Dict, Set
from datetime import datetime
from enum import Enum

from control_plane.core.clock import as_utc


class ResourceType(str, Enum):
    DIRECTORY = "directory"
    TABLE = "table"
    FORM = "form"
    CHART = "chart"
    APP = "app"


class ActionType(str, Enum):
    READ = "read"
    WRITE = "write"
    UPDATE = "update"
    DELETE = "delete"
    ADMIN = "admin"


class NodeKind(str, Enum):
    PACKAGE = "package"
    FUNCTION = "function"
    APP = "app"


class TemplateType(str, Enum):
    TABLE = "table"
    FORM = "form"
    CHART = "chart"


class SubjectType(str, Enum):
    USER = "user"
    DEPARTMENT = "department"


class RequestStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not RequestStatus.PENDING


# ---------------------------------------------------------------------------
# Stored entities
# ---------------------------------------------------------------------------


class Action(BaseModel):
    id: str
    code: str
    resource_type: str
    action_type: str
    name: Optional[str] = None
    description: Optional[str] = None
    is_system: bool = False
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class Role(BaseModel):
    """Role identity and flags; the permission set lives in RolePermissionSet."""
    id: str
    name: str
    code: str
    resource_type: str
    description: Optional[str] = None
    is_system: bool = False
    is_default: bool = False
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class RolePermission(BaseModel):
    role_id: str
    action_id: str
    id: Optional[str] = None

    class Config:
        from_attributes = True


class RolePermissionSet(BaseModel):
    """Projection of a role's permission rows: resource_type -> action codes."""
    role_id: str
    permissions: Dict[str, Set[str]] = Field(default_factory=dict)

    def codes(self) -> Set[str]:
        return {code for codes in self.permissions.values() for code in codes}

    def for_resource_type(self, resource_type: str) -> Set[str]:
        return set(self.permissions.get(resource_type, set()))


class RoleAssignment(BaseModel):
    id: str
    tenant: str
    workspace: str
    subject_type: SubjectType
    subject: str
    role_id: str
    resource_path: str
    start_time: datetime
    end_time: Optional[datetime] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

    def is_effective(self, at: datetime) -> bool:
        at = as_utc(at)
        if at < as_utc(self.start_time):
            return False
        return self.end_time is None or at < as_utc(self.end_time)


class PermissionRequest(BaseModel):
    id: str
    tenant: str
    workspace: str
    applicant: str
    subject_type: SubjectType
    subject: str
    resource_path: str
    role_id: str
    start_time: datetime
    end_time: Optional[datetime] = None
    reason: Optional[str] = None
    status: RequestStatus = RequestStatus.PENDING
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    rejected_by: Optional[str] = None
    rejected_at: Optional[datetime] = None
    reject_reason: Optional[str] = None
    cancelled_by: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    role_assignment_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ServiceTreeNode(BaseModel):
    """A node of the workspace service tree as handed over by the tree owner."""
    full_code_path: str
    node_kind: str
    template_type: Optional[str] = None
    children: List[ServiceTreeNode] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Role management payloads
# ---------------------------------------------------------------------------


class RoleCreate(BaseModel):
    name: str
    code: str
    description: Optional[str] = None
    permissions: Dict[str, List[str]]  # resource_type -> action codes; first key is the primary type


class RoleUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    is_default: Optional[bool] = None
    permissions: Optional[Dict[str, List[str]]] = None


class RoleWithPermissionsResponse(Role):
    permissions: Dict[str, List[str]] = Field(default_factory=dict)


class AssignRoleToUserRequest(BaseModel):
    tenant: str
    workspace: str
    username: str
    role_code: str
    resource_type: str
    resource_path: str
    start_time: Optional[AwareDatetime] = None
    end_time: Optional[AwareDatetime] = None


class AssignRoleToDepartmentRequest(BaseModel):
    tenant: str
    workspace: str
    department_path: str
    role_code: str
    resource_type: str
    resource_path: str
    start_time: Optional[AwareDatetime] = None
    end_time: Optional[AwareDatetime] = None


class RemoveRoleFromUserRequest(BaseModel):
    tenant: str
    workspace: str
    username: str
    role_code: str
    resource_type: str
    resource_path: str


class RemoveRoleFromDepartmentRequest(BaseModel):
    tenant: str
    workspace: str
    department_path: str
    role_code: str
    resource_type: str
    resource_path: str


# ---------------------------------------------------------------------------
# Permission requests and evaluation payloads
# ---------------------------------------------------------------------------


class PermissionRequestCreate(BaseModel):
    subject_type: SubjectType = SubjectType.USER
    subject: Optional[str] = None  # defaults to the applicant for user requests
    resource_path: str
    role_id: str
    start_time: Optional[AwareDatetime] = None
    end_time: Optional[AwareDatetime] = None
    reason: Optional[str] = None


class PermissionRequestReject(BaseModel):
    reason: Optional[str] = None


class PermissionRequestCreatedResponse(BaseModel):
    request: PermissionRequest
    approvers: List[str]


class WorkspacePermissionsRequest(BaseModel):
    tenant: str
    workspace: str
    trees: List[ServiceTreeNode]


class WorkspacePermissionsResponse(BaseModel):
    permissions: Dict[str, Dict[str, bool]]


class PermissionCheckResponse(BaseModel):
    resource_path: str
    action: str
    granted: bool


class ResourcePermissionsResponse(BaseModel):
    resource_path: str
    assignments: List[RoleAssignment]


ServiceTreeNode.model_rebuild()
