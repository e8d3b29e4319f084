from fastapi import APIRouter, Depends
from typing import Dict, List, Optional

from control_plane.core.dependencies import (
    check_node_admin,
    get_current_user,
    get_permission_service,
    require_workspace_admin,
)
from control_plane.modules.permissions.schemas import (
    Action, RoleAssignment, PermissionRequest,
    RoleCreate, RoleUpdate, RoleWithPermissionsResponse,
    AssignRoleToUserRequest, AssignRoleToDepartmentRequest,
    RemoveRoleFromUserRequest, RemoveRoleFromDepartmentRequest,
    PermissionRequestCreate, PermissionRequestReject, PermissionRequestCreatedResponse,
    WorkspacePermissionsRequest, WorkspacePermissionsResponse,
    PermissionCheckResponse, ResourcePermissionsResponse,
)
from control_plane.modules.permissions.service import PermissionService

router = APIRouter(prefix="/permissions", tags=["permissions"])


# Action catalog
@router.get("/actions", response_model=List[Action])
def list_actions(
    resource_type: Optional[str] = None,
    user_data: Dict = Depends(get_current_user),
    service: PermissionService = Depends(get_permission_service)
):
    """List permission points, optionally for one resource type"""
    return service.actions.list_actions(resource_type)


@router.get("/actions/default", response_model=List[str])
def get_default_permissions(
    resource_type: str,
    user_data: Dict = Depends(get_current_user),
    service: PermissionService = Depends(get_permission_service)
):
    """Permission codes of the default role of a resource type"""
    return service.actions.get_default_permissions(resource_type)


# Role endpoints
@router.get("/roles", response_model=List[RoleWithPermissionsResponse])
def list_roles(
    resource_type: Optional[str] = None,
    user_data: Dict = Depends(get_current_user),
    service: PermissionService = Depends(get_permission_service)
):
    return service.roles.list_roles(resource_type)


@router.get("/roles/for-request", response_model=List[RoleWithPermissionsResponse])
def get_roles_for_permission_request(
    node_kind: str,
    template_type: Optional[str] = None,
    user_data: Dict = Depends(get_current_user),
    service: PermissionService = Depends(get_permission_service)
):
    """Roles that can be requested on a node of the given kind, default role first"""
    return service.roles.get_roles_for_permission_request(node_kind, template_type)


@router.post("/roles", response_model=RoleWithPermissionsResponse, status_code=201)
def create_role(
    role_data: RoleCreate,
    user_data: Dict = Depends(get_current_user),
    service: PermissionService = Depends(get_permission_service)
):
    """Create a custom role"""
    return service.roles.create_role(
        name=role_data.name,
        code=role_data.code,
        permissions=role_data.permissions,
        description=role_data.description,
        created_by=user_data["username"]
    )


@router.get("/roles/{role_id}", response_model=RoleWithPermissionsResponse)
def get_role(
    role_id: str,
    user_data: Dict = Depends(get_current_user),
    service: PermissionService = Depends(get_permission_service)
):
    return service.roles.get_role(role_id)


@router.put("/roles/{role_id}", response_model=RoleWithPermissionsResponse)
def update_role(
    role_id: str,
    role_data: RoleUpdate,
    user_data: Dict = Depends(get_current_user),
    service: PermissionService = Depends(get_permission_service)
):
    return service.roles.update_role(
        role_id,
        name=role_data.name,
        description=role_data.description,
        is_default=role_data.is_default,
        permissions=role_data.permissions
    )


@router.delete("/roles/{role_id}", status_code=204)
def delete_role(
    role_id: str,
    user_data: Dict = Depends(get_current_user),
    service: PermissionService = Depends(get_permission_service)
):
    """Delete a custom role and every assignment of it"""
    service.roles.delete_role(role_id)


# Role assignment endpoints
@router.post("/assignments/users", response_model=RoleAssignment, status_code=201)
def assign_role_to_user(
    data: AssignRoleToUserRequest,
    user_data: Dict = Depends(get_current_user),
    service: PermissionService = Depends(get_permission_service)
):
    check_node_admin(data.resource_path, user_data, service)
    return service.roles.assign_role_to_user(
        data.tenant, data.workspace, data.username, data.role_code, data.resource_type,
        data.resource_path, data.start_time, data.end_time, created_by=user_data["username"]
    )


@router.post("/assignments/users/remove")
def remove_role_from_user(
    data: RemoveRoleFromUserRequest,
    user_data: Dict = Depends(get_current_user),
    service: PermissionService = Depends(get_permission_service)
):
    check_node_admin(data.resource_path, user_data, service)
    removed = service.roles.remove_role_from_user(
        data.tenant, data.workspace, data.username, data.role_code, data.resource_type, data.resource_path
    )
    return {"removed": removed}


@router.post("/assignments/departments", response_model=RoleAssignment, status_code=201)
def assign_role_to_department(
    data: AssignRoleToDepartmentRequest,
    user_data: Dict = Depends(get_current_user),
    service: PermissionService = Depends(get_permission_service)
):
    check_node_admin(data.resource_path, user_data, service)
    return service.roles.assign_role_to_department(
        data.tenant, data.workspace, data.department_path, data.role_code, data.resource_type,
        data.resource_path, data.start_time, data.end_time, created_by=user_data["username"]
    )


@router.post("/assignments/departments/remove")
def remove_role_from_department(
    data: RemoveRoleFromDepartmentRequest,
    user_data: Dict = Depends(get_current_user),
    service: PermissionService = Depends(get_permission_service)
):
    check_node_admin(data.resource_path, user_data, service)
    removed = service.roles.remove_role_from_department(
        data.tenant, data.workspace, data.department_path, data.role_code, data.resource_type, data.resource_path
    )
    return {"removed": removed}


@router.get("/users/{username}/roles", response_model=List[RoleAssignment])
def get_user_roles(
    username: str,
    tenant: str,
    workspace: str,
    user_data: Dict = Depends(require_workspace_admin),
    service: PermissionService = Depends(get_permission_service)
):
    return service.roles.get_user_roles(tenant, workspace, username)


@router.get("/departments/roles", response_model=List[RoleAssignment])
def get_department_roles(
    tenant: str,
    workspace: str,
    department_path: str,
    user_data: Dict = Depends(require_workspace_admin),
    service: PermissionService = Depends(get_permission_service)
):
    return service.roles.get_department_roles(tenant, workspace, department_path)


@router.get("/resources", response_model=ResourcePermissionsResponse)
def get_resource_permissions(
    tenant: str,
    workspace: str,
    resource_path: str,
    user_data: Dict = Depends(get_current_user),
    service: PermissionService = Depends(get_permission_service)
):
    """Assignments on a node and its ancestors (for the permission management page)"""
    check_node_admin(resource_path, user_data, service)
    return ResourcePermissionsResponse(
        resource_path=resource_path,
        assignments=service.get_resource_permissions(tenant, workspace, resource_path)
    )


# Evaluation endpoints
@router.post("/workspace", response_model=WorkspacePermissionsResponse)
def calculate_workspace_permissions(
    data: WorkspacePermissionsRequest,
    user_data: Dict = Depends(get_current_user),
    service: PermissionService = Depends(get_permission_service)
):
    """Effective permissions of the caller on every node of the posted service tree"""
    permissions = service.calculate_workspace_permissions(
        data.tenant, data.workspace, user_data["username"], user_data["department_path"], data.trees
    )
    return WorkspacePermissionsResponse(permissions=permissions)


@router.get("/check", response_model=PermissionCheckResponse)
def check_permission(
    tenant: str,
    workspace: str,
    resource_path: str,
    action: str,
    user_data: Dict = Depends(get_current_user),
    service: PermissionService = Depends(get_permission_service)
):
    granted = service.check_permission(
        tenant, workspace, user_data["username"], user_data["department_path"], resource_path, action
    )
    return PermissionCheckResponse(resource_path=resource_path, action=action, granted=granted)


@router.get("/me", response_model=Dict[str, List[str]])
def get_my_permissions(
    tenant: str,
    workspace: str,
    user_data: Dict = Depends(get_current_user),
    service: PermissionService = Depends(get_permission_service)
):
    """Action codes the caller holds per assigned path"""
    return service.get_user_role_permissions(tenant, workspace, user_data["username"], user_data["department_path"])


# Permission request endpoints
@router.post("/requests", response_model=PermissionRequestCreatedResponse, status_code=201)
def create_permission_request(
    data: PermissionRequestCreate,
    user_data: Dict = Depends(get_current_user),
    service: PermissionService = Depends(get_permission_service)
):
    request, approvers = service.approvals.create_request(
        applicant=user_data["username"],
        resource_path=data.resource_path,
        role_id=data.role_id,
        subject_type=data.subject_type,
        subject=data.subject,
        start_time=data.start_time,
        end_time=data.end_time,
        reason=data.reason
    )
    return PermissionRequestCreatedResponse(request=request, approvers=sorted(approvers))


@router.get("/requests/mine", response_model=List[PermissionRequest])
def list_my_requests(
    user_data: Dict = Depends(get_current_user),
    service: PermissionService = Depends(get_permission_service)
):
    return service.approvals.list_my_requests(user_data["username"])


@router.get("/requests/pending", response_model=List[PermissionRequest])
def list_pending_requests(
    resource_path: str,
    user_data: Dict = Depends(get_current_user),
    service: PermissionService = Depends(get_permission_service)
):
    check_node_admin(resource_path, user_data, service)
    return service.approvals.list_pending_requests(resource_path)


@router.get("/requests/{request_id}", response_model=PermissionRequest)
def get_permission_request(
    request_id: str,
    user_data: Dict = Depends(get_current_user),
    service: PermissionService = Depends(get_permission_service)
):
    return service.approvals.get_request(request_id)


@router.post("/requests/{request_id}/approve", response_model=PermissionRequest)
def approve_permission_request(
    request_id: str,
    user_data: Dict = Depends(get_current_user),
    service: PermissionService = Depends(get_permission_service)
):
    return service.approvals.approve(request_id, user_data["username"])


@router.post("/requests/{request_id}/reject", response_model=PermissionRequest)
def reject_permission_request(
    request_id: str,
    data: PermissionRequestReject,
    user_data: Dict = Depends(get_current_user),
    service: PermissionService = Depends(get_permission_service)
):
    return service.approvals.reject(request_id, user_data["username"], data.reason)


@router.post("/requests/{request_id}/cancel", response_model=PermissionRequest)
def cancel_permission_request(
    request_id: str,
    user_data: Dict = Depends(get_current_user),
    service: PermissionService = Depends(get_permission_service)
):
    return service.approvals.cancel(request_id, user_data["username"])
