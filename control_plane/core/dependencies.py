"""
Core dependencies: caller identity forwarded by the gateway and the
process-wide permission service.
"""

from fastapi import Depends, Header, HTTPException, Request, status
from typing import Dict, Optional
import logging

from control_plane.core.errors import NotAuthorized
from control_plane.modules.permissions import paths
from control_plane.modules.permissions.service import PermissionService

logger = logging.getLogger(__name__)


def get_current_user(
    x_request_user: Optional[str] = Header(None),
    x_request_department: Optional[str] = Header(None)
) -> Dict:
    """The gateway authenticates the token and forwards username and department path"""
    if not x_request_user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-Request-User header"
        )
    return {
        "username": x_request_user,
        "department_path": x_request_department or None
    }


def get_permission_service(request: Request) -> PermissionService:
    service = getattr(request.app.state, "permission_service", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Permission service is not initialised"
        )
    return service


def check_node_admin(
    resource_path: str,
    user_data: Dict,
    service: PermissionService
) -> Dict:
    """Allow administrators of the node itself or of its workspace"""
    tenant, workspace = paths.tenant_app(resource_path)
    username = user_data["username"]
    if username in service.store.get_node_admins(resource_path):
        return user_data
    if username in service.store.get_node_admins(paths.app_path(tenant, workspace)):
        return user_data
    logger.warning(f"{username} tried to manage permissions on {resource_path} without being an administrator")
    raise NotAuthorized(f"You must be an administrator of {resource_path} to manage its permissions")


def require_workspace_admin(
    tenant: str,
    workspace: str,
    user_data: Dict = Depends(get_current_user),
    service: PermissionService = Depends(get_permission_service)
) -> Dict:
    """Dependency for workspace-scoped management endpoints (tenant and workspace come from the query)"""
    return check_node_admin(paths.app_path(tenant, workspace), user_data, service)
