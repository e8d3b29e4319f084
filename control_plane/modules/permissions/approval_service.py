from datetime import datetime
from typing import List, Optional, Set, Tuple
import logging

from control_plane.core.clock import Clock, as_utc, utcnow
from control_plane.core.errors import (
    IllegalTransition, InvalidPath, NotAuthorized, NotEffective, StorageError, UnknownRequest
)
from control_plane.modules.permissions import paths
from control_plane.modules.permissions.repository import PermissionStore
from control_plane.modules.permissions.role_service import RoleService
from control_plane.modules.permissions.schemas import PermissionRequest, RequestStatus, SubjectType

logger = logging.getLogger(__name__)


class ApprovalService:
    """
    Permission request lifecycle:

        pending --approve--> approved  (assignment created in the same store call)
        pending --reject---> rejected
        pending --cancel---> cancelled

    Terminal states never change again.
    """

    def __init__(self, store: PermissionStore, role_service: RoleService, clock: Clock = utcnow):
        self.store = store
        self.role_service = role_service
        self.clock = clock

    def _load_pending(self, request_id: str) -> PermissionRequest:
        request = self.store.get_permission_request(request_id)
        if request is None:
            raise UnknownRequest(f"Permission request {request_id} not found")
        if request.status.is_terminal:
            raise IllegalTransition(f"Permission request {request_id} is already {request.status.value}")
        return request

    def _require_node_admin(self, request: PermissionRequest, username: str) -> None:
        if username not in self.store.get_node_admins(request.resource_path):
            raise NotAuthorized(f"{username} is not an administrator of {request.resource_path}")

    def create_request(
        self,
        applicant: str,
        resource_path: str,
        role_id: str,
        subject_type: SubjectType = SubjectType.USER,
        subject: Optional[str] = None,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        reason: Optional[str] = None
    ) -> Tuple[PermissionRequest, Set[str]]:
        """File a pending request. Returns it with the administrators who can decide on it."""
        tenant, workspace = paths.tenant_app(resource_path)
        role = self.role_service.get_role(role_id)

        if subject_type == SubjectType.DEPARTMENT:
            if not subject:
                raise InvalidPath("A department request needs the department path")
            paths.split(subject)
        else:
            subject = subject or applicant

        start_time = as_utc(start_time) or self.clock()
        end_time = as_utc(end_time)
        if end_time is not None and end_time <= start_time:
            raise NotEffective("end_time must be after start_time")

        request = self.store.create_permission_request({
            "tenant": tenant,
            "workspace": workspace,
            "applicant": applicant,
            "subject_type": subject_type,
            "subject": subject,
            "resource_path": resource_path,
            "role_id": role.id,
            "start_time": start_time,
            "end_time": end_time,
            "reason": reason,
            "status": RequestStatus.PENDING
        })

        approvers = self.store.get_node_admins(resource_path)
        if not approvers:
            logger.warning(f"Permission request {request.id} on {resource_path} has no approvers")
        logger.info(
            f"{applicant} requested {role.resource_type}:{role.code} for {subject_type.value} {subject} at {resource_path}"
        )
        return request, approvers

    def approve(self, request_id: str, approver: str) -> PermissionRequest:
        """Approve a pending request and grant the requested role"""
        request = self._load_pending(request_id)
        self._require_node_admin(request, approver)
        role = self.role_service.get_role(request.role_id)

        assignment = self.role_service.build_assignment(
            request.tenant,
            request.workspace,
            request.subject_type,
            request.subject,
            role.id,
            request.resource_path,
            request.start_time,
            request.end_time,
            created_by=approver
        )
        try:
            approved = self.store.approve_permission_request(request_id, approver, self.clock(), assignment)
        except StorageError as e:
            logger.error(f"Failed to approve permission request {request_id}: {e.message}")
            raise
        if approved is None:
            raise IllegalTransition(f"Permission request {request_id} is no longer pending")

        logger.info(f"{approver} approved permission request {request_id} (assignment {approved.role_assignment_id})")
        return approved

    def reject(self, request_id: str, approver: str, reason: Optional[str] = None) -> PermissionRequest:
        request = self._load_pending(request_id)
        self._require_node_admin(request, approver)
        rejected = self.store.transition_permission_request(request_id, RequestStatus.REJECTED, {
            "rejected_by": approver,
            "rejected_at": self.clock(),
            "reject_reason": reason
        })
        if rejected is None:
            raise IllegalTransition(f"Permission request {request_id} is no longer pending")
        logger.info(f"{approver} rejected permission request {request_id}")
        return rejected

    def cancel(self, request_id: str, applicant: str) -> PermissionRequest:
        request = self._load_pending(request_id)
        if request.applicant != applicant:
            raise NotAuthorized(f"Only {request.applicant} can cancel permission request {request_id}")
        cancelled = self.store.transition_permission_request(request_id, RequestStatus.CANCELLED, {
            "cancelled_by": applicant,
            "cancelled_at": self.clock()
        })
        if cancelled is None:
            raise IllegalTransition(f"Permission request {request_id} is no longer pending")
        logger.info(f"{applicant} cancelled permission request {request_id}")
        return cancelled

    def get_request(self, request_id: str) -> PermissionRequest:
        request = self.store.get_permission_request(request_id)
        if request is None:
            raise UnknownRequest(f"Permission request {request_id} not found")
        return request

    def list_pending_requests(self, resource_path: str) -> List[PermissionRequest]:
        paths.split(resource_path)
        return self.store.list_pending_requests_by_resource(resource_path)

    def list_my_requests(self, applicant: str) -> List[PermissionRequest]:
        return self.store.list_requests_by_applicant(applicant)
