from dataclasses import dataclass
from enum import Enum
from typing import Optional

from app.core.auth import ActingUser
from app.core.errors import ForbiddenError
from app.models.service import ServiceRequest
from app.repositories.directory import FranchiseRepository
from app.schemas.service_request import ServiceRequestStatus, UserRole


class PermissionOperation(str, Enum):
    ASSIGN = "ASSIGN"
    SCHEDULE = "SCHEDULE"
    UPDATE_STATUS = "UPDATE_STATUS"
    VIEW = "VIEW"


@dataclass(frozen=True)
class PermissionDecision:
    allowed: bool
    reason: Optional[str] = None


ALLOW = PermissionDecision(True)


def operation_for_target(target: ServiceRequestStatus) -> PermissionOperation:
    if target == ServiceRequestStatus.ASSIGNED:
        return PermissionOperation.ASSIGN
    if target == ServiceRequestStatus.SCHEDULED:
        return PermissionOperation.SCHEDULE
    return PermissionOperation.UPDATE_STATUS


class PermissionGate:
    """Role and ownership checks, independent of whether a transition is valid."""

    def __init__(self, franchises: FranchiseRepository):
        self._franchises = franchises

    def _owns_franchise(self, service_request: ServiceRequest, user: ActingUser) -> bool:
        return self._franchises.is_owned_by(service_request.franchise_id, user.user_id)

    def evaluate(
        self,
        operation: PermissionOperation,
        service_request: ServiceRequest,
        user: ActingUser,
    ) -> PermissionDecision:
        if operation == PermissionOperation.ASSIGN:
            if user.role == UserRole.ADMIN.value:
                return ALLOW
            if user.role != UserRole.FRANCHISE_OWNER.value:
                return PermissionDecision(False, "You do not have permission to assign service agents")
            if not self._owns_franchise(service_request, user):
                return PermissionDecision(False, "Service request is not in your franchise area")
            return ALLOW

        if operation == PermissionOperation.SCHEDULE:
            if user.role == UserRole.ADMIN.value:
                return ALLOW
            if user.role == UserRole.SERVICE_AGENT.value and service_request.assigned_to_id == user.user_id:
                return ALLOW
            if user.role == UserRole.FRANCHISE_OWNER.value and self._owns_franchise(service_request, user):
                return ALLOW
            return PermissionDecision(False, "You do not have permission to schedule this service request")

        if operation == PermissionOperation.VIEW:
            if user.role == UserRole.ADMIN.value:
                return ALLOW
            if user.role == UserRole.CUSTOMER.value and service_request.customer_id == user.user_id:
                return ALLOW
            if user.role == UserRole.SERVICE_AGENT.value and service_request.assigned_to_id == user.user_id:
                return ALLOW
            if user.role == UserRole.FRANCHISE_OWNER.value and self._owns_franchise(service_request, user):
                return ALLOW
            return PermissionDecision(False, "You do not have permission to view this service request")

        # Generic status updates rely on the route's role restriction.
        return ALLOW

    def require(
        self,
        operation: PermissionOperation,
        service_request: ServiceRequest,
        user: ActingUser,
    ) -> None:
        decision = self.evaluate(operation, service_request, user)
        if not decision.allowed:
            raise ForbiddenError(decision.reason or "Forbidden")
