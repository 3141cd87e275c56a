import logging
from typing import Optional, Union

from app.core.auth import ActingUser
from app.repositories.installation_requests import InstallationRequestRepository
from app.schemas.service_request import ActionType, InstallationRequestStatus, ServiceRequestStatus
from app.services.action_history import ActionHistoryEntry, ActionHistoryLog

logger = logging.getLogger(__name__)

# Service request status -> (installation request status, history action).
# Statuses without an entry leave the installation request untouched.
INSTALLATION_STATUS_MAP = {
    ServiceRequestStatus.IN_PROGRESS: (
        InstallationRequestStatus.INSTALLATION_IN_PROGRESS,
        ActionType.INSTALLATION_REQUEST_IN_PROGRESS,
    ),
    ServiceRequestStatus.PAYMENT_PENDING: (
        InstallationRequestStatus.PAYMENT_PENDING,
        ActionType.INSTALLATION_REQUEST_PAYMENT_PENDING,
    ),
    ServiceRequestStatus.COMPLETED: (
        InstallationRequestStatus.INSTALLATION_COMPLETED,
        ActionType.INSTALLATION_REQUEST_COMPLETED,
    ),
    ServiceRequestStatus.CANCELLED: (
        InstallationRequestStatus.CANCELLED,
        ActionType.INSTALLATION_REQUEST_CANCELLED,
    ),
}


def map_installation_status(
    status: Union[ServiceRequestStatus, str],
) -> Optional[InstallationRequestStatus]:
    mapped = INSTALLATION_STATUS_MAP.get(ServiceRequestStatus(status))
    return mapped[0] if mapped else None


class InstallationStatusSynchronizer:
    """Keeps an installation request in step with its linked service request."""

    def __init__(self, installations: InstallationRequestRepository, history: ActionHistoryLog):
        self._installations = installations
        self._history = history

    def sync(
        self,
        installation_request_id: str,
        service_request_status: Union[ServiceRequestStatus, str],
        actor: ActingUser,
        service_request_id: Optional[str] = None,
    ) -> Optional[InstallationRequestStatus]:
        mapped = INSTALLATION_STATUS_MAP.get(ServiceRequestStatus(service_request_status))
        if mapped is None:
            return None
        new_status, action_type = mapped

        installation = self._installations.get(installation_request_id)
        if installation is None:
            logger.warning(
                "Installation request %s linked from service request %s not found, skipping sync",
                installation_request_id,
                service_request_id,
            )
            return None
        previous_status = installation.status

        if not self._installations.update(installation_request_id, {"status": new_status.value}):
            logger.warning("Installation request %s vanished during sync", installation_request_id)
            return None

        self._history.append(
            ActionHistoryEntry.for_installation_request(
                installation_request_id,
                action_type=action_type.value,
                from_status=previous_status,
                to_status=new_status.value,
                actor=actor,
                service_request_id=service_request_id,
                comment=f"Installation status synced from service request by {actor.display_name}",
                metadata={"service_request_status": ServiceRequestStatus(service_request_status).value},
            )
        )
        logger.info(
            "Installation request %s synced %s -> %s (service request %s)",
            installation_request_id,
            previous_status,
            new_status.value,
            service_request_id,
        )
        return new_status
