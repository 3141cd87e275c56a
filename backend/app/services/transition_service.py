import logging
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Union

from app.core.auth import ActingUser
from app.core.errors import BadRequestError, ConflictError, NotFoundError
from app.models.service import ServiceRequest, User
from app.repositories.directory import UserRepository
from app.repositories.payments import PaymentRepository
from app.repositories.service_requests import ServiceRequestRepository
from app.schemas.service_request import (
    ActionType,
    ServiceRequestOut,
    ServiceRequestStatus,
    ServiceRequestType,
    TransitionEvidence,
    UserRole,
)
from app.services.action_history import ActionHistoryEntry, ActionHistoryLog
from app.services.installation_sync import InstallationStatusSynchronizer
from app.services.permissions import PermissionGate, operation_for_target
from app.services.service_request_views import ServiceRequestViewBuilder
from app.services.transition_rules import TransitionContext, TransitionValidator, as_utc
from app.utils.alerting import alert_tracker

logger = logging.getLogger(__name__)

STATUS_ACTION_TYPES = {
    ServiceRequestStatus.CREATED: ActionType.SERVICE_REQUEST_CREATED,
    ServiceRequestStatus.ASSIGNED: ActionType.SERVICE_REQUEST_ASSIGNED,
    ServiceRequestStatus.SCHEDULED: ActionType.SERVICE_REQUEST_SCHEDULED,
    ServiceRequestStatus.IN_PROGRESS: ActionType.SERVICE_REQUEST_IN_PROGRESS,
    ServiceRequestStatus.PAYMENT_PENDING: ActionType.SERVICE_REQUEST_PAYMENT_PENDING,
    ServiceRequestStatus.COMPLETED: ActionType.SERVICE_REQUEST_COMPLETED,
    ServiceRequestStatus.CANCELLED: ActionType.SERVICE_REQUEST_CANCELLED,
}


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def action_type_for_status(status: Union[ServiceRequestStatus, str]) -> ActionType:
    return STATUS_ACTION_TYPES[ServiceRequestStatus(status)]


class TransitionExecutor:
    """Applies status changes to service requests.

    Order of work for one call: load -> permission gate -> validator ->
    status-conditioned update -> history -> subscription history ->
    installation sync -> fresh read. The update is the commit point: once it
    succeeds the new status is durable, and later history failures are only
    logged.
    """

    def __init__(
        self,
        *,
        service_requests: ServiceRequestRepository,
        payments: PaymentRepository,
        users: UserRepository,
        history: ActionHistoryLog,
        gate: PermissionGate,
        validator: TransitionValidator,
        synchronizer: InstallationStatusSynchronizer,
        views: ServiceRequestViewBuilder,
        clock: Callable[[], datetime] = _now_utc,
    ):
        self._service_requests = service_requests
        self._payments = payments
        self._users = users
        self._history = history
        self._gate = gate
        self._validator = validator
        self._synchronizer = synchronizer
        self._views = views
        self._clock = clock

    def apply(
        self,
        service_request_id: str,
        target_status: Union[ServiceRequestStatus, str],
        actor: ActingUser,
        evidence: Optional[TransitionEvidence] = None,
    ) -> ServiceRequestOut:
        evidence = evidence or TransitionEvidence()
        target = ServiceRequestStatus(target_status)

        service_request = self._service_requests.get(service_request_id)
        if service_request is None:
            raise NotFoundError.for_entity("Service Request")
        current = ServiceRequestStatus(service_request.status)

        self._gate.require(operation_for_target(target), service_request, actor)

        now = self._clock()
        context = TransitionContext(
            request_type=ServiceRequestType(service_request.type),
            requires_payment=bool(service_request.requires_payment),
            assigned_to_id=service_request.assigned_to_id,
            evidence=evidence,
            now=now,
            installation_payment_completed=self._installation_payment_completed(service_request, current, target),
        )
        self._validator.validate(current, target, context)

        agent = self._resolve_agent(evidence.agent_id) if target == ServiceRequestStatus.ASSIGNED else None

        subscription_id = service_request.subscription_id
        installation_request_id = service_request.installation_request_id
        images = evidence.images_for(target)
        fields = self._field_deltas(target, evidence, images, now)

        if not self._service_requests.update(service_request_id, fields, expected_status=current.value):
            alert_tracker.record(
                "SERVICE_REQUEST_CONFLICT",
                {"service_request_id": service_request_id, "expected_status": current.value},
            )
            logger.warning(
                "Service request %s changed concurrently, expected status %s, target %s",
                service_request_id,
                current.value,
                target.value,
            )
            raise ConflictError(
                f"Service request was modified concurrently (expected status {current.value}), reload and retry"
            )

        logger.info(
            "Service request %s transitioned %s -> %s by %s (%s)",
            service_request_id,
            current.value,
            target.value,
            actor.user_id,
            actor.role,
        )

        self._history.append(
            ActionHistoryEntry.for_service_request(
                service_request_id,
                action_type=action_type_for_status(target).value,
                from_status=current.value,
                to_status=target.value,
                actor=actor,
                comment=evidence.comment or self._default_comment(current, target, actor, agent),
                metadata=self._history_metadata(evidence, images, agent),
            )
        )

        if subscription_id:
            self._history.append(
                ActionHistoryEntry.for_subscription(
                    subscription_id,
                    action_type=ActionType.SUBSCRIPTION_SERVICE_REQUEST_UPDATED.value,
                    service_request_id=service_request_id,
                    to_status=target.value,
                    actor=actor,
                )
            )

        if installation_request_id:
            self._synchronizer.sync(installation_request_id, target, actor, service_request_id)

        refreshed = self._service_requests.get(service_request_id)
        if refreshed is None:
            raise NotFoundError.for_entity("Service Request")
        return self._views.build(refreshed)

    def assign_agent(self, service_request_id: str, agent_id: str, actor: ActingUser) -> ServiceRequestOut:
        return self.apply(
            service_request_id,
            ServiceRequestStatus.ASSIGNED,
            actor,
            TransitionEvidence(agent_id=agent_id),
        )

    def schedule(self, service_request_id: str, scheduled_date: datetime, actor: ActingUser) -> ServiceRequestOut:
        return self.apply(
            service_request_id,
            ServiceRequestStatus.SCHEDULED,
            actor,
            TransitionEvidence(scheduled_date=scheduled_date),
        )

    def _installation_payment_completed(
        self,
        service_request: ServiceRequest,
        current: ServiceRequestStatus,
        target: ServiceRequestStatus,
    ) -> bool:
        if service_request.type != ServiceRequestType.INSTALLATION.value:
            return False
        if current != ServiceRequestStatus.PAYMENT_PENDING or target != ServiceRequestStatus.COMPLETED:
            return False
        if not service_request.installation_request_id:
            return False
        payment = self._payments.completed_for_installation_request(service_request.installation_request_id)
        return payment is not None

    def _resolve_agent(self, agent_id: Optional[str]) -> User:
        agent = self._users.get((agent_id or "").strip())
        if agent is None or agent.role != UserRole.SERVICE_AGENT.value or not agent.is_active:
            raise BadRequestError("Invalid service agent")
        return agent

    def _field_deltas(
        self,
        target: ServiceRequestStatus,
        evidence: TransitionEvidence,
        images: list[str],
        now: datetime,
    ) -> dict[str, Any]:
        fields: dict[str, Any] = {"status": target.value, "updated_at": now}
        if target == ServiceRequestStatus.ASSIGNED:
            fields["assigned_to_id"] = (evidence.agent_id or "").strip()
        if target == ServiceRequestStatus.SCHEDULED and evidence.scheduled_date is not None:
            fields["scheduled_date"] = as_utc(evidence.scheduled_date)
        if evidence.payment_amount:
            fields["payment_amount"] = evidence.payment_amount
        if target == ServiceRequestStatus.COMPLETED:
            fields["completed_date"] = now
        if images:
            image_field = "before_images" if target == ServiceRequestStatus.IN_PROGRESS else "after_images"
            fields[image_field] = images
        return fields

    @staticmethod
    def _default_comment(
        current: ServiceRequestStatus,
        target: ServiceRequestStatus,
        actor: ActingUser,
        agent: Optional[User],
    ) -> str:
        if agent is not None:
            return f"Service agent {agent.name or agent.phone or agent.id} assigned"
        return f"Status changed from {current.value} to {target.value} by {actor.display_name}"

    @staticmethod
    def _history_metadata(
        evidence: TransitionEvidence,
        images: list[str],
        agent: Optional[User],
    ) -> dict[str, Any]:
        metadata: dict[str, Any] = {
            "agent_id": evidence.agent_id,
            "scheduled_date": as_utc(evidence.scheduled_date).isoformat() if evidence.scheduled_date else None,
            "payment_amount": evidence.payment_amount,
            "images_count": len(images),
        }
        if agent is not None:
            metadata["agent_name"] = agent.name
            metadata["agent_phone"] = agent.phone
        return metadata
