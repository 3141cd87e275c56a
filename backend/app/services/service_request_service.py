import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy.orm import Session

from app.core.auth import ActingUser
from app.core.errors import BadRequestError, ConflictError, ForbiddenError, NotFoundError
from app.models.service import InstallationRequest, ServiceRequest, User
from app.repositories.directory import FranchiseRepository, ProductRepository, SubscriptionRepository, UserRepository
from app.repositories.installation_requests import InstallationRequestRepository
from app.repositories.payments import PaymentRepository
from app.repositories.service_requests import ServiceRequestRepository
from app.schemas.service_request import (
    ActionHistoryOut,
    ActionType,
    InstallationRequestStatus,
    InstallationServiceRequestCreate,
    ServiceRequestCreate,
    ServiceRequestFilters,
    ServiceRequestOut,
    ServiceRequestStatus,
    ServiceRequestType,
    UserRole,
)
from app.services.action_history import ActionHistoryEntry, ActionHistoryLog
from app.services.installation_sync import InstallationStatusSynchronizer
from app.services.permissions import PermissionGate, PermissionOperation
from app.services.service_request_views import ServiceRequestViewBuilder
from app.services.transition_rules import TransitionValidator, as_utc
from app.services.transition_service import TransitionExecutor

logger = logging.getLogger(__name__)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _history_to_out(row) -> ActionHistoryOut:
    return ActionHistoryOut(
        id=row.id,
        entity_type=row.entity_type,
        entity_id=row.entity_id,
        action_type=row.action_type,
        from_status=row.from_status,
        to_status=row.to_status,
        performed_by=row.performed_by,
        performed_by_role=row.performed_by_role,
        comment=row.comment,
        metadata=row.history_meta,
        created_at=row.created_at,
    )


class ServiceRequestService:
    """Creation flows and reads. Status changes go through ``transitions``."""

    def __init__(
        self,
        *,
        service_requests: ServiceRequestRepository,
        installations: InstallationRequestRepository,
        users: UserRepository,
        franchises: FranchiseRepository,
        products: ProductRepository,
        subscriptions: SubscriptionRepository,
        history: ActionHistoryLog,
        gate: PermissionGate,
        views: ServiceRequestViewBuilder,
        transitions: TransitionExecutor,
        clock: Callable[[], datetime] = _now_utc,
    ):
        self._service_requests = service_requests
        self._installations = installations
        self._users = users
        self._franchises = franchises
        self._products = products
        self._subscriptions = subscriptions
        self._history = history
        self._gate = gate
        self._views = views
        self.transitions = transitions
        self._clock = clock

    def _resolve_franchise_id(self, payload: ServiceRequestCreate, actor: ActingUser) -> tuple[str, str]:
        """Return ``(franchise_id, customer_id)`` for a new general request."""
        is_admin = actor.role == UserRole.ADMIN.value

        if payload.subscription_id:
            subscription = self._subscriptions.get(payload.subscription_id)
            if subscription is None:
                raise NotFoundError.for_entity("Subscription")
            if not is_admin and subscription.customer_id != actor.user_id:
                raise ForbiddenError("Subscription does not belong to you")
            return subscription.franchise_id, subscription.customer_id

        if payload.installation_request_id:
            installation = self._installations.get(payload.installation_request_id)
            if installation is None:
                raise NotFoundError.for_entity("Installation request")
            if not is_admin and installation.customer_id != actor.user_id:
                raise ForbiddenError("Installation request does not belong to you")
            return installation.franchise_id, installation.customer_id

        user = self._users.get(actor.user_id)
        city = (user.city or "").strip() if user else ""
        if not city:
            raise BadRequestError("User city not found. Cannot determine franchise.")
        franchise = self._franchises.get_by_city(city)
        if franchise is None:
            raise BadRequestError("No franchise found for your location")
        return franchise.id, actor.user_id

    def create_service_request(self, payload: ServiceRequestCreate, actor: ActingUser) -> ServiceRequestOut:
        if payload.subscription_id and payload.installation_request_id:
            raise BadRequestError("subscription_id and installation_request_id are mutually exclusive")
        if self._products.get(payload.product_id) is None:
            raise NotFoundError.for_entity("Product")

        franchise_id, customer_id = self._resolve_franchise_id(payload, actor)
        now = self._clock()
        record = ServiceRequest(
            customer_id=customer_id,
            product_id=payload.product_id,
            subscription_id=payload.subscription_id,
            installation_request_id=payload.installation_request_id,
            type=payload.type.value,
            description=payload.description,
            images=payload.images,
            status=ServiceRequestStatus.CREATED.value,
            franchise_id=franchise_id,
            scheduled_date=as_utc(payload.scheduled_date) if payload.scheduled_date else None,
            requires_payment=payload.requires_payment,
            payment_amount=payload.payment_amount,
            created_at=now,
            updated_at=now,
        )
        self._service_requests.insert(record)
        service_request_id = record.id

        self._history.append(
            ActionHistoryEntry.for_service_request(
                service_request_id,
                action_type=ActionType.SERVICE_REQUEST_CREATED.value,
                from_status=None,
                to_status=ServiceRequestStatus.CREATED.value,
                actor=actor,
                comment=f"Service request created by {actor.display_name}",
                metadata={"type": payload.type.value, "requires_payment": payload.requires_payment},
            )
        )
        logger.info(
            "Service request %s created type=%s franchise=%s by %s",
            service_request_id,
            payload.type.value,
            franchise_id,
            actor.user_id,
        )
        return self._views.build(self._service_requests.get(service_request_id))

    def _validate_agent(self, agent_id: str) -> User:
        agent = self._users.get(agent_id)
        if agent is None or agent.role != UserRole.SERVICE_AGENT.value or not agent.is_active:
            raise BadRequestError("Invalid service agent")
        return agent

    def _ensure_installation_access(self, installation: InstallationRequest, actor: ActingUser) -> None:
        if actor.role == UserRole.ADMIN.value:
            return
        if actor.role == UserRole.FRANCHISE_OWNER.value and self._franchises.is_owned_by(
            installation.franchise_id, actor.user_id
        ):
            return
        raise ForbiddenError("Installation request is not in your franchise area")

    def create_installation_service_request(
        self,
        payload: InstallationServiceRequestCreate,
        actor: ActingUser,
    ) -> tuple[ServiceRequestOut, bool]:
        """Create the INSTALLATION service request for an installation, or reschedule the existing one.

        Returns the view and whether a new row was inserted.
        """
        installation = self._installations.get(payload.installation_request_id)
        if installation is None:
            raise NotFoundError.for_entity("Installation request")
        self._ensure_installation_access(installation, actor)

        agent_id = (payload.assigned_to_id or "").strip() or None
        if agent_id:
            self._validate_agent(agent_id)

        now = self._clock()
        scheduled_date = as_utc(payload.scheduled_date) if payload.scheduled_date else None
        previous_installation_status = installation.status
        existing = self._service_requests.find_installation_service_request(installation.id)

        if existing is not None:
            service_request_id = existing.id
            previous_status = existing.status
            if previous_status == ServiceRequestStatus.COMPLETED.value:
                raise BadRequestError("Installation service request is already completed")
            scheduled_agent_id = agent_id or existing.assigned_to_id
            if not scheduled_agent_id:
                raise BadRequestError("Cannot schedule without assigned agent")
            fields = {
                "status": ServiceRequestStatus.SCHEDULED.value,
                "assigned_to_id": scheduled_agent_id,
                "updated_at": now,
            }
            if scheduled_date is not None:
                fields["scheduled_date"] = scheduled_date
            if not self._service_requests.update(service_request_id, fields, expected_status=previous_status):
                raise ConflictError(
                    f"Service request was modified concurrently (expected status {previous_status}), reload and retry"
                )
            self._installations.update(
                installation.id,
                {"status": InstallationRequestStatus.INSTALLATION_SCHEDULED.value},
            )
            self._history.append(
                ActionHistoryEntry.for_service_request(
                    service_request_id,
                    action_type=ActionType.SERVICE_REQUEST_SCHEDULED.value,
                    from_status=previous_status,
                    to_status=ServiceRequestStatus.SCHEDULED.value,
                    actor=actor,
                    comment="Installation service request rescheduled",
                    metadata={"installation_request_id": installation.id, "agent_id": fields["assigned_to_id"]},
                )
            )
            created = False
        else:
            status = ServiceRequestStatus.SCHEDULED if agent_id else ServiceRequestStatus.CREATED
            record = ServiceRequest(
                customer_id=installation.customer_id,
                product_id=installation.product_id,
                installation_request_id=installation.id,
                type=ServiceRequestType.INSTALLATION.value,
                description=payload.description,
                status=status.value,
                assigned_to_id=agent_id,
                franchise_id=installation.franchise_id,
                scheduled_date=scheduled_date,
                requires_payment=True,
                created_at=now,
                updated_at=now,
            )
            self._service_requests.insert(record)
            service_request_id = record.id

            installation_fields = {"status": InstallationRequestStatus.INSTALLATION_SCHEDULED.value}
            if agent_id:
                installation_fields["assigned_technician_id"] = agent_id
            self._installations.update(installation.id, installation_fields)
            self._history.append(
                ActionHistoryEntry.for_service_request(
                    service_request_id,
                    action_type=ActionType.SERVICE_REQUEST_CREATED.value,
                    from_status=None,
                    to_status=status.value,
                    actor=actor,
                    comment=f"Installation service request created by {actor.display_name}",
                    metadata={"installation_request_id": installation.id, "agent_id": agent_id},
                )
            )
            created = True

        self._history.append(
            ActionHistoryEntry.for_installation_request(
                installation.id,
                action_type=ActionType.INSTALLATION_REQUEST_SCHEDULED.value,
                from_status=previous_installation_status,
                to_status=InstallationRequestStatus.INSTALLATION_SCHEDULED.value,
                actor=actor,
                service_request_id=service_request_id,
                comment="Installation scheduled via service request creation",
                metadata={"service_request_id": service_request_id, "assigned_technician_id": agent_id},
            )
        )
        logger.info(
            "Installation service request %s %s for installation %s by %s",
            service_request_id,
            "created" if created else "rescheduled",
            installation.id,
            actor.user_id,
        )
        return self._views.build(self._service_requests.get(service_request_id)), created

    def _get_visible(self, service_request_id: str, actor: ActingUser) -> ServiceRequest:
        service_request = self._service_requests.get(service_request_id)
        if service_request is None:
            raise NotFoundError.for_entity("Service Request")
        self._gate.require(PermissionOperation.VIEW, service_request, actor)
        return service_request

    def get_service_request(self, service_request_id: str, actor: ActingUser) -> ServiceRequestOut:
        return self._views.build(self._get_visible(service_request_id, actor))

    def list_service_requests(
        self,
        filters: Optional[ServiceRequestFilters],
        actor: ActingUser,
    ) -> list[ServiceRequestOut]:
        filters = filters or ServiceRequestFilters()
        criteria = {
            "status": filters.status.value if filters.status else None,
            "type": filters.type.value if filters.type else None,
            "franchise_id": filters.franchise_id,
            "customer_id": filters.customer_id,
        }

        if actor.role == UserRole.FRANCHISE_OWNER.value:
            franchise = self._franchises.get_by_owner(actor.user_id)
            if franchise is None:
                return []
            if filters.franchise_id and filters.franchise_id != franchise.id:
                return []
            criteria["franchise_id"] = franchise.id
        elif actor.role == UserRole.SERVICE_AGENT.value:
            criteria["assigned_to_id"] = actor.user_id
        elif actor.role == UserRole.CUSTOMER.value:
            criteria["customer_id"] = actor.user_id

        rows = self._service_requests.search(**criteria)
        return [self._views.build(row) for row in rows]

    def history(self, service_request_id: str, actor: ActingUser) -> list[ActionHistoryOut]:
        self._get_visible(service_request_id, actor)
        return [_history_to_out(row) for row in self._history.for_service_request(service_request_id)]


def build_service_request_service(
    db: Session,
    clock: Callable[[], datetime] = _now_utc,
) -> ServiceRequestService:
    """Wire the service-request object graph onto one session."""
    service_requests = ServiceRequestRepository(db)
    installations = InstallationRequestRepository(db)
    payments = PaymentRepository(db)
    users = UserRepository(db)
    franchises = FranchiseRepository(db)
    products = ProductRepository(db)
    subscriptions = SubscriptionRepository(db)

    history = ActionHistoryLog(db, clock=clock)
    gate = PermissionGate(franchises)
    views = ServiceRequestViewBuilder(payments, installations, products, users)
    transitions = TransitionExecutor(
        service_requests=service_requests,
        payments=payments,
        users=users,
        history=history,
        gate=gate,
        validator=TransitionValidator(),
        synchronizer=InstallationStatusSynchronizer(installations, history),
        views=views,
        clock=clock,
    )
    return ServiceRequestService(
        service_requests=service_requests,
        installations=installations,
        users=users,
        franchises=franchises,
        products=products,
        subscriptions=subscriptions,
        history=history,
        gate=gate,
        views=views,
        transitions=transitions,
        clock=clock,
    )
