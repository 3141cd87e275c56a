from typing import Optional

from app.models.service import Payment, ServiceRequest
from app.repositories.directory import ProductRepository, UserRepository
from app.repositories.installation_requests import InstallationRequestRepository
from app.repositories.payments import PaymentRepository
from app.schemas.service_request import (
    AssignedAgentOut,
    OrderType,
    PaymentRecordStatus,
    PaymentStatusOut,
    ServiceRequestOut,
    ServiceRequestStatus,
    ServiceRequestType,
)


def _as_float(value) -> Optional[float]:
    if value is None:
        return None
    return float(value)


def _payment_to_out(payment: Payment) -> PaymentStatusOut:
    return PaymentStatusOut(
        status=payment.status,
        amount=_as_float(payment.amount),
        method=payment.payment_method,
        paid_date=payment.paid_date,
    )


class ServiceRequestViewBuilder:
    """Builds the caller-facing view, including the read-time payment status."""

    def __init__(
        self,
        payments: PaymentRepository,
        installations: InstallationRequestRepository,
        products: ProductRepository,
        users: UserRepository,
    ):
        self._payments = payments
        self._installations = installations
        self._products = products
        self._users = users

    def _installation_amount(self, service_request: ServiceRequest) -> Optional[float]:
        installation = self._installations.get(service_request.installation_request_id)
        if installation is None:
            return None
        product = self._products.get(installation.product_id)
        if product is None:
            return None
        if installation.order_type == OrderType.RENTAL.value:
            return _as_float(product.deposit)
        return _as_float(product.buy_price)

    def payment_status(self, service_request: ServiceRequest) -> Optional[PaymentStatusOut]:
        payment = self._payments.for_service_request(service_request.id)
        if payment is not None:
            return _payment_to_out(payment)

        is_installation = service_request.type == ServiceRequestType.INSTALLATION.value
        if is_installation and service_request.installation_request_id:
            payment = self._payments.for_installation_request(service_request.installation_request_id)
            if payment is not None:
                return _payment_to_out(payment)

        if service_request.status != ServiceRequestStatus.PAYMENT_PENDING.value:
            return None

        amount = _as_float(service_request.payment_amount)
        if amount is None and is_installation and service_request.installation_request_id:
            amount = self._installation_amount(service_request)
        return PaymentStatusOut(status=PaymentRecordStatus.PENDING.value, amount=amount)

    def assigned_agent(self, service_request: ServiceRequest) -> Optional[AssignedAgentOut]:
        if not service_request.assigned_to_id:
            return None
        agent = self._users.get(service_request.assigned_to_id)
        if agent is None:
            return None
        return AssignedAgentOut(id=agent.id, name=agent.name, phone=agent.phone)

    def build(self, service_request: ServiceRequest) -> ServiceRequestOut:
        return ServiceRequestOut(
            id=service_request.id,
            customer_id=service_request.customer_id,
            product_id=service_request.product_id,
            subscription_id=service_request.subscription_id,
            installation_request_id=service_request.installation_request_id,
            type=ServiceRequestType(service_request.type),
            description=service_request.description or "",
            images=list(service_request.images or []),
            status=ServiceRequestStatus(service_request.status),
            assigned_to_id=service_request.assigned_to_id,
            assigned_agent=self.assigned_agent(service_request),
            franchise_id=service_request.franchise_id,
            scheduled_date=service_request.scheduled_date,
            completed_date=service_request.completed_date,
            before_images=list(service_request.before_images or []),
            after_images=list(service_request.after_images or []),
            requires_payment=bool(service_request.requires_payment),
            payment_amount=_as_float(service_request.payment_amount),
            payment_status=self.payment_status(service_request),
            created_at=service_request.created_at,
            updated_at=service_request.updated_at,
        )
