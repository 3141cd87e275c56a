"""Status transition rules for service requests.

Validation runs in a fixed order:

1. the transition table (is the edge legal at all),
2. installation-specific overrides (stricter, always win),
3. generic per-target preconditions (agent, date, images, payment).

Nothing here touches storage. Facts that need a lookup, such as whether an
installation has a completed payment, are resolved by the caller and passed
in through ``TransitionContext``.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Union

from app.core.errors import BadRequestError
from app.schemas.service_request import ServiceRequestStatus, ServiceRequestType, TransitionEvidence

S = ServiceRequestStatus

ALLOWED_TRANSITIONS = {
    S.CREATED: [S.ASSIGNED, S.CANCELLED],
    S.ASSIGNED: [S.SCHEDULED, S.CANCELLED],
    S.SCHEDULED: [S.IN_PROGRESS, S.CANCELLED],
    S.IN_PROGRESS: [S.PAYMENT_PENDING, S.COMPLETED, S.CANCELLED],
    S.PAYMENT_PENDING: [S.COMPLETED, S.CANCELLED],
    S.COMPLETED: [],
    S.CANCELLED: [S.ASSIGNED, S.SCHEDULED],
}


def allowed_transitions(current: Union[ServiceRequestStatus, str]) -> list[ServiceRequestStatus]:
    return list(ALLOWED_TRANSITIONS.get(ServiceRequestStatus(current), []))


def is_transition_allowed(current: Union[ServiceRequestStatus, str], requested: Union[ServiceRequestStatus, str]) -> bool:
    return ServiceRequestStatus(requested) in allowed_transitions(current)


def as_utc(value: datetime) -> datetime:
    # Naive datetimes (SQLite, clients omitting an offset) are taken as UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class TransitionContext:
    request_type: ServiceRequestType
    requires_payment: bool
    assigned_to_id: Optional[str]
    evidence: TransitionEvidence
    now: datetime
    installation_payment_completed: bool = False

    @property
    def is_installation(self) -> bool:
        return self.request_type == ServiceRequestType.INSTALLATION


class TransitionValidator:
    def validate(
        self,
        current: Union[ServiceRequestStatus, str],
        requested: Union[ServiceRequestStatus, str],
        context: TransitionContext,
    ) -> None:
        current = ServiceRequestStatus(current)
        requested = ServiceRequestStatus(requested)

        self._check_edge(current, requested)
        if context.is_installation:
            self._check_installation_overrides(current, requested, context)
        self._check_preconditions(current, requested, context)

    def _check_edge(self, current: ServiceRequestStatus, requested: ServiceRequestStatus) -> None:
        valid = allowed_transitions(current)
        if requested not in valid:
            listed = ", ".join(status.value for status in valid) or "none"
            raise BadRequestError(
                f"Invalid status transition from {current.value} to {requested.value}. "
                f"Valid transitions are: {listed}"
            )

    def _check_installation_overrides(
        self,
        current: ServiceRequestStatus,
        requested: ServiceRequestStatus,
        context: TransitionContext,
    ) -> None:
        if requested != S.COMPLETED:
            return
        if current == S.IN_PROGRESS:
            raise BadRequestError(
                "Installation service requests must go through PAYMENT_PENDING status before completion"
            )
        if current == S.PAYMENT_PENDING and not context.installation_payment_completed:
            raise BadRequestError("Installation payment is not completed, please complete payment first")

    def _check_preconditions(
        self,
        current: ServiceRequestStatus,
        requested: ServiceRequestStatus,
        context: TransitionContext,
    ) -> None:
        evidence = context.evidence
        images = evidence.images_for(requested)

        if requested == S.ASSIGNED:
            if not (evidence.agent_id or "").strip():
                raise BadRequestError("Agent ID is required for assignment")

        elif requested == S.SCHEDULED:
            if not context.assigned_to_id:
                raise BadRequestError("Cannot schedule without assigned agent")
            if evidence.scheduled_date is None:
                raise BadRequestError("Scheduled date is required")
            if as_utc(evidence.scheduled_date) <= as_utc(context.now):
                raise BadRequestError("Scheduled date must be in the future")

        elif requested == S.IN_PROGRESS:
            if not context.is_installation and not images:
                raise BadRequestError("Before images are required when starting service work")

        elif requested == S.PAYMENT_PENDING:
            if not context.requires_payment:
                raise BadRequestError("This service request does not require payment")
            amount = evidence.payment_amount
            if amount is None or amount <= 0:
                raise BadRequestError("Payment amount is required and must be greater than zero")
            if not images:
                raise BadRequestError("Completion images are required before requesting payment")

        elif requested == S.COMPLETED:
            if not images:
                raise BadRequestError("Completion images are required to mark as completed")
            if context.requires_payment and current == S.IN_PROGRESS:
                raise BadRequestError(
                    "Service requests requiring payment must go through PAYMENT_PENDING status first"
                )
