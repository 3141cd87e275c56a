import pytest

from app.core.auth import ActingUser
from app.core.errors import ForbiddenError
from app.models.service import ServiceRequest
from app.schemas.service_request import ServiceRequestStatus
from app.services.permissions import PermissionGate, PermissionOperation, operation_for_target


class _Franchises:
    def __init__(self, owners: dict[str, str]):
        self._owners = owners

    def is_owned_by(self, franchise_id, user_id):
        return franchise_id in self._owners and self._owners[franchise_id] == user_id


ADMIN = ActingUser(user_id="admin-1", role="ADMIN")
OWNER = ActingUser(user_id="owner-1", role="FRANCHISE_OWNER")
OTHER_OWNER = ActingUser(user_id="owner-2", role="FRANCHISE_OWNER")
AGENT = ActingUser(user_id="agent1", role="SERVICE_AGENT")
OTHER_AGENT = ActingUser(user_id="agent2", role="SERVICE_AGENT")
CUSTOMER = ActingUser(user_id="customer-1", role="CUSTOMER")
OTHER_CUSTOMER = ActingUser(user_id="customer-2", role="CUSTOMER")


@pytest.fixture
def gate():
    return PermissionGate(_Franchises({"fr-vilnius": "owner-1", "fr-kaunas": "owner-2"}))


@pytest.fixture
def service_request():
    return ServiceRequest(
        id="sr-1",
        customer_id="customer-1",
        franchise_id="fr-vilnius",
        assigned_to_id="agent1",
        status="ASSIGNED",
        type="REPAIR",
    )


def test_operation_for_target():
    assert operation_for_target(ServiceRequestStatus.ASSIGNED) == PermissionOperation.ASSIGN
    assert operation_for_target(ServiceRequestStatus.SCHEDULED) == PermissionOperation.SCHEDULE
    for status in (
        ServiceRequestStatus.IN_PROGRESS,
        ServiceRequestStatus.PAYMENT_PENDING,
        ServiceRequestStatus.COMPLETED,
        ServiceRequestStatus.CANCELLED,
    ):
        assert operation_for_target(status) == PermissionOperation.UPDATE_STATUS


@pytest.mark.parametrize(
    "user,allowed",
    [
        (ADMIN, True),
        (OWNER, True),
        (OTHER_OWNER, False),
        (AGENT, False),
        (CUSTOMER, False),
    ],
)
def test_assign(gate, service_request, user, allowed):
    assert gate.evaluate(PermissionOperation.ASSIGN, service_request, user).allowed is allowed


def test_assign_denial_reasons(gate, service_request):
    decision = gate.evaluate(PermissionOperation.ASSIGN, service_request, AGENT)
    assert decision.reason == "You do not have permission to assign service agents"

    decision = gate.evaluate(PermissionOperation.ASSIGN, service_request, OTHER_OWNER)
    assert decision.reason == "Service request is not in your franchise area"


def test_assign_denied_when_franchise_unresolved(gate):
    orphan = ServiceRequest(id="sr-x", customer_id="customer-1", franchise_id="fr-gone", status="CREATED")
    assert not gate.evaluate(PermissionOperation.ASSIGN, orphan, OWNER).allowed


@pytest.mark.parametrize(
    "user,allowed",
    [
        (ADMIN, True),
        (OWNER, True),
        (OTHER_OWNER, False),
        (AGENT, True),
        (OTHER_AGENT, False),
        (CUSTOMER, False),
    ],
)
def test_schedule(gate, service_request, user, allowed):
    assert gate.evaluate(PermissionOperation.SCHEDULE, service_request, user).allowed is allowed


def test_update_status_defers_to_route_roles(gate, service_request):
    for user in (ADMIN, OWNER, OTHER_OWNER, AGENT, OTHER_AGENT, CUSTOMER):
        assert gate.evaluate(PermissionOperation.UPDATE_STATUS, service_request, user).allowed


@pytest.mark.parametrize(
    "user,allowed",
    [
        (ADMIN, True),
        (OWNER, True),
        (OTHER_OWNER, False),
        (AGENT, True),
        (OTHER_AGENT, False),
        (CUSTOMER, True),
        (OTHER_CUSTOMER, False),
    ],
)
def test_view(gate, service_request, user, allowed):
    assert gate.evaluate(PermissionOperation.VIEW, service_request, user).allowed is allowed


def test_require_raises_forbidden(gate, service_request):
    with pytest.raises(ForbiddenError) as exc:
        gate.require(PermissionOperation.SCHEDULE, service_request, OTHER_AGENT)
    assert exc.value.status_code == 403
    assert exc.value.detail == "You do not have permission to schedule this service request"


def test_require_passes_silently(gate, service_request):
    assert gate.require(PermissionOperation.ASSIGN, service_request, ADMIN) is None
