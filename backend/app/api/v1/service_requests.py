from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.core.auth import ActingUser, get_current_user, require_roles
from app.core.dependencies import get_db
from app.schemas.service_request import (
    ActionHistoryOut,
    AssignAgentRequest,
    InstallationServiceRequestCreate,
    ScheduleRequest,
    ServiceRequestCreate,
    ServiceRequestDetailResponse,
    ServiceRequestFilters,
    ServiceRequestListResponse,
    ServiceRequestResponse,
    ServiceRequestStatus,
    ServiceRequestStatusUpdate,
    ServiceRequestType,
    UserRole,
)
from app.services.service_request_service import ServiceRequestService, build_service_request_service

router = APIRouter()


def get_service_request_service(db: Session = Depends(get_db)) -> ServiceRequestService:
    return build_service_request_service(db)


@router.get("/service-requests", response_model=ServiceRequestListResponse)
async def list_service_requests(
    status: Optional[ServiceRequestStatus] = Query(None),
    type: Optional[ServiceRequestType] = Query(None),
    franchise_id: Optional[str] = Query(None),
    customer_id: Optional[str] = Query(None),
    current_user: ActingUser = Depends(get_current_user),
    service: ServiceRequestService = Depends(get_service_request_service),
):
    filters = ServiceRequestFilters(status=status, type=type, franchise_id=franchise_id, customer_id=customer_id)
    return ServiceRequestListResponse(service_requests=service.list_service_requests(filters, current_user))


@router.post("/service-requests", response_model=ServiceRequestResponse, status_code=201)
async def create_service_request(
    payload: ServiceRequestCreate,
    current_user: ActingUser = Depends(require_roles(UserRole.CUSTOMER, UserRole.ADMIN)),
    service: ServiceRequestService = Depends(get_service_request_service),
):
    view = service.create_service_request(payload, current_user)
    return ServiceRequestResponse(message="Service request created successfully", service_request=view)


@router.post("/service-requests/installation", response_model=ServiceRequestResponse, status_code=201)
async def create_installation_service_request(
    payload: InstallationServiceRequestCreate,
    current_user: ActingUser = Depends(require_roles(UserRole.ADMIN, UserRole.FRANCHISE_OWNER)),
    service: ServiceRequestService = Depends(get_service_request_service),
):
    view, created = service.create_installation_service_request(payload, current_user)
    message = (
        "Installation service request created successfully"
        if created
        else "Installation service request updated successfully"
    )
    return ServiceRequestResponse(message=message, service_request=view)


@router.get("/service-requests/{service_request_id}", response_model=ServiceRequestDetailResponse)
async def get_service_request(
    service_request_id: str,
    current_user: ActingUser = Depends(get_current_user),
    service: ServiceRequestService = Depends(get_service_request_service),
):
    return ServiceRequestDetailResponse(service_request=service.get_service_request(service_request_id, current_user))


@router.get("/service-requests/{service_request_id}/history", response_model=list[ActionHistoryOut])
async def get_service_request_history(
    service_request_id: str,
    current_user: ActingUser = Depends(get_current_user),
    service: ServiceRequestService = Depends(get_service_request_service),
):
    return service.history(service_request_id, current_user)


@router.patch("/service-requests/{service_request_id}/status", response_model=ServiceRequestResponse)
async def update_service_request_status(
    service_request_id: str,
    payload: ServiceRequestStatusUpdate,
    current_user: ActingUser = Depends(
        require_roles(UserRole.ADMIN, UserRole.FRANCHISE_OWNER, UserRole.SERVICE_AGENT)
    ),
    service: ServiceRequestService = Depends(get_service_request_service),
):
    view = service.transitions.apply(service_request_id, payload.status, current_user, payload)
    return ServiceRequestResponse(message="Service request status updated successfully", service_request=view)


@router.post("/service-requests/{service_request_id}/assign", response_model=ServiceRequestResponse)
async def assign_service_agent(
    service_request_id: str,
    payload: AssignAgentRequest,
    current_user: ActingUser = Depends(require_roles(UserRole.ADMIN, UserRole.FRANCHISE_OWNER)),
    service: ServiceRequestService = Depends(get_service_request_service),
):
    view = service.transitions.assign_agent(service_request_id, payload.assigned_to_id, current_user)
    return ServiceRequestResponse(message="Service agent assigned successfully", service_request=view)


@router.post("/service-requests/{service_request_id}/schedule", response_model=ServiceRequestResponse)
async def schedule_service_request(
    service_request_id: str,
    payload: ScheduleRequest,
    current_user: ActingUser = Depends(
        require_roles(UserRole.ADMIN, UserRole.FRANCHISE_OWNER, UserRole.SERVICE_AGENT)
    ),
    service: ServiceRequestService = Depends(get_service_request_service),
):
    view = service.transitions.schedule(service_request_id, payload.scheduled_date, current_user)
    return ServiceRequestResponse(message="Service request scheduled successfully", service_request=view)
