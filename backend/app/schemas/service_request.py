from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class ServiceRequestStatus(str, Enum):
    CREATED = "CREATED"
    ASSIGNED = "ASSIGNED"
    SCHEDULED = "SCHEDULED"
    IN_PROGRESS = "IN_PROGRESS"
    PAYMENT_PENDING = "PAYMENT_PENDING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class ServiceRequestType(str, Enum):
    INSTALLATION = "INSTALLATION"
    MAINTENANCE = "MAINTENANCE"
    REPAIR = "REPAIR"
    GENERAL = "GENERAL"


class UserRole(str, Enum):
    ADMIN = "ADMIN"
    FRANCHISE_OWNER = "FRANCHISE_OWNER"
    SERVICE_AGENT = "SERVICE_AGENT"
    CUSTOMER = "CUSTOMER"


class InstallationRequestStatus(str, Enum):
    SUBMITTED = "SUBMITTED"
    FRANCHISE_CONTACTED = "FRANCHISE_CONTACTED"
    INSTALLATION_SCHEDULED = "INSTALLATION_SCHEDULED"
    INSTALLATION_IN_PROGRESS = "INSTALLATION_IN_PROGRESS"
    PAYMENT_PENDING = "PAYMENT_PENDING"
    INSTALLATION_COMPLETED = "INSTALLATION_COMPLETED"
    CANCELLED = "CANCELLED"


class PaymentRecordStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


class OrderType(str, Enum):
    RENTAL = "RENTAL"
    PURCHASE = "PURCHASE"


class ActionType(str, Enum):
    SERVICE_REQUEST_CREATED = "SERVICE_REQUEST_CREATED"
    SERVICE_REQUEST_ASSIGNED = "SERVICE_REQUEST_ASSIGNED"
    SERVICE_REQUEST_SCHEDULED = "SERVICE_REQUEST_SCHEDULED"
    SERVICE_REQUEST_IN_PROGRESS = "SERVICE_REQUEST_IN_PROGRESS"
    SERVICE_REQUEST_PAYMENT_PENDING = "SERVICE_REQUEST_PAYMENT_PENDING"
    SERVICE_REQUEST_COMPLETED = "SERVICE_REQUEST_COMPLETED"
    SERVICE_REQUEST_CANCELLED = "SERVICE_REQUEST_CANCELLED"
    SUBSCRIPTION_SERVICE_REQUEST_UPDATED = "SUBSCRIPTION_SERVICE_REQUEST_UPDATED"
    INSTALLATION_REQUEST_SCHEDULED = "INSTALLATION_REQUEST_SCHEDULED"
    INSTALLATION_REQUEST_IN_PROGRESS = "INSTALLATION_REQUEST_IN_PROGRESS"
    INSTALLATION_REQUEST_PAYMENT_PENDING = "INSTALLATION_REQUEST_PAYMENT_PENDING"
    INSTALLATION_REQUEST_COMPLETED = "INSTALLATION_REQUEST_COMPLETED"
    INSTALLATION_REQUEST_CANCELLED = "INSTALLATION_REQUEST_CANCELLED"


class TransitionEvidence(BaseModel):
    """Everything a caller may supply alongside a requested status change."""

    images: Optional[List[str]] = None
    before_images: Optional[List[str]] = None
    after_images: Optional[List[str]] = None
    scheduled_date: Optional[datetime] = None
    payment_amount: Optional[float] = Field(default=None, ge=0)
    agent_id: Optional[str] = None
    comment: Optional[str] = Field(default=None, max_length=1000)

    def images_for(self, target: ServiceRequestStatus) -> List[str]:
        # Entering IN_PROGRESS captures "before" photos; every later edge captures completion photos.
        if target == ServiceRequestStatus.IN_PROGRESS:
            chosen = self.before_images or self.images
        else:
            chosen = self.after_images or self.images
        return [ref for ref in (chosen or []) if ref and ref.strip()]


class ServiceRequestStatusUpdate(TransitionEvidence):
    status: ServiceRequestStatus


class AssignAgentRequest(BaseModel):
    assigned_to_id: str = Field(min_length=1)


class ScheduleRequest(BaseModel):
    scheduled_date: datetime


class ServiceRequestCreate(BaseModel):
    product_id: str = Field(min_length=1)
    subscription_id: Optional[str] = None
    installation_request_id: Optional[str] = None
    type: ServiceRequestType
    description: str = Field(min_length=5)
    scheduled_date: Optional[datetime] = None
    images: List[str] = Field(default_factory=list)
    requires_payment: bool = False
    payment_amount: Optional[float] = Field(default=None, ge=0)


class InstallationServiceRequestCreate(BaseModel):
    installation_request_id: str = Field(min_length=1)
    assigned_to_id: Optional[str] = None
    scheduled_date: Optional[datetime] = None
    description: str = "Installation service request"


class ServiceRequestFilters(BaseModel):
    status: Optional[ServiceRequestStatus] = None
    type: Optional[ServiceRequestType] = None
    franchise_id: Optional[str] = None
    customer_id: Optional[str] = None


class PaymentStatusOut(BaseModel):
    status: str
    amount: Optional[float] = None
    method: Optional[str] = None
    paid_date: Optional[datetime] = None


class AssignedAgentOut(BaseModel):
    id: str
    name: Optional[str] = None
    phone: Optional[str] = None


class ServiceRequestOut(BaseModel):
    id: str
    customer_id: str
    product_id: str
    subscription_id: Optional[str] = None
    installation_request_id: Optional[str] = None
    type: ServiceRequestType
    description: str
    images: List[str] = Field(default_factory=list)
    status: ServiceRequestStatus
    assigned_to_id: Optional[str] = None
    assigned_agent: Optional[AssignedAgentOut] = None
    franchise_id: str
    scheduled_date: Optional[datetime] = None
    completed_date: Optional[datetime] = None
    before_images: List[str] = Field(default_factory=list)
    after_images: List[str] = Field(default_factory=list)
    requires_payment: bool
    payment_amount: Optional[float] = Field(default=None, ge=0)
    payment_status: Optional[PaymentStatusOut] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ServiceRequestResponse(BaseModel):
    message: str
    service_request: ServiceRequestOut


class ServiceRequestDetailResponse(BaseModel):
    service_request: ServiceRequestOut


class ServiceRequestListResponse(BaseModel):
    service_requests: List[ServiceRequestOut]


class ActionHistoryOut(BaseModel):
    id: str
    entity_type: str
    entity_id: str
    action_type: str
    from_status: Optional[str] = None
    to_status: Optional[str] = None
    performed_by: str
    performed_by_role: str
    comment: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None
