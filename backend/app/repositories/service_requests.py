"""Entity store for service requests."""

from typing import Any, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from app.models.service import ServiceRequest
from app.schemas.service_request import ServiceRequestType


class ServiceRequestRepository:
    def __init__(self, db: Session):
        self.db = db

    def get(self, service_request_id: str) -> Optional[ServiceRequest]:
        return self.db.get(ServiceRequest, service_request_id)

    def search(
        self,
        *,
        status: Optional[str] = None,
        type: Optional[str] = None,
        franchise_id: Optional[str] = None,
        customer_id: Optional[str] = None,
        assigned_to_id: Optional[str] = None,
    ) -> list[ServiceRequest]:
        stmt = select(ServiceRequest)
        if status:
            stmt = stmt.where(ServiceRequest.status == status)
        if type:
            stmt = stmt.where(ServiceRequest.type == type)
        if franchise_id:
            stmt = stmt.where(ServiceRequest.franchise_id == franchise_id)
        if customer_id:
            stmt = stmt.where(ServiceRequest.customer_id == customer_id)
        if assigned_to_id:
            stmt = stmt.where(ServiceRequest.assigned_to_id == assigned_to_id)
        stmt = stmt.order_by(ServiceRequest.created_at.desc(), ServiceRequest.id.desc())
        return list(self.db.execute(stmt).scalars().all())

    def find_installation_service_request(self, installation_request_id: str) -> Optional[ServiceRequest]:
        stmt = (
            select(ServiceRequest)
            .where(
                ServiceRequest.installation_request_id == installation_request_id,
                ServiceRequest.type == ServiceRequestType.INSTALLATION.value,
            )
            .order_by(ServiceRequest.created_at.asc())
            .limit(1)
        )
        return self.db.execute(stmt).scalars().first()

    def insert(self, record: ServiceRequest) -> ServiceRequest:
        self.db.add(record)
        self.db.commit()
        return record

    def update(
        self,
        service_request_id: str,
        fields: dict[str, Any],
        *,
        expected_status: Optional[str] = None,
    ) -> bool:
        """Apply ``fields`` in one UPDATE statement.

        With ``expected_status`` the row is only touched while it still holds
        that status; ``False`` means another writer got there first (or the row
        is gone) and nothing was changed.
        """
        stmt = update(ServiceRequest).where(ServiceRequest.id == service_request_id)
        if expected_status is not None:
            stmt = stmt.where(ServiceRequest.status == expected_status)
        stmt = stmt.values(**fields).execution_options(synchronize_session=False)

        result = self.db.execute(stmt)
        if result.rowcount != 1:
            self.db.rollback()
            return False
        self.db.commit()
        return True
