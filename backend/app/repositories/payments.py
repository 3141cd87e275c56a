from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models.service import Payment
from app.schemas.service_request import PaymentRecordStatus


class PaymentRepository:
    """Read-only access to payment records; payments are written by the billing side."""

    def __init__(self, db: Session):
        self.db = db

    def for_service_request(self, service_request_id: str) -> Optional[Payment]:
        stmt = (
            select(Payment)
            .where(Payment.service_request_id == service_request_id)
            .order_by(Payment.created_at.desc())
            .limit(1)
        )
        return self.db.execute(stmt).scalars().first()

    def for_installation_request(self, installation_request_id: str) -> Optional[Payment]:
        stmt = (
            select(Payment)
            .where(Payment.installation_request_id == installation_request_id)
            .order_by(Payment.created_at.desc())
            .limit(1)
        )
        return self.db.execute(stmt).scalars().first()

    def completed_for_installation_request(self, installation_request_id: str) -> Optional[Payment]:
        stmt = (
            select(Payment)
            .where(
                Payment.installation_request_id == installation_request_id,
                Payment.status == PaymentRecordStatus.COMPLETED.value,
            )
            .limit(1)
        )
        return self.db.execute(stmt).scalars().first()
