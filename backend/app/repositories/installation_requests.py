from typing import Any, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from app.models.service import InstallationRequest


class InstallationRequestRepository:
    def __init__(self, db: Session):
        self.db = db

    def get(self, installation_request_id: str) -> Optional[InstallationRequest]:
        return self.db.get(InstallationRequest, installation_request_id)

    def update(self, installation_request_id: str, fields: dict[str, Any]) -> bool:
        stmt = (
            update(InstallationRequest)
            .where(InstallationRequest.id == installation_request_id)
            .values(**fields)
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)
        if result.rowcount != 1:
            self.db.rollback()
            return False
        self.db.commit()
        return True
