import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.auth import ActingUser
from app.core.config import get_settings
from app.models.service import ActionHistory
from app.utils.alerting import alert_tracker

logger = logging.getLogger(__name__)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _redact_pii(value: Any, redact_keys: set[str]) -> Any:
    if value is None:
        return None
    if isinstance(value, dict):
        redacted = {}
        for key, item in value.items():
            if isinstance(key, str) and key.lower() in redact_keys:
                redacted[key] = "[REDACTED]"
            else:
                redacted[key] = _redact_pii(item, redact_keys)
        return redacted
    if isinstance(value, list):
        return [_redact_pii(item, redact_keys) for item in value]
    return value


@dataclass(frozen=True)
class ActionHistoryEntry:
    entity_type: str
    entity_id: str
    action_type: str
    performed_by: str
    performed_by_role: str
    from_status: Optional[str] = None
    to_status: Optional[str] = None
    comment: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None
    service_request_id: Optional[str] = None
    installation_request_id: Optional[str] = None
    subscription_id: Optional[str] = None

    @classmethod
    def for_service_request(
        cls,
        service_request_id: str,
        *,
        action_type: str,
        from_status: Optional[str],
        to_status: Optional[str],
        actor: ActingUser,
        comment: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> "ActionHistoryEntry":
        return cls(
            entity_type="service_request",
            entity_id=service_request_id,
            service_request_id=service_request_id,
            action_type=action_type,
            from_status=from_status,
            to_status=to_status,
            performed_by=actor.user_id,
            performed_by_role=actor.role,
            comment=comment,
            metadata=metadata,
        )

    @classmethod
    def for_installation_request(
        cls,
        installation_request_id: str,
        *,
        action_type: str,
        from_status: Optional[str],
        to_status: Optional[str],
        actor: ActingUser,
        comment: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
        service_request_id: Optional[str] = None,
    ) -> "ActionHistoryEntry":
        return cls(
            entity_type="installation_request",
            entity_id=installation_request_id,
            installation_request_id=installation_request_id,
            service_request_id=service_request_id,
            action_type=action_type,
            from_status=from_status,
            to_status=to_status,
            performed_by=actor.user_id,
            performed_by_role=actor.role,
            comment=comment,
            metadata=metadata,
        )

    @classmethod
    def for_subscription(
        cls,
        subscription_id: str,
        *,
        action_type: str,
        service_request_id: str,
        to_status: str,
        actor: ActingUser,
    ) -> "ActionHistoryEntry":
        return cls(
            entity_type="subscription",
            entity_id=subscription_id,
            subscription_id=subscription_id,
            service_request_id=service_request_id,
            action_type=action_type,
            to_status=to_status,
            performed_by=actor.user_id,
            performed_by_role=actor.role,
            metadata={"service_request_id": service_request_id, "status": to_status},
        )


class ActionHistoryLog:
    """Append-only sink for action history.

    Appends are committed on their own. A failed append is logged and
    reported through the return value, never raised, so a status change that
    already committed stays in place even when its history row is lost.
    """

    def __init__(self, db: Session, clock: Callable[[], datetime] = _now_utc):
        self.db = db
        self._clock = clock

    def _prepare_metadata(self, metadata: Optional[dict[str, Any]]) -> Optional[dict[str, Any]]:
        settings = get_settings()
        if metadata is None or not settings.pii_redaction_enabled:
            return metadata
        configured = {item.lower() for item in settings.pii_redaction_fields}
        return _redact_pii(metadata, configured)

    def append(self, entry: ActionHistoryEntry) -> bool:
        metadata = self._prepare_metadata(entry.metadata)
        row = ActionHistory(
            entity_type=entry.entity_type,
            entity_id=entry.entity_id,
            service_request_id=entry.service_request_id,
            installation_request_id=entry.installation_request_id,
            subscription_id=entry.subscription_id,
            action_type=entry.action_type,
            from_status=entry.from_status,
            to_status=entry.to_status,
            performed_by=entry.performed_by,
            performed_by_role=entry.performed_by_role,
            comment=entry.comment,
            history_meta=metadata,
            created_at=self._clock(),
        )
        try:
            self.db.add(row)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception(
                "Action history append failed action=%s entity=%s:%s",
                entry.action_type,
                entry.entity_type,
                entry.entity_id,
            )
            alert_tracker.record(
                "HISTORY_APPEND_FAILED",
                {"action_type": entry.action_type, "entity_id": entry.entity_id},
            )
            return False

        try:
            alert_tracker.record(entry.action_type, metadata)
        except Exception:
            logger.exception("Alert tracker failed for action=%s", entry.action_type)
        return True

    def for_entity(self, entity_type: str, entity_id: str) -> list[ActionHistory]:
        stmt = (
            select(ActionHistory)
            .where(ActionHistory.entity_type == entity_type, ActionHistory.entity_id == entity_id)
            .order_by(ActionHistory.created_at.asc(), ActionHistory.id.asc())
        )
        return list(self.db.execute(stmt).scalars().all())

    def for_service_request(self, service_request_id: str) -> list[ActionHistory]:
        stmt = (
            select(ActionHistory)
            .where(ActionHistory.service_request_id == service_request_id)
            .order_by(ActionHistory.created_at.asc(), ActionHistory.id.asc())
        )
        return list(self.db.execute(stmt).scalars().all())
