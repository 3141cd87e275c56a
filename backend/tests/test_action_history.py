from datetime import datetime, timezone

from app.core.auth import ActingUser
from app.services.action_history import ActionHistoryEntry, ActionHistoryLog, _redact_pii
from app.utils.alerting import AuditAlertTracker, alert_tracker

ACTOR = ActingUser(user_id="admin-1", role="ADMIN", name="Ada")


def test_redact_pii_nested():
    value = {
        "phone": "+37060000000",
        "nested": {"Email": "a@b.lt", "keep": 1},
        "items": [{"address": "Main st 1"}, "plain"],
    }

    redacted = _redact_pii(value, {"phone", "email", "address"})

    assert redacted == {
        "phone": "[REDACTED]",
        "nested": {"Email": "[REDACTED]", "keep": 1},
        "items": [{"address": "[REDACTED]"}, "plain"],
    }


def test_append_uses_clock_and_redacts(db, world):
    fixed = datetime(2030, 6, 1, 8, 0, tzinfo=timezone.utc)
    log = ActionHistoryLog(db, clock=lambda: fixed)

    ok = log.append(
        ActionHistoryEntry.for_service_request(
            "sr-1",
            action_type="SERVICE_REQUEST_CANCELLED",
            from_status="CREATED",
            to_status="CANCELLED",
            actor=ACTOR,
            metadata={"phone": "+37060000000", "reason": "duplicate"},
        )
    )

    assert ok is True
    [row] = log.for_entity("service_request", "sr-1")
    assert row.history_meta == {"phone": "[REDACTED]", "reason": "duplicate"}
    assert row.created_at.replace(tzinfo=timezone.utc) == fixed
    assert row.performed_by == "admin-1"


def test_redaction_can_be_disabled(db, world, monkeypatch):
    monkeypatch.setenv("PII_REDACTION_ENABLED", "false")
    log = ActionHistoryLog(db)

    log.append(
        ActionHistoryEntry.for_installation_request(
            "inst-1",
            action_type="INSTALLATION_REQUEST_CANCELLED",
            from_status="SUBMITTED",
            to_status="CANCELLED",
            actor=ACTOR,
            metadata={"phone": "+37060000000"},
        )
    )

    [row] = log.for_entity("installation_request", "inst-1")
    assert row.history_meta == {"phone": "+37060000000"}


def test_empty_redaction_field_list_redacts_nothing(db, world, monkeypatch):
    monkeypatch.setenv("PII_REDACTION_FIELDS", "")
    log = ActionHistoryLog(db)

    log.append(
        ActionHistoryEntry.for_installation_request(
            "inst-1",
            action_type="INSTALLATION_REQUEST_CANCELLED",
            from_status="SUBMITTED",
            to_status="CANCELLED",
            actor=ACTOR,
            metadata={"phone": "+37060000000", "email": "a@example.com"},
        )
    )

    [row] = log.for_entity("installation_request", "inst-1")
    assert row.history_meta == {"phone": "+37060000000", "email": "a@example.com"}


def test_append_failure_returns_false(db, world):
    from sqlalchemy import text

    db.execute(text("DROP TABLE action_history"))
    db.commit()

    ok = ActionHistoryLog(db).append(
        ActionHistoryEntry.for_subscription(
            "sub-1",
            action_type="SUBSCRIPTION_SERVICE_REQUEST_UPDATED",
            service_request_id="sr-1",
            to_status="CANCELLED",
            actor=ACTOR,
        )
    )

    assert ok is False
    assert alert_tracker.count("HISTORY_APPEND_FAILED") == 1


def test_alert_tracker_fires_at_threshold(caplog):
    tracker = AuditAlertTracker(window_seconds=60, thresholds={"SERVICE_REQUEST_CANCELLED": 3})

    fired = [tracker.record("SERVICE_REQUEST_CANCELLED", {"n": i}) for i in range(6)]

    assert fired == [False, False, True, False, False, True]
    assert tracker.count("SERVICE_REQUEST_CANCELLED") == 6
    assert "ALERT history_action=SERVICE_REQUEST_CANCELLED" in caplog.text


def test_alert_tracker_ignores_untracked_actions():
    tracker = AuditAlertTracker(window_seconds=60, thresholds={"SERVICE_REQUEST_CANCELLED": 1})

    assert tracker.record("SERVICE_REQUEST_ASSIGNED") is False
    assert tracker.count("SERVICE_REQUEST_ASSIGNED") == 0
