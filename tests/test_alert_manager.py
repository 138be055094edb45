"""Unit tests for alert creation, deduplication, daily caps and contacts."""

import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.exc import OperationalError

from carealert.core.alert_manager import AlertManager, AlertPayload, AlertOptions
from carealert.core.exceptions import AlertCreationError, InvalidStatusTransition, NotFoundError, ValidationError
from carealert.models.emergency import (
    EmergencyAlert, AlertType, AlertStatus, AlertPriority, AlertSeverity,
    EmergencyContactCreate, EmergencyContactUpdate, EmergencySettingsUpdate
)


def payload(message="Help needed"):
    return AlertPayload(message=message, location={"latitude": 37.7749, "longitude": -122.4194})


class TestCreateAlert:
    """Dedup window and daily cap."""

    @pytest.mark.asyncio()
    async def test_creates_and_notifies(self, db, alerts, user, contacts, fake_sms, fake_email):
        alert = await alerts.create_alert(db, user.id, AlertType.MANUAL, payload())

        assert alert.status == AlertStatus.ACTIVE
        assert alert.priority == AlertPriority.NORMAL
        assert alert.contacts_notified
        assert len(fake_sms.sent) == 3
        assert len(fake_email.sent) == 3

    @pytest.mark.asyncio()
    async def test_duplicate_inside_window_returns_same_alert(self, db, alerts, user, contacts, fake_sms):
        first = await alerts.create_alert(db, user.id, AlertType.SOS, payload())
        second = await alerts.create_alert(db, user.id, AlertType.SOS, payload("again"))

        assert second.id == first.id
        assert second.message == "Help needed"
        assert len(await alerts.get_user_alerts(db, user.id)) == 1
        assert len(fake_sms.sent) == 3

    @pytest.mark.asyncio()
    async def test_old_alert_is_not_a_duplicate(self, db, alerts, user):
        old = EmergencyAlert(user_id=user.id, alert_type=AlertType.SOS,
                             triggered_at=datetime.now(timezone.utc) - timedelta(minutes=11))
        db.add(old)
        await db.commit()

        alert = await alerts.create_alert(db, user.id, AlertType.SOS, payload())

        assert alert.id != old.id

    @pytest.mark.asyncio()
    async def test_over_daily_cap_is_stored_without_notifying(self, db, alerts, user, contacts, fake_sms):
        await alerts.create_alert(db, user.id, AlertType.MANUAL, payload())
        capped = await alerts.create_alert(db, user.id, AlertType.SOS, payload())

        assert capped.id is not None
        assert not capped.contacts_notified
        assert len(fake_sms.sent) == 3
        assert len(await alerts.get_user_alerts(db, user.id)) == 2

    @pytest.mark.asyncio()
    async def test_bypass_daily_cap(self, db, alerts, user, contacts, fake_sms):
        await alerts.create_alert(db, user.id, AlertType.MANUAL, payload())
        alert = await alerts.create_alert(
            db, user.id, AlertType.GEOFENCE_EXIT, payload(), AlertOptions(bypass_daily_limit=True)
        )

        assert alert.contacts_notified
        assert len(fake_sms.sent) == 6

    @pytest.mark.asyncio()
    async def test_sensor_alerts_do_not_count_toward_cap(self, db, alerts, user, contacts):
        await alerts.create_alert(db, user.id, AlertType.SENSOR_DETECTED, payload())

        status = await alerts.check_daily_limit(db, user.id)
        assert status.alerts_today == 0
        assert not status.limit_reached

    @pytest.mark.asyncio()
    async def test_notify_disabled(self, db, alerts, user, contacts, fake_sms):
        alert = await alerts.create_alert(
            db, user.id, AlertType.MANUAL, payload(), AlertOptions(notify_contacts=False)
        )

        assert not alert.contacts_notified
        assert fake_sms.sent == []

    @pytest.mark.asyncio()
    async def test_dispatch_failure_keeps_alert(self, db, user, contacts):
        dispatcher = AsyncMock()
        dispatcher.notify_contacts.side_effect = RuntimeError("gateway exploded")
        manager = AlertManager(dispatcher=dispatcher)

        alert = await manager.create_alert(db, user.id, AlertType.MANUAL, payload())

        assert not alert.contacts_notified
        stored = await db.get(EmergencyAlert, alert.id)
        assert stored is not None

    @pytest.mark.asyncio()
    async def test_store_failure_raises(self, db, alerts, user, monkeypatch):
        async def broken_commit():
            raise OperationalError("INSERT", {}, Exception("disk full"))

        monkeypatch.setattr(db, "commit", broken_commit)

        with pytest.raises(AlertCreationError):
            await alerts.create_alert(db, user.id, AlertType.MANUAL, payload())


class TestUrgentAlert:
    @pytest.mark.asyncio()
    async def test_bypasses_cap_and_is_urgent(self, db, alerts, user, contacts, fake_sms):
        await alerts.create_alert(db, user.id, AlertType.MANUAL, payload())

        alert = await alerts.create_urgent_alert(db, user.id, AlertType.HEALTH_ANOMALY, payload())

        assert alert.priority == AlertPriority.URGENT
        assert alert.contacts_notified
        assert len(fake_sms.sent) == 6

    @pytest.mark.asyncio()
    async def test_five_minute_dedup(self, db, alerts, user):
        recent = EmergencyAlert(user_id=user.id, alert_type=AlertType.HEALTH_ANOMALY,
                                triggered_at=datetime.now(timezone.utc) - timedelta(minutes=4))
        older = EmergencyAlert(user_id=user.id, alert_type=AlertType.SOS,
                               triggered_at=datetime.now(timezone.utc) - timedelta(minutes=6))
        db.add_all([recent, older])
        await db.commit()

        same = await alerts.create_urgent_alert(db, user.id, AlertType.HEALTH_ANOMALY, payload())
        fresh = await alerts.create_urgent_alert(db, user.id, AlertType.SOS, payload())

        assert same.id == recent.id
        assert fresh.id != older.id


class TestAlertStatus:
    @pytest.mark.asyncio()
    async def test_resolve(self, db, alerts, user):
        alert = await alerts.create_alert(db, user.id, AlertType.MANUAL, payload())

        resolved = await alerts.update_alert_status(db, user.id, alert.id, AlertStatus.RESOLVED, "daughter")

        assert resolved.status == AlertStatus.RESOLVED
        assert resolved.resolved_at is not None
        assert resolved.resolved_by == "daughter"

    @pytest.mark.asyncio()
    async def test_terminal_status_is_final(self, db, alerts, user):
        alert = await alerts.create_alert(db, user.id, AlertType.MANUAL, payload())
        await alerts.update_alert_status(db, user.id, alert.id, AlertStatus.FALSE_ALARM)

        with pytest.raises(InvalidStatusTransition):
            await alerts.update_alert_status(db, user.id, alert.id, AlertStatus.RESOLVED)

    @pytest.mark.asyncio()
    async def test_active_to_active_is_a_no_op(self, db, alerts, user):
        alert = await alerts.create_alert(db, user.id, AlertType.MANUAL, payload())

        same = await alerts.update_alert_status(db, user.id, alert.id, AlertStatus.ACTIVE)

        assert same.status == AlertStatus.ACTIVE
        assert same.resolved_at is None

    @pytest.mark.asyncio()
    async def test_other_users_alert(self, db, alerts, user):
        alert = await alerts.create_alert(db, user.id, AlertType.MANUAL, payload())

        with pytest.raises(NotFoundError):
            await alerts.update_alert_status(db, uuid.uuid4(), alert.id, AlertStatus.RESOLVED)

    @pytest.mark.asyncio()
    async def test_filter_by_status(self, db, alerts, user):
        first = await alerts.create_alert(db, user.id, AlertType.MANUAL, payload())
        await alerts.create_alert(db, user.id, AlertType.SOS, payload())
        await alerts.update_alert_status(db, user.id, first.id, AlertStatus.RESOLVED)

        active = await alerts.get_user_alerts(db, user.id, status=AlertStatus.ACTIVE)

        assert [a.alert_type for a in active] == [AlertType.SOS]


class TestDailyLimit:
    @pytest.mark.asyncio()
    async def test_reports_remaining(self, db, alerts, user):
        status = await alerts.check_daily_limit(db, user.id)
        assert status.remaining == 1
        assert status.resets_at > datetime.now(timezone.utc)

        await alerts.create_alert(db, user.id, AlertType.MANUAL, payload())

        status = await alerts.check_daily_limit(db, user.id)
        assert status.alerts_today == 1
        assert status.limit_reached
        assert status.remaining == 0


class TestEmergencyContacts:
    @pytest.mark.asyncio()
    async def test_add_and_order(self, db, alerts, user):
        await alerts.add_emergency_contact(
            db, user.id, EmergencyContactCreate(name="Neighbour", relationship="friend", email="n@example.com")
        )
        await alerts.add_emergency_contact(
            db, user.id, EmergencyContactCreate(name="Son", relationship="son",
                                                phone_number="+1 (415) 455-2671", is_primary=True)
        )

        contacts = await alerts.get_emergency_contacts(db, user.id)

        assert [c.name for c in contacts] == ["Son", "Neighbour"]

    @pytest.mark.asyncio()
    async def test_placeholder_number_is_rejected(self, db, alerts, user):
        with pytest.raises(ValidationError):
            await alerts.add_emergency_contact(
                db, user.id, EmergencyContactCreate(name="Test", relationship="x", phone_number="555-123-4567")
            )

    def test_malformed_number_fails_schema(self):
        with pytest.raises(ValueError):
            EmergencyContactCreate(name="Test", relationship="x", phone_number="call me")

    @pytest.mark.asyncio()
    async def test_update(self, db, alerts, user, contacts):
        updated = await alerts.update_emergency_contact(
            db, user.id, contacts[1].id, EmergencyContactUpdate(email="new@example.com")
        )

        assert updated.email == "new@example.com"
        assert updated.phone_number == "+14155551002"

    @pytest.mark.asyncio()
    async def test_delete_is_soft(self, db, alerts, user, contacts):
        await alerts.delete_emergency_contact(db, user.id, contacts[0].id)

        remaining = await alerts.get_emergency_contacts(db, user.id)
        assert sorted(c.name for c in remaining) == ["Second", "Third"]
        with pytest.raises(NotFoundError):
            await alerts.get_emergency_contact(db, user.id, contacts[0].id)


class TestAlertSeverityDefaults:
    def test_payload_defaults_to_high(self):
        assert AlertPayload().severity == AlertSeverity.HIGH


class TestEmergencySettings:
    @pytest.mark.asyncio()
    async def test_defaults(self, db, alerts, user):
        current = await alerts.get_emergency_settings(db, user.id)

        assert current.sos_enabled is True
        assert current.fall_detection_enabled is False
        assert current.fall_threshold == 20
        assert current.sampling_rate == 10

    @pytest.mark.asyncio()
    async def test_updates_merge(self, db, alerts, user):
        await alerts.update_emergency_settings(db, user.id, EmergencySettingsUpdate(fall_detection_enabled=True))
        await alerts.update_emergency_settings(db, user.id, EmergencySettingsUpdate(fall_threshold=35))

        current = await alerts.get_emergency_settings(db, user.id)

        assert current.fall_detection_enabled is True
        assert current.fall_threshold == 35
        assert current.inactivity_threshold == 120

    def test_bounds(self):
        with pytest.raises(ValueError):
            EmergencySettingsUpdate(inactivity_threshold=0)
