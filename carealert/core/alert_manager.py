import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select, desc, func

from carealert.config import settings
from carealert.core.exceptions import AlertCreationError, InvalidStatusTransition, NotFoundError, ValidationError
from carealert.models.emergency import (
    EmergencyAlert, EmergencyContact, EmergencyContactCreate, EmergencyContactUpdate,
    EmergencySettings, EmergencySettingsUpdate, UserSensorSettings,
    AlertType, AlertSeverity, AlertStatus, AlertPriority, TERMINAL_STATUSES
)
from carealert.models.user import UserProfile
from carealert.utils.phone import is_valid_phone_number
from carealert.utils.timeutils import utc_now, start_of_day, minutes_ago

logger = logging.getLogger(__name__)

@dataclass
class AlertPayload:
    message: Optional[str] = None
    severity: AlertSeverity = AlertSeverity.HIGH
    location: Optional[Dict[str, Any]] = None
    details: Optional[Dict[str, Any]] = None

@dataclass
class AlertOptions:
    notify_contacts: bool = True
    bypass_daily_limit: bool = False

@dataclass
class DailyLimitStatus:
    alerts_today: int
    daily_limit: int
    resets_at: datetime
    limit_reached: bool = field(init=False)
    remaining: int = field(init=False)

    def __post_init__(self):
        self.limit_reached = self.alerts_today >= self.daily_limit
        self.remaining = max(0, self.daily_limit - self.alerts_today)

class AlertManager:
    """
    Creates and resolves emergency alerts.

    Repeats of the same alert type inside the dedup window collapse into
    the earlier alert. Beyond the daily cap an alert is still stored, but
    contacts are not notified.
    """

    def __init__(self, dispatcher=None):
        self._dispatcher = dispatcher
        self.dedup_window = timedelta(minutes=settings.ALERT_DEDUP_WINDOW_MINUTES)
        self.urgent_dedup_window = timedelta(minutes=settings.URGENT_DEDUP_WINDOW_MINUTES)
        self.daily_limit = settings.DAILY_ALERT_LIMIT

    @property
    def dispatcher(self):
        if self._dispatcher is None:
            from carealert.core.dispatcher import notification_dispatcher
            self._dispatcher = notification_dispatcher
        return self._dispatcher

    async def create_alert(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        alert_type: AlertType,
        payload: AlertPayload,
        options: Optional[AlertOptions] = None,
        priority: AlertPriority = AlertPriority.NORMAL,
        dedup_window: Optional[timedelta] = None
    ) -> EmergencyAlert:
        options = options or AlertOptions()
        window = dedup_window or self.dedup_window

        recent = await self._find_recent(db, user_id, alert_type, window)
        if recent:
            logger.info(
                f"Skipping duplicate {alert_type.value} alert for user {user_id} - "
                f"similar alert created at {recent.triggered_at} (ID: {recent.id})"
            )
            return recent

        notify = options.notify_contacts
        if notify and alert_type != AlertType.SENSOR_DETECTED and not options.bypass_daily_limit:
            limit = await self.check_daily_limit(db, user_id)
            if limit.limit_reached:
                logger.warning(
                    f"Daily alert limit reached for user {user_id} - "
                    f"{limit.alerts_today} alerts already sent today"
                )
                notify = False

        alert = EmergencyAlert(
            user_id=user_id,
            alert_type=alert_type,
            message=payload.message,
            severity=payload.severity,
            location=payload.location,
            details=payload.details,
            priority=priority
        )

        try:
            db.add(alert)
            await db.commit()
            await db.refresh(alert)
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error(f"Create emergency alert error for user {user_id}: {e}")
            raise AlertCreationError("Failed to create emergency alert") from e

        logger.info(f"Created {alert_type.value} alert for user {user_id} (ID: {alert.id})")

        if notify:
            await self._notify(db, alert)
        else:
            logger.info(f"Alert created for user {user_id} but notifications skipped due to daily limit")

        return alert

    async def create_urgent_alert(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        alert_type: AlertType,
        payload: AlertPayload
    ) -> EmergencyAlert:
        """Create an alert that bypasses the daily cap, with a shorter dedup window"""
        logger.warning(f"Creating urgent alert for user {user_id} - bypassing daily limits")
        return await self.create_alert(
            db,
            user_id,
            alert_type,
            payload,
            AlertOptions(notify_contacts=True, bypass_daily_limit=True),
            priority=AlertPriority.URGENT,
            dedup_window=self.urgent_dedup_window
        )

    async def _find_recent(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        alert_type: AlertType,
        window: timedelta
    ) -> Optional[EmergencyAlert]:
        result = await db.execute(
            select(EmergencyAlert)
            .where(
                EmergencyAlert.user_id == user_id,
                EmergencyAlert.alert_type == alert_type,
                EmergencyAlert.triggered_at >= utc_now() - window
            )
            .order_by(desc(EmergencyAlert.triggered_at))
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def _notify(self, db: AsyncSession, alert: EmergencyAlert):
        user = await db.get(UserProfile, alert.user_id)

        # Fan-out writes live in a savepoint; on failure only they are undone
        # and the caller's objects stay loaded
        try:
            async with db.begin_nested():
                attempts = await self.dispatcher.notify_contacts(db, user, alert)
        except Exception:
            # The alert stands even when fan-out breaks
            logger.exception(f"Notification dispatch failed for alert {alert.id}")
            return

        alert.contacts_notified = True
        db.add(alert)
        await db.commit()
        logger.info(f"Alert {alert.id} dispatched to {len(attempts)} recipients")

    async def check_daily_limit(self, db: AsyncSession, user_id: uuid.UUID) -> DailyLimitStatus:
        today_start = start_of_day()
        result = await db.execute(
            select(func.count(EmergencyAlert.id))
            .where(
                EmergencyAlert.user_id == user_id,
                EmergencyAlert.triggered_at >= today_start,
                EmergencyAlert.alert_type != AlertType.SENSOR_DETECTED
            )
        )
        return DailyLimitStatus(
            alerts_today=result.scalar_one(),
            daily_limit=self.daily_limit,
            resets_at=today_start + timedelta(days=1)
        )

    async def get_user_alerts(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        limit: int = 20,
        status: Optional[AlertStatus] = None
    ) -> List[EmergencyAlert]:
        query = select(EmergencyAlert).where(EmergencyAlert.user_id == user_id)
        if status:
            query = query.where(EmergencyAlert.status == status)

        result = await db.execute(
            query.order_by(desc(EmergencyAlert.triggered_at)).limit(limit)
        )
        return list(result.scalars().all())

    async def get_alert(self, db: AsyncSession, user_id: uuid.UUID, alert_id: uuid.UUID) -> EmergencyAlert:
        result = await db.execute(
            select(EmergencyAlert).where(
                EmergencyAlert.id == alert_id,
                EmergencyAlert.user_id == user_id
            )
        )
        alert = result.scalar_one_or_none()
        if alert is None:
            raise NotFoundError("Emergency alert not found")
        return alert

    async def update_alert_status(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        alert_id: uuid.UUID,
        new_status: AlertStatus,
        resolved_by: Optional[str] = None
    ) -> EmergencyAlert:
        alert = await self.get_alert(db, user_id, alert_id)

        if alert.status in TERMINAL_STATUSES:
            raise InvalidStatusTransition(f"Alert is already {alert.status.value}")

        if new_status == AlertStatus.ACTIVE:
            return alert

        alert.status = new_status
        alert.resolved_at = utc_now()
        alert.resolved_by = resolved_by

        db.add(alert)
        await db.commit()
        await db.refresh(alert)

        logger.info(f"Alert {alert_id} marked {new_status.value} by {resolved_by or user_id}")
        return alert

    # ------------------------------------------------------------------
    # Emergency contacts
    # ------------------------------------------------------------------

    @staticmethod
    def _check_phone(phone_number: Optional[str]):
        if phone_number and not is_valid_phone_number(phone_number):
            raise ValidationError(
                f"Invalid phone number format: {phone_number}. Please provide a valid phone number."
            )

    async def get_emergency_contacts(self, db: AsyncSession, user_id: uuid.UUID) -> List[EmergencyContact]:
        result = await db.execute(
            select(EmergencyContact)
            .where(EmergencyContact.user_id == user_id, EmergencyContact.is_active == True)  # noqa: E712
            .order_by(desc(EmergencyContact.is_primary), EmergencyContact.created_at)
        )
        return list(result.scalars().all())

    async def get_emergency_contact(self, db: AsyncSession, user_id: uuid.UUID, contact_id: uuid.UUID) -> EmergencyContact:
        result = await db.execute(
            select(EmergencyContact).where(
                EmergencyContact.id == contact_id,
                EmergencyContact.user_id == user_id,
                EmergencyContact.is_active == True  # noqa: E712
            )
        )
        contact = result.scalar_one_or_none()
        if contact is None:
            raise NotFoundError("Emergency contact not found")
        return contact

    async def add_emergency_contact(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        contact_data: EmergencyContactCreate
    ) -> EmergencyContact:
        self._check_phone(contact_data.phone_number)

        contact = EmergencyContact(**contact_data.model_dump(), user_id=user_id)
        db.add(contact)
        await db.commit()
        await db.refresh(contact)

        logger.info(f"Emergency contact added for user {user_id}: {contact.name}")
        return contact

    async def update_emergency_contact(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        contact_id: uuid.UUID,
        updates: EmergencyContactUpdate
    ) -> EmergencyContact:
        self._check_phone(updates.phone_number)
        contact = await self.get_emergency_contact(db, user_id, contact_id)

        for key, value in updates.model_dump(exclude_unset=True).items():
            setattr(contact, key, value)

        db.add(contact)
        await db.commit()
        await db.refresh(contact)
        return contact

    async def delete_emergency_contact(self, db: AsyncSession, user_id: uuid.UUID, contact_id: uuid.UUID):
        contact = await self.get_emergency_contact(db, user_id, contact_id)
        contact.is_active = False
        db.add(contact)
        await db.commit()

        logger.info(f"Emergency contact removed for user {user_id}: {contact_id}")

    # ------------------------------------------------------------------
    # Emergency settings
    # ------------------------------------------------------------------

    async def get_emergency_settings(self, db: AsyncSession, user_id: uuid.UUID) -> EmergencySettings:
        stored = await db.get(UserSensorSettings, user_id)
        return EmergencySettings(**(stored.settings if stored else {}))

    async def update_emergency_settings(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        updates: EmergencySettingsUpdate
    ) -> EmergencySettings:
        """Merge the given keys into the stored settings"""
        stored = await db.get(UserSensorSettings, user_id)
        if stored is None:
            stored = UserSensorSettings(user_id=user_id)

        merged = {**(stored.settings or {}), **updates.model_dump(exclude_unset=True)}
        # Reassign so the JSON column is flagged dirty
        stored.settings = merged
        stored.updated_at = utc_now()

        db.add(stored)
        await db.commit()

        logger.info(f"Emergency settings updated for user {user_id}: {', '.join(sorted(merged))}")
        return EmergencySettings(**merged)

# Global instance
alert_manager = AlertManager()
