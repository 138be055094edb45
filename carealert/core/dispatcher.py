import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select, desc

from carealert.config import settings
from carealert.core.rate_limiter import (
    RateLimiter, rate_limiter as default_rate_limiter,
    SMS_DAILY_KEY, EMAIL_DAILY_KEY, sensor_cooldown_key
)
from carealert.models.emergency import EmergencyAlert, EmergencyContact, AlertType
from carealert.models.notification import (
    NotificationAttempt, ChannelOutcome, Channel, DeliveryStatus, RecipientType
)
from carealert.models.user import (
    UserProfile, UserType, FamilyRelationship, RelationshipStatus, DeviceToken
)
from carealert.utils.notifications import (
    SMSService, EmailService, PushNotificationService, GatewayError
)
from carealert.utils.phone import is_valid_phone_number

logger = logging.getLogger(__name__)

# Channels each kind of recipient can be reached on
RECIPIENT_CHANNELS = {
    RecipientType.EMERGENCY_CONTACT: (Channel.SMS, Channel.EMAIL),
    RecipientType.CAREGIVER: (Channel.EMAIL, Channel.PUSH),
    RecipientType.USER_DEVICE: (Channel.PUSH,),
}

# Recipients reached through relationships, keyed by the alerting user's type
RELATIONSHIP_ROUTES = {
    UserType.ELDERLY: (RecipientType.CAREGIVER,),
    UserType.CAREGIVER: (),
    UserType.FAMILY: (),
}

GEOFENCE_ALERTS = (AlertType.GEOFENCE_ENTER, AlertType.GEOFENCE_EXIT)

@dataclass
class Recipient:
    recipient_type: RecipientType
    recipient_id: Optional[uuid.UUID]
    name: str
    phone_number: Optional[str] = None
    email: Optional[str] = None
    device_tokens: List[str] = field(default_factory=list)
    outcomes: Dict[Channel, ChannelOutcome] = field(default_factory=dict)

    def mark(self, channel: Channel, status: DeliveryStatus, reason: Optional[str] = None, message_id: Optional[str] = None):
        self.outcomes[channel] = ChannelOutcome(status=status, reason=reason, message_id=message_id)

@dataclass
class SendJob:
    recipient: Recipient
    channel: Channel
    quota_key: Optional[str] = None

class NotificationDispatcher:
    """
    Fans an alert out to every recipient on every channel they can take.

    Quota is reserved before any gateway call and handed back when the
    call fails, so concurrent sends can not overshoot a daily cap. One
    failing channel never stops the others.
    """

    def __init__(
        self,
        sms_service: Optional[SMSService] = None,
        email_service: Optional[EmailService] = None,
        push_service: Optional[PushNotificationService] = None,
        limiter: Optional[RateLimiter] = None
    ):
        self.sms_service = sms_service or SMSService()
        self.email_service = email_service or EmailService()
        self.push_service = push_service or PushNotificationService()
        self.rate_limiter = limiter or default_rate_limiter
        self.max_daily_sms = settings.MAX_DAILY_SMS
        self.max_daily_emails = settings.MAX_DAILY_EMAILS
        self.sensor_cooldown = timedelta(minutes=settings.SENSOR_ALERT_COOLDOWN_MINUTES)

    async def notify_contacts(
        self,
        db: AsyncSession,
        user: Optional[UserProfile],
        alert: EmergencyAlert
    ) -> List[NotificationAttempt]:
        user_name = user.full_name if user else "User"
        recipients = await self._collect_recipients(db, user, alert)

        if not recipients:
            logger.warning(f"No recipients for alert {alert.id} of user {alert.user_id}")
            return []

        throttled = False
        if alert.alert_type == AlertType.SENSOR_DETECTED:
            cooldown_key = sensor_cooldown_key(alert.user_id)
            if await self.rate_limiter.in_cooldown(db, cooldown_key, self.sensor_cooldown):
                logger.info(f"Sensor alert for user {alert.user_id} throttled due to cooldown period")
                throttled = True
            else:
                await self.rate_limiter.touch(db, cooldown_key)

        jobs = []
        for recipient in recipients:
            jobs.extend(await self._plan(db, recipient, alert, throttled))

        sms_text = self.format_message(user_name, alert)
        results = await asyncio.gather(
            *(self._send(job, alert, user_name, sms_text) for job in jobs),
            return_exceptions=True
        )

        for job, result in zip(jobs, results):
            await self._settle(db, job, result)

        attempts = []
        for recipient in recipients:
            attempt = NotificationAttempt(
                user_id=alert.user_id,
                alert_id=alert.id,
                recipient_type=recipient.recipient_type,
                recipient_id=recipient.recipient_id,
                recipient_name=recipient.name,
                title=self.email_subject(alert),
                message=sms_text,
                delivery_status={
                    channel.value: outcome.model_dump(mode="json")
                    for channel, outcome in recipient.outcomes.items()
                }
            )
            db.add(attempt)
            attempts.append(attempt)

        await db.flush()

        sent = sum(1 for job in jobs if job.recipient.outcomes[job.channel].succeeded)
        logger.info(f"Alert {alert.id}: {sent}/{len(jobs)} channel sends succeeded across {len(recipients)} recipients")
        return attempts

    async def _collect_recipients(
        self,
        db: AsyncSession,
        user: Optional[UserProfile],
        alert: EmergencyAlert
    ) -> List[Recipient]:
        result = await db.execute(
            select(EmergencyContact)
            .where(EmergencyContact.user_id == alert.user_id, EmergencyContact.is_active == True)  # noqa: E712
            .order_by(desc(EmergencyContact.is_primary), EmergencyContact.created_at)
        )
        recipients = [
            Recipient(
                recipient_type=RecipientType.EMERGENCY_CONTACT,
                recipient_id=contact.id,
                name=contact.name,
                phone_number=contact.phone_number,
                email=contact.email
            )
            for contact in result.scalars().all()
        ]

        routes = RELATIONSHIP_ROUTES.get(user.user_type, ()) if user else ()
        if RecipientType.CAREGIVER in routes:
            recipients.extend(await self._caregivers(db, alert.user_id))

        if alert.alert_type in GEOFENCE_ALERTS:
            tokens = await self._device_tokens(db, alert.user_id)
            if tokens:
                recipients.append(Recipient(
                    recipient_type=RecipientType.USER_DEVICE,
                    recipient_id=alert.user_id,
                    name=user.full_name if user else "User",
                    device_tokens=tokens
                ))

        return recipients

    async def _caregivers(self, db: AsyncSession, elderly_id: uuid.UUID) -> List[Recipient]:
        result = await db.execute(
            select(UserProfile)
            .join(FamilyRelationship, FamilyRelationship.caregiver_id == UserProfile.id)
            .where(
                FamilyRelationship.elderly_id == elderly_id,
                FamilyRelationship.status == RelationshipStatus.ACCEPTED,
                FamilyRelationship.is_active == True  # noqa: E712
            )
        )

        caregivers = []
        for profile in result.scalars().all():
            caregivers.append(Recipient(
                recipient_type=RecipientType.CAREGIVER,
                recipient_id=profile.id,
                name=profile.full_name,
                email=profile.email,
                device_tokens=await self._device_tokens(db, profile.id)
            ))
        return caregivers

    async def _device_tokens(self, db: AsyncSession, user_id: uuid.UUID) -> List[str]:
        result = await db.execute(
            select(DeviceToken.device_token).where(
                DeviceToken.user_id == user_id,
                DeviceToken.is_active == True  # noqa: E712
            )
        )
        return list(result.scalars().all())

    async def _plan(
        self,
        db: AsyncSession,
        recipient: Recipient,
        alert: EmergencyAlert,
        throttled: bool
    ) -> List[SendJob]:
        """Decide each channel for a recipient, reserving quota for the ones that will send"""
        jobs = []
        channels = RECIPIENT_CHANNELS[recipient.recipient_type]

        if Channel.SMS in channels:
            job = await self._plan_sms(db, recipient, alert, throttled)
            if job:
                jobs.append(job)

        if Channel.EMAIL in channels:
            job = await self._plan_email(db, recipient, throttled)
            if job:
                jobs.append(job)

        if Channel.PUSH in channels and recipient.device_tokens:
            if throttled:
                recipient.mark(Channel.PUSH, DeliveryStatus.THROTTLED, "Sensor alert cooldown")
            elif not self.push_service.is_configured:
                recipient.mark(Channel.PUSH, DeliveryStatus.SKIPPED, "Push gateway not configured")
            else:
                jobs.append(SendJob(recipient, Channel.PUSH))

        return jobs

    async def _plan_sms(
        self,
        db: AsyncSession,
        recipient: Recipient,
        alert: EmergencyAlert,
        throttled: bool
    ) -> Optional[SendJob]:
        if alert.alert_type == AlertType.SENSOR_DETECTED:
            recipient.mark(Channel.SMS, DeliveryStatus.SKIPPED, "SMS disabled for sensor alerts")
        elif not recipient.phone_number:
            recipient.mark(Channel.SMS, DeliveryStatus.SKIPPED, "No phone number provided")
        elif not is_valid_phone_number(recipient.phone_number):
            logger.warning(f"Skipping SMS to {recipient.name} - invalid phone number: {recipient.phone_number}")
            recipient.mark(Channel.SMS, DeliveryStatus.SKIPPED, "Invalid phone number format (validation failed)")
        elif throttled:
            recipient.mark(Channel.SMS, DeliveryStatus.THROTTLED, "Sensor alert cooldown")
        elif not self.sms_service.is_configured:
            recipient.mark(Channel.SMS, DeliveryStatus.SKIPPED, "SMS gateway not configured")
        elif not await self.rate_limiter.try_acquire(db, SMS_DAILY_KEY, self.max_daily_sms):
            logger.warning(f"SMS to {recipient.name} skipped - daily SMS limit reached")
            recipient.mark(Channel.SMS, DeliveryStatus.THROTTLED, "Daily SMS limit reached")
        else:
            return SendJob(recipient, Channel.SMS, SMS_DAILY_KEY)
        return None

    async def _plan_email(
        self,
        db: AsyncSession,
        recipient: Recipient,
        throttled: bool
    ) -> Optional[SendJob]:
        if not recipient.email:
            recipient.mark(Channel.EMAIL, DeliveryStatus.SKIPPED, "No email provided")
        elif throttled:
            recipient.mark(Channel.EMAIL, DeliveryStatus.THROTTLED, "Sensor alert cooldown")
        elif not self.email_service.is_configured:
            recipient.mark(Channel.EMAIL, DeliveryStatus.SKIPPED, "Email gateway not configured")
        elif not await self.rate_limiter.try_acquire(db, EMAIL_DAILY_KEY, self.max_daily_emails):
            logger.warning(f"Email to {recipient.name} skipped - daily email limit reached")
            recipient.mark(Channel.EMAIL, DeliveryStatus.THROTTLED, "Daily email limit reached")
        else:
            return SendJob(recipient, Channel.EMAIL, EMAIL_DAILY_KEY)
        return None

    async def _send(self, job: SendJob, alert: EmergencyAlert, user_name: str, text: str) -> Optional[str]:
        recipient = job.recipient

        if job.channel == Channel.SMS:
            return await self.sms_service.send_sms(recipient.phone_number, text)

        if job.channel == Channel.EMAIL:
            return await self.email_service.send_email(
                to_email=recipient.email,
                subject=self.email_subject(alert),
                body=text,
                sender_name=user_name
            )

        results = await self.push_service.send_push_notification(
            recipient.device_tokens,
            title=self.email_subject(alert),
            body=alert.message or f"{user_name} needs attention",
            data={"alert_id": alert.id, "alert_type": alert.alert_type.value}
        )
        delivered = sum(1 for ok in results.values() if ok)
        if not delivered:
            raise GatewayError(f"Push rejected for all {len(results)} devices")
        return f"{delivered}/{len(results)} devices"

    async def _settle(self, db: AsyncSession, job: SendJob, result: Any):
        """Record a send result and give back quota that was not used"""
        recipient = job.recipient

        if not isinstance(result, BaseException):
            logger.info(f"{job.channel.value.upper()} sent to {recipient.name} ({result})")
            recipient.mark(job.channel, DeliveryStatus.SENT, message_id=result)
            return

        if job.quota_key:
            await self.rate_limiter.release(db, job.quota_key)

        if isinstance(result, GatewayError) and result.quota_exhausted:
            logger.warning("Daily SMS limit exceeded for provider account")
            await self.rate_limiter.exhaust(db, SMS_DAILY_KEY, self.max_daily_sms)

        logger.error(f"{job.channel.value.upper()} failed for {recipient.name}: {result}")
        recipient.mark(job.channel, DeliveryStatus.FAILED, reason=str(result) or type(result).__name__)

    @staticmethod
    def email_subject(alert: EmergencyAlert) -> str:
        if alert.alert_type == AlertType.SENSOR_DETECTED:
            return "Health Monitoring Alert"
        return "Emergency Alert"

    @staticmethod
    def format_message(user_name: str, alert: EmergencyAlert) -> str:
        location = alert.location or {}
        if location.get("address"):
            location_text = f"Location: {location['address']}"
        elif location.get("latitude") is not None and location.get("longitude") is not None:
            location_text = f"Location: https://maps.google.com/?q={location['latitude']},{location['longitude']}"
        else:
            location_text = "Location: Not available"

        lines = [
            "EMERGENCY ALERT",
            f"{user_name} has triggered an emergency alert.",
            f"Type: {alert.alert_type.value}",
        ]
        if alert.message:
            lines.append(f"Message: {alert.message}")
        lines.append(location_text)
        if alert.triggered_at:
            lines.append(f"Time: {alert.triggered_at.strftime('%H:%M %d/%m/%Y')} UTC")
        lines.append("")
        lines.append("Please check on them immediately or contact emergency services if needed.")
        return "\n".join(lines)

# Global instance
notification_dispatcher = NotificationDispatcher()
