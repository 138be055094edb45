from sqlmodel import SQLModel, Field, Column, DateTime, JSON
from datetime import datetime, timezone
from typing import Optional, Any
from enum import Enum
import uuid

class Channel(str, Enum):
    SMS = "sms"
    EMAIL = "email"
    PUSH = "push"

class DeliveryStatus(str, Enum):
    SENT = "sent"
    FAILED = "failed"
    SKIPPED = "skipped"
    THROTTLED = "throttled"

class RecipientType(str, Enum):
    EMERGENCY_CONTACT = "emergency_contact"
    CAREGIVER = "caregiver"
    USER_DEVICE = "user_device"

class ChannelOutcome(SQLModel):
    """Result of one channel attempt for one recipient"""

    status: DeliveryStatus
    reason: Optional[str] = None
    message_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def succeeded(self) -> bool:
        return self.status == DeliveryStatus.SENT

class NotificationAttempt(SQLModel, table=True):
    """Audit record of one dispatch to one recipient"""

    id: Optional[uuid.UUID] = Field(default_factory=uuid.uuid4, primary_key=True)
    user_id: uuid.UUID = Field(index=True)
    alert_id: Optional[uuid.UUID] = Field(default=None, foreign_key="emergencyalert.id", index=True)
    recipient_type: RecipientType
    recipient_id: Optional[uuid.UUID] = None
    recipient_name: Optional[str] = None
    title: str
    message: str
    delivery_status: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    is_read: bool = False
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True), index=True)
    )

    def outcome(self, channel: Channel) -> Optional[ChannelOutcome]:
        raw = (self.delivery_status or {}).get(channel.value)
        return ChannelOutcome.model_validate(raw) if raw else None

class RateLimitCounter(SQLModel, table=True):
    """Durable counter for daily quotas and cooldowns"""

    key: str = Field(primary_key=True)
    period_start: datetime = Field(sa_column=Column(DateTime(timezone=True)))
    count: int = 0
    last_hit_at: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True)
    )
