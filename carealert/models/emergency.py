from pydantic import field_validator
from sqlmodel import SQLModel, Field, Column, DateTime, JSON
from datetime import datetime, timezone
from typing import Optional, Any
from enum import Enum
import re
import uuid

class AlertType(str, Enum):
    MANUAL = "manual"
    SOS = "sos"
    GEOFENCE_ENTER = "geofence_enter"
    GEOFENCE_EXIT = "geofence_exit"
    HEALTH_ANOMALY = "health_anomaly"
    INACTIVITY_DETECTED = "inactivity_detected"
    SENSOR_DETECTED = "sensor_detected"

class AlertSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

class AlertStatus(str, Enum):
    ACTIVE = "active"
    RESOLVED = "resolved"
    FALSE_ALARM = "false_alarm"

class AlertPriority(str, Enum):
    NORMAL = "normal"
    URGENT = "urgent"

TERMINAL_STATUSES = (AlertStatus.RESOLVED, AlertStatus.FALSE_ALARM)

class EmergencyAlertBase(SQLModel):
    alert_type: AlertType = AlertType.MANUAL
    message: Optional[str] = None
    severity: AlertSeverity = AlertSeverity.HIGH

class EmergencyAlert(EmergencyAlertBase, table=True):

    id: Optional[uuid.UUID] = Field(default_factory=uuid.uuid4, primary_key=True)
    user_id: uuid.UUID = Field(index=True)
    location: Optional[dict[str, Any]] = Field(default=None, sa_column=Column(JSON))
    details: Optional[dict[str, Any]] = Field(default=None, sa_column=Column(JSON))
    status: AlertStatus = AlertStatus.ACTIVE
    priority: AlertPriority = AlertPriority.NORMAL
    triggered_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True), index=True)
    )
    resolved_at: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    resolved_by: Optional[str] = None

    # Response tracking
    contacts_notified: bool = False

class AlertLocation(SQLModel):
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)
    address: Optional[str] = None

class EmergencyRequest(SQLModel):
    alert_type: AlertType = AlertType.MANUAL
    message: Optional[str] = None
    severity: AlertSeverity = AlertSeverity.HIGH
    location: Optional[AlertLocation] = None

class AlertStatusUpdate(SQLModel):
    status: AlertStatus
    resolved_by: Optional[str] = None

class EmergencyAlertRead(EmergencyAlertBase):
    id: uuid.UUID
    user_id: uuid.UUID
    location: Optional[dict[str, Any]]
    details: Optional[dict[str, Any]]
    status: AlertStatus
    priority: AlertPriority
    triggered_at: datetime
    resolved_at: Optional[datetime]
    resolved_by: Optional[str]
    contacts_notified: bool

class EmergencyContactBase(SQLModel):
    name: str = Field(min_length=1, max_length=255)
    relationship: str = Field(min_length=1, max_length=100)
    phone_number: Optional[str] = None
    email: Optional[str] = None
    is_primary: bool = False

class EmergencyContact(EmergencyContactBase, table=True):

    id: Optional[uuid.UUID] = Field(default_factory=uuid.uuid4, primary_key=True)
    user_id: uuid.UUID = Field(index=True)
    is_active: bool = True
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True))
    )

PHONE_FORMAT = re.compile(r"^\+?[\d\s\-()]+$")

def _check_phone_format(value: Optional[str]) -> Optional[str]:
    if value is None or value == "":
        return None
    if not PHONE_FORMAT.match(value):
        raise ValueError("phone_number may only contain digits, spaces, dashes, parentheses and a leading +")
    return value

class EmergencyContactCreate(EmergencyContactBase):

    @field_validator("phone_number")
    @classmethod
    def phone_format(cls, value: Optional[str]) -> Optional[str]:
        return _check_phone_format(value)

class EmergencyContactUpdate(SQLModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    relationship: Optional[str] = Field(default=None, min_length=1, max_length=100)
    phone_number: Optional[str] = None
    email: Optional[str] = None
    is_primary: Optional[bool] = None

    @field_validator("phone_number")
    @classmethod
    def phone_format(cls, value: Optional[str]) -> Optional[str]:
        return _check_phone_format(value)

class EmergencySettings(SQLModel):
    """Per-user detection preferences; unset keys fall back to these defaults"""
    fall_detection_enabled: bool = False
    sos_enabled: bool = True
    fall_threshold: float = Field(default=20, ge=1, le=100)
    inactivity_enabled: bool = False
    inactivity_threshold: int = Field(default=120, ge=1, le=1440)  # minutes
    sampling_rate: int = Field(default=10, ge=1, le=60)  # seconds

class EmergencySettingsUpdate(SQLModel):
    fall_detection_enabled: Optional[bool] = None
    sos_enabled: Optional[bool] = None
    fall_threshold: Optional[float] = Field(default=None, ge=1, le=100)
    inactivity_enabled: Optional[bool] = None
    inactivity_threshold: Optional[int] = Field(default=None, ge=1, le=1440)
    sampling_rate: Optional[int] = Field(default=None, ge=1, le=60)

class UserSensorSettings(SQLModel, table=True):

    user_id: uuid.UUID = Field(primary_key=True)
    settings: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True))
    )
