from sqlmodel import SQLModel, Field, Column, DateTime
from datetime import datetime, timezone
from typing import Optional
from enum import Enum
import uuid

class ZoneType(str, Enum):
    SAFE = "safe"
    RESTRICTED = "restricted"

class LocationEventType(str, Enum):
    LOCATION_UPDATE = "location_update"
    ZONE_ENTER = "zone_enter"
    ZONE_EXIT = "zone_exit"
    ZONE_STATUS_INIT = "zone_status_init"

class SafeZoneBase(SQLModel):
    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    zone_type: ZoneType = ZoneType.SAFE
    center_latitude: float = Field(ge=-90, le=90)
    center_longitude: float = Field(ge=-180, le=180)
    radius_meters: float = Field(default=100, gt=0)
    alert_on_enter: bool = False
    alert_on_exit: bool = True
    notification_message: Optional[str] = None
    is_active: bool = True

class SafeZone(SafeZoneBase, table=True):

    id: Optional[uuid.UUID] = Field(default_factory=uuid.uuid4, primary_key=True)
    user_id: uuid.UUID = Field(index=True)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True))
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True))
    )

class SafeZoneCreate(SafeZoneBase):
    pass

class SafeZoneUpdate(SQLModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    zone_type: Optional[ZoneType] = None
    center_latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    center_longitude: Optional[float] = Field(default=None, ge=-180, le=180)
    radius_meters: Optional[float] = Field(default=None, gt=0)
    alert_on_enter: Optional[bool] = None
    alert_on_exit: Optional[bool] = None
    notification_message: Optional[str] = None
    is_active: Optional[bool] = None

class SafeZoneRead(SafeZoneBase):
    id: uuid.UUID
    user_id: uuid.UUID
    created_at: datetime
    updated_at: datetime

class ZoneMembership(SQLModel, table=True):
    """Last known side of a zone boundary for one user"""

    user_id: uuid.UUID = Field(primary_key=True)
    zone_id: uuid.UUID = Field(primary_key=True, foreign_key="safezone.id")
    is_inside: bool
    last_sample_at: datetime = Field(sa_column=Column(DateTime(timezone=True)))
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True))
    )

class LocationEvent(SQLModel, table=True):
    """Append-only log of location samples and zone transitions"""

    id: Optional[uuid.UUID] = Field(default_factory=uuid.uuid4, primary_key=True)
    user_id: uuid.UUID = Field(index=True)
    safe_zone_id: Optional[uuid.UUID] = Field(default=None, foreign_key="safezone.id", index=True)
    event_type: LocationEventType
    latitude: float
    longitude: float
    accuracy: Optional[float] = None
    distance_from_zone: Optional[float] = None  # meters from the zone center
    alert_triggered: bool = False
    alert_id: Optional[uuid.UUID] = None
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True), index=True)
    )

class LocationSample(SQLModel):
    """A single location (and optional vitals) sample reported by the device"""

    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    accuracy: Optional[float] = Field(default=None, ge=0)
    heart_rate: Optional[float] = Field(default=None, ge=0)
    step_count: Optional[int] = Field(default=None, ge=0)
    battery_level: Optional[float] = Field(default=None, ge=0, le=100)
    timestamp: Optional[datetime] = None

    def location_snapshot(self) -> dict:
        return {
            "latitude": self.latitude,
            "longitude": self.longitude,
            "accuracy": self.accuracy,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }
