from sqlmodel import SQLModel, Field, Column, DateTime, JSON
from datetime import datetime, timezone
from typing import Optional, List, Any
from enum import Enum
import uuid

class HealthStatus(str, Enum):
    NORMAL = "normal"
    CONCERNING = "concerning"
    CRITICAL = "critical"

class ActivityLevel(str, Enum):
    UNKNOWN = "unknown"
    INACTIVE = "inactive"
    LOW = "low"
    MODERATE = "moderate"
    HIGH = "high"

HEALTH_STATUS_RANK = {
    HealthStatus.NORMAL: 0,
    HealthStatus.CONCERNING: 1,
    HealthStatus.CRITICAL: 2,
}

class HealthAnalysis(SQLModel):
    health_status: HealthStatus = HealthStatus.NORMAL
    activity_level: ActivityLevel = ActivityLevel.UNKNOWN
    anomalies: List[str] = Field(default_factory=list)
    heart_rate: Optional[float] = None
    hourly_steps: Optional[int] = None
    battery_level: Optional[float] = None
    location_accuracy: Optional[float] = None

    def escalate(self, status: HealthStatus):
        """Raise the status; the worst status always wins"""
        if HEALTH_STATUS_RANK[status] > HEALTH_STATUS_RANK[self.health_status]:
            self.health_status = status

class SensorDataLog(SQLModel, table=True):

    id: Optional[uuid.UUID] = Field(default_factory=uuid.uuid4, primary_key=True)
    user_id: uuid.UUID = Field(index=True)
    step_count: Optional[int] = None
    raw_sensor_data: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    analysis_data: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True), index=True)
    )
