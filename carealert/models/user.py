from sqlmodel import SQLModel, Field, Column, DateTime, UUID
from datetime import datetime, timezone
from typing import Optional
from enum import Enum
import uuid

class UserType(str, Enum):
    ELDERLY = "elderly"
    CAREGIVER = "caregiver"
    FAMILY = "family"

class RelationshipStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"

class UserProfile(SQLModel, table=True):
    """Profile owned by the identity provider; read-only for this service"""

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        sa_column=Column(UUID(as_uuid=True), primary_key=True)
    )
    first_name: str = ""
    last_name: str = ""
    email: Optional[str] = None
    phone_number: Optional[str] = None
    user_type: UserType = UserType.ELDERLY
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True))
    )

    @property
    def full_name(self) -> str:
        name = f"{self.first_name} {self.last_name}".strip()
        return name or "User"

class FamilyRelationship(SQLModel, table=True):

    id: Optional[uuid.UUID] = Field(default_factory=uuid.uuid4, primary_key=True)
    caregiver_id: uuid.UUID = Field(foreign_key="userprofile.id", index=True)
    elderly_id: uuid.UUID = Field(foreign_key="userprofile.id", index=True)
    status: RelationshipStatus = RelationshipStatus.PENDING
    is_active: bool = True
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True))
    )

class DeviceToken(SQLModel, table=True):

    id: Optional[uuid.UUID] = Field(default_factory=uuid.uuid4, primary_key=True)
    user_id: uuid.UUID = Field(index=True)
    device_token: str = Field(index=True)
    platform: str = "unknown"
    is_active: bool = True
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True))
    )

class DeviceRegistration(SQLModel):
    device_token: str = Field(min_length=1)
    platform: str = "unknown"
