"""
SQLModel tables and request/response schemas

Importing this package registers every table on SQLModel.metadata.
"""

from .user import UserProfile, UserType, FamilyRelationship, RelationshipStatus, DeviceToken
from .safe_zone import SafeZone, ZoneMembership, LocationEvent, LocationEventType, LocationSample
from .emergency import (
    EmergencyAlert, EmergencyContact, UserSensorSettings, AlertType, AlertStatus, AlertPriority, AlertSeverity
)
from .notification import NotificationAttempt, RateLimitCounter, ChannelOutcome, Channel, DeliveryStatus
from .sensor import SensorDataLog, HealthAnalysis, HealthStatus, ActivityLevel

__all__ = [
    "UserProfile",
    "UserType",
    "FamilyRelationship",
    "RelationshipStatus",
    "DeviceToken",
    "SafeZone",
    "ZoneMembership",
    "LocationEvent",
    "LocationEventType",
    "LocationSample",
    "EmergencyAlert",
    "EmergencyContact",
    "UserSensorSettings",
    "AlertType",
    "AlertStatus",
    "AlertPriority",
    "AlertSeverity",
    "NotificationAttempt",
    "RateLimitCounter",
    "ChannelOutcome",
    "Channel",
    "DeliveryStatus",
    "SensorDataLog",
    "HealthAnalysis",
    "HealthStatus",
    "ActivityLevel",
]
