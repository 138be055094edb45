"""
Core modules for the CareAlert monitoring service

This package contains the core business logic:
- geo: Haversine distance, bearing and coordinate validation
- rate_limiter: Durable daily quotas and cooldowns
- zone_tracker: Safe zone membership and entry/exit detection
- sensor_analyzer: Vital-sign classification and emergency detection
- alert_manager: Alert creation, deduplication and daily caps
- dispatcher: Multi-channel notification fan-out
- ingestion: Entry point for device samples
"""

from .geo import (
    calculate_distance,
    distance_meters,
    calculate_bearing,
    validate_coordinates
)

from .rate_limiter import rate_limiter

from .zone_tracker import zone_tracker

from .sensor_analyzer import sensor_analyzer

from .alert_manager import alert_manager

from .dispatcher import notification_dispatcher

from .ingestion import sample_ingestion

__all__ = [
    # Geo
    "calculate_distance",
    "distance_meters",
    "calculate_bearing",
    "validate_coordinates",

    # Services
    "rate_limiter",
    "zone_tracker",
    "sensor_analyzer",
    "alert_manager",
    "notification_dispatcher",
    "sample_ingestion"
]
