"""
Utility modules for the CareAlert monitoring service

This package contains utility functions and services:
- notifications: Notification gateways (SMS, Email, Push)
- phone: Phone number validation and formatting
- timeutils: UTC and local-day helpers
"""

from .notifications import (
    SMSService,
    EmailService,
    PushNotificationService,
    GatewayError
)

from .phone import (
    is_valid_phone_number,
    format_phone_number
)

__all__ = [
    # Notification services
    "SMSService",
    "EmailService",
    "PushNotificationService",
    "GatewayError",

    # Phone numbers
    "is_valid_phone_number",
    "format_phone_number"
]
