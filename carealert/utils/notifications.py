import asyncio
import aiohttp
import aiosmtplib
import logging
from typing import List, Dict, Optional
from abc import ABC, abstractmethod
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from email.utils import formataddr
from carealert.config import settings
from carealert.utils.phone import format_phone_number, is_valid_phone_number

logger = logging.getLogger(__name__)

# Twilio error codes we react to
TWILIO_DAILY_LIMIT_EXCEEDED = 63038
TWILIO_INVALID_NUMBER = 21211
TWILIO_UNVERIFIED_NUMBER = 21614

class GatewayError(Exception):
    """Raised when an external notification gateway rejects or fails a send"""

    def __init__(self, message: str, code: Optional[int] = None):
        super().__init__(message)
        self.code = code

    @property
    def quota_exhausted(self) -> bool:
        return self.code == TWILIO_DAILY_LIMIT_EXCEEDED

class NotificationService(ABC):
    """Abstract base class for notification services"""

    @property
    @abstractmethod
    def is_configured(self) -> bool:
        pass

class SMSService(NotificationService):
    """SMS notification service backed by the Twilio REST API"""

    def __init__(self):
        self.account_sid = settings.TWILIO_ACCOUNT_SID
        self.auth_token = settings.TWILIO_AUTH_TOKEN
        self.from_number = settings.TWILIO_PHONE_NUMBER
        self.api_url = settings.TWILIO_API_URL

    @property
    def is_configured(self) -> bool:
        # Placeholder credentials from .env templates count as missing
        return bool(
            self.account_sid
            and self.auth_token
            and self.from_number
            and self.account_sid.startswith("AC")
            and "your_" not in self.account_sid
            and "your_" not in self.auth_token
        )

    async def send_sms(self, phone_number: str, message: str) -> str:
        """
        Send SMS to a phone number

        Args:
            phone_number: Recipient phone number (e.g., +15017122661)
            message: SMS message content

        Returns:
            The provider message SID

        Raises:
            GatewayError: when the number is unusable or the provider fails
        """
        if not self.is_configured:
            raise GatewayError("SMS gateway not configured")

        if not is_valid_phone_number(phone_number):
            raise GatewayError(f"Invalid phone number format: {phone_number}", TWILIO_INVALID_NUMBER)

        formatted_number = format_phone_number(phone_number)
        payload = {
            "To": formatted_number,
            "From": self.from_number,
            "Body": message
        }

        url = f"{self.api_url}/Accounts/{self.account_sid}/Messages.json"
        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    url,
                    data=payload,
                    auth=aiohttp.BasicAuth(self.account_sid, self.auth_token),
                    timeout=aiohttp.ClientTimeout(total=settings.GATEWAY_TIMEOUT_SECONDS)
                ) as response:
                    response_data = await response.json(content_type=None)

                    if response.status in (200, 201):
                        sid = response_data.get("sid")
                        logger.info(f"SMS sent successfully to {formatted_number[:6]}**** (SID: {sid})")
                        return sid

                    code = response_data.get("code")
                    detail = response_data.get("message", f"HTTP {response.status}")
                    if code == TWILIO_DAILY_LIMIT_EXCEEDED:
                        logger.error("Twilio daily message limit exceeded")
                    elif code == TWILIO_UNVERIFIED_NUMBER:
                        logger.error(f"Phone number is not verified for trial account: {formatted_number[:6]}****")
                    else:
                        logger.error(f"SMS API error: {response.status} - {detail}")
                    raise GatewayError(detail, code)

        except asyncio.TimeoutError:
            logger.error("SMS request timeout")
            raise GatewayError("SMS request timeout")
        except aiohttp.ClientError as e:
            logger.error(f"SMS request error: {e}")
            raise GatewayError(str(e))

class EmailService(NotificationService):
    """Email notification service"""

    def __init__(self):
        self.smtp_host = settings.SMTP_HOST
        self.smtp_port = settings.SMTP_PORT
        self.smtp_username = settings.SMTP_USERNAME
        self.smtp_password = settings.SMTP_PASSWORD
        self.from_email = settings.FROM_EMAIL
        self.from_name = settings.FROM_NAME

    @property
    def is_configured(self) -> bool:
        return bool(self.smtp_host and self.smtp_username and self.smtp_password)

    async def send_email(
        self,
        to_email: str,
        subject: str,
        body: str,
        html_body: Optional[str] = None,
        sender_name: Optional[str] = None
    ) -> Optional[str]:
        """
        Send email notification

        Args:
            to_email: Recipient email address
            subject: Email subject
            body: Plain text email body
            html_body: HTML email body (optional)
            sender_name: Display name for the From header, e.g. the user who raised the alert

        Returns:
            The Message-ID header of the sent email
        """
        if not self.is_configured:
            raise GatewayError("Email gateway not configured")

        # Create message
        message = MIMEMultipart('alternative')
        display_name = f"{sender_name} via {self.from_name}" if sender_name else self.from_name
        message['From'] = formataddr((display_name, self.from_email))
        message['To'] = to_email
        message['Subject'] = subject

        message.attach(MIMEText(body, 'plain'))
        if html_body:
            message.attach(MIMEText(html_body, 'html'))

        try:
            await aiosmtplib.send(
                message,
                hostname=self.smtp_host,
                port=self.smtp_port,
                start_tls=True,
                username=self.smtp_username,
                password=self.smtp_password,
                timeout=settings.GATEWAY_TIMEOUT_SECONDS,
            )
        except (aiosmtplib.SMTPException, OSError) as e:
            logger.error(f"Email sending error to {to_email}: {e}")
            raise GatewayError(str(e))

        logger.info(f"Email sent successfully to {to_email}")
        return message.get('Message-ID')

class PushNotificationService(NotificationService):
    """Push notification service for mobile apps"""

    def __init__(self):
        self.fcm_server_key = settings.FCM_SERVER_KEY
        self.fcm_url = settings.FCM_URL

    @property
    def is_configured(self) -> bool:
        return bool(self.fcm_server_key)

    async def send_push_notification(
        self,
        device_tokens: List[str],
        title: str,
        body: str,
        data: Optional[Dict] = None
    ) -> Dict[str, bool]:
        """Send push notification to mobile devices"""
        if not self.is_configured:
            raise GatewayError("Push gateway not configured")

        headers = {
            "Authorization": f"key={self.fcm_server_key}",
            "Content-Type": "application/json"
        }

        results = {}

        async with aiohttp.ClientSession() as session:
            for token in device_tokens:
                payload = {
                    "to": token,
                    "notification": {
                        "title": title,
                        "body": body,
                        "sound": "default"
                    },
                    "data": {k: str(v) for k, v in (data or {}).items()},
                    "priority": "high"
                }

                try:
                    async with session.post(
                        self.fcm_url,
                        json=payload,
                        headers=headers,
                        timeout=aiohttp.ClientTimeout(total=settings.GATEWAY_TIMEOUT_SECONDS)
                    ) as response:
                        results[token] = response.status == 200

                except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                    logger.error(f"Push notification error for token {token[:10]}...: {e}")
                    results[token] = False

        sent = sum(1 for ok in results.values() if ok)
        logger.info(f"Push notification: {sent}/{len(device_tokens)} delivered")
        return results
