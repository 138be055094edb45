"""Global test configuration and fixtures."""

import os

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import uuid
import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

import carealert.models  # noqa: F401
from carealert.api.auth import create_access_token
from carealert.core.alert_manager import AlertManager
from carealert.core.dispatcher import NotificationDispatcher
from carealert.core.rate_limiter import RateLimiter
from carealert.core.sensor_analyzer import SensorAnalyzer
from carealert.core.zone_tracker import ZoneMembershipTracker
from carealert.models.emergency import EmergencyContact
from carealert.models.safe_zone import SafeZone
from carealert.models.user import UserProfile, UserType


class FakeSMSService:
    """Records texts instead of calling the provider."""

    def __init__(self):
        self.is_configured = True
        self.sent = []
        self.failures = {}

    async def send_sms(self, phone_number, message):
        if phone_number in self.failures:
            raise self.failures[phone_number]
        self.sent.append((phone_number, message))
        return f"SM{len(self.sent):04d}"


class FakeEmailService:
    """Records emails instead of talking SMTP."""

    def __init__(self):
        self.is_configured = True
        self.sent = []
        self.failures = {}

    async def send_email(self, to_email, subject, body, html_body=None, sender_name=None):
        if to_email in self.failures:
            raise self.failures[to_email]
        self.sent.append({"to": to_email, "subject": subject, "body": body, "sender_name": sender_name})
        return f"<msg-{len(self.sent)}@test>"


class FakePushService:
    """Accepts every token unless told otherwise."""

    def __init__(self):
        self.is_configured = True
        self.sent = []
        self.rejected_tokens = set()

    async def send_push_notification(self, device_tokens, title, body, data=None):
        self.sent.append({"tokens": list(device_tokens), "title": title, "body": body, "data": data})
        return {token: token not in self.rejected_tokens for token in device_tokens}


@pytest_asyncio.fixture()
async def engine():
    """Fresh in-memory database per test."""
    engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture()
async def db(engine):
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session


@pytest.fixture()
def fake_sms():
    return FakeSMSService()


@pytest.fixture()
def fake_email():
    return FakeEmailService()


@pytest.fixture()
def fake_push():
    return FakePushService()


@pytest.fixture()
def limiter():
    return RateLimiter(tz_name="UTC")


@pytest.fixture()
def dispatcher(fake_sms, fake_email, fake_push, limiter):
    return NotificationDispatcher(fake_sms, fake_email, fake_push, limiter)


@pytest.fixture()
def alerts(dispatcher):
    return AlertManager(dispatcher=dispatcher)


@pytest.fixture()
def tracker(alerts):
    return ZoneMembershipTracker(alert_manager=alerts)


@pytest.fixture()
def analyzer():
    return SensorAnalyzer()


@pytest_asyncio.fixture()
async def user(db):
    """An elderly user with a complete profile."""
    profile = UserProfile(
        first_name="Margaret",
        last_name="Hale",
        email="margaret@example.com",
        phone_number="+14155550100",
        user_type=UserType.ELDERLY,
    )
    db.add(profile)
    await db.commit()
    return profile


@pytest_asyncio.fixture()
async def contacts(db, user):
    """Three active contacts; the first one is primary."""
    rows = [
        EmergencyContact(user_id=user.id, name="Primary", relationship="daughter",
                         phone_number="+14155551001", email="primary@example.com", is_primary=True),
        EmergencyContact(user_id=user.id, name="Second", relationship="son",
                         phone_number="+14155551002", email="second@example.com"),
        EmergencyContact(user_id=user.id, name="Third", relationship="neighbour",
                         phone_number="+14155551003", email="third@example.com"),
    ]
    db.add_all(rows)
    await db.commit()
    return rows


@pytest_asyncio.fixture()
async def home_zone(db, user):
    """100 m safe zone that alerts on exit only."""
    zone = SafeZone(
        user_id=user.id,
        name="Home",
        center_latitude=37.7749,
        center_longitude=-122.4194,
        radius_meters=100,
    )
    db.add(zone)
    await db.commit()
    return zone


@pytest.fixture()
def client(monkeypatch, fake_sms, fake_email, fake_push):
    """Test client backed by the in-memory database with fake gateways."""
    from carealert.core.alert_manager import alert_manager
    from carealert.main import app

    monkeypatch.setattr(
        alert_manager, "_dispatcher",
        NotificationDispatcher(fake_sms, fake_email, fake_push, RateLimiter(tz_name="UTC"))
    )
    with TestClient(app) as client:
        yield client


@pytest.fixture()
def user_id():
    return uuid.uuid4()


@pytest.fixture()
def auth_headers(user_id):
    token = create_access_token({"sub": str(user_id)})
    return {"Authorization": f"Bearer {token}"}
