from fastapi import APIRouter, Query
from sqlmodel import select, desc
from typing import Any
import uuid

from carealert.database import SessionDep
from carealert.api.auth import CurrentUserId
from carealert.api.responses import success
from carealert.core.exceptions import NotFoundError
from carealert.models.notification import NotificationAttempt
from carealert.models.user import DeviceToken, DeviceRegistration
from carealert.utils.timeutils import utc_now

router = APIRouter()

@router.get("/history")
async def get_notification_history(
    db: SessionDep,
    user_id: CurrentUserId,
    limit: int = Query(default=50, ge=1, le=200),
    unread_only: bool = False
) -> dict[str, Any]:
    query = select(NotificationAttempt).where(NotificationAttempt.user_id == user_id)
    if unread_only:
        query = query.where(NotificationAttempt.is_read == False)  # noqa: E712

    result = await db.execute(
        query.order_by(desc(NotificationAttempt.created_at)).limit(limit)
    )
    return success(result.scalars().all())

@router.put("/history/{notification_id}/read")
async def mark_notification_read(
    db: SessionDep,
    notification_id: uuid.UUID,
    user_id: CurrentUserId
) -> dict[str, Any]:
    result = await db.execute(
        select(NotificationAttempt).where(
            NotificationAttempt.id == notification_id,
            NotificationAttempt.user_id == user_id
        )
    )
    notification = result.scalar_one_or_none()
    if notification is None:
        raise NotFoundError("Notification not found")

    notification.is_read = True
    db.add(notification)
    await db.commit()

    return success(message="Notification marked as read")

@router.post("/register-device")
async def register_device(
    db: SessionDep,
    registration: DeviceRegistration,
    user_id: CurrentUserId
) -> dict[str, Any]:
    result = await db.execute(
        select(DeviceToken).where(
            DeviceToken.user_id == user_id,
            DeviceToken.device_token == registration.device_token
        )
    )
    device = result.scalar_one_or_none()

    if device is None:
        device = DeviceToken(user_id=user_id, device_token=registration.device_token)
    device.platform = registration.platform
    device.is_active = True
    device.updated_at = utc_now()

    db.add(device)
    await db.commit()
    await db.refresh(device)

    return success({"id": str(device.id), "platform": device.platform}, message="Device registered")
