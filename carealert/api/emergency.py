from fastapi import APIRouter, Query
from dataclasses import asdict
from typing import Any, Optional
import uuid

from carealert.database import SessionDep
from carealert.api.auth import CurrentUserId
from carealert.api.responses import success
from carealert.core.alert_manager import alert_manager, AlertPayload
from carealert.models.emergency import (
    EmergencyRequest, AlertStatus, AlertStatusUpdate, EmergencyAlertRead,
    EmergencyContactCreate, EmergencyContactUpdate, EmergencySettingsUpdate
)

router = APIRouter()

def _payload(emergency_data: EmergencyRequest) -> AlertPayload:
    return AlertPayload(
        message=emergency_data.message,
        severity=emergency_data.severity,
        location=emergency_data.location.model_dump() if emergency_data.location else None
    )

@router.post("/alerts", status_code=201)
async def trigger_emergency_alert(
    db: SessionDep,
    emergency_data: EmergencyRequest,
    user_id: CurrentUserId
) -> dict[str, Any]:
    alert = await alert_manager.create_alert(db, user_id, emergency_data.alert_type, _payload(emergency_data))
    return success(EmergencyAlertRead.model_validate(alert), message="Emergency alert created")

@router.post("/alerts/urgent", status_code=201)
async def trigger_urgent_alert(
    db: SessionDep,
    emergency_data: EmergencyRequest,
    user_id: CurrentUserId
) -> dict[str, Any]:
    alert = await alert_manager.create_urgent_alert(db, user_id, emergency_data.alert_type, _payload(emergency_data))
    return success(EmergencyAlertRead.model_validate(alert), message="Urgent alert created")

@router.get("/alerts")
async def get_alerts(
    db: SessionDep,
    user_id: CurrentUserId,
    limit: int = Query(default=20, ge=1, le=100),
    status: Optional[AlertStatus] = None
) -> dict[str, Any]:
    alerts = await alert_manager.get_user_alerts(db, user_id, limit=limit, status=status)
    return success([EmergencyAlertRead.model_validate(alert) for alert in alerts])

@router.put("/alerts/{alert_id}/status")
async def update_alert_status(
    db: SessionDep,
    alert_id: uuid.UUID,
    update: AlertStatusUpdate,
    user_id: CurrentUserId
) -> dict[str, Any]:
    alert = await alert_manager.update_alert_status(
        db, user_id, alert_id, update.status, resolved_by=update.resolved_by
    )
    return success(EmergencyAlertRead.model_validate(alert), message="Alert status updated")

@router.get("/email-limit")
async def get_email_limit(
    db: SessionDep,
    user_id: CurrentUserId
) -> dict[str, Any]:
    status = await alert_manager.check_daily_limit(db, user_id)
    return success(asdict(status))

@router.get("/contacts")
async def list_contacts(
    db: SessionDep,
    user_id: CurrentUserId
) -> dict[str, Any]:
    return success(await alert_manager.get_emergency_contacts(db, user_id))

@router.post("/contacts", status_code=201)
async def add_contact(
    db: SessionDep,
    contact_data: EmergencyContactCreate,
    user_id: CurrentUserId
) -> dict[str, Any]:
    contact = await alert_manager.add_emergency_contact(db, user_id, contact_data)
    return success(contact, message="Emergency contact added")

@router.put("/contacts/{contact_id}")
async def update_contact(
    db: SessionDep,
    contact_id: uuid.UUID,
    updates: EmergencyContactUpdate,
    user_id: CurrentUserId
) -> dict[str, Any]:
    contact = await alert_manager.update_emergency_contact(db, user_id, contact_id, updates)
    return success(contact, message="Emergency contact updated")

@router.delete("/contacts/{contact_id}")
async def delete_contact(
    db: SessionDep,
    contact_id: uuid.UUID,
    user_id: CurrentUserId
) -> dict[str, Any]:
    await alert_manager.delete_emergency_contact(db, user_id, contact_id)
    return success(message="Emergency contact deleted")

@router.get("/settings")
async def get_emergency_settings(
    db: SessionDep,
    user_id: CurrentUserId
) -> dict[str, Any]:
    return success(await alert_manager.get_emergency_settings(db, user_id))

@router.put("/settings")
async def update_emergency_settings(
    db: SessionDep,
    updates: EmergencySettingsUpdate,
    user_id: CurrentUserId
) -> dict[str, Any]:
    current = await alert_manager.update_emergency_settings(db, user_id, updates)
    return success(current, message="Emergency settings updated")
