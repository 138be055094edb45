from fastapi import APIRouter, Query
from typing import Any, Optional
import uuid

from carealert.database import SessionDep
from carealert.api.auth import CurrentUserId
from carealert.api.responses import success
from carealert.core.ingestion import sample_ingestion
from carealert.core.zone_tracker import zone_tracker
from carealert.models.safe_zone import LocationSample, SafeZoneCreate, SafeZoneUpdate, SafeZoneRead

router = APIRouter()

@router.post("/location-update")
async def process_location_update(
    db: SessionDep,
    sample: LocationSample,
    user_id: CurrentUserId
) -> dict[str, Any]:
    result = await sample_ingestion.ingest_location(db, user_id, sample)
    return success(result.to_dict(), message="Location processed")

@router.post("/initialize-status")
async def initialize_zone_status(
    db: SessionDep,
    sample: LocationSample,
    user_id: CurrentUserId
) -> dict[str, Any]:
    sample_ingestion.validate(sample)
    zones = await zone_tracker.initialize_user(db, user_id, sample)
    await db.commit()
    return success({"zones_initialized": zones}, message="Zone status initialized")

@router.post("/reset-status")
async def reset_zone_status(
    db: SessionDep,
    user_id: CurrentUserId
) -> dict[str, Any]:
    cleared = await zone_tracker.reset_user(db, user_id)
    await db.commit()
    return success({"zones_cleared": cleared}, message="Zone status reset")

@router.get("/status")
async def get_geofencing_status(
    db: SessionDep,
    user_id: CurrentUserId
) -> dict[str, Any]:
    return success(await zone_tracker.get_status_summary(db, user_id))

@router.get("/location-events")
async def get_location_events(
    db: SessionDep,
    user_id: CurrentUserId,
    limit: int = Query(default=50, ge=1, le=500),
    zone_id: Optional[uuid.UUID] = None
) -> dict[str, Any]:
    events = await zone_tracker.get_location_events(db, user_id, limit=limit, zone_id=zone_id)
    return success(events)

@router.get("/zone-history/{zone_id}")
async def get_zone_history(
    db: SessionDep,
    zone_id: uuid.UUID,
    user_id: CurrentUserId,
    limit: int = Query(default=50, ge=1, le=500)
) -> dict[str, Any]:
    zone = await zone_tracker.get_safe_zone(db, user_id, zone_id)
    events = await zone_tracker.get_location_events(db, user_id, limit=limit, zone_id=zone.id)
    return success({"zone": SafeZoneRead.model_validate(zone), "events": events})

@router.get("/safe-zones")
async def list_safe_zones(
    db: SessionDep,
    user_id: CurrentUserId
) -> dict[str, Any]:
    zones = await zone_tracker.get_safe_zones(db, user_id)
    return success([SafeZoneRead.model_validate(zone) for zone in zones])

@router.post("/safe-zones", status_code=201)
async def create_safe_zone(
    db: SessionDep,
    zone_data: SafeZoneCreate,
    user_id: CurrentUserId
) -> dict[str, Any]:
    zone = await zone_tracker.create_safe_zone(db, user_id, zone_data)
    return success(SafeZoneRead.model_validate(zone), message="Safe zone created")

@router.get("/safe-zones/{zone_id}")
async def get_safe_zone(
    db: SessionDep,
    zone_id: uuid.UUID,
    user_id: CurrentUserId
) -> dict[str, Any]:
    zone = await zone_tracker.get_safe_zone(db, user_id, zone_id)
    return success(SafeZoneRead.model_validate(zone))

@router.put("/safe-zones/{zone_id}")
async def update_safe_zone(
    db: SessionDep,
    zone_id: uuid.UUID,
    updates: SafeZoneUpdate,
    user_id: CurrentUserId
) -> dict[str, Any]:
    zone = await zone_tracker.update_safe_zone(db, user_id, zone_id, updates)
    return success(SafeZoneRead.model_validate(zone), message="Safe zone updated")

@router.delete("/safe-zones/{zone_id}")
async def delete_safe_zone(
    db: SessionDep,
    zone_id: uuid.UUID,
    user_id: CurrentUserId
) -> dict[str, Any]:
    await zone_tracker.delete_safe_zone(db, user_id, zone_id)
    return success(message="Safe zone deleted")
