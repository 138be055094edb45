from fastapi import APIRouter, Query
from typing import Any

from carealert.database import SessionDep
from carealert.api.auth import CurrentUserId
from carealert.api.responses import success
from carealert.core.ingestion import sample_ingestion
from carealert.core.sensor_analyzer import sensor_analyzer
from carealert.models.safe_zone import LocationSample

router = APIRouter()

@router.post("/data")
async def submit_sensor_data(
    db: SessionDep,
    sample: LocationSample,
    user_id: CurrentUserId
) -> dict[str, Any]:
    result = await sample_ingestion.ingest_sample(db, user_id, sample)
    return success(result.to_dict(), message="Sensor data processed")

@router.get("/history")
async def get_sensor_history(
    db: SessionDep,
    user_id: CurrentUserId,
    hours: int = Query(default=24, ge=1, le=168)
) -> dict[str, Any]:
    logs = await sensor_analyzer.get_sensor_history(db, user_id, hours=hours)
    return success(logs)

@router.get("/activity-summary")
async def get_activity_summary(
    db: SessionDep,
    user_id: CurrentUserId,
    days: int = Query(default=7, ge=1, le=30)
) -> dict[str, Any]:
    return success(await sensor_analyzer.get_activity_summary(db, user_id, days=days))
