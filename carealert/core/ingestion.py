import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from carealert.core.alert_manager import AlertManager, AlertPayload, alert_manager as default_alert_manager
from carealert.core.exceptions import ValidationError
from carealert.core.geo import validate_coordinates
from carealert.core.sensor_analyzer import SensorAnalyzer, sensor_analyzer as default_sensor_analyzer
from carealert.core.zone_tracker import ZoneMembershipTracker, ZoneCheckResult, zone_tracker as default_zone_tracker
from carealert.models.emergency import EmergencyAlert
from carealert.models.safe_zone import LocationSample
from carealert.models.sensor import HealthAnalysis

logger = logging.getLogger(__name__)

@dataclass
class IngestionResult:
    zones: ZoneCheckResult
    analysis: Optional[HealthAnalysis] = None
    alerts: List[EmergencyAlert] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "geofencing": self.zones.to_dict(),
            "analysis": self.analysis.model_dump(mode="json") if self.analysis else None,
            "alerts": [
                {
                    "id": str(alert.id),
                    "alert_type": alert.alert_type,
                    "severity": alert.severity,
                    "priority": alert.priority,
                    "contacts_notified": alert.contacts_notified,
                }
                for alert in self.alerts
            ],
        }

class SampleIngestion:
    """Entry point for device samples: zones first, then vitals"""

    def __init__(
        self,
        tracker: Optional[ZoneMembershipTracker] = None,
        analyzer: Optional[SensorAnalyzer] = None,
        alerts: Optional[AlertManager] = None
    ):
        self.tracker = tracker or default_zone_tracker
        self.analyzer = analyzer or default_sensor_analyzer
        self.alert_manager = alerts or default_alert_manager

    @staticmethod
    def validate(sample: LocationSample):
        errors = validate_coordinates(sample.latitude, sample.longitude)
        if errors:
            raise ValidationError("; ".join(errors))

    async def ingest_location(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        sample: LocationSample
    ) -> ZoneCheckResult:
        self.validate(sample)
        result = await self.tracker.process_location(db, user_id, sample)
        await db.commit()
        return result

    async def ingest_sample(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        sample: LocationSample
    ) -> IngestionResult:
        self.validate(sample)

        zones = await self.tracker.process_location(db, user_id, sample)
        result = IngestionResult(zones=zones)

        for event in zones.events:
            if event.alert_id:
                alert = await db.get(EmergencyAlert, event.alert_id)
                if alert:
                    result.alerts.append(alert)

        analysis = await self.analyzer.analyze(db, user_id, sample)
        result.analysis = analysis

        emergencies = await self.analyzer.detect_emergencies(db, user_id, analysis)
        await self.analyzer.store_sample(db, user_id, sample, analysis)

        for emergency in emergencies:
            payload = AlertPayload(
                message=emergency.message,
                severity=emergency.severity,
                location=sample.location_snapshot(),
                details=emergency.details
            )
            if emergency.urgent:
                alert = await self.alert_manager.create_urgent_alert(db, user_id, emergency.alert_type, payload)
            else:
                alert = await self.alert_manager.create_alert(db, user_id, emergency.alert_type, payload)
            result.alerts.append(alert)

        await db.commit()

        logger.info(
            f"Processed sample for user {user_id}: {len(zones.events)} zone events, "
            f"health {analysis.health_status.value}, {len(result.alerts)} alerts"
        )
        return result

# Global instance
sample_ingestion = SampleIngestion()
