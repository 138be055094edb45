import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select, func, desc

from carealert.config import settings
from carealert.models.emergency import AlertType, AlertSeverity, EmergencyAlert
from carealert.models.safe_zone import LocationSample
from carealert.models.sensor import SensorDataLog, HealthAnalysis, HealthStatus, ActivityLevel
from carealert.utils.timeutils import utc_now, ensure_utc, start_of_day, minutes_ago, local_date

logger = logging.getLogger(__name__)

@dataclass
class HealthEmergency:
    alert_type: AlertType
    severity: AlertSeverity
    message: str
    urgent: bool = False
    details: Dict[str, Any] = field(default_factory=dict)

class SensorAnalyzer:
    """Classifies vital-sign samples and spots the ones worth an alert"""

    def __init__(self):
        self.heart_rate_high = settings.HEART_RATE_HIGH_THRESHOLD
        self.heart_rate_low = settings.HEART_RATE_LOW_THRESHOLD
        self.emergency_heart_rate = settings.EMERGENCY_HEART_RATE_THRESHOLD
        self.critical_low_heart_rate = settings.CRITICAL_LOW_HEART_RATE_THRESHOLD
        self.low_battery = settings.LOW_BATTERY_THRESHOLD
        self.accuracy_threshold = settings.LOCATION_ACCURACY_THRESHOLD
        self.inactivity_minutes = settings.INACTIVITY_THRESHOLD_MINUTES
        self.step_window_minutes = settings.STEP_WINDOW_MINUTES
        self.confirmation_readings = settings.EMERGENCY_CONFIRMATION_READINGS
        self.confirmation_window_minutes = settings.EMERGENCY_CONFIRMATION_WINDOW_MINUTES

    async def analyze(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        sample: LocationSample
    ) -> HealthAnalysis:
        analysis = HealthAnalysis(
            heart_rate=sample.heart_rate,
            battery_level=sample.battery_level,
            location_accuracy=sample.accuracy
        )

        self._check_heart_rate(analysis, sample.heart_rate)

        if sample.battery_level is not None and sample.battery_level < self.low_battery:
            analysis.anomalies.append("low_battery")

        if sample.accuracy is not None and sample.accuracy > self.accuracy_threshold:
            analysis.anomalies.append("poor_gps_accuracy")

        if sample.step_count is not None:
            recent_steps = await self.recent_step_total(db, user_id)
            analysis.hourly_steps = recent_steps + sample.step_count
            analysis.activity_level = self.classify_activity(analysis.hourly_steps)

        if analysis.anomalies:
            logger.info(f"Sensor anomalies for user {user_id}: {', '.join(analysis.anomalies)} ({analysis.health_status.value})")

        return analysis

    def _check_heart_rate(self, analysis: HealthAnalysis, heart_rate: Optional[float]):
        if heart_rate is None:
            return

        if heart_rate > self.emergency_heart_rate:
            analysis.escalate(HealthStatus.CRITICAL)
            analysis.anomalies.append("dangerously_high_heart_rate")
        elif heart_rate < self.critical_low_heart_rate:
            analysis.escalate(HealthStatus.CRITICAL)
            analysis.anomalies.append("dangerously_low_heart_rate")
        elif heart_rate > self.heart_rate_high or heart_rate < self.heart_rate_low:
            analysis.escalate(HealthStatus.CONCERNING)
            analysis.anomalies.append("abnormal_heart_rate")

    @staticmethod
    def classify_activity(steps: int) -> ActivityLevel:
        if steps == 0:
            return ActivityLevel.INACTIVE
        elif steps < 50:
            return ActivityLevel.LOW
        elif steps < 200:
            return ActivityLevel.MODERATE
        return ActivityLevel.HIGH

    async def recent_step_total(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        now: Optional[datetime] = None
    ) -> int:
        since = minutes_ago(self.step_window_minutes, now)
        result = await db.execute(
            select(func.coalesce(func.sum(SensorDataLog.step_count), 0))
            .where(
                SensorDataLog.user_id == user_id,
                SensorDataLog.created_at >= since
            )
        )
        return int(result.scalar_one() or 0)

    async def store_sample(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        sample: LocationSample,
        analysis: HealthAnalysis
    ) -> SensorDataLog:
        log = SensorDataLog(
            user_id=user_id,
            step_count=sample.step_count,
            raw_sensor_data=sample.model_dump(mode="json"),
            analysis_data=analysis.model_dump(mode="json")
        )
        db.add(log)
        await db.flush()
        return log

    async def detect_emergencies(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        analysis: HealthAnalysis,
        now: Optional[datetime] = None
    ) -> List[HealthEmergency]:
        """
        Turn an analysis into the alerts it calls for.

        Critical heart rates go out as urgent health alerts once enough
        critical readings arrive close together; a lone one only waits for
        confirmation. A concerning reading becomes a sensor alert, which
        only emails and is subject to the per-user cooldown. Inactivity is
        reported at most once a day.

        Must run before the current sample is stored.
        """
        now = ensure_utc(now or utc_now())
        emergencies = []

        if analysis.health_status == HealthStatus.CRITICAL and analysis.heart_rate is not None:
            readings = await self._critical_readings(db, user_id, now) + 1
            if readings >= self.confirmation_readings:
                direction = "high" if analysis.heart_rate > self.emergency_heart_rate else "low"
                logger.critical(
                    f"CONFIRMED HEART RATE EMERGENCY for user {user_id}: {analysis.heart_rate} BPM "
                    f"({readings} critical readings)"
                )
                emergencies.append(HealthEmergency(
                    alert_type=AlertType.HEALTH_ANOMALY,
                    severity=AlertSeverity.CRITICAL,
                    message=f"Critical heart rate detected: {analysis.heart_rate:.0f} BPM (dangerously {direction})",
                    urgent=True,
                    details={
                        "heart_rate": analysis.heart_rate,
                        "anomalies": analysis.anomalies,
                        "confirmed_readings": readings,
                    }
                ))
            else:
                logger.info(
                    f"Critical heart rate detected for user {user_id} ({analysis.heart_rate} BPM) - "
                    f"awaiting confirmation ({readings}/{self.confirmation_readings})"
                )
        elif analysis.health_status == HealthStatus.CONCERNING:
            emergencies.append(HealthEmergency(
                alert_type=AlertType.SENSOR_DETECTED,
                severity=AlertSeverity.MEDIUM,
                message=f"Unusual readings detected: {', '.join(analysis.anomalies)}",
                details={"heart_rate": analysis.heart_rate, "anomalies": analysis.anomalies}
            ))

        if analysis.activity_level == ActivityLevel.INACTIVE:
            inactivity = await self._check_inactivity(db, user_id, now)
            if inactivity:
                emergencies.append(inactivity)

        return emergencies

    async def _critical_readings(self, db: AsyncSession, user_id: uuid.UUID, now: datetime) -> int:
        """Stored critical readings inside the confirmation window"""
        since = minutes_ago(self.confirmation_window_minutes, now)

        # A confirmed alert consumes the readings before it
        result = await db.execute(
            select(func.max(EmergencyAlert.triggered_at)).where(
                EmergencyAlert.user_id == user_id,
                EmergencyAlert.alert_type == AlertType.HEALTH_ANOMALY
            )
        )
        last_alert = ensure_utc(result.scalar_one_or_none())
        if last_alert and last_alert > since:
            since = last_alert

        result = await db.execute(
            select(SensorDataLog.analysis_data).where(
                SensorDataLog.user_id == user_id,
                SensorDataLog.created_at > since
            )
        )
        return sum(
            1 for data in result.scalars().all()
            if (data or {}).get("health_status") == HealthStatus.CRITICAL.value
        )

    async def _check_inactivity(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        now: Optional[datetime] = None
    ) -> Optional[HealthEmergency]:
        now = ensure_utc(now or utc_now())

        result = await db.execute(
            select(SensorDataLog.created_at)
            .where(SensorDataLog.user_id == user_id, SensorDataLog.step_count > 0)
            .order_by(desc(SensorDataLog.created_at))
            .limit(1)
        )
        last_active = result.scalar_one_or_none()

        if last_active is None:
            # Never seen moving; measure from the first sample we have
            result = await db.execute(
                select(func.min(SensorDataLog.created_at)).where(SensorDataLog.user_id == user_id)
            )
            last_active = result.scalar_one_or_none()

        if last_active is None:
            return None

        inactive_minutes = (now - ensure_utc(last_active)).total_seconds() / 60
        if inactive_minutes <= self.inactivity_minutes:
            return None

        result = await db.execute(
            select(EmergencyAlert.id)
            .where(
                EmergencyAlert.user_id == user_id,
                EmergencyAlert.alert_type == AlertType.INACTIVITY_DETECTED,
                EmergencyAlert.triggered_at >= start_of_day(now)
            )
            .limit(1)
        )
        if result.scalar_one_or_none() is not None:
            logger.info(f"Inactivity alert already sent today for user {user_id}")
            return None

        logger.warning(f"INACTIVITY for user {user_id}: no movement for {inactive_minutes:.0f} minutes")
        return HealthEmergency(
            alert_type=AlertType.INACTIVITY_DETECTED,
            severity=AlertSeverity.HIGH if inactive_minutes > self.inactivity_minutes * 1.5 else AlertSeverity.MEDIUM,
            message=f"No movement detected for {inactive_minutes / 60:.1f} hours",
            details={"inactive_minutes": round(inactive_minutes)}
        )

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    async def get_sensor_history(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        hours: int = 24,
        now: Optional[datetime] = None
    ) -> List[SensorDataLog]:
        result = await db.execute(
            select(SensorDataLog)
            .where(
                SensorDataLog.user_id == user_id,
                SensorDataLog.created_at >= minutes_ago(hours * 60, now)
            )
            .order_by(desc(SensorDataLog.created_at))
        )
        return list(result.scalars().all())

    async def get_activity_summary(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        days: int = 7,
        now: Optional[datetime] = None
    ) -> Dict[str, Dict[str, int]]:
        """
        Per-day totals over the last `days` days, keyed by local date.

        Steps are summed from the stored samples themselves; readings that
        carried any anomaly are counted separately from critical ones.
        """
        logs = await self.get_sensor_history(db, user_id, hours=days * 24, now=now)

        summary: Dict[str, Dict[str, int]] = {}
        for log in logs:
            day = summary.setdefault(local_date(log.created_at), {
                "total_readings": 0,
                "step_count": 0,
                "anomaly_readings": 0,
                "critical_readings": 0,
            })
            analysis = log.analysis_data or {}

            day["total_readings"] += 1
            day["step_count"] += log.step_count or 0
            if analysis.get("anomalies"):
                day["anomaly_readings"] += 1
            if analysis.get("health_status") == HealthStatus.CRITICAL.value:
                day["critical_readings"] += 1

        return summary

# Global instance
sensor_analyzer = SensorAnalyzer()
