"""Unit tests for vital-sign classification and emergency detection."""

from datetime import datetime, timedelta, timezone

import pytest

from carealert.models.emergency import EmergencyAlert, AlertType, AlertSeverity
from carealert.models.sensor import SensorDataLog, HealthStatus, ActivityLevel
from tests.test_helpers import HOME, make_sample


def vitals(**kwargs):
    return make_sample(*HOME, **kwargs)


class TestHeartRate:
    """Thresholds 30/35 low and 180/200 high."""

    @pytest.mark.asyncio()
    @pytest.mark.parametrize(
        ("heart_rate", "status", "anomaly"),
        [
            (72, HealthStatus.NORMAL, None),
            (180, HealthStatus.NORMAL, None),
            (181, HealthStatus.CONCERNING, "abnormal_heart_rate"),
            (200, HealthStatus.CONCERNING, "abnormal_heart_rate"),
            (201, HealthStatus.CRITICAL, "dangerously_high_heart_rate"),
            (35, HealthStatus.NORMAL, None),
            (34, HealthStatus.CONCERNING, "abnormal_heart_rate"),
            (30, HealthStatus.CONCERNING, "abnormal_heart_rate"),
            (29, HealthStatus.CRITICAL, "dangerously_low_heart_rate"),
        ],
    )
    async def test_classification(self, db, analyzer, user, heart_rate, status, anomaly):
        analysis = await analyzer.analyze(db, user.id, vitals(heart_rate=heart_rate))

        assert analysis.health_status == status
        if anomaly:
            assert analysis.anomalies == [anomaly]
        else:
            assert analysis.anomalies == []


class TestOtherAnomalies:
    @pytest.mark.asyncio()
    async def test_low_battery_does_not_change_status(self, db, analyzer, user):
        analysis = await analyzer.analyze(db, user.id, vitals(battery_level=15))

        assert analysis.health_status == HealthStatus.NORMAL
        assert "low_battery" in analysis.anomalies

    @pytest.mark.asyncio()
    async def test_poor_gps_accuracy(self, db, analyzer, user):
        analysis = await analyzer.analyze(db, user.id, vitals(accuracy=150))

        assert "poor_gps_accuracy" in analysis.anomalies

    @pytest.mark.asyncio()
    async def test_worst_status_wins(self, db, analyzer, user):
        analysis = await analyzer.analyze(db, user.id, vitals(heart_rate=210, battery_level=5, accuracy=500))

        assert analysis.health_status == HealthStatus.CRITICAL
        assert analysis.anomalies == ["dangerously_high_heart_rate", "low_battery", "poor_gps_accuracy"]


class TestActivity:
    @pytest.mark.parametrize(
        ("steps", "level"),
        [(0, ActivityLevel.INACTIVE), (1, ActivityLevel.LOW), (49, ActivityLevel.LOW),
         (50, ActivityLevel.MODERATE), (199, ActivityLevel.MODERATE), (200, ActivityLevel.HIGH)],
    )
    def test_classify(self, steps, level):
        from carealert.core.sensor_analyzer import SensorAnalyzer

        assert SensorAnalyzer.classify_activity(steps) == level

    @pytest.mark.asyncio()
    async def test_unknown_without_steps(self, db, analyzer, user):
        analysis = await analyzer.analyze(db, user.id, vitals(heart_rate=70))

        assert analysis.activity_level == ActivityLevel.UNKNOWN
        assert analysis.hourly_steps is None

    @pytest.mark.asyncio()
    async def test_trailing_hour_is_summed(self, db, analyzer, user):
        now = datetime.now(timezone.utc)
        db.add_all([
            SensorDataLog(user_id=user.id, step_count=30, created_at=now - timedelta(minutes=20)),
            SensorDataLog(user_id=user.id, step_count=40, created_at=now - timedelta(minutes=50)),
            SensorDataLog(user_id=user.id, step_count=500, created_at=now - timedelta(minutes=90)),
        ])
        await db.commit()

        analysis = await analyzer.analyze(db, user.id, vitals(step_count=10))

        assert analysis.hourly_steps == 80
        assert analysis.activity_level == ActivityLevel.MODERATE

    @pytest.mark.asyncio()
    async def test_store_sample(self, db, analyzer, user):
        sample = vitals(heart_rate=75, step_count=12)
        analysis = await analyzer.analyze(db, user.id, sample)

        log = await analyzer.store_sample(db, user.id, sample, analysis)

        assert log.step_count == 12
        assert log.raw_sensor_data["heart_rate"] == 75
        assert log.analysis_data["activity_level"] == "low"


def critical_log(user, minutes_ago):
    return SensorDataLog(user_id=user.id, analysis_data={"health_status": "critical"},
                         created_at=datetime.now(timezone.utc) - timedelta(minutes=minutes_ago))


class TestCriticalConfirmation:
    """Three critical readings inside five minutes confirm an emergency."""

    @pytest.mark.asyncio()
    async def test_confirmed_critical_heart_rate_is_urgent(self, db, analyzer, user):
        db.add_all([critical_log(user, 3), critical_log(user, 1)])
        await db.commit()
        analysis = await analyzer.analyze(db, user.id, vitals(heart_rate=25))

        emergencies = await analyzer.detect_emergencies(db, user.id, analysis)

        assert len(emergencies) == 1
        assert emergencies[0].alert_type == AlertType.HEALTH_ANOMALY
        assert emergencies[0].severity == AlertSeverity.CRITICAL
        assert emergencies[0].urgent
        assert emergencies[0].details["confirmed_readings"] == 3
        assert "dangerously low" in emergencies[0].message

    @pytest.mark.asyncio()
    async def test_lone_critical_reading_awaits_confirmation(self, db, analyzer, user):
        db.add(critical_log(user, 1))
        await db.commit()
        analysis = await analyzer.analyze(db, user.id, vitals(heart_rate=215))

        assert await analyzer.detect_emergencies(db, user.id, analysis) == []

    @pytest.mark.asyncio()
    async def test_old_readings_do_not_confirm(self, db, analyzer, user):
        db.add_all([critical_log(user, 8), critical_log(user, 6)])
        await db.commit()
        analysis = await analyzer.analyze(db, user.id, vitals(heart_rate=215))

        assert await analyzer.detect_emergencies(db, user.id, analysis) == []

    @pytest.mark.asyncio()
    async def test_confirmed_alert_consumes_readings(self, db, analyzer, user):
        db.add_all([critical_log(user, 4), critical_log(user, 3)])
        db.add(EmergencyAlert(user_id=user.id, alert_type=AlertType.HEALTH_ANOMALY,
                              triggered_at=datetime.now(timezone.utc) - timedelta(minutes=2)))
        db.add(critical_log(user, 1))
        await db.commit()
        analysis = await analyzer.analyze(db, user.id, vitals(heart_rate=215))

        assert await analyzer.detect_emergencies(db, user.id, analysis) == []


class TestDetectEmergencies:
    @pytest.mark.asyncio()
    async def test_concerning_reading_is_a_sensor_alert(self, db, analyzer, user):
        analysis = await analyzer.analyze(db, user.id, vitals(heart_rate=185))

        emergencies = await analyzer.detect_emergencies(db, user.id, analysis)

        assert [e.alert_type for e in emergencies] == [AlertType.SENSOR_DETECTED]
        assert not emergencies[0].urgent

    @pytest.mark.asyncio()
    async def test_normal_reading_has_no_emergencies(self, db, analyzer, user):
        analysis = await analyzer.analyze(db, user.id, vitals(heart_rate=70, step_count=100))

        assert await analyzer.detect_emergencies(db, user.id, analysis) == []

    @pytest.mark.asyncio()
    async def test_prolonged_inactivity(self, db, analyzer, user):
        now = datetime.now(timezone.utc)
        db.add(SensorDataLog(user_id=user.id, step_count=120, created_at=now - timedelta(hours=5)))
        db.add(SensorDataLog(user_id=user.id, step_count=0, created_at=now - timedelta(hours=2)))
        await db.commit()

        analysis = await analyzer.analyze(db, user.id, vitals(step_count=0))
        emergencies = await analyzer.detect_emergencies(db, user.id, analysis, now=now)

        assert [e.alert_type for e in emergencies] == [AlertType.INACTIVITY_DETECTED]
        assert emergencies[0].details["inactive_minutes"] == 300

    @pytest.mark.asyncio()
    async def test_recent_movement_is_not_inactivity(self, db, analyzer, user):
        now = datetime.now(timezone.utc)
        db.add(SensorDataLog(user_id=user.id, step_count=120, created_at=now - timedelta(hours=3)))
        await db.commit()

        analysis = await analyzer.analyze(db, user.id, vitals(step_count=0))
        # 120 steps are outside the trailing hour, so the sample reads as inactive
        assert analysis.activity_level == ActivityLevel.INACTIVE
        assert await analyzer.detect_emergencies(db, user.id, analysis, now=now) == []

    @pytest.mark.asyncio()
    async def test_inactivity_reported_once_per_day(self, db, analyzer, user):
        now = datetime.now(timezone.utc)
        db.add(SensorDataLog(user_id=user.id, step_count=120, created_at=now - timedelta(hours=5)))
        db.add(EmergencyAlert(user_id=user.id, alert_type=AlertType.INACTIVITY_DETECTED, triggered_at=now))
        await db.commit()

        analysis = await analyzer.analyze(db, user.id, vitals(step_count=0))

        assert await analyzer.detect_emergencies(db, user.id, analysis, now=now) == []

    @pytest.mark.asyncio()
    async def test_no_history_no_inactivity(self, db, analyzer, user):
        analysis = await analyzer.analyze(db, user.id, vitals(step_count=0))

        assert await analyzer.detect_emergencies(db, user.id, analysis) == []


class TestHistory:
    @pytest.mark.asyncio()
    async def test_history_is_newest_first_within_window(self, db, analyzer, user):
        now = datetime.now(timezone.utc)
        db.add_all([
            SensorDataLog(user_id=user.id, step_count=1, created_at=now - timedelta(hours=30)),
            SensorDataLog(user_id=user.id, step_count=2, created_at=now - timedelta(hours=5)),
            SensorDataLog(user_id=user.id, step_count=3, created_at=now - timedelta(minutes=5)),
        ])
        await db.commit()

        logs = await analyzer.get_sensor_history(db, user.id, hours=24)

        assert [log.step_count for log in logs] == [3, 2]

    @pytest.mark.asyncio()
    async def test_activity_summary_groups_by_day(self, db, analyzer, user):
        now = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)
        db.add_all([
            SensorDataLog(user_id=user.id, step_count=40, created_at=now - timedelta(hours=1),
                          analysis_data={"health_status": "normal", "anomalies": []}),
            SensorDataLog(user_id=user.id, step_count=10, created_at=now - timedelta(hours=2),
                          analysis_data={"health_status": "critical", "anomalies": ["dangerously_high_heart_rate"]}),
            SensorDataLog(user_id=user.id, step_count=None, created_at=now - timedelta(days=1),
                          analysis_data={"health_status": "normal", "anomalies": ["low_battery"]}),
            SensorDataLog(user_id=user.id, step_count=500, created_at=now - timedelta(days=9)),
        ])
        await db.commit()

        summary = await analyzer.get_activity_summary(db, user.id, days=7, now=now)

        assert summary == {
            "2026-03-10": {"total_readings": 2, "step_count": 50, "anomaly_readings": 1, "critical_readings": 1},
            "2026-03-09": {"total_readings": 1, "step_count": 0, "anomaly_readings": 1, "critical_readings": 0},
        }
