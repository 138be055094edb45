import logging
import uuid
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select, desc, delete, func

from carealert.config import settings
from carealert.core.exceptions import NotFoundError
from carealert.core.geo import distance_meters
from carealert.models.emergency import AlertSeverity, AlertType
from carealert.models.safe_zone import (
    SafeZone, SafeZoneCreate, SafeZoneUpdate, ZoneMembership,
    LocationEvent, LocationEventType, LocationSample
)
from carealert.utils.timeutils import utc_now, ensure_utc

logger = logging.getLogger(__name__)

@dataclass
class ZoneEvent:
    """A boundary crossing detected for one (user, zone) pair"""
    event_type: LocationEventType
    zone_id: uuid.UUID
    zone_name: str
    zone_type: str
    distance_meters: float
    alert_triggered: bool
    severity: Optional[AlertSeverity] = None
    alert_id: Optional[uuid.UUID] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.event_type.value,
            "zone_id": str(self.zone_id),
            "zone": self.zone_name,
            "zone_type": self.zone_type,
            "distance": round(self.distance_meters, 1),
            "alert_triggered": self.alert_triggered,
            "severity": self.severity.value if self.severity else None,
            "alert_id": str(self.alert_id) if self.alert_id else None,
        }

@dataclass
class ZoneCheckResult:
    zones_checked: int = 0
    events: List[ZoneEvent] = field(default_factory=list)
    stale_zones: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "zones_checked": self.zones_checked,
            "events": [event.to_dict() for event in self.events],
            "stale_zones": self.stale_zones,
        }

class ZoneMembershipTracker:
    """
    Decides zone entry/exit from location samples.

    The last known side of each boundary is kept in ZoneMembership so the
    first sample for a pair only initializes state, and a sample older
    than the last one processed for the pair is ignored.
    """

    def __init__(self, alert_manager=None, buffer_meters: Optional[float] = None):
        self._alert_manager = alert_manager
        self.buffer_meters = settings.ZONE_BUFFER_METERS if buffer_meters is None else buffer_meters

    @property
    def alert_manager(self):
        if self._alert_manager is None:
            from carealert.core.alert_manager import alert_manager
            self._alert_manager = alert_manager
        return self._alert_manager

    # ------------------------------------------------------------------
    # Location processing
    # ------------------------------------------------------------------

    async def process_location(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        sample: LocationSample
    ) -> ZoneCheckResult:
        """Evaluate a sample against every active zone of the user"""
        zones = await self.get_safe_zones(db, user_id)
        result = ZoneCheckResult(zones_checked=len(zones))

        if not zones:
            logger.debug(f"No safe zones configured for user {user_id}")
            await self._log_event(db, user_id, LocationEventType.LOCATION_UPDATE, None, sample)
            return result

        for zone in zones:
            membership = await db.get(ZoneMembership, (user_id, zone.id))
            if membership and self._is_stale(sample, membership):
                logger.info(f"Dropping stale sample for user {user_id}, zone {zone.name}")
                result.stale_zones += 1
                continue

            event = await self.evaluate(db, user_id, zone, sample, membership=membership)
            if event:
                result.events.append(event)

        return result

    def _is_stale(self, sample: LocationSample, membership: ZoneMembership) -> bool:
        if sample.timestamp is None or membership.last_sample_at is None:
            return False
        return ensure_utc(sample.timestamp) < ensure_utc(membership.last_sample_at)

    async def evaluate(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        zone: SafeZone,
        sample: LocationSample,
        membership: Optional[ZoneMembership] = None
    ) -> Optional[ZoneEvent]:
        """
        Update the membership of one (user, zone) pair from a sample.

        Returns a ZoneEvent on an entry or exit, None otherwise. The first
        sample for a pair and out-of-order samples never produce an event.
        """
        if membership is None:
            membership = await db.get(ZoneMembership, (user_id, zone.id))

        if membership and self._is_stale(sample, membership):
            logger.info(
                f"Dropping stale sample for user {user_id}, zone {zone.name}: "
                f"{sample.timestamp} is older than {membership.last_sample_at}"
            )
            return None

        sample_time = ensure_utc(sample.timestamp) or utc_now()
        distance = distance_meters(
            sample.latitude, sample.longitude,
            zone.center_latitude, zone.center_longitude
        )

        # Buffer absorbs GPS noise around the boundary
        effective_radius = zone.radius_meters + self.buffer_meters
        is_inside = distance <= effective_radius

        if membership is None:
            logger.info(
                f"Initializing zone status for user {user_id}, zone {zone.name}: "
                f"{'INSIDE' if is_inside else 'OUTSIDE'} ({distance:.1f}m)"
            )
            db.add(ZoneMembership(
                user_id=user_id,
                zone_id=zone.id,
                is_inside=is_inside,
                last_sample_at=sample_time
            ))
            await self._log_event(db, user_id, LocationEventType.ZONE_STATUS_INIT, zone.id, sample, distance)
            await db.flush()
            return None

        was_inside = membership.is_inside
        event = None

        if was_inside and not is_inside:
            event = await self._handle_transition(
                db, user_id, zone, sample, distance, LocationEventType.ZONE_EXIT
            )
        elif is_inside and not was_inside:
            event = await self._handle_transition(
                db, user_id, zone, sample, distance, LocationEventType.ZONE_ENTER
            )
        else:
            if not is_inside:
                logger.info(
                    f"User {user_id} remains OUTSIDE zone {zone.name} "
                    f"(distance: {distance:.1f}m, radius: {zone.radius_meters}m)"
                )
            await self._log_event(db, user_id, LocationEventType.LOCATION_UPDATE, zone.id, sample, distance)

        logger.debug(
            f"Zone status check for {zone.name}: was={was_inside}, now={is_inside}, "
            f"distance={distance:.1f}m, radius={zone.radius_meters}m, buffer={self.buffer_meters}m"
        )

        membership.is_inside = is_inside
        membership.last_sample_at = sample_time
        membership.updated_at = utc_now()
        db.add(membership)
        await db.flush()

        return event

    async def _handle_transition(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        zone: SafeZone,
        sample: LocationSample,
        distance: float,
        event_type: LocationEventType
    ) -> ZoneEvent:
        exiting = event_type == LocationEventType.ZONE_EXIT
        should_alert = zone.alert_on_exit if exiting else zone.alert_on_enter

        # Exits more often mean the person wandered off
        severity = AlertSeverity.HIGH if exiting else AlertSeverity.MEDIUM

        logger.info(f"User {user_id} {'exited' if exiting else 'entered'} zone {zone.name} ({zone.zone_type})")

        location_event = await self._log_event(
            db, user_id, event_type, zone.id, sample, distance, alert_triggered=should_alert
        )

        event = ZoneEvent(
            event_type=event_type,
            zone_id=zone.id,
            zone_name=zone.name,
            zone_type=str(getattr(zone.zone_type, "value", zone.zone_type)),
            distance_meters=distance,
            alert_triggered=should_alert,
            severity=severity if should_alert else None
        )

        if should_alert:
            alert = await self._raise_zone_alert(db, user_id, zone, sample, exiting, severity)
            event.alert_id = alert.id
            location_event.alert_id = alert.id
            db.add(location_event)

        return event

    async def _raise_zone_alert(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        zone: SafeZone,
        sample: LocationSample,
        exiting: bool,
        severity: AlertSeverity
    ):
        from carealert.core.alert_manager import AlertPayload, AlertOptions

        message = zone.notification_message or (
            f'User has {"left" if exiting else "entered"} the safe zone "{zone.name}"'
        )
        payload = AlertPayload(
            message=message,
            severity=severity,
            location=sample.location_snapshot(),
            details={
                "zone_id": str(zone.id),
                "zone_name": zone.name,
                "zone_type": str(getattr(zone.zone_type, "value", zone.zone_type)),
                "event_type": "exit" if exiting else "enter",
                "center_latitude": zone.center_latitude,
                "center_longitude": zone.center_longitude,
                "radius_meters": zone.radius_meters,
            }
        )

        alert = await self.alert_manager.create_alert(
            db,
            user_id,
            AlertType.GEOFENCE_EXIT if exiting else AlertType.GEOFENCE_ENTER,
            payload,
            AlertOptions(bypass_daily_limit=exiting)
        )
        logger.info(f"Zone {'exit' if exiting else 'enter'} alert for user {user_id}: {message} (Alert ID: {alert.id})")
        return alert

    async def _log_event(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        event_type: LocationEventType,
        zone_id: Optional[uuid.UUID],
        sample: LocationSample,
        distance: Optional[float] = None,
        alert_triggered: bool = False
    ) -> LocationEvent:
        event = LocationEvent(
            user_id=user_id,
            safe_zone_id=zone_id,
            event_type=event_type,
            latitude=sample.latitude,
            longitude=sample.longitude,
            accuracy=sample.accuracy,
            distance_from_zone=distance,
            alert_triggered=alert_triggered
        )
        db.add(event)
        return event

    # ------------------------------------------------------------------
    # Membership lifecycle
    # ------------------------------------------------------------------

    async def initialize_user(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        sample: LocationSample
    ) -> int:
        """Seed membership for every zone from the current location, without events"""
        zones = await self.get_safe_zones(db, user_id)
        sample_time = ensure_utc(sample.timestamp) or utc_now()

        for zone in zones:
            distance = distance_meters(
                sample.latitude, sample.longitude,
                zone.center_latitude, zone.center_longitude
            )
            is_inside = distance <= zone.radius_meters + self.buffer_meters

            membership = await db.get(ZoneMembership, (user_id, zone.id))
            if membership is None:
                membership = ZoneMembership(user_id=user_id, zone_id=zone.id, is_inside=is_inside, last_sample_at=sample_time)
            else:
                membership.is_inside = is_inside
                membership.last_sample_at = sample_time
                membership.updated_at = utc_now()
            db.add(membership)

            logger.info(f"Initialized zone {zone.name}: {'INSIDE' if is_inside else 'OUTSIDE'} (distance: {distance:.1f}m)")

        await db.flush()
        logger.info(f"Zone status initialized for user {user_id} with {len(zones)} zones")
        return len(zones)

    async def reset_user(self, db: AsyncSession, user_id: uuid.UUID) -> int:
        """Forget every membership of a user, e.g. on logout"""
        result = await db.execute(
            delete(ZoneMembership).where(ZoneMembership.user_id == user_id)
        )
        logger.info(f"Reset zone status for user {user_id} (cleared {result.rowcount} zones)")
        return result.rowcount

    async def forget_zone(self, db: AsyncSession, zone_id: uuid.UUID) -> int:
        result = await db.execute(
            delete(ZoneMembership).where(ZoneMembership.zone_id == zone_id)
        )
        return result.rowcount

    async def current_status(self, db: AsyncSession, user_id: uuid.UUID) -> List[Dict[str, Any]]:
        zones = await self.get_safe_zones(db, user_id)
        statuses = []

        for zone in zones:
            membership = await db.get(ZoneMembership, (user_id, zone.id))
            statuses.append({
                "zone_id": str(zone.id),
                "zone_name": zone.name,
                "zone_type": zone.zone_type,
                "is_inside": membership.is_inside if membership else None,
                "last_sample_at": membership.last_sample_at if membership else None,
                "radius_meters": zone.radius_meters
            })

        return statuses

    async def get_status_summary(self, db: AsyncSession, user_id: uuid.UUID) -> Dict[str, Any]:
        all_zones_result = await db.execute(
            select(SafeZone).where(SafeZone.user_id == user_id)
        )
        all_zones = all_zones_result.scalars().all()
        active_zones = [zone for zone in all_zones if zone.is_active]

        since = utc_now() - timedelta(hours=24)
        events_result = await db.execute(
            select(LocationEvent.event_type, func.count(LocationEvent.id))
            .where(
                LocationEvent.user_id == user_id,
                LocationEvent.created_at >= since
            )
            .group_by(LocationEvent.event_type)
        )
        counts = {event_type: count for event_type, count in events_result.all()}

        last_update_result = await db.execute(
            select(func.max(LocationEvent.created_at)).where(LocationEvent.user_id == user_id)
        )
        last_update = last_update_result.scalar_one_or_none()

        return {
            "total_safe_zones": len(all_zones),
            "active_safe_zones": len(active_zones),
            "current_zone_status": await self.current_status(db, user_id),
            "recent_events_24h": sum(counts.values()),
            "alert_events_24h": counts.get(LocationEventType.ZONE_ENTER, 0) + counts.get(LocationEventType.ZONE_EXIT, 0),
            "last_location_update": ensure_utc(last_update),
            "monitoring_active": len(active_zones) > 0
        }

    async def get_location_events(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        limit: int = 50,
        zone_id: Optional[uuid.UUID] = None
    ) -> List[LocationEvent]:
        query = (
            select(LocationEvent)
            .where(LocationEvent.user_id == user_id)
            .order_by(desc(LocationEvent.created_at))
            .limit(limit)
        )
        if zone_id:
            query = query.where(LocationEvent.safe_zone_id == zone_id)

        result = await db.execute(query)
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Safe zone CRUD
    # ------------------------------------------------------------------

    async def get_safe_zones(self, db: AsyncSession, user_id: uuid.UUID) -> List[SafeZone]:
        result = await db.execute(
            select(SafeZone)
            .where(SafeZone.user_id == user_id, SafeZone.is_active == True)  # noqa: E712
            .order_by(desc(SafeZone.created_at))
        )
        return list(result.scalars().all())

    async def get_safe_zone(self, db: AsyncSession, user_id: uuid.UUID, zone_id: uuid.UUID) -> SafeZone:
        result = await db.execute(
            select(SafeZone).where(SafeZone.id == zone_id, SafeZone.user_id == user_id)
        )
        zone = result.scalar_one_or_none()
        if zone is None:
            raise NotFoundError("Safe zone not found")
        return zone

    async def create_safe_zone(self, db: AsyncSession, user_id: uuid.UUID, zone_data: SafeZoneCreate) -> SafeZone:
        zone = SafeZone(**zone_data.model_dump(), user_id=user_id)
        db.add(zone)
        await db.commit()
        await db.refresh(zone)

        logger.info(f"Safe zone created for user {user_id}: {zone.name}")
        return zone

    async def update_safe_zone(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        zone_id: uuid.UUID,
        updates: SafeZoneUpdate
    ) -> SafeZone:
        zone = await self.get_safe_zone(db, user_id, zone_id)

        changes = updates.model_dump(exclude_unset=True)
        for key, value in changes.items():
            setattr(zone, key, value)
        zone.updated_at = utc_now()

        # Geometry changes invalidate the last known side of the boundary
        if {"center_latitude", "center_longitude", "radius_meters"} & changes.keys() or changes.get("is_active") is False:
            await self.forget_zone(db, zone.id)

        db.add(zone)
        await db.commit()
        await db.refresh(zone)
        return zone

    async def delete_safe_zone(self, db: AsyncSession, user_id: uuid.UUID, zone_id: uuid.UUID):
        zone = await self.get_safe_zone(db, user_id, zone_id)
        zone.is_active = False
        zone.updated_at = utc_now()
        db.add(zone)

        await self.forget_zone(db, zone.id)
        await db.commit()

        logger.info(f"Safe zone deleted for user {user_id}: {zone_id}")

# Global instance
zone_tracker = ZoneMembershipTracker()
