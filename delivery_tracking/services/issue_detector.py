"""
Detection d'anomalies / Issue detector.
Regles independantes evaluees sur chaque position stockee.
Independent rules evaluated on each stored sample.
"""

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from delivery_tracking.config import settings
from delivery_tracking.models.delivery_issue import DeliveryIssue, IssueSeverity, IssueType
from delivery_tracking.models.location_sample import LocationSample
from delivery_tracking.models.tracking_state import TrackingState
from delivery_tracking.utils.timeutils import now_iso, parse_iso, to_iso

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DetectorThresholds:
    excessive_speed_kmh: float = 100.0
    stationary_speed_kmh: float = 2.0
    prolonged_stop_minutes: float = 30.0
    poor_accuracy_meters: float = 100.0
    low_battery_percent: float = 20.0
    max_silence_seconds: float = 300.0

    @classmethod
    def from_settings(cls) -> "DetectorThresholds":
        return cls(
            excessive_speed_kmh=settings.EXCESSIVE_SPEED_KMH,
            stationary_speed_kmh=settings.STATIONARY_SPEED_KMH,
            prolonged_stop_minutes=settings.PROLONGED_STOP_MINUTES,
            poor_accuracy_meters=settings.POOR_ACCURACY_METERS,
            low_battery_percent=settings.LOW_BATTERY_PERCENT,
            max_silence_seconds=settings.MAX_SILENCE_SECONDS,
        )


class IssueDetector:
    """Detecteur d'anomalies / Issue detector."""

    def __init__(self, db: AsyncSession, thresholds: DetectorThresholds | None = None):
        self.db = db
        self.thresholds = thresholds or DetectorThresholds.from_settings()

    def evaluate(self, sample: LocationSample, state: TrackingState) -> list[DeliveryIssue]:
        """Appliquer les regles a une position / Apply the rules to one sample.

        Met a jour l'etat d'arret de la livraison / Updates the delivery's stop tracking state.
        """
        t = self.thresholds
        issues: list[DeliveryIssue] = []
        speed = sample.effective_speed

        if speed is not None and speed > t.excessive_speed_kmh:
            issues.append(self._issue(
                sample, IssueType.EXCESSIVE_SPEED, IssueSeverity.HIGH,
                f"Speed {speed:.0f} km/h above {t.excessive_speed_kmh:.0f} km/h",
            ))

        stop = self._track_stop(sample, state, speed)
        if stop is not None:
            issues.append(stop)

        if sample.accuracy is not None and sample.accuracy > t.poor_accuracy_meters:
            issues.append(self._issue(
                sample, IssueType.POOR_GPS_ACCURACY, IssueSeverity.LOW,
                f"GPS accuracy {sample.accuracy:.0f} m above {t.poor_accuracy_meters:.0f} m",
            ))

        if sample.battery_level is not None and sample.battery_level < t.low_battery_percent:
            issues.append(self._issue(
                sample, IssueType.LOW_BATTERY, IssueSeverity.MEDIUM,
                f"Battery level {sample.battery_level:.0f}%",
            ))

        # Une position stockee met fin au silence / A stored sample ends the silence
        state.signal_lost_reported = False
        return issues

    async def detect(self, sample: LocationSample, state: TrackingState) -> list[DeliveryIssue]:
        """Evaluer et persister / Evaluate and persist."""
        issues = self.evaluate(sample, state)
        if issues:
            self.db.add_all(issues)
            await self.db.flush()
            for issue in issues:
                logger.info(
                    "delivery %s: issue %s (%s)", issue.delivery_id, issue.issue_type.value, issue.severity.value,
                )
        return issues

    async def report_signal_lost(
        self,
        delivery_id: int,
        state: TrackingState,
        last_sample_at: str | None,
        now: datetime,
    ) -> DeliveryIssue | None:
        """Signal perdu : aucune position depuis max_silence_seconds, une fois par silence /
        Signal lost: no sample for max_silence_seconds, once per silence."""
        if last_sample_at is None or state.signal_lost_reported:
            return None
        silence = (now - parse_iso(last_sample_at)).total_seconds()
        if silence <= self.thresholds.max_silence_seconds:
            return None

        state.signal_lost_reported = True
        issue = DeliveryIssue(
            delivery_id=delivery_id,
            issue_type=IssueType.SIGNAL_LOST,
            severity=IssueSeverity.MEDIUM,
            description=f"No location update for {silence / 60:.0f} min",
            created_at=to_iso(now),
            notified=False,
        )
        self.db.add(issue)
        await self.db.flush()
        logger.info("delivery %s: signal lost (%.0fs)", delivery_id, silence)
        return issue

    def _track_stop(self, sample: LocationSample, state: TrackingState, speed: float | None) -> DeliveryIssue | None:
        """Arret prolonge, une seule fois par episode / Prolonged stop, once per stationary episode."""
        t = self.thresholds
        if speed is None:
            return None
        if speed >= t.stationary_speed_kmh:
            state.stationary_since = None
            state.prolonged_stop_reported = False
            return None

        if state.stationary_since is None:
            state.stationary_since = sample.timestamp
            state.prolonged_stop_reported = False
            return None

        stopped_minutes = (parse_iso(sample.timestamp) - parse_iso(state.stationary_since)).total_seconds() / 60
        if stopped_minutes > t.prolonged_stop_minutes and not state.prolonged_stop_reported:
            state.prolonged_stop_reported = True
            return self._issue(
                sample, IssueType.PROLONGED_STOP, IssueSeverity.MEDIUM,
                f"Stationary for {stopped_minutes:.0f} min",
            )
        return None

    @staticmethod
    def _issue(sample: LocationSample, issue_type: IssueType, severity: IssueSeverity, description: str) -> DeliveryIssue:
        return DeliveryIssue(
            delivery_id=sample.delivery_id,
            sample_id=sample.id,
            issue_type=issue_type,
            severity=severity,
            description=description,
            created_at=now_iso(),
            notified=False,
        )
