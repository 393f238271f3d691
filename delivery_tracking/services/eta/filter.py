"""
Filtre de Kalman a acceleration constante / Constant-acceleration Kalman filter.
Etat [position km, vitesse km/h, acceleration km/h²], un etat par livraison.
State [position km, velocity km/h, acceleration km/h²], one state per delivery.
"""

import math
from dataclasses import dataclass, field

import numpy as np

from delivery_tracking.models.tracking_state import TrackingState
from delivery_tracking.utils.timeutils import parse_iso

PROCESS_NOISE = 0.1
MEASUREMENT_NOISE = 0.5

# Mesure de la vitesse seulement / Velocity-only measurement
_H = np.array([[0.0, 1.0, 0.0]])


def _identity() -> list[list[float]]:
    return np.eye(3).tolist()


@dataclass
class FilterState:
    position_km: float = 0.0
    velocity_kmh: float = 0.0
    acceleration: float = 0.0
    covariance: list[list[float]] = field(default_factory=_identity)
    updated_at: str | None = None
    process_noise: float = PROCESS_NOISE
    measurement_noise: float = MEASUREMENT_NOISE

    @property
    def initialized(self) -> bool:
        return self.updated_at is not None

    @property
    def velocity_variance(self) -> float:
        return float(self.covariance[1][1])

    @property
    def confidence(self) -> float:
        """Confiance derivee de la covariance de vitesse / Confidence from velocity covariance."""
        if not self.initialized:
            return 0.0
        return round(max(0.1, min(0.95, 1.0 / (1.0 + math.sqrt(max(self.velocity_variance, 0.0))))), 3)

    @classmethod
    def from_tracking_state(cls, state: TrackingState | None) -> "FilterState":
        if state is None or state.filter_updated_at is None:
            return cls()
        return cls(
            position_km=state.filter_position_km or 0.0,
            velocity_kmh=state.filter_velocity_kmh or 0.0,
            acceleration=state.filter_acceleration or 0.0,
            covariance=state.filter_covariance or _identity(),
            updated_at=state.filter_updated_at,
        )

    def apply_to(self, state: TrackingState) -> None:
        state.filter_position_km = self.position_km
        state.filter_velocity_kmh = self.velocity_kmh
        state.filter_acceleration = self.acceleration
        state.filter_covariance = [list(row) for row in self.covariance]
        state.filter_updated_at = self.updated_at

    def _vector(self) -> np.ndarray:
        return np.array([self.position_km, self.velocity_kmh, self.acceleration])

    def _store(self, x: np.ndarray, p: np.ndarray) -> None:
        self.position_km = float(x[0])
        self.velocity_kmh = float(x[1])
        self.acceleration = float(x[2])
        self.covariance = p.tolist()

    def predict(self, dt_hours: float) -> None:
        """Propagation sur dt heures / Propagate over dt hours."""
        f = np.array([
            [1.0, dt_hours, 0.5 * dt_hours ** 2],
            [0.0, 1.0, dt_hours],
            [0.0, 0.0, 1.0],
        ])
        p = np.array(self.covariance)
        x = f @ self._vector()
        p = f @ p @ f.T + self.process_noise * np.eye(3)
        self._store(x, p)

    def update_velocity(self, measured_kmh: float, timestamp: str) -> None:
        """Integrer une vitesse observee / Fold in an observed speed.

        Le premier appel amorce le filtre / The first call seeds the filter.
        """
        if not self.initialized:
            self.position_km = 0.0
            self.velocity_kmh = float(measured_kmh)
            self.acceleration = 0.0
            self.covariance = _identity()
            self.updated_at = timestamp
            return

        dt_hours = max(0.0, (parse_iso(timestamp) - parse_iso(self.updated_at)).total_seconds() / 3600.0)
        self.predict(dt_hours)

        x = self._vector()
        p = np.array(self.covariance)
        innovation = measured_kmh - float((_H @ x)[0])
        s = float((_H @ p @ _H.T)[0, 0]) + self.measurement_noise
        k = (p @ _H.T) / s
        x = x + (k * innovation).ravel()
        p = (np.eye(3) - k @ _H) @ p
        self._store(x, p)
        self.updated_at = timestamp
