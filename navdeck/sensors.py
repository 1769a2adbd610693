"""Concrete likelihood sources for the position integrator.

- ``AxisSensor``: Gaussian ridge along one axis, e.g. a rangefinder facing a
  wall. It pins one coordinate and says nothing about the other.
- ``PointFixSensor``: Gaussian fix around a point with an optional heading,
  e.g. a beacon or camera fix. Reports weight 0 while it has no fix.

Both are updated from the sensing thread and read from the planner thread, so
readings are swapped under a lock.
"""

import math
import threading
from typing import List, Optional

from .position import Position, normalize_angle


def _gaussian(delta: float, sigma: float) -> float:
    return math.exp(-(delta * delta) / (2.0 * sigma * sigma))


class AxisSensor:
    """Reads a single field coordinate with Gaussian noise."""

    def __init__(
        self,
        axis: str,
        reading: float,
        sigma: float,
        weight: float = 1.0,
        hotspot_spacing: Optional[float] = None,
        hotspot_extent: float = 0.0,
    ):
        """Initialize the sensor.

        Args:
            axis: 'x' or 'y', the coordinate this sensor measures.
            reading: Measured coordinate (meters).
            sigma: 1-sigma measurement error (meters).
            weight: Fusion weight in [0, 1].
            hotspot_spacing: Spacing of hotspots along the ridge (meters). None
                disables hotspots.
            hotspot_extent: Length of the ridge covered by hotspots (meters).
        """
        if axis not in ("x", "y"):
            raise ValueError(f"axis must be 'x' or 'y', got {axis!r}")
        if sigma <= 0:
            raise ValueError(f"sigma must be positive, got {sigma}")
        self.axis = axis
        self.sigma = sigma
        self.hotspot_spacing = hotspot_spacing
        self.hotspot_extent = hotspot_extent
        self._reading = reading
        self._weight = weight
        self._lock = threading.Lock()

    @property
    def reading(self) -> float:
        return self._reading

    def update(self, reading: float, weight: Optional[float] = None) -> None:
        with self._lock:
            self._reading = reading
            if weight is not None:
                self._weight = weight

    def likelihood(self, x: float, y: float) -> float:
        value = x if self.axis == "x" else y
        return _gaussian(value - self._reading, self.sigma)

    def orientation_likelihood(self, x: float, y: float, theta: float) -> float:
        return self.likelihood(x, y)

    def weight(self, x: float, y: float) -> float:
        return self._weight

    def hotspots(self) -> List[Position]:
        if not self.hotspot_spacing or self.hotspot_extent <= 0:
            return []
        with self._lock:
            reading = self._reading
        count = int(self.hotspot_extent / self.hotspot_spacing) + 1
        along = [i * self.hotspot_spacing for i in range(count)]
        if self.axis == "x":
            return [Position(reading, a) for a in along]
        return [Position(a, reading) for a in along]

    def notify_error(self, x: float, y: float, theta: float, agreed_weight: float) -> None:
        pass

    def __repr__(self) -> str:
        return f"AxisSensor({self.axis}={self._reading:.3f}, sigma={self.sigma})"


class PointFixSensor:
    """Gaussian position fix with optional heading."""

    def __init__(
        self,
        x: Optional[float] = None,
        y: Optional[float] = None,
        sigma: float = 0.1,
        theta: Optional[float] = None,
        theta_sigma: float = 0.1,
        weight: float = 1.0,
    ):
        if sigma <= 0 or theta_sigma <= 0:
            raise ValueError(f"sigma and theta_sigma must be positive, got {sigma}, {theta_sigma}")
        self.sigma = sigma
        self.theta_sigma = theta_sigma
        self._fix: Optional[Position] = None
        self._has_heading = False
        self._weight = weight
        self._lock = threading.Lock()
        if x is not None and y is not None:
            self.update(x, y, theta, weight)

    @property
    def fix(self) -> Optional[Position]:
        return self._fix

    def update(self, x: float, y: float, theta: Optional[float] = None, weight: Optional[float] = None) -> None:
        with self._lock:
            self._fix = Position(x, y, normalize_angle(theta) if theta is not None else 0.0)
            self._has_heading = theta is not None
            if weight is not None:
                self._weight = weight

    def clear(self) -> None:
        """Drop the current fix; the sensor reports weight 0 until the next update."""
        with self._lock:
            self._fix = None
            self._has_heading = False

    def likelihood(self, x: float, y: float) -> float:
        fix = self._fix
        if fix is None:
            return 0.0
        return _gaussian(math.hypot(x - fix.x, y - fix.y), self.sigma)

    def orientation_likelihood(self, x: float, y: float, theta: float) -> float:
        with self._lock:
            fix, has_heading = self._fix, self._has_heading
        if fix is None:
            return 0.0
        value = _gaussian(math.hypot(x - fix.x, y - fix.y), self.sigma)
        if has_heading:
            value *= _gaussian(normalize_angle(theta - fix.theta), self.theta_sigma)
        return value

    def weight(self, x: float, y: float) -> float:
        return self._weight if self._fix is not None else 0.0

    def hotspots(self) -> List[Position]:
        fix = self._fix
        return [fix] if fix is not None else []

    def notify_error(self, x: float, y: float, theta: float, agreed_weight: float) -> None:
        pass

    def __repr__(self) -> str:
        return f"PointFixSensor(fix={self._fix}, sigma={self.sigma})"
