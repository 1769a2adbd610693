"""Robot position value types.

Coordinates are field-relative meters; (0, 0) is the left corner of the start
wall, X increases to the right and Y increases away from the start wall.
Theta is the angle between the robot's forward direction and the +X axis,
normalized into (-pi, pi].

Two lifetimes exist:
- ``Position`` is immutable and safe to cache, compare and store.
- ``VolatilePosition`` is updated in place inside hot loops. It is only valid
  during one planning or sensing iteration and must be materialized before it
  is retained.
"""

import math
from dataclasses import dataclass
from typing import Union

TWO_PI = 2.0 * math.pi


def normalize_angle(angle: float) -> float:
    """Normalize an angle into (-pi, pi].

    Args:
        angle: Angle in radians, any range.

    Returns:
        Equivalent angle in (-pi, pi].
    """
    wrapped = math.remainder(angle, TWO_PI)
    if wrapped <= -math.pi:
        wrapped += TWO_PI
    return wrapped


@dataclass(frozen=True)
class Position:
    """Immutable robot position (meters, radians)."""

    x: float
    y: float
    theta: float = 0.0

    def materialize(self) -> "Position":
        return self

    def distance_to(self, other: "PositionLike") -> float:
        """Euclidean distance to another position (meters)."""
        return math.hypot(other.x - self.x, other.y - self.y)

    def heading_to(self, other: "PositionLike") -> float:
        """Field bearing from this position towards another (radians)."""
        return math.atan2(other.y - self.y, other.x - self.x)


class VolatilePosition:
    """Reusable, mutable position holder for hot loops."""

    __slots__ = ("x", "y", "theta")

    def __init__(self, x: float = 0.0, y: float = 0.0, theta: float = 0.0):
        self.x = x
        self.y = y
        self.theta = theta

    def update(self, x: float, y: float, theta: float) -> None:
        self.x = x
        self.y = y
        self.theta = theta

    def materialize(self) -> Position:
        """Return an immutable copy that may be retained indefinitely."""
        return Position(self.x, self.y, self.theta)

    def __repr__(self) -> str:
        return f"VolatilePosition(x={self.x!r}, y={self.y!r}, theta={self.theta!r})"


PositionLike = Union[Position, VolatilePosition]


@dataclass(frozen=True)
class RelativePosition:
    """A move expressed in the robot's own reference frame.

    Attributes:
        distance: Distance to travel (meters, >= 0).
        theta: Turn to make before travelling (radians, (-pi, pi]).
            Positive values turn right of the current facing direction,
            negative values turn left.
    """

    distance: float
    theta: float = 0.0

    def __post_init__(self):
        if self.distance < 0 or math.isnan(self.distance):
            raise ValueError(f"Relative distance must be >= 0, got {self.distance}")
        object.__setattr__(self, "theta", normalize_angle(self.theta))

    def _target(self, init: PositionLike):
        heading = normalize_angle(init.theta - self.theta)
        x = init.x + self.distance * math.cos(heading)
        y = init.y + self.distance * math.sin(heading)
        return x, y, heading

    def apply(self, init: PositionLike) -> Position:
        """Apply this move to a position.

        The resulting heading is ``init.theta - theta`` and the (x, y) offset is
        ``distance`` along that heading.

        Args:
            init: Starting position.

        Returns:
            New immutable position after the move.
        """
        return Position(*self._target(init))

    def apply_in_place(self, position: VolatilePosition) -> VolatilePosition:
        """Apply this move to a volatile position without allocating."""
        position.update(*self._target(position))
        return position

    @staticmethod
    def between(start: PositionLike, end: PositionLike) -> "RelativePosition":
        """Derive the move that carries ``start`` onto the (x, y) of ``end``.

        Args:
            start: Starting position; its heading is the reference frame.
            end: Destination position.

        Returns:
            RelativePosition with theta normalized into (-pi, pi]. Coincident
            positions give a zero move with no turn.
        """
        distance = math.hypot(end.x - start.x, end.y - start.y)
        if distance == 0.0:
            return RelativePosition(0.0, 0.0)
        bearing = math.atan2(end.y - start.y, end.x - start.x)
        return RelativePosition(distance, normalize_angle(start.theta - bearing))
