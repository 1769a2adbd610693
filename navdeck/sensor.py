"""Sensor capability and location candidates.

A sensor is anything that can describe how likely the robot is to be at a
given field point. Likelihoods do not need to form a probability distribution:
if a reading makes it certain the robot is inside some area, every point in
that area may report 1.
"""

from dataclasses import dataclass
from typing import Iterable, List, Optional, Protocol, runtime_checkable

from .position import Position, PositionLike


@runtime_checkable
class Sensor(Protocol):
    """Likelihood source consumed by the position integrator."""

    def likelihood(self, x: float, y: float) -> float:
        """Likelihood in [0, 1] of the robot being at (x, y).

        1 means this sensor considers the point entirely consistent with its
        reading; 0 means the point is impossible.
        """
        ...

    def orientation_likelihood(self, x: float, y: float, theta: float) -> float:
        """Likelihood in [0, 1] of the robot being at (x, y) facing theta.

        Sensors without heading information return a value independent of theta.
        """
        ...

    def weight(self, x: float, y: float) -> float:
        """Fusion weight in [0, 1] of this sensor at (x, y).

        A sensor known to be unreliable near walls may report a lower weight
        there. Zero removes the sensor from the weighted average entirely.
        """
        ...

    def hotspots(self) -> Iterable[PositionLike]:
        """Positions worth a fine search. Used for speed only."""
        ...

    def notify_error(self, x: float, y: float, theta: float, agreed_weight: float) -> None:
        """Feedback once the integrator has agreed on a position.

        Args:
            x: Agreed robot position, X.
            y: Agreed robot position, Y.
            theta: Agreed robot orientation.
            agreed_weight: Consensus strength; 1 is unanimous agreement, values
                near zero describe weak correlations.
        """
        ...


@dataclass(frozen=True)
class LocationCandidate:
    """A ranked hypothesis about where the robot is."""

    position: Position
    correlation_strength: float

    def __str__(self) -> str:
        p = self.position
        return f"({p.x:.3f}, {p.y:.3f}, {p.theta:+.3f}) @ {self.correlation_strength:.3f}"


def rank_candidates(candidates: Iterable[LocationCandidate]) -> List[LocationCandidate]:
    """Sort candidates by descending correlation strength."""
    return sorted(candidates, key=lambda c: c.correlation_strength, reverse=True)


def best_candidate(candidates: Iterable[LocationCandidate]) -> Optional[LocationCandidate]:
    """Return the strongest candidate, or None for an empty collection."""
    return max(candidates, key=lambda c: c.correlation_strength, default=None)
