"""2D geometry kernel for field zones and waypoint connections.

All coordinates are integer millimeters, so orientation tests and
intersection parameters are computed exactly (no near-parallel cancellation).
The segment intersection and winding number algorithms follow Dan Sunday's
formulations:
- Segments are classified as parallel when their cross product is zero, then
  collinear overlap is resolved by projecting one onto the other and clipping
  the parameters to [0, 1].
- Polygon containment sums signed upward/downward edge crossings; a nonzero
  winding number means inside.
"""

import math
from dataclasses import dataclass
from enum import IntEnum
from fractions import Fraction
from typing import Sequence

from .config import MM_PER_METER
from .position import Position, PositionLike


@dataclass(frozen=True)
class Point2D:
    """Field location without orientation, in integer millimeters."""

    x: int
    y: int

    @classmethod
    def from_position(cls, position: PositionLike) -> "Point2D":
        return cls(round(position.x * MM_PER_METER), round(position.y * MM_PER_METER))

    @classmethod
    def from_meters(cls, x: float, y: float) -> "Point2D":
        return cls(round(x * MM_PER_METER), round(y * MM_PER_METER))

    def as_position(self, theta: float = 0.0) -> Position:
        return Position(self.x / MM_PER_METER, self.y / MM_PER_METER, theta)


@dataclass(frozen=True, eq=False)
class Segment:
    """Unordered segment between two points."""

    p0: Point2D
    p1: Point2D

    def __eq__(self, other):
        if not isinstance(other, Segment):
            return NotImplemented
        return {self.p0, self.p1} == {other.p0, other.p1}

    def __hash__(self):
        return hash(self.p0) ^ hash(self.p1)

    @property
    def length(self) -> float:
        """Length in millimeters."""
        return euclidean_distance(self.p0, self.p1)


class IntersectionKind(IntEnum):
    DISJOINT = 0
    POINT = 1
    OVERLAP = 2


def is_left(p0: Point2D, p1: Point2D, p2: Point2D) -> int:
    """Classify p2 against the directed line p0 -> p1.

    Returns:
        >0 if p2 is left of the line, <0 if right, 0 if collinear.
    """
    return (p1.x - p0.x) * (p2.y - p0.y) - (p2.x - p0.x) * (p1.y - p0.y)


def _perp(ux: int, uy: int, vx: int, vy: int) -> int:
    return ux * vy - uy * vx


def euclidean_distance(p0: Point2D, p1: Point2D) -> float:
    return math.hypot(p1.x - p0.x, p1.y - p0.y)


def in_segment(p: Point2D, s: Segment) -> bool:
    """Check whether a point known to be collinear with s lies on it."""
    if s.p0.x != s.p1.x:
        return min(s.p0.x, s.p1.x) <= p.x <= max(s.p0.x, s.p1.x)
    return min(s.p0.y, s.p1.y) <= p.y <= max(s.p0.y, s.p1.y)


def _within_unit(numerator: int, denominator: int) -> bool:
    # numerator / denominator in [0, 1] without dividing
    if denominator < 0:
        numerator, denominator = -numerator, -denominator
    return 0 <= numerator <= denominator


def segments_intersect(s1: Segment, s2: Segment) -> IntersectionKind:
    """Classify the intersection of two segments.

    Args:
        s1: One segment.
        s2: Another segment.

    Returns:
        DISJOINT, POINT (single shared point), or OVERLAP (collinear segments
        sharing a sub-segment).
    """
    ux, uy = s1.p1.x - s1.p0.x, s1.p1.y - s1.p0.y
    vx, vy = s2.p1.x - s2.p0.x, s2.p1.y - s2.p0.y
    wx, wy = s1.p0.x - s2.p0.x, s1.p0.y - s2.p0.y
    d = _perp(ux, uy, vx, vy)

    if d == 0:
        # parallel, including either segment being a single point
        if _perp(ux, uy, wx, wy) != 0 or _perp(vx, vy, wx, wy) != 0:
            return IntersectionKind.DISJOINT
        du = ux * ux + uy * uy
        dv = vx * vx + vy * vy
        if du == 0 and dv == 0:
            return IntersectionKind.POINT if s1.p0 == s2.p0 else IntersectionKind.DISJOINT
        if du == 0:
            return IntersectionKind.POINT if in_segment(s1.p0, s2) else IntersectionKind.DISJOINT
        if dv == 0:
            return IntersectionKind.POINT if in_segment(s2.p0, s1) else IntersectionKind.DISJOINT

        # collinear: endpoints of s1 expressed as parameters along s2
        w2x, w2y = s1.p1.x - s2.p0.x, s1.p1.y - s2.p0.y
        if vx != 0:
            t0, t1 = Fraction(wx, vx), Fraction(w2x, vx)
        else:
            t0, t1 = Fraction(wy, vy), Fraction(w2y, vy)
        if t0 > t1:
            t0, t1 = t1, t0
        if t0 > 1 or t1 < 0:
            return IntersectionKind.DISJOINT
        t0 = max(t0, Fraction(0))
        t1 = min(t1, Fraction(1))
        if t0 == t1:
            return IntersectionKind.POINT
        return IntersectionKind.OVERLAP

    # skew: intersection parameters for s1 and s2 must both fall in [0, 1]
    if not _within_unit(_perp(vx, vy, wx, wy), d):
        return IntersectionKind.DISJOINT
    if not _within_unit(_perp(ux, uy, wx, wy), d):
        return IntersectionKind.DISJOINT
    return IntersectionKind.POINT


def winding_number(p: Point2D, vertices: Sequence[Point2D]) -> int:
    """Winding number of a polygon around a point (0 means outside)."""
    wn = 0
    n = len(vertices)
    for i in range(n):
        a = vertices[i]
        b = vertices[(i + 1) % n]
        if a.y <= p.y:
            if b.y > p.y and is_left(a, b, p) > 0:
                wn += 1
        elif b.y <= p.y and is_left(a, b, p) < 0:
            wn -= 1
    return wn
