"""Field description: zones, waypoints and shortest-path search.

A field owns a set of polygonal zones and a graph of waypoints. Zone modes
decide which waypoints and connections are legal:
- OBSTACLE / ILLEGAL zones reject waypoints inside them and connections that
  cross their boundary. Checks happen at insertion time, never retroactively.
- COMMON / ALLIANCE / PERSONAL zones only tag the waypoints they contain.

Geometry inputs are integer millimeters; all path costs and the moves produced
by ``plan_path`` are in meters.
"""

import heapq
import itertools
import logging
import math
from enum import Enum
from typing import Dict, FrozenSet, Iterable, List, Optional, Sequence, Set, Union

from .config import MM_PER_METER
from .errors import (
    DegeneratePolygonError,
    DuplicateWaypointError,
    NoPathFoundError,
    ObstacleError,
    SelfConnectionError,
)
from .geometry import IntersectionKind, Point2D, Segment, segments_intersect, winding_number
from .position import Position, PositionLike, RelativePosition, VolatilePosition


class ZoneMode(Enum):
    COMMON = "common"
    ALLIANCE = "alliance"
    PERSONAL = "personal"
    ILLEGAL = "illegal"
    OBSTACLE = "obstacle"

    @property
    def forbidden(self) -> bool:
        return self in (ZoneMode.ILLEGAL, ZoneMode.OBSTACLE)


class Zone:
    """Immutable polygonal area of the field tagged with a legality mode.

    Vertices must be given in a consistent order (clockwise or
    counterclockwise) and be unique. Self-intersecting polygons are accepted
    but their interior follows the winding rule.
    """

    def __init__(self, mode: ZoneMode, vertices: Sequence[Point2D], name: str = ""):
        """Initialize the zone.

        Args:
            mode: Legality classification.
            vertices: Polygon vertices in millimeters.
            name: Optional label used in log messages.

        Raises:
            DegeneratePolygonError: If vertices repeat or there are fewer than 3.
        """
        vertices = tuple(vertices)
        if len(vertices) < 3:
            raise DegeneratePolygonError(f"A zone needs at least 3 vertices, got {len(vertices)}")
        seen: Set[Point2D] = set()
        for vertex in vertices:
            if vertex in seen:
                raise DegeneratePolygonError(f"Vertices are not unique: {vertex}")
            seen.add(vertex)

        self._mode = mode
        self._vertices = vertices
        self.name = name or mode.value

    @property
    def mode(self) -> ZoneMode:
        return self._mode

    @property
    def vertices(self) -> tuple:
        return self._vertices

    def contains(self, point: Point2D) -> bool:
        return winding_number(point, self._vertices) != 0

    def intersects(self, segment: Segment) -> bool:
        """True if the segment touches or crosses any edge of this zone."""
        n = len(self._vertices)
        for i in range(n):
            edge = Segment(self._vertices[i], self._vertices[(i + 1) % n])
            if segments_intersect(segment, edge) != IntersectionKind.DISJOINT:
                return True
        return False

    def __repr__(self) -> str:
        return f"Zone({self.name!r}, mode={self._mode.name}, vertices={len(self._vertices)})"


class Waypoint:
    """A uniquely positioned node of the field graph.

    Neighbor and zone sets are only mutated through the owning ``Field``.
    """

    def __init__(self, pos: Point2D):
        self._pos = pos
        self._position = pos.as_position()
        self._neighbors: Set["Waypoint"] = set()
        self._zones: Set[Zone] = set()

    @property
    def pos(self) -> Point2D:
        return self._pos

    @property
    def position(self) -> Position:
        """Location in meters (theta 0)."""
        return self._position

    @property
    def neighbors(self) -> FrozenSet["Waypoint"]:
        return frozenset(self._neighbors)

    @property
    def zones(self) -> FrozenSet[Zone]:
        return frozenset(self._zones)

    def distance_to(self, other: "Waypoint") -> float:
        """Euclidean distance to another waypoint (meters)."""
        return math.hypot(other._pos.x - self._pos.x, other._pos.y - self._pos.y) / MM_PER_METER

    def __repr__(self) -> str:
        return f"Waypoint({self._pos.x}, {self._pos.y})"


class Field:
    """Waypoint graph and zones that a robot may navigate."""

    def __init__(self, width: int, height: int, zones: Iterable[Zone] = ()):
        """Initialize the field.

        Args:
            width: Field extent along X (millimeters).
            height: Field extent along Y (millimeters).
            zones: Initial zones.
        """
        self.width = width
        self.height = height
        self._zones: List[Zone] = list(zones)
        self._waypoints: Dict[Point2D, Waypoint] = {}
        self._cache: Dict[Point2D, Waypoint] = {}

    @property
    def size(self) -> tuple:
        """Field extent in meters (x, y)."""
        return self.width / MM_PER_METER, self.height / MM_PER_METER

    @property
    def zones(self) -> tuple:
        return tuple(self._zones)

    @property
    def waypoints(self) -> List[Waypoint]:
        """Waypoints on this field, in insertion order."""
        return list(self._waypoints.values())

    def add_zone(self, zone: Zone) -> bool:
        if zone in self._zones:
            return False
        self._zones.append(zone)
        return True

    def waypoint_at(self, pos: Union[Point2D, PositionLike]) -> Waypoint:
        """Return the waypoint object for a position, creating it on demand.

        Repeated requests for the same position return the same instance. The
        waypoint is not part of the graph until ``add_waypoint`` is called.
        """
        if not isinstance(pos, Point2D):
            pos = Point2D.from_position(pos)
        waypoint = self._cache.get(pos)
        if waypoint is None:
            waypoint = Waypoint(pos)
            self._cache[pos] = waypoint
        return waypoint

    def add_waypoint(self, waypoint: Waypoint) -> None:
        """Add a waypoint to the graph.

        Raises:
            DuplicateWaypointError: If a waypoint at exactly this position exists.
            ObstacleError: If the waypoint lies inside an obstacle or illegal zone.
        """
        if waypoint.pos in self._waypoints:
            raise DuplicateWaypointError(f"Duplicate: {waypoint}")

        containing = [z for z in self._zones if z.contains(waypoint.pos)]
        for zone in containing:
            if zone.mode.forbidden:
                raise ObstacleError(f"{waypoint} lies within {zone.name} zone ({zone.mode.value})")

        waypoint._zones.update(containing)
        self._waypoints[waypoint.pos] = waypoint
        self._cache[waypoint.pos] = waypoint

    def add_connection(self, w1: Waypoint, w2: Waypoint) -> None:
        """Connect two waypoints so ``find_path`` may travel between them.

        Raises:
            SelfConnectionError: If both waypoints are the same.
            ValueError: If either waypoint is not on this field.
            ObstacleError: If the connection crosses an obstacle or illegal zone.
        """
        if w1 is w2 or w1.pos == w2.pos:
            raise SelfConnectionError(f"Connection to self: {w1}")
        for w in (w1, w2):
            if self._waypoints.get(w.pos) is not w:
                raise ValueError(f"{w} is not on this field")

        segment = Segment(w1.pos, w2.pos)
        for zone in self._zones:
            if zone.mode.forbidden and zone.intersects(segment):
                raise ObstacleError(
                    f"Connection {w1} -> {w2} crosses {zone.name} zone ({zone.mode.value})"
                )
        w1._neighbors.add(w2)
        w2._neighbors.add(w1)

    def remove_waypoint(self, waypoint: Waypoint) -> None:
        """Remove a waypoint and disconnect it from all of its neighbors.

        A waypoint at the same position stands for the registered instance.
        """
        waypoint = self._waypoints.pop(waypoint.pos, waypoint)
        if self._cache.get(waypoint.pos) is waypoint:
            del self._cache[waypoint.pos]
        for neighbor in list(waypoint._neighbors):
            neighbor._neighbors.discard(waypoint)
        waypoint._neighbors.clear()
        waypoint._zones.clear()

    def connections(self) -> Set[FrozenSet[Waypoint]]:
        """Every undirected edge of the graph."""
        return {
            frozenset((w, n)) for w in self._waypoints.values() for n in w._neighbors
        }

    def nearest(self, pos: Union[Point2D, PositionLike]) -> Optional[Waypoint]:
        """Return the waypoint closest to a position (Euclidean), or None if empty."""
        if not isinstance(pos, Point2D):
            pos = Point2D.from_position(pos)
        best = None
        best_distance = math.inf
        for waypoint in self._waypoints.values():
            d = math.hypot(waypoint.pos.x - pos.x, waypoint.pos.y - pos.y)
            if d < best_distance:
                best_distance = d
                best = waypoint
        return best

    def find_path(self, start: Waypoint, end: Waypoint) -> List[Waypoint]:
        """Find the shortest path between two waypoints with Dijkstra's algorithm.

        The search runs backwards from ``end`` so that following predecessor
        links from ``start`` yields the path in forward order.

        Args:
            start: Waypoint at which to start.
            end: Waypoint at which to end.

        Returns:
            Waypoints from start to end inclusive.

        Raises:
            NoPathFoundError: If start cannot be reached from end.
        """
        if start is end:
            return [start]

        dist: Dict[Waypoint, float] = {w: math.inf for w in self._waypoints.values()}
        prev: Dict[Waypoint, Waypoint] = {}
        visited: Set[Waypoint] = set()
        dist[end] = 0.0
        # counter breaks distance ties so waypoints are never compared
        counter = itertools.count()
        queue = [(0.0, next(counter), end)]

        while queue:
            d, _, u = heapq.heappop(queue)
            if u in visited:
                continue
            visited.add(u)
            if u is start:
                break
            for v in u._neighbors:
                alt = d + u.distance_to(v)
                if alt < dist.get(v, math.inf):
                    dist[v] = alt
                    prev[v] = u
                    heapq.heappush(queue, (alt, next(counter), v))

        if start not in prev:
            raise NoPathFoundError(f"No path found from {start} to {end}")

        path = [start]
        node = start
        while node is not end:
            node = prev[node]
            path.append(node)
        return path

    def plan_path(self, start: PositionLike, end: PositionLike) -> List[RelativePosition]:
        """Plan the moves that carry the robot from one position to another.

        Both endpoints snap to their nearest waypoints for the graph search; the
        final move goes from the last waypoint to the exact requested end.

        Args:
            start: Current robot position (heading included).
            end: Destination position.

        Returns:
            Relative moves in execution order. Zero-length moves are omitted.

        Raises:
            NoPathFoundError: If the field has no waypoints or no route exists.
        """
        first = self.nearest(start)
        last = self.nearest(end)
        if first is None or last is None:
            raise NoPathFoundError("Field has no waypoints")

        route = self.find_path(first, last)
        logging.debug(f"Route {first} -> {last}: {len(route)} waypoints")

        moves: List[RelativePosition] = []
        cursor = VolatilePosition(start.x, start.y, start.theta)
        for target in [w.position for w in route] + [end]:
            move = RelativePosition.between(cursor, target)
            if move.distance == 0.0:
                continue
            moves.append(move)
            move.apply_in_place(cursor)
        return moves
