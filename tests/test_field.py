"""Tests for zones, the waypoint graph and path planning."""

import math
import random

import pytest

from navdeck.errors import (
    DegeneratePolygonError,
    DuplicateWaypointError,
    NoPathFoundError,
    ObstacleError,
    SelfConnectionError,
)
from navdeck.field import Field, Waypoint, Zone, ZoneMode
from navdeck.geometry import IntersectionKind, Point2D, Segment, segments_intersect
from navdeck.position import Position
from navdeck.simulation import demo_field


def square(x0, y0, x1, y1):
    return [Point2D(x0, y0), Point2D(x1, y0), Point2D(x1, y1), Point2D(x0, y1)]


def add(field, x, y):
    waypoint = field.waypoint_at(Point2D(x, y))
    field.add_waypoint(waypoint)
    return waypoint


def path_cost(path):
    return sum(a.distance_to(b) for a, b in zip(path, path[1:]))


class TestZone:
    def test_too_few_vertices(self):
        with pytest.raises(DegeneratePolygonError):
            Zone(ZoneMode.OBSTACLE, [Point2D(0, 0), Point2D(1, 1)])

    def test_duplicate_vertices(self):
        with pytest.raises(DegeneratePolygonError):
            Zone(ZoneMode.OBSTACLE, [Point2D(0, 0), Point2D(1, 0), Point2D(0, 0), Point2D(0, 1)])

    def test_degenerate_is_value_error(self):
        with pytest.raises(ValueError):
            Zone(ZoneMode.COMMON, [])

    def test_contains(self):
        zone = Zone(ZoneMode.OBSTACLE, square(0, 0, 100, 100))
        assert zone.contains(Point2D(50, 50))
        assert not zone.contains(Point2D(150, 50))

    def test_forbidden_modes(self):
        assert ZoneMode.OBSTACLE.forbidden
        assert ZoneMode.ILLEGAL.forbidden
        assert not ZoneMode.ALLIANCE.forbidden


class TestWaypoints:
    def test_cache_returns_same_instance(self):
        field = Field(1000, 1000)
        assert field.waypoint_at(Point2D(10, 20)) is field.waypoint_at(Point2D(10, 20))
        assert field.waypoint_at(Position(0.01, 0.02)) is field.waypoint_at(Point2D(10, 20))

    def test_caches_are_per_field(self):
        assert Field(10, 10).waypoint_at(Point2D(1, 1)) is not Field(10, 10).waypoint_at(Point2D(1, 1))

    def test_duplicate_rejected(self):
        field = Field(1000, 1000)
        add(field, 100, 100)
        with pytest.raises(DuplicateWaypointError):
            field.add_waypoint(field.waypoint_at(Point2D(100, 100)))
        assert len(field.waypoints) == 1

    @pytest.mark.parametrize("mode", [ZoneMode.OBSTACLE, ZoneMode.ILLEGAL])
    def test_forbidden_zone_rejects_waypoint(self, mode):
        common = Zone(ZoneMode.COMMON, square(0, 0, 1000, 1000))
        field = Field(1000, 1000, [common, Zone(mode, square(0, 0, 100, 100))])
        waypoint = field.waypoint_at(Point2D(50, 50))
        with pytest.raises(ObstacleError):
            field.add_waypoint(waypoint)
        assert field.waypoints == []
        assert waypoint.zones == frozenset()

    def test_zones_tagged(self):
        alliance = Zone(ZoneMode.ALLIANCE, square(0, 0, 500, 500), name="red")
        field = Field(1000, 1000, [alliance])
        inside = add(field, 100, 100)
        outside = add(field, 800, 800)
        assert inside.zones == {alliance}
        assert outside.zones == frozenset()

    def test_position_in_meters(self):
        field = Field(1000, 1000)
        waypoint = add(field, 250, 750)
        assert waypoint.position == Position(0.25, 0.75)


class TestConnections:
    def test_connection_is_symmetric(self):
        field = Field(1000, 1000)
        a, b = add(field, 0, 0), add(field, 100, 0)
        field.add_connection(a, b)
        assert b in a.neighbors and a in b.neighbors
        assert field.connections() == {frozenset((a, b))}

    def test_obstacle_crossing_rejected(self):
        field = Field(1000, 1000, [Zone(ZoneMode.OBSTACLE, square(100, 100, 200, 200))])
        a, b, c = add(field, 50, 150), add(field, 250, 150), add(field, 50, 300)
        field.add_connection(a, c)
        before = field.connections()
        with pytest.raises(ObstacleError):
            field.add_connection(a, b)
        assert field.connections() == before
        assert b not in a.neighbors

    def test_touching_a_corner_is_rejected(self):
        field = Field(1000, 1000, [Zone(ZoneMode.ILLEGAL, square(100, 100, 200, 200))])
        a, b = add(field, 100, 300), add(field, 300, 100)
        with pytest.raises(ObstacleError):
            field.add_connection(a, b)

    def test_running_along_an_edge_is_rejected(self):
        field = Field(1000, 1000, [Zone(ZoneMode.OBSTACLE, square(100, 100, 200, 200))])
        a, b = add(field, 0, 200), add(field, 300, 200)
        with pytest.raises(ObstacleError):
            field.add_connection(a, b)

    def test_passing_clear_is_allowed(self):
        field = Field(1000, 1000, [Zone(ZoneMode.OBSTACLE, square(100, 100, 200, 200))])
        a, b = add(field, 0, 201), add(field, 300, 201)
        field.add_connection(a, b)
        assert b in a.neighbors

    def test_common_zone_allows_crossing(self):
        field = Field(1000, 1000, [Zone(ZoneMode.PERSONAL, square(100, 100, 200, 200))])
        a, b = add(field, 50, 150), add(field, 250, 150)
        field.add_connection(a, b)
        assert b in a.neighbors

    def test_self_connection(self):
        field = Field(1000, 1000)
        a = add(field, 10, 10)
        with pytest.raises(SelfConnectionError):
            field.add_connection(a, a)

    def test_waypoint_not_on_field(self):
        field = Field(1000, 1000)
        a = add(field, 10, 10)
        stray = field.waypoint_at(Point2D(20, 20))
        with pytest.raises(ValueError):
            field.add_connection(a, stray)

    def test_remove_waypoint(self):
        field = Field(1000, 1000)
        a, b, c = add(field, 0, 0), add(field, 100, 0), add(field, 200, 0)
        field.add_connection(a, b)
        field.add_connection(b, c)
        field.remove_waypoint(b)
        assert a.neighbors == frozenset() and c.neighbors == frozenset()
        assert b not in field.waypoints
        with pytest.raises(NoPathFoundError):
            field.find_path(a, c)
        # the position can be reused afterwards
        add(field, 100, 0)

    def test_remove_waypoint_by_position(self):
        field = Field(1000, 1000)
        a, b = add(field, 0, 0), add(field, 100, 0)
        field.add_connection(a, b)
        field.remove_waypoint(Waypoint(Point2D(100, 0)))
        assert field.waypoints == [a]
        assert a.neighbors == frozenset() and b.neighbors == frozenset()
        with pytest.raises(NoPathFoundError):
            field.find_path(a, b)
        assert field.waypoint_at(Point2D(100, 0)) is not b


class TestFindPath:
    def test_same_waypoint(self):
        field = Field(1000, 1000)
        a = add(field, 0, 0)
        assert field.find_path(a, a) == [a]

    def test_prefers_shorter_route(self):
        field = Field(1000, 1000)
        a, b, c, d = add(field, 0, 0), add(field, 500, 50), add(field, 1000, 0), add(field, 500, 900)
        for u, v in ((a, b), (b, c), (a, d), (d, c)):
            field.add_connection(u, v)
        assert field.find_path(a, c) == [a, b, c]

    def test_disconnected(self):
        field = Field(1000, 1000)
        a, b = add(field, 0, 0), add(field, 100, 0)
        with pytest.raises(NoPathFoundError):
            field.find_path(a, b)

    def test_no_path_is_an_obstacle(self):
        assert issubclass(NoPathFoundError, ObstacleError)

    @pytest.mark.parametrize("seed", range(8))
    def test_matches_floyd_warshall(self, seed):
        rng = random.Random(seed)
        field = Field(10_000, 10_000)
        count = rng.randint(2, 20)
        points = set()
        while len(points) < count:
            points.add((rng.randrange(10_000), rng.randrange(10_000)))
        nodes = [add(field, x, y) for x, y in sorted(points)]
        n = len(nodes)
        dist = [[0.0 if i == j else math.inf for j in range(n)] for i in range(n)]
        for i in range(n):
            for j in range(i + 1, n):
                if rng.random() < 0.25:
                    field.add_connection(nodes[i], nodes[j])
                    dist[i][j] = dist[j][i] = nodes[i].distance_to(nodes[j])
        for k in range(n):
            for i in range(n):
                for j in range(n):
                    if dist[i][k] + dist[k][j] < dist[i][j]:
                        dist[i][j] = dist[i][k] + dist[k][j]

        for i in range(n):
            for j in range(n):
                if math.isinf(dist[i][j]):
                    with pytest.raises(NoPathFoundError):
                        field.find_path(nodes[i], nodes[j])
                    continue
                path = field.find_path(nodes[i], nodes[j])
                assert path[0] is nodes[i] and path[-1] is nodes[j]
                for u, v in zip(path, path[1:]):
                    assert v in u.neighbors
                assert path_cost(path) == pytest.approx(dist[i][j], rel=1e-9, abs=1e-9)


class TestPlanPath:
    def test_empty_field(self):
        with pytest.raises(NoPathFoundError):
            Field(1000, 1000).plan_path(Position(0, 0), Position(0.5, 0.5))

    def test_moves_reach_exact_end(self, grid_field):
        field, _ = grid_field
        start = Position(0.45, 0.55, 1.0)
        end = Position(2.4, 1.93)
        position = start
        moves = field.plan_path(start, end)
        for move in moves:
            assert move.distance > 0
            position = move.apply(position)
        assert position.x == pytest.approx(end.x, abs=1e-9)
        assert position.y == pytest.approx(end.y, abs=1e-9)

    def test_already_there(self, grid_field):
        field, grid = grid_field
        here = grid[(2, 2)].position
        assert field.plan_path(here, here) == []


class TestDemoScenario:
    def test_route_between_bands(self):
        field, grid = demo_field()
        start, end = grid[(1, 3)], grid[(16, 11)]

        path = field.find_path(start, end)
        assert path[0] is start and path[-1] is end
        for waypoint in path:
            assert not any(zone.contains(waypoint.pos) for zone in field.zones)
        for u, v in zip(path, path[1:]):
            for zone in field.zones:
                assert not zone.intersects(Segment(u.pos, v.pos))

        origin = Position(start.position.x, start.position.y, math.pi / 2)
        position = origin
        moves = field.plan_path(origin, end.position)
        assert moves
        for move in moves:
            position = move.apply(position)
        assert math.hypot(position.x - end.position.x, position.y - end.position.y) < 1e-3

    def test_bands_block_straight_line(self):
        field, grid = demo_field()
        line = Segment(grid[(1, 3)].pos, grid[(16, 11)].pos)
        assert any(
            segments_intersect(line, Segment(z.vertices[i], z.vertices[(i + 1) % len(z.vertices)]))
            != IntersectionKind.DISJOINT
            for z in field.zones
            for i in range(len(z.vertices))
        )
