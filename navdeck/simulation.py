"""Simulation harness for running the navigation stack without hardware.

Provides:
- A virtual clock so profiled moves run instantly in tests and demos
- A simulated drivetrain that integrates velocity commands into a true pose
- A beacon that reports noisy fixes whenever the robot comes to rest
- Grid field construction and the demo field with two obstacle bands
- A simple point goal and the wiring of the complete demo mission
"""

import logging
import math
import threading
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Type

import numpy as np

from .config import (
    DEMO_FIELD_SIZE,
    DEMO_FIX_NOISE,
    DEMO_FIX_SIGMA,
    DEMO_FIX_THETA_SIGMA,
    DEMO_GRID_COUNT,
    DEMO_GRID_OFFSET,
    DEMO_GRID_SPACING,
    DEMO_MIN_CORRELATION,
    DEMO_OBSTACLE_BANDS,
    DEMO_SPEED_NOISE,
    DEMO_START,
    DRIVE_ROBOT_WIDTH,
    MM_PER_METER,
)
from .data_collector import DataCollector
from .drive import ProfiledMoveExecutor, RobotDrive
from .errors import ObstacleError, PeripheralCommunicationError, PeripheralError
from .field import Field, Waypoint, Zone, ZoneMode
from .geometry import Point2D
from .integrator import PositionIntegrator
from .planner import Goal, GoalPlanner
from .position import Position, PositionLike, normalize_angle
from .sensors import PointFixSensor

GridIndex = Tuple[int, int]


class VirtualClock:
    """Manually advanced clock; ``sleep`` moves time forward instead of blocking."""

    def __init__(self, start: float = 0.0):
        self._now = start
        self._lock = threading.Lock()

    def now(self) -> float:
        with self._lock:
            return self._now

    def sleep(self, seconds: float) -> None:
        with self._lock:
            self._now += max(seconds, 0.0)


class SimulatedDrivetrain:
    """Velocity and holonomic drivetrain that integrates commands into a pose.

    Commands hold until the next command, so the pose at any instant is the
    integral of the piecewise-constant command history up to ``clock()``.
    """

    def __init__(
        self,
        clock: Callable[[], float],
        start: PositionLike,
        robot_width: float = DRIVE_ROBOT_WIDTH,
        speed_noise: float = 0.0,
        rng: Optional[np.random.Generator] = None,
    ):
        """Initialize the drivetrain.

        Args:
            clock: Time source shared with the move executor.
            start: True starting pose.
            robot_width: Distance between drive sides (meters).
            speed_noise: Relative 1-sigma error applied to each command.
            rng: Random generator for speed noise.
        """
        self.clock = clock
        self.robot_width = robot_width
        self.speed_noise = speed_noise
        self.rng = rng if rng is not None else np.random.default_rng()
        self._x = start.x
        self._y = start.y
        self._theta = start.theta
        # forward (m/s), rightward (m/s), counterclockwise rate (rad/s)
        self._command = (0.0, 0.0, 0.0)
        self._last = clock()
        self._lock = threading.Lock()
        self._fail_in: Optional[int] = None
        self._fail_error: Type[PeripheralError] = PeripheralCommunicationError
        self._listeners: List[Callable[[Position], None]] = []
        self.commands = 0

    @property
    def pose(self) -> Position:
        with self._lock:
            self._advance()
            return Position(self._x, self._y, normalize_angle(self._theta))

    @property
    def moving(self) -> bool:
        return self._command != (0.0, 0.0, 0.0)

    def add_listener(self, callback: Callable[[Position], None]) -> None:
        """Call ``callback(pose)`` every time the drivetrain stops."""
        self._listeners.append(callback)

    def schedule_failure(self, after: int = 0, error: Type[PeripheralError] = PeripheralCommunicationError) -> None:
        """Make the motion command following ``after`` successful ones raise ``error`` once."""
        with self._lock:
            self._fail_in = after
            self._fail_error = error

    def _advance(self) -> None:
        now = self.clock()
        dt = now - self._last
        self._last = now
        if dt <= 0.0:
            return
        forward, rightward, omega = self._command
        self._theta += omega * dt
        cos_t = math.cos(self._theta)
        sin_t = math.sin(self._theta)
        self._x += (forward * cos_t + rightward * sin_t) * dt
        self._y += (forward * sin_t - rightward * cos_t) * dt

    def _send(self, forward: float, rightward: float, omega: float) -> None:
        with self._lock:
            self._advance()
            if self._fail_in is not None:
                if self._fail_in <= 0:
                    self._fail_in = None
                    raise self._fail_error("Simulated drivetrain fault")
                self._fail_in -= 1
            scale = 1.0 + self.rng.normal(0.0, self.speed_noise) if self.speed_noise > 0 else 1.0
            self._command = (forward * scale, rightward * scale, omega * scale)
            self.commands += 1

    def set_velocity(self, forward_velocity: float) -> None:
        self._send(forward_velocity, 0.0, 0.0)

    def spin_in_place(self, tangential_velocity: float) -> None:
        # right turns positive, i.e. clockwise
        self._send(0.0, 0.0, -2.0 * tangential_velocity / self.robot_width)

    def set_2d_velocity(self, forward_velocity: float, rightward_velocity: float) -> None:
        self._send(forward_velocity, rightward_velocity, 0.0)

    def stop_all(self) -> None:
        with self._lock:
            self._advance()
            self._command = (0.0, 0.0, 0.0)
            pose = Position(self._x, self._y, normalize_angle(self._theta))
        for callback in self._listeners:
            callback(pose)


class SimulatedBeacon:
    """Feeds noisy fixes of the true pose into a ``PointFixSensor``."""

    def __init__(
        self,
        sensor: PointFixSensor,
        noise: float = DEMO_FIX_NOISE,
        theta_noise: float = 0.02,
        rng: Optional[np.random.Generator] = None,
    ):
        self.sensor = sensor
        self.noise = noise
        self.theta_noise = theta_noise
        self.rng = rng if rng is not None else np.random.default_rng()
        self.readings = 0

    def __call__(self, pose: Position) -> None:
        dx, dy = self.rng.normal(0.0, self.noise, size=2)
        dtheta = self.rng.normal(0.0, self.theta_noise)
        self.sensor.update(pose.x + float(dx), pose.y + float(dy), pose.theta + float(dtheta))
        self.readings += 1


def build_grid_field(
    field: Field, count: int, spacing: int, offset: int = 0
) -> Dict[GridIndex, Waypoint]:
    """Add a count x count grid of 8-connected waypoints to a field.

    Waypoints inside forbidden zones and connections crossing them are
    skipped.

    Args:
        field: Field to populate.
        count: Waypoints per side.
        spacing: Distance between neighboring waypoints (millimeters).
        offset: Position of the first waypoint on both axes (millimeters).

    Returns:
        Mapping from (column, row) to each waypoint that was added.
    """
    grid: Dict[GridIndex, Waypoint] = {}
    for i in range(count):
        for j in range(count):
            waypoint = field.waypoint_at(Point2D(offset + i * spacing, offset + j * spacing))
            try:
                field.add_waypoint(waypoint)
            except ObstacleError:
                continue
            grid[(i, j)] = waypoint

    skipped = 0
    for (i, j), waypoint in grid.items():
        for di, dj in ((1, 0), (0, 1), (1, 1), (1, -1)):
            neighbor = grid.get((i + di, j + dj))
            if neighbor is None:
                continue
            try:
                field.add_connection(waypoint, neighbor)
            except ObstacleError:
                skipped += 1
    logging.debug(f"Grid field: {len(grid)} waypoints, {skipped} connections blocked")
    return grid


def demo_field(
    bands: Sequence[Sequence[Tuple[int, int]]] = DEMO_OBSTACLE_BANDS,
) -> Tuple[Field, Dict[GridIndex, Waypoint]]:
    """Build the demo field: a square grid interrupted by obstacle bands."""
    size = int(DEMO_FIELD_SIZE * MM_PER_METER)
    zones = [
        Zone(ZoneMode.OBSTACLE, [Point2D(x, y) for x, y in band], name=f"band{i}")
        for i, band in enumerate(bands)
    ]
    field = Field(size, size, zones)
    grid = build_grid_field(field, DEMO_GRID_COUNT, DEMO_GRID_SPACING, DEMO_GRID_OFFSET)
    return field, grid


class PointGoal(Goal):
    """Goal with a fixed benefit that is done after one visit."""

    def __init__(self, location: PositionLike, benefit: float = 1.0, name: str = ""):
        super().__init__(location, name)
        self.value = benefit
        self.visits: List[Position] = []

    def benefit(self, state, planner) -> float:
        return self.value

    def act(self, position: Position, state, planner) -> None:
        self.visits.append(position)
        planner.remove_goal(self)


def random_goals(
    grid: Dict[GridIndex, Waypoint],
    count: int,
    rng: np.random.Generator,
    exclude: Sequence[GridIndex] = (),
) -> List[PointGoal]:
    """Place goals on distinct random grid waypoints."""
    cells = sorted(c for c in grid if c not in set(exclude))
    count = min(count, len(cells))
    picks = rng.choice(len(cells), size=count, replace=False)
    goals = []
    for n, k in enumerate(picks):
        cell = cells[int(k)]
        benefit = float(rng.uniform(0.5, 1.5))
        goals.append(PointGoal(grid[cell].position, benefit, name=f"goal{n}[{cell[0]},{cell[1]}]"))
    return goals


@dataclass
class Mission:
    """Everything the demo mission wires together."""

    field: Field
    grid: Dict[GridIndex, Waypoint]
    drivetrain: SimulatedDrivetrain
    drive: RobotDrive
    beacon: SimulatedBeacon
    integrator: PositionIntegrator
    planner: GoalPlanner
    goals: List[PointGoal]


def build_demo_mission(
    seed: Optional[int] = None,
    goal_count: int = 4,
    clock: Optional[Callable[[], float]] = None,
    sleep: Optional[Callable[[float], None]] = None,
    data_collector: Optional[DataCollector] = None,
    **integrator_options,
) -> Mission:
    """Wire a simulated robot onto the demo field.

    Without ``clock``/``sleep`` the mission runs on a fresh ``VirtualClock``.
    """
    rng = np.random.default_rng(seed)
    if clock is None or sleep is None:
        virtual = VirtualClock()
        clock, sleep = virtual.now, virtual.sleep

    field_map, grid = demo_field()
    start = Position(*DEMO_START)
    drivetrain = SimulatedDrivetrain(clock, start, speed_noise=DEMO_SPEED_NOISE, rng=rng)
    executor = ProfiledMoveExecutor(drivetrain, clock=clock, sleep=sleep)
    drive = RobotDrive(start, executor)

    fix = PointFixSensor(sigma=DEMO_FIX_SIGMA, theta_sigma=DEMO_FIX_THETA_SIGMA)
    beacon = SimulatedBeacon(fix, rng=rng)
    drivetrain.add_listener(beacon)
    beacon(start)

    width, height = field_map.size
    integrator_options.setdefault("island_min_absolute", DEMO_MIN_CORRELATION)
    integrator = PositionIntegrator([drive, fix], width, height, **integrator_options)
    planner = GoalPlanner(
        None,
        drive,
        integrator,
        field_map,
        min_correlation=DEMO_MIN_CORRELATION,
        data_collector=data_collector,
        clock=clock,
    )

    start_cell = min(grid, key=lambda c: grid[c].position.distance_to(start))
    goals = random_goals(grid, goal_count, rng, exclude=[start_cell])
    for goal in goals:
        planner.add_goal(goal)
    return Mission(field_map, grid, drivetrain, drive, beacon, integrator, planner, goals)
