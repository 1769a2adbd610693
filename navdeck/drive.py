"""Robot drive: executes relative moves and acts as a dead-reckoning sensor.

The drive is split into two collaborating pieces:
- ``RobotDrive`` owns the estimated pose and the drift accumulated since the
  last external fix. It implements the ``Sensor`` capability by reporting a
  Gaussian likelihood centered on its pose whose spread grows with drift.
- A move executor turns a ``RelativePosition`` into drivetrain commands and
  estimates the drift each move adds. ``ProfiledMoveExecutor`` turns in place
  and then translates; ``HolonomicMoveExecutor`` translates along the travel
  bearing without rotating the chassis.

Both executors drive a trapezoidal velocity profile: ramp up at ``accel``,
hold ``max_speed``, ramp down symmetrically. Moves too short to reach
``max_speed`` fall out as a triangular profile with no hold phase.
"""

import logging
import math
import threading
import time
from dataclasses import dataclass, field, replace
from typing import Callable, List, Optional, Protocol

from .config import (
    DRIVE_ACCEL,
    DRIVE_ANGULAR_DRIFT_PER_METER,
    DRIVE_ANGULAR_DRIFT_PER_RADIAN,
    DRIVE_COMMAND_PERIOD,
    DRIVE_DRIFT_PER_METER,
    DRIVE_MAX_SPEED,
    DRIVE_MIN_ANGULAR_DRIFT,
    DRIVE_MIN_DRIFT,
    DRIVE_ROBOT_WIDTH,
)
from .errors import ObstacleError, PeripheralError, RobotHardwareError
from .position import Position, PositionLike, RelativePosition, normalize_angle


class VelocityDrivetrain(Protocol):
    """Drivetrain collaborator. Every call may raise a ``PeripheralError``."""

    def set_velocity(self, forward_velocity: float) -> None:
        """Drive forward (positive) or backward (negative), in m/s."""
        ...

    def spin_in_place(self, tangential_velocity: float) -> None:
        """Spin in place; right turns positive, tangential m/s at the wheels."""
        ...

    def stop_all(self) -> None:
        ...


class HolonomicDrivetrain(VelocityDrivetrain, Protocol):
    def set_2d_velocity(self, forward_velocity: float, rightward_velocity: float) -> None:
        """Translate without rotating, velocities in the chassis frame (m/s)."""
        ...


@dataclass
class TrapezoidalProfile:
    """Velocity profile covering ``distance`` under acceleration and speed limits.

    Attributes:
        distance: Distance (or turning arc length) to cover (meters, >= 0).
        accel: Acceleration limit (m/s^2).
        max_speed: Speed limit (m/s).
        accel_time: Duration of each ramp (seconds).
        hold_time: Duration at peak speed (seconds, >= 0).
        peak_speed: Highest speed reached (m/s, <= max_speed).
    """

    distance: float
    accel: float
    max_speed: float
    accel_time: float = field(init=False)
    hold_time: float = field(init=False)
    peak_speed: float = field(init=False)

    def __post_init__(self):
        if self.distance < 0:
            raise ValueError(f"Profile distance must be >= 0, got {self.distance}")
        if self.accel <= 0 or self.max_speed <= 0:
            raise ValueError(f"accel and max_speed must be positive, got {self.accel}, {self.max_speed}")
        dist_during_accel = min(0.5 * self.max_speed ** 2 / self.accel, self.distance / 2.0)
        self.accel_time = math.sqrt(2.0 * dist_during_accel / self.accel)
        self.hold_time = (self.distance - 2.0 * dist_during_accel) / self.max_speed
        self.peak_speed = self.accel * self.accel_time

    @property
    def total_time(self) -> float:
        return 2.0 * self.accel_time + self.hold_time

    def speed_at(self, t: float) -> float:
        """Commanded speed t seconds into the profile (m/s)."""
        if t <= 0.0 or t >= self.total_time:
            return 0.0
        if t < self.accel_time:
            return self.accel * t
        if t < self.accel_time + self.hold_time:
            return self.peak_speed
        return self.accel * (self.total_time - t)

    def distance_at(self, t: float) -> float:
        """Distance covered t seconds into the profile (meters)."""
        if t <= 0.0:
            return 0.0
        if t >= self.total_time:
            return self.distance
        if t < self.accel_time:
            return 0.5 * self.accel * t * t
        ramp = 0.5 * self.accel * self.accel_time ** 2
        if t < self.accel_time + self.hold_time:
            return ramp + self.peak_speed * (t - self.accel_time)
        remaining = self.total_time - t
        return self.distance - 0.5 * self.accel * remaining * remaining


class MoveExecutor(Protocol):
    """Device-specific half of the drive."""

    def execute(self, travel: RelativePosition, suppress_obstacles: bool = False) -> None:
        """Perform the move; raises RobotHardwareError or ObstacleError."""
        ...

    def drift(self, travel: RelativePosition) -> float:
        """Linear error (meters) the move is expected to add."""
        ...

    def angular_drift(self, travel: RelativePosition) -> float:
        """Angular error (radians) the move is expected to add."""
        ...

    def estimate_time(self, travel: RelativePosition) -> float:
        """Expected duration of the move (seconds)."""
        ...

    def on_heading_correction(self, delta: float) -> None:
        """The drive's heading estimate was shifted by ``delta`` radians."""
        ...


class ProfiledMoveExecutor:
    """Turn-then-translate execution on a velocity drivetrain."""

    def __init__(
        self,
        drivetrain: VelocityDrivetrain,
        robot_width: float = DRIVE_ROBOT_WIDTH,
        accel: float = DRIVE_ACCEL,
        max_speed: float = DRIVE_MAX_SPEED,
        command_period: float = DRIVE_COMMAND_PERIOD,
        drift_per_meter: float = DRIVE_DRIFT_PER_METER,
        angular_drift_per_radian: float = DRIVE_ANGULAR_DRIFT_PER_RADIAN,
        angular_drift_per_meter: float = DRIVE_ANGULAR_DRIFT_PER_METER,
        collision_probe: Optional[Callable[[], bool]] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize the executor.

        Args:
            drivetrain: Velocity-controlled drivetrain collaborator.
            robot_width: Distance between drive sides (meters).
            accel: Acceleration limit (m/s^2).
            max_speed: Speed limit (m/s).
            command_period: Interval between velocity commands (seconds).
            drift_per_meter: Linear drift added per meter travelled.
            angular_drift_per_radian: Angular drift added per radian turned.
            angular_drift_per_meter: Angular drift added per meter travelled.
            collision_probe: Optional callable returning True on collision.
            clock: Monotonic time source (seconds).
            sleep: Sleep function matching ``clock``.
        """
        self.drivetrain = drivetrain
        self.robot_width = robot_width
        self.accel = accel
        self.max_speed = max_speed
        self.command_period = command_period
        self.drift_per_meter = drift_per_meter
        self.angular_drift_per_radian = angular_drift_per_radian
        self.angular_drift_per_meter = angular_drift_per_meter
        self.collision_probe = collision_probe
        self.clock = clock
        self.sleep = sleep

    def turn_profile(self, travel: RelativePosition) -> TrapezoidalProfile:
        arc = abs(travel.theta) * self.robot_width / 2.0
        return TrapezoidalProfile(arc, self.accel, self.max_speed)

    def translate_profile(self, travel: RelativePosition) -> TrapezoidalProfile:
        return TrapezoidalProfile(travel.distance, self.accel, self.max_speed)

    def execute(self, travel: RelativePosition, suppress_obstacles: bool = False) -> None:
        try:
            if travel.theta != 0.0:
                sign = 1.0 if travel.theta > 0 else -1.0
                self._run_profile(
                    self.turn_profile(travel),
                    lambda v: self.drivetrain.spin_in_place(v * sign),
                    suppress_obstacles,
                )
            if travel.distance > 0.0:
                self._run_profile(
                    self.translate_profile(travel), self.drivetrain.set_velocity, suppress_obstacles
                )
        except PeripheralError as e:
            self._stop_after_failure()
            raise RobotHardwareError(f"Drivetrain failed during {travel}: {e}") from e

    def _run_profile(
        self, profile: TrapezoidalProfile, command: Callable[[float], None], suppress_obstacles: bool
    ) -> None:
        start = self.clock()
        while True:
            elapsed = self.clock() - start
            if elapsed >= profile.total_time:
                break
            command(profile.speed_at(elapsed))
            if not suppress_obstacles and self.collision_probe is not None and self.collision_probe():
                self.drivetrain.stop_all()
                raise ObstacleError(f"Collision after {profile.distance_at(elapsed):.3f}m of {profile.distance:.3f}m")
            self.sleep(self.command_period)
        self.drivetrain.stop_all()

    def _stop_after_failure(self) -> None:
        try:
            self.drivetrain.stop_all()
        except PeripheralError as stop_error:
            logging.error(f"Drivetrain did not stop after failure: {stop_error}")

    def drift(self, travel: RelativePosition) -> float:
        return travel.distance * self.drift_per_meter

    def angular_drift(self, travel: RelativePosition) -> float:
        return (
            abs(travel.theta) * self.angular_drift_per_radian
            + travel.distance * self.angular_drift_per_meter
        )

    def estimate_time(self, travel: RelativePosition) -> float:
        return self.turn_profile(travel).total_time + self.translate_profile(travel).total_time

    def on_heading_correction(self, delta: float) -> None:
        # heading is tracked by the chassis itself
        pass


class HolonomicMoveExecutor(ProfiledMoveExecutor):
    """Translation-only execution on a holonomic drivetrain.

    The chassis never rotates; instead the executor tracks the offset between
    the chassis heading and the heading of the travel frame, and translates
    along the travel bearing expressed in chassis coordinates.
    """

    def __init__(self, drivetrain: HolonomicDrivetrain, **kwargs):
        super().__init__(drivetrain, **kwargs)
        self.frame_offset = 0.0

    def execute(self, travel: RelativePosition, suppress_obstacles: bool = False) -> None:
        offset = normalize_angle(self.frame_offset + travel.theta)
        forward = math.cos(offset)
        rightward = math.sin(offset)
        try:
            if travel.distance > 0.0:
                self._run_profile(
                    self.translate_profile(travel),
                    lambda v: self.drivetrain.set_2d_velocity(v * forward, v * rightward),
                    suppress_obstacles,
                )
        except PeripheralError as e:
            self._stop_after_failure()
            raise RobotHardwareError(f"Drivetrain failed during {travel}: {e}") from e
        self.frame_offset = offset

    def angular_drift(self, travel: RelativePosition) -> float:
        return travel.distance * self.angular_drift_per_meter

    def estimate_time(self, travel: RelativePosition) -> float:
        return self.translate_profile(travel).total_time

    def on_heading_correction(self, delta: float) -> None:
        """Keep the chassis bearing consistent with a corrected heading estimate.

        ``frame_offset`` is the chassis heading minus the estimated travel
        heading, so shifting the estimate by ``delta`` shifts the offset back
        by the same amount.
        """
        self.frame_offset = normalize_angle(self.frame_offset - delta)


@dataclass
class DriveState:
    """Estimated pose and accumulated uncertainty of a drive."""

    position: Position
    collected_drift: float = 0.0
    collected_angular_drift: float = 0.0
    weight: float = 1.0


class RobotDrive:
    """Moves the robot and reports dead-reckoning likelihoods.

    All state reads and writes go through a single lock, so the planner thread
    and any concurrent sensor consumer see consistent poses.
    """

    def __init__(
        self,
        start: PositionLike,
        executor: MoveExecutor,
        min_drift: float = DRIVE_MIN_DRIFT,
        min_angular_drift: float = DRIVE_MIN_ANGULAR_DRIFT,
    ):
        self._state = DriveState(start.materialize())
        self._executor = executor
        self._lock = threading.Lock()
        self.min_drift = min_drift
        self.min_angular_drift = min_angular_drift

    @property
    def executor(self) -> MoveExecutor:
        return self._executor

    @property
    def state(self) -> DriveState:
        """Snapshot of the drive state."""
        with self._lock:
            return replace(self._state)

    @property
    def position(self) -> Position:
        with self._lock:
            return self._state.position

    @property
    def collected_drift(self) -> float:
        with self._lock:
            return self._state.collected_drift

    @property
    def collected_angular_drift(self) -> float:
        with self._lock:
            return self._state.collected_angular_drift

    @property
    def confidence(self) -> float:
        with self._lock:
            return self._state.weight

    def move(self, travel: RelativePosition, suppress_obstacles: bool = False) -> Position:
        """Operate the drivetrain to perform a relative move.

        Args:
            travel: The relative move to perform.
            suppress_obstacles: Ignore collisions and complete the move.

        Returns:
            The new estimated position.

        Raises:
            RobotHardwareError: Hardware is inoperable or cannot perform the move.
            ObstacleError: An obstacle was hit during the move.
        """
        try:
            self._executor.execute(travel, suppress_obstacles)
        except (RobotHardwareError, ObstacleError):
            with self._lock:
                self._state.weight = 0.0
            raise

        drift = self._executor.drift(travel)
        angular_drift = self._executor.angular_drift(travel)
        with self._lock:
            self._state.collected_drift += drift
            self._state.collected_angular_drift += angular_drift
            self._state.position = travel.apply(self._state.position)
            return self._state.position

    def move_all(self, moves: List[RelativePosition], suppress_obstacles: bool = False) -> Position:
        """Perform moves in sequence, stopping at the first failure."""
        position = self.position
        for travel in moves:
            position = self.move(travel, suppress_obstacles)
        return position

    def calculate_time(self, travel: RelativePosition) -> float:
        """Estimated duration of a move (seconds)."""
        return self._executor.estimate_time(travel)

    # ------------------------------------------------------------------
    # Sensor capability
    # ------------------------------------------------------------------

    def _gaussian(self, state: DriveState, x: float, y: float, theta: Optional[float] = None) -> float:
        sigma = max(state.collected_drift, self.min_drift)
        dx = x - state.position.x
        dy = y - state.position.y
        exponent = (dx * dx + dy * dy) / (2.0 * sigma * sigma)
        if theta is not None:
            angular_sigma = max(state.collected_angular_drift, self.min_angular_drift)
            dtheta = normalize_angle(theta - state.position.theta)
            exponent += dtheta * dtheta / (2.0 * angular_sigma * angular_sigma)
        return math.exp(-exponent)

    def likelihood(self, x: float, y: float) -> float:
        with self._lock:
            return self._gaussian(self._state, x, y)

    def orientation_likelihood(self, x: float, y: float, theta: float) -> float:
        with self._lock:
            return self._gaussian(self._state, x, y, theta)

    def weight(self, x: float, y: float) -> float:
        with self._lock:
            return self._state.weight

    def hotspots(self) -> List[Position]:
        return [self.position]

    def notify_error(self, x: float, y: float, theta: float, agreed_weight: float) -> None:
        """Blend an externally agreed position into the dead-reckoning estimate.

        The agreed position is weighted by ``agreed_weight`` against the drive's
        own confidence. Drift shrinks by the share the drive's own estimate
        kept. With no weight on either side the agreed position is taken
        outright and confidence resets to 1. Any heading change is passed on to
        the executor.
        """
        with self._lock:
            state = self._state
            current = state.position
            total = state.weight + agreed_weight
            if not total > 0.0:
                state.position = Position(x, y, normalize_angle(theta))
                state.weight = 1.0
            else:
                share = agreed_weight / total
                state.position = Position(
                    current.x + (x - current.x) * share,
                    current.y + (y - current.y) * share,
                    normalize_angle(current.theta + normalize_angle(theta - current.theta) * share),
                )
                retained = state.weight / total
                state.collected_drift *= retained
                state.collected_angular_drift *= retained
                state.weight = (state.weight + agreed_weight) / 2.0
            delta = normalize_angle(state.position.theta - current.theta)
        if delta != 0.0:
            self._executor.on_heading_correction(delta)
