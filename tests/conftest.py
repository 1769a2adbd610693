"""Shared fixtures and fakes for the navdeck test suite."""

import math

import pytest

from navdeck.drive import RobotDrive
from navdeck.field import Field
from navdeck.position import Position
from navdeck.sensor import LocationCandidate
from navdeck.simulation import VirtualClock, build_grid_field


class FakeExecutor:
    """Instant executor with scripted failures.

    ``failures`` entries are consumed one per move; ``None`` lets the move
    succeed.
    """

    def __init__(self, drift_per_meter=0.02, angular_drift_per_radian=0.03):
        self.drift_per_meter = drift_per_meter
        self.angular_drift_per_radian = angular_drift_per_radian
        self.executed = []
        self.failures = []
        self.heading_corrections = []

    def execute(self, travel, suppress_obstacles=False):
        if self.failures:
            failure = self.failures.pop(0)
            if failure is not None:
                raise failure
        self.executed.append(travel)

    def drift(self, travel):
        return travel.distance * self.drift_per_meter

    def angular_drift(self, travel):
        return abs(travel.theta) * self.angular_drift_per_radian

    def estimate_time(self, travel):
        return travel.distance + abs(travel.theta)

    def on_heading_correction(self, delta):
        self.heading_corrections.append(delta)


class FakeIntegrator:
    """Localizes at the drive's own estimate unless told otherwise.

    ``script`` entries are consumed one per call; ``None`` means no candidate.
    """

    def __init__(self, drive):
        self.drive = drive
        self.script = []
        self.calls = 0

    def localize(self, min_correlation):
        self.calls += 1
        if self.script:
            result = self.script.pop(0)
            if result is None:
                return None
            return LocationCandidate(result, 1.0)
        return LocationCandidate(self.drive.position, 1.0)


class RecordingSensor:
    """Zero-weight sensor that records consensus feedback."""

    def __init__(self):
        self.notifications = []

    def likelihood(self, x, y):
        return 0.0

    def orientation_likelihood(self, x, y, theta):
        return 0.0

    def weight(self, x, y):
        return 0.0

    def hotspots(self):
        return []

    def notify_error(self, x, y, theta, agreed_weight):
        self.notifications.append((x, y, theta, agreed_weight))


@pytest.fixture
def clock():
    return VirtualClock()


@pytest.fixture
def executor():
    return FakeExecutor()


@pytest.fixture
def drive(executor):
    return RobotDrive(Position(0.5, 0.5, math.pi / 2), executor)


@pytest.fixture
def grid_field():
    """3 x 3 m field with a 5 x 5 waypoint grid from 0.5 m to 2.5 m."""
    field = Field(3000, 3000)
    grid = build_grid_field(field, 5, 500, 500)
    return field, grid


@pytest.fixture
def fake_integrator(drive):
    return FakeIntegrator(drive)


@pytest.fixture
def recording_sensor():
    return RecordingSensor()
