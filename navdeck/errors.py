"""Exception taxonomy for the navigation stack.

Field construction errors (degenerate zones, duplicate waypoints, self
connections) are caller errors and propagate. Obstacle and hardware errors are
recoverable at the planner level: an obstacle abandons the affected goal, a
hardware failure keeps the goal for a later retry.
"""


class NavigationError(Exception):
    """Base class for all navigation errors."""


class DuplicateWaypointError(NavigationError):
    """A waypoint at exactly this position is already on the field."""


class ObstacleError(NavigationError):
    """A waypoint, connection or move crosses an obstacle or illegal zone."""


class NoPathFoundError(ObstacleError):
    """The graph search was exhausted without reaching the start waypoint."""


class DegeneratePolygonError(NavigationError, ValueError):
    """A zone polygon is malformed (duplicate vertices or too few of them)."""


class SelfConnectionError(NavigationError, ValueError):
    """A waypoint was connected to itself."""


class RobotHardwareError(NavigationError):
    """The drive could not execute a move on the current hardware."""


class PeripheralError(Exception):
    """Failure reported by a drivetrain or other device collaborator."""


class PeripheralInoperableError(PeripheralError):
    """The device is known to be inoperable."""


class PeripheralCommunicationError(PeripheralError):
    """The device could not be communicated with."""
