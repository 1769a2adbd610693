"""navdeck - Goal-Driven Navigation for Mobile Robots

A navigation core that repeatedly picks the most valuable goal, works out where
the robot is, plans a collision-free route across the field and drives it.

## Architecture Overview

The system is organised as four layers feeding a planner loop:

### Layer 1: Geometry (geometry.py, position.py)
Exact integer-millimeter geometry and the robot position types.
- Orientation tests, segment intersection, winding-number containment
- Immutable and in-place (volatile) positions, robot-relative moves

### Layer 2: Field Graph (field.py)
Polygonal zones and a waypoint graph with obstacle-aware insertion.
- Waypoints inside obstacle / illegal zones are rejected
- Connections crossing them are rejected
- Dijkstra shortest path, converted into relative moves

### Layer 3: Localization (integrator.py, sensor.py, sensors.py)
Fuses likelihood sources with a coarse-to-fine grid correlation search.
- Weighted sensor average, zero-weight sensors excluded
- Hotspot and island-growth fine search
- Heading resolution and consensus feedback to every sensor

### Layer 4: Drive (drive.py)
Executes moves on a drivetrain with trapezoidal velocity profiles.
- Turn-then-translate or holonomic execution
- Dead-reckoning drift model, reported as a Gaussian likelihood
- Blends external fixes back into its own estimate

### Planner (planner.py)
IDLE -> SELECTING -> LOCALIZING -> PATHING -> EXECUTING -> ACTING, on a
worker thread or one step at a time. Unreachable goals are evicted, hardware
failures are retried.

## Modules

- `config.py` - Centralized configuration parameters with documentation
- `errors.py` - Exception taxonomy
- `data_collector.py` - CSV logging of fixes, moves and goal outcomes
- `simulation.py` - Virtual clock, simulated drivetrain, demo field and mission
- `cli.py` - Command-line demo mission

## Quick Start

```bash
python -m navdeck --goals 5 --seed 7
```

Or from Python:
```python
from navdeck.simulation import build_demo_mission

mission = build_demo_mission(seed=7, goal_count=3)
while mission.planner.goals:
    print(mission.planner.step())
```

## Version

0.1.0 - Initial implementation
"""

__version__ = "0.1.0"

# Export key classes for convenience
from .data_collector import DataCollector
from .drive import HolonomicMoveExecutor, ProfiledMoveExecutor, RobotDrive, TrapezoidalProfile
from .errors import (
    DegeneratePolygonError,
    DuplicateWaypointError,
    NavigationError,
    NoPathFoundError,
    ObstacleError,
    RobotHardwareError,
    SelfConnectionError,
)
from .field import Field, Waypoint, Zone, ZoneMode
from .geometry import Point2D, Segment
from .integrator import PositionIntegrator
from .planner import Goal, GoalOutcome, GoalPlanner, PlannerState
from .position import Position, RelativePosition, VolatilePosition
from .sensor import LocationCandidate, Sensor

__all__ = [
    "Point2D",
    "Segment",
    "Position",
    "VolatilePosition",
    "RelativePosition",
    "Zone",
    "ZoneMode",
    "Waypoint",
    "Field",
    "Sensor",
    "LocationCandidate",
    "PositionIntegrator",
    "TrapezoidalProfile",
    "ProfiledMoveExecutor",
    "HolonomicMoveExecutor",
    "RobotDrive",
    "Goal",
    "GoalPlanner",
    "GoalOutcome",
    "PlannerState",
    "DataCollector",
    "NavigationError",
    "DuplicateWaypointError",
    "ObstacleError",
    "NoPathFoundError",
    "DegeneratePolygonError",
    "SelfConnectionError",
    "RobotHardwareError",
]
