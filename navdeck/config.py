"""Configuration parameters for the navigation stack.

This module centralizes all configuration parameters including:
- Field geometry units
- Position integrator search grid and island thresholds
- Robot drive limits and drift model
- Goal planner localization and backoff settings
- Simulation / demo mission settings

Components read their defaults from here; every constructor also accepts the
same values as keyword arguments so a single instance can be tuned in place.
"""

import math

# ============================================================================
# Field Geometry
# ============================================================================

MM_PER_METER = 1000
"""Fixed-point scale of zone and waypoint coordinates (integer millimeters)."""

# ============================================================================
# Position Integrator (coarse-to-fine correlation search)
# ============================================================================

INTEGRATOR_COARSE_STEP = 0.10
"""Coarse grid step (meters).

Every coarse cell is evaluated on every pass, so halving this value roughly
quadruples the cost of a pass. 0.10 m matches the accuracy of the drive model.
"""

INTEGRATOR_FINE_SUBDIVISIONS = 5
"""Fine sub-grid size per coarse cell (N x N, must be odd).

Odd so that the center sub-point coincides with the coarse sample point.
5 gives a fine resolution of 0.02 m with the default coarse step.
"""

INTEGRATOR_FINE_SEARCH_MAX_DEPTH = 2
"""Maximum number of neighbor expansions from a seed cell during island growth."""

INTEGRATOR_MIN_SNR = 5.0
"""Minimum ratio of a cell's value to the grid (or neighbor) average.

Cells above average * MIN_SNR are fine-searched, and candidate peaks must beat
MIN_SNR * neighbor average unless they clear INTEGRATOR_ISLAND_MIN_ABSOLUTE.
"""

INTEGRATOR_ISLAND_MIN_ABSOLUTE = 0.95
"""Absolute correlation above which a cell is always fine-searched (range: [0, 1])."""

INTEGRATOR_ISLAND_REMAIN_STRENGTH = 0.75
"""Correlation a fine search must reach to keep expanding into neighbor cells (range: [0, 1])."""

INTEGRATOR_ORIENTATION_STEPS = 72
"""Number of headings sampled over the full circle when resolving orientation.

72 samples = 5 degree coarse resolution, refined afterwards around the best sample.
"""

INTEGRATOR_ORIENTATION_REFINE_STEPS = 11
"""Number of headings sampled within +/- one coarse orientation step during refinement."""

# ============================================================================
# Robot Drive
# ============================================================================

DRIVE_ROBOT_WIDTH = 0.45
"""Distance between the drive sides (meters). Sets the arc length of in-place turns."""

DRIVE_ACCEL = 0.5
"""Maximum acceleration allowed during profiled moves (m/s^2)."""

DRIVE_MAX_SPEED = 0.6
"""Maximum speed allowed during profiled moves (m/s)."""

DRIVE_COMMAND_PERIOD = 0.025
"""Interval between velocity commands while executing a profile (seconds).

Hardware writes are applied every 50 ms; commanding at twice that rate keeps
the ramp from stepping visibly.
"""

DRIVE_DRIFT_PER_METER = 0.02
"""Linear drift accumulated per meter travelled (meters of 1-sigma error per meter)."""

DRIVE_ANGULAR_DRIFT_PER_RADIAN = 0.03
"""Angular drift accumulated per radian turned (radians of error per radian)."""

DRIVE_ANGULAR_DRIFT_PER_METER = 0.005
"""Angular drift accumulated per meter travelled (radians of error per meter)."""

DRIVE_MIN_DRIFT = 0.05
"""Floor on the linear sigma used by the dead-reckoning likelihood (meters).

Must stay well above the integrator's fine step (0.02 m), otherwise the drive's
peak can fall between fine samples and never clear the correlation threshold.
"""

DRIVE_MIN_ANGULAR_DRIFT = 0.02
"""Floor on the angular sigma used by the dead-reckoning likelihood (radians).

Kept above the spacing of the refined heading sweep (~0.017 rad).
"""

# ============================================================================
# Goal Planner
# ============================================================================

PLANNER_MIN_CORRELATION = 0.9
"""Minimum correlation strength accepted as a localization fix (range: [0, 1])."""

PLANNER_LOCALIZE_RETRY_DELAY = 0.05
"""Initial delay before retrying a failed localization (seconds)."""

PLANNER_LOCALIZE_MAX_RETRY_DELAY = 1.0
"""Maximum delay between localization retries with exponential backoff (seconds)."""

PLANNER_IDLE_WAIT = 0.5
"""Longest single wait while idle before re-checking the stop flag (seconds)."""

PLANNER_STOP_TIMEOUT = 30.0
"""How long stop() waits for the in-flight iteration to finish (seconds)."""

# ============================================================================
# Demo Mission (python -m navdeck)
# ============================================================================

DEMO_FIELD_SIZE = 10.0
"""Side length of the square demo field (meters)."""

DEMO_GRID_COUNT = 20
"""Waypoints per side of the demo waypoint grid."""

DEMO_START = (0.75, 1.75, math.pi / 2)
"""Initial robot pose on the demo field (x, y, theta)."""

DEMO_GOAL_COUNT = 4
"""Default number of randomly placed goals in the demo mission."""

DEMO_GRID_SPACING = 500
"""Spacing of the demo waypoint grid (millimeters)."""

DEMO_GRID_OFFSET = 250
"""Offset of the first demo waypoint from the field corner (millimeters)."""

DEMO_OBSTACLE_BANDS = (
    ((3000, 0), (3500, 0), (5500, 5000), (5000, 5000)),
    ((5000, 10000), (5500, 10000), (8500, 3500), (8000, 3500)),
)
"""Diagonal obstacle bands on the demo field (millimeter vertices).

The first rises from the start wall, the second hangs from the far wall, so a
route from the lower left to the right side has to weave between them.
"""

DEMO_FIX_SIGMA = 0.15
"""1-sigma spread reported by the simulated beacon fix (meters)."""

DEMO_FIX_NOISE = 0.03
"""1-sigma error actually applied to simulated beacon readings (meters)."""

DEMO_FIX_THETA_SIGMA = 0.1
"""1-sigma heading spread reported by the simulated beacon fix (radians)."""

DEMO_MIN_CORRELATION = 0.8
"""Localization threshold of the demo mission (range: [0, 1]).

Used both as the planner's minimum correlation and as the integrator's
absolute island threshold. Two sensors with different spreads rarely agree
above 0.95, and a stationary robot gets no fresh beacon reading to retry with.
"""

DEMO_SPEED_NOISE = 0.005
"""Relative error applied to every simulated velocity command."""

DEMO_MISSION_TIMEOUT = 120.0
"""Wall-clock limit on the demo mission before the planner is stopped (seconds)."""

# ============================================================================
# Terminal Colors
# ============================================================================

TERM_ORANGE = "\033[38;2;247;72;35m"
"""Terminal color code for warnings and evictions (RGB: 247, 72, 35)."""

TERM_BLUE = "\033[38;2;35;116;247m"
"""Terminal color code for status lines (RGB: 35, 116, 247)."""

TERM_RESET = "\033[0m"
"""Terminal color reset code."""
