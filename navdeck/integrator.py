"""Position integrator: fuses sensor likelihoods into location candidates.

Implements a coarse-to-fine grid correlation search:
1. Evaluate the weighted likelihood of every coarse cell and the grid average.
2. Fine-search (N x N sub-grid) every sensor hotspot and every coarse cell
   above max(island_min_absolute, average * min_snr).
3. Grow "islands": a fine search whose peak clears island_remain_strength
   also fine-searches its 8 neighbors, down to a bounded depth, so strong
   regions are not clipped at coarse-cell boundaries.
4. Report each cell whose peak clears the requested threshold and stands out
   from its neighbors as a LocationCandidate at its peak sub-cell.

Grid arrays are allocated once and reused by every pass.
"""

import logging
import math
import threading
from collections import deque
from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as np

from .config import (
    INTEGRATOR_COARSE_STEP,
    INTEGRATOR_FINE_SEARCH_MAX_DEPTH,
    INTEGRATOR_FINE_SUBDIVISIONS,
    INTEGRATOR_ISLAND_MIN_ABSOLUTE,
    INTEGRATOR_ISLAND_REMAIN_STRENGTH,
    INTEGRATOR_MIN_SNR,
    INTEGRATOR_ORIENTATION_REFINE_STEPS,
    INTEGRATOR_ORIENTATION_STEPS,
)
from .position import Position, normalize_angle
from .sensor import LocationCandidate, Sensor, best_candidate

_NEIGHBORS = ((1, 0), (1, 1), (0, 1), (-1, 1), (-1, 0), (-1, -1), (0, -1), (1, -1))


class PositionIntegrator:
    """Calculates the robot's most likely position(s) from a set of sensors.

    Sensor registration is thread-safe and copy-on-write: a pass in flight keeps
    using the sensor set it started with. Passes themselves are serialized
    because they share the grid arrays.
    """

    def __init__(
        self,
        sensors: Iterable[Sensor],
        field_x: float,
        field_y: float,
        fine_search_max_depth: int = INTEGRATOR_FINE_SEARCH_MAX_DEPTH,
        min_snr: float = INTEGRATOR_MIN_SNR,
        island_min_absolute: float = INTEGRATOR_ISLAND_MIN_ABSOLUTE,
        island_remain_strength: float = INTEGRATOR_ISLAND_REMAIN_STRENGTH,
        coarse_step: float = INTEGRATOR_COARSE_STEP,
        fine_subdivisions: int = INTEGRATOR_FINE_SUBDIVISIONS,
        orientation_steps: int = INTEGRATOR_ORIENTATION_STEPS,
        orientation_refine_steps: int = INTEGRATOR_ORIENTATION_REFINE_STEPS,
    ):
        """Initialize the integrator and allocate its search grid.

        Args:
            sensors: Initial likelihood sources.
            field_x: Field extent along X (meters).
            field_y: Field extent along Y (meters).
            fine_search_max_depth: Neighbor expansion depth for island growth.
            min_snr: Required ratio of a value to the (grid or neighbor) average.
            island_min_absolute: Absolute correlation that always warrants a
                fine search and waives the neighbor SNR test.
            island_remain_strength: Fine-search peak needed to keep expanding.
            coarse_step: Coarse grid step (meters).
            fine_subdivisions: Sub-grid size per coarse cell, odd.
            orientation_steps: Heading samples over the full circle.
            orientation_refine_steps: Heading samples in the refinement window.

        Raises:
            ValueError: If the field is empty or fine_subdivisions is even.
        """
        if field_x <= 0 or field_y <= 0:
            raise ValueError(f"Field must have positive extent, got {field_x} x {field_y}")
        if fine_subdivisions < 1 or fine_subdivisions % 2 == 0:
            raise ValueError(f"fine_subdivisions must be a positive odd number, got {fine_subdivisions}")

        self._sensors: Tuple[Sensor, ...] = tuple(sensors)
        self._sensor_lock = threading.Lock()
        self._grid_lock = threading.Lock()

        self.field_x = field_x
        self.field_y = field_y
        self.fine_search_max_depth = fine_search_max_depth
        self.min_snr = min_snr
        self.island_min_absolute = island_min_absolute
        self.island_remain_strength = island_remain_strength
        self.coarse_step = coarse_step
        self.fine_subdivisions = fine_subdivisions
        self.orientation_steps = orientation_steps
        self.orientation_refine_steps = orientation_refine_steps

        half = fine_subdivisions // 2
        fine_step = coarse_step / fine_subdivisions
        # first coarse sample sits so its leftmost fine sample lands on 0
        self._first = fine_step * half
        self._fine_offsets = np.arange(-half, half + 1) * fine_step
        self._cx = max(1, math.ceil((field_x - self._first) / coarse_step))
        self._cy = max(1, math.ceil((field_y - self._first) / coarse_step))

        self._coarse = np.zeros((self._cx, self._cy))
        self._fine = np.zeros((self._cx, self._cy, fine_subdivisions, fine_subdivisions))
        self._has_fine = np.zeros((self._cx, self._cy), dtype=bool)
        self.last_average = 0.0

    # ------------------------------------------------------------------
    # Sensor registration
    # ------------------------------------------------------------------

    @property
    def sensors(self) -> Tuple[Sensor, ...]:
        return self._sensors

    def add_sensor(self, sensor: Sensor) -> None:
        with self._sensor_lock:
            if sensor not in self._sensors:
                self._sensors = self._sensors + (sensor,)

    def remove_sensor(self, sensor: Sensor) -> None:
        with self._sensor_lock:
            self._sensors = tuple(s for s in self._sensors if s is not sensor)

    @property
    def grid_shape(self) -> Tuple[int, int]:
        return self._cx, self._cy

    # ------------------------------------------------------------------
    # Grid coordinates
    # ------------------------------------------------------------------

    def coordinate(self, index: int) -> float:
        """Coarse sample coordinate for a grid index (meters)."""
        return index * self.coarse_step + self._first

    def nearest_index(self, value: float) -> int:
        return int(round((value - self._first) / self.coarse_step))

    # ------------------------------------------------------------------
    # Likelihood evaluation
    # ------------------------------------------------------------------

    @staticmethod
    def _weighted(x: float, y: float, sensors: Sequence[Sensor]) -> float:
        total = 0.0
        weights = 0.0
        for sensor in sensors:
            weight = sensor.weight(x, y)
            if weight <= 0.0:
                continue
            total += sensor.likelihood(x, y) * weight
            weights += weight
        return total / weights if weights > 0.0 else 0.0

    @staticmethod
    def _weighted_orientation(x: float, y: float, theta: float, sensors: Sequence[Sensor]) -> float:
        total = 0.0
        weights = 0.0
        for sensor in sensors:
            weight = sensor.weight(x, y)
            if weight <= 0.0:
                continue
            total += sensor.orientation_likelihood(x, y, theta) * weight
            weights += weight
        return total / weights if weights > 0.0 else 0.0

    def _fine_search(self, xi: int, yi: int, sensors: Sequence[Sensor]) -> None:
        """Fine-search a cell and grow the island around it (breadth first)."""
        queue = deque([(xi, yi, self.fine_search_max_depth)])
        while queue:
            x, y, depth = queue.popleft()
            if not (0 <= x < self._cx and 0 <= y < self._cy):
                continue
            if self._has_fine[x, y]:
                continue
            self._has_fine[x, y] = True

            tile = self._fine[x, y]
            cx = self.coordinate(x)
            cy = self.coordinate(y)
            for i, dx in enumerate(self._fine_offsets):
                px = min(max(cx + dx, 0.0), self.field_x)
                for j, dy in enumerate(self._fine_offsets):
                    py = min(max(cy + dy, 0.0), self.field_y)
                    tile[i, j] = self._weighted(px, py, sensors)

            if depth > 0 and tile.max() > self.island_remain_strength:
                for nx, ny in _NEIGHBORS:
                    queue.append((x + nx, y + ny, depth - 1))

    def _neighbor_average(self, tile_avg: np.ndarray) -> np.ndarray:
        """Mean of the 8-connected neighbors' tile averages (edges excluded)."""
        padded = np.pad(tile_avg, 1, constant_values=np.nan)
        total = np.zeros_like(tile_avg)
        count = np.zeros_like(tile_avg)
        for nx, ny in _NEIGHBORS:
            shifted = padded[1 + nx:1 + nx + self._cx, 1 + ny:1 + ny + self._cy]
            valid = ~np.isnan(shifted)
            total += np.where(valid, shifted, 0.0)
            count += valid
        return np.divide(total, count, out=np.zeros_like(total), where=count > 0)

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def get_candidates(
        self, min_correlation: float, sensors: Optional[Sequence[Sensor]] = None
    ) -> List[LocationCandidate]:
        """Return likely robot positions, in no particular order.

        Args:
            min_correlation: Peak correlation a cell must exceed.
            sensors: Sensor snapshot to evaluate; defaults to the registered set.

        Returns:
            One candidate per surviving cell, located at its peak sub-cell (or
            the coarse sample if the cell was never fine-searched), with
            theta 0.
        """
        if sensors is None:
            sensors = self._sensors
        with self._grid_lock:
            self._has_fine.fill(False)
            self._fine.fill(0.0)
            for x in range(self._cx):
                px = self.coordinate(x)
                for y in range(self._cy):
                    self._coarse[x, y] = self._weighted(px, self.coordinate(y), sensors)
            average = float(self._coarse.mean())
            self.last_average = average

            for sensor in sensors:
                for spot in sensor.hotspots():
                    self._fine_search(self.nearest_index(spot.x), self.nearest_index(spot.y), sensors)

            threshold = max(self.island_min_absolute, average * self.min_snr)
            for x, y in zip(*np.nonzero(self._coarse > threshold)):
                self._fine_search(int(x), int(y), sensors)

            fine_flat = self._fine.reshape(self._cx, self._cy, -1)
            tile_max = np.where(self._has_fine, fine_flat.max(axis=2), self._coarse)
            tile_avg = np.where(self._has_fine, fine_flat.mean(axis=2), self._coarse)
            neighbor_avg = self._neighbor_average(tile_avg)

            stands_out = (tile_max > self.min_snr * neighbor_avg) | (tile_max >= self.island_min_absolute)
            survivors = np.nonzero((tile_max > min_correlation) & stands_out)

            n = self.fine_subdivisions
            candidates = []
            for x, y in zip(*survivors):
                px = self.coordinate(x)
                py = self.coordinate(y)
                if self._has_fine[x, y]:
                    i, j = divmod(int(np.argmax(fine_flat[x, y])), n)
                    px = min(max(px + self._fine_offsets[i], 0.0), self.field_x)
                    py = min(max(py + self._fine_offsets[j], 0.0), self.field_y)
                candidates.append(
                    LocationCandidate(Position(float(px), float(py), 0.0), float(tile_max[x, y]))
                )

        logging.debug(
            f"Integrator pass: {len(candidates)} candidates above {min_correlation:.2f} "
            f"(grid avg {average:.3f}, {int(self._has_fine.sum())} fine cells)"
        )
        return candidates

    def resolve_heading(self, x: float, y: float, sensors: Optional[Sequence[Sensor]] = None) -> float:
        """Find the heading with the highest weighted orientation likelihood at (x, y).

        Returns 0 when no sensor carries heading information (flat response).
        """
        if sensors is None:
            sensors = self._sensors
        coarse = np.linspace(-math.pi, math.pi, self.orientation_steps, endpoint=False)
        values = np.array([self._weighted_orientation(x, y, t, sensors) for t in coarse])
        if np.ptp(values) < 1e-9:
            return 0.0

        step = 2.0 * math.pi / self.orientation_steps
        center = coarse[int(np.argmax(values))]
        fine = np.linspace(center - step, center + step, self.orientation_refine_steps)
        values = np.array([self._weighted_orientation(x, y, t, sensors) for t in fine])
        return normalize_angle(float(fine[int(np.argmax(values))]))

    def localize(self, min_correlation: float) -> Optional[LocationCandidate]:
        """Agree on the single most likely position and feed it back to the sensors.

        Args:
            min_correlation: Peak correlation the fix must exceed.

        Returns:
            The strongest candidate with its heading resolved, or None if no
            candidate qualifies (sensors are not notified in that case).
        """
        sensors = self._sensors
        best = best_candidate(self.get_candidates(min_correlation, sensors))
        if best is None:
            return None

        x, y = best.position.x, best.position.y
        theta = self.resolve_heading(x, y, sensors)
        fix = LocationCandidate(Position(x, y, theta), best.correlation_strength)
        for sensor in sensors:
            sensor.notify_error(x, y, theta, fix.correlation_strength)
        return fix
