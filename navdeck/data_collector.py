"""Data collection and CSV logging for navigation missions.

This module provides CSV data logging for:
- Localization fixes (agreed position, correlation strength, candidate count)
- Executed moves (relative move, resulting estimate, accumulated drift)
- Goal outcomes (selected goal, benefit, outcome)
- Mission summary (goals completed / evicted, elapsed time)
"""

import csv
import os
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Optional, TextIO

from .config import TERM_BLUE, TERM_RESET
from .position import Position, RelativePosition


class DataCollector:
    """Manages CSV file creation and logging for mission data.

    The planner thread writes rows while the main thread may be shutting the
    collector down, so every write is serialized with an internal lock.

    Attributes:
        run_dir: Directory path for this run's output files.
        localization_csv_file: File handle for localization fixes CSV.
        moves_csv_file: File handle for executed moves CSV.
        goals_csv_file: File handle for goal outcomes CSV.
        summary_output_path: Path for the mission summary text file.
    """

    def __init__(self, output_dir: str = ".", run_dir: Optional[str] = None) -> None:
        """Initialize the data collector.

        Args:
            output_dir: Base directory for output files (default: current directory).
            run_dir: Optional specific run directory. If None, creates timestamped
                directory. Can also be set via RUN_DIR environment variable.

        Raises:
            ValueError: If output_dir is not a valid directory.
        """
        output_path = Path(output_dir)
        if output_path.exists() and not output_path.is_dir():
            raise ValueError(f"Output path exists but is not a directory: {output_dir}")

        self.localization_csv_file: Optional[TextIO] = None
        self.localization_csv_writer: Any = None
        self.moves_csv_file: Optional[TextIO] = None
        self.moves_csv_writer: Any = None
        self.goals_csv_file: Optional[TextIO] = None
        self.goals_csv_writer: Any = None
        self._lock = threading.Lock()

        if run_dir:
            self.run_dir: Path = Path(run_dir)
        elif env_run_dir := os.environ.get("RUN_DIR"):
            self.run_dir = Path(env_run_dir)
        else:
            # results/run_YYYYMMDD_HHMMSS/
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            self.run_dir = output_path / "results" / f"run_{timestamp}"

        self.run_dir.mkdir(parents=True, exist_ok=True)

        self.localization_output_path: Path = self.run_dir / "localization.csv"
        self.moves_output_path: Path = self.run_dir / "moves.csv"
        self.goals_output_path: Path = self.run_dir / "goals.csv"
        self.summary_output_path: Path = self.run_dir / "summary.txt"

    def setup(self) -> None:
        """Open all CSV files and write their headers. Must be called before logging."""
        self.localization_csv_file = open(self.localization_output_path, "w", newline="")
        self.localization_csv_writer = csv.writer(self.localization_csv_file)
        self.localization_csv_writer.writerow(
            ["timestamp", "x", "y", "theta", "correlation", "attempt"]
        )
        self.localization_csv_file.flush()

        self.moves_csv_file = open(self.moves_output_path, "w", newline="")
        self.moves_csv_writer = csv.writer(self.moves_csv_file)
        self.moves_csv_writer.writerow(
            [
                "timestamp",
                "distance",
                "turn",
                "x_est",
                "y_est",
                "theta_est",
                "drift",
                "angular_drift",
            ]
        )
        self.moves_csv_file.flush()

        self.goals_csv_file = open(self.goals_output_path, "w", newline="")
        self.goals_csv_writer = csv.writer(self.goals_csv_file)
        self.goals_csv_writer.writerow(
            ["timestamp", "goal", "goal_x", "goal_y", "benefit", "outcome"]
        )
        self.goals_csv_file.flush()

        print(f"{TERM_BLUE}✓ Initialized data collection to {self.run_dir}/{TERM_RESET}")

    def log_localization(
        self, timestamp: float, fix: Optional[Position], correlation: float, attempt: int
    ) -> None:
        """Log a localization attempt. A failed attempt has no fix and empty coordinates."""
        if fix is None:
            row = [f"{timestamp:.3f}", "", "", "", "", attempt]
        else:
            row = [
                f"{timestamp:.3f}",
                f"{fix.x:.4f}",
                f"{fix.y:.4f}",
                f"{fix.theta:.4f}",
                f"{correlation:.4f}",
                attempt,
            ]
        with self._lock:
            if not self.localization_csv_writer:
                return
            self.localization_csv_writer.writerow(row)
            self.localization_csv_file.flush()

    def log_move(
        self,
        timestamp: float,
        travel: RelativePosition,
        estimate: Position,
        drift: float,
        angular_drift: float,
    ) -> None:
        """Log an executed move and the drive state after it.

        Args:
            timestamp: Time the move finished (seconds).
            travel: The relative move.
            estimate: Drive position estimate after the move.
            drift: Accumulated linear drift after the move (meters).
            angular_drift: Accumulated angular drift after the move (radians).
        """
        with self._lock:
            if not self.moves_csv_writer:
                return
            self.moves_csv_writer.writerow(
                [
                    f"{timestamp:.3f}",
                    f"{travel.distance:.4f}",
                    f"{travel.theta:.4f}",
                    f"{estimate.x:.4f}",
                    f"{estimate.y:.4f}",
                    f"{estimate.theta:.4f}",
                    f"{drift:.5f}",
                    f"{angular_drift:.5f}",
                ]
            )
            self.moves_csv_file.flush()

    def log_goal(
        self, timestamp: float, name: str, location: Position, benefit: float, outcome: str
    ) -> None:
        with self._lock:
            if not self.goals_csv_writer:
                return
            self.goals_csv_writer.writerow(
                [
                    f"{timestamp:.3f}",
                    name,
                    f"{location.x:.4f}",
                    f"{location.y:.4f}",
                    f"{benefit:.4f}",
                    outcome,
                ]
            )
            self.goals_csv_file.flush()

    def log_summary(self, completed: int, evicted: int, remaining: int, elapsed: float) -> None:
        """Write the mission summary text file.

        Args:
            completed: Goals reached and acted upon.
            evicted: Goals dropped as unreachable or failing.
            remaining: Goals still registered at shutdown.
            elapsed: Mission duration (seconds).
        """
        with open(self.summary_output_path, "w") as f:
            f.write(f"completed={completed}\n")
            f.write(f"evicted={evicted}\n")
            f.write(f"remaining={remaining}\n")
            f.write(f"elapsed={elapsed:.3f}\n")
        print(
            f"{TERM_BLUE}✓ Saved mission summary: {completed} completed, {evicted} evicted "
            f"to {self.summary_output_path.name}{TERM_RESET}"
        )

    def cleanup(self) -> None:
        """Close all CSV files and log final output location."""
        with self._lock:
            for handle in (self.localization_csv_file, self.moves_csv_file, self.goals_csv_file):
                if handle:
                    handle.close()
            self.localization_csv_writer = None
            self.moves_csv_writer = None
            self.goals_csv_writer = None

        print(f"{TERM_BLUE}✓ Saved mission data to {self.run_dir}/{TERM_RESET}")

    def __enter__(self) -> "DataCollector":
        """Context manager entry point.

        Returns:
            Self reference for use in with statement.
        """
        self.setup()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Context manager exit point - ensures cleanup is called."""
        self.cleanup()
