"""Command-line demo: run a simulated goal mission on the demo field.

The robot starts in the lower left of a 10 x 10 m field crossed by two
obstacle bands, and a set of randomly placed goals is handed to the goal
planner. The planner runs on its worker thread while this module waits for the
goal set to empty (or the mission to time out), then reports the outcome.

By default the mission runs on a virtual clock and finishes in seconds; with
``--real-time`` every profiled move takes as long as it would on a robot.
"""

import argparse
import logging
import time
from typing import List, Optional

from .config import DEMO_GOAL_COUNT, DEMO_MISSION_TIMEOUT, TERM_BLUE, TERM_RESET
from .data_collector import DataCollector
from .planner import GoalOutcome
from .simulation import build_demo_mission


class CustomFormatter(logging.Formatter):
    """Custom logging formatter that removes timestamps from INFO messages.

    INFO lines are mission progress and read better without timestamps;
    WARNING and above keep full context.
    """

    def format(self, record: logging.LogRecord) -> str:
        if record.levelno == logging.INFO:
            return record.getMessage()
        return f"{self.formatTime(record, self.datefmt)} - {record.levelname} - {record.getMessage()}"


def setup_logging(verbose: bool = False) -> None:
    """Configure logging based on verbosity level.

    Args:
        verbose: If True, show all levels with timestamps. If False, show INFO
                 without timestamps and WARNING/ERROR with timestamps.
    """
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s - %(levelname)s - %(threadName)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    else:
        handler = logging.StreamHandler()
        handler.setFormatter(CustomFormatter(datefmt="%Y-%m-%d %H:%M:%S"))
        logger = logging.getLogger()
        logger.setLevel(logging.INFO)
        logger.addHandler(handler)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="navdeck", description="Run a simulated goal-planning mission on the demo field"
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable verbose logging with timestamps"
    )
    parser.add_argument(
        "--goals", type=int, default=DEMO_GOAL_COUNT, help="Number of random goals (default: %(default)s)"
    )
    parser.add_argument("--seed", type=int, default=None, help="Random seed for goals and noise")
    parser.add_argument(
        "--output-dir", default=".", help="Base directory for results/run_* output (default: %(default)s)"
    )
    parser.add_argument("--no-log", action="store_true", help="Do not write CSV mission data")
    parser.add_argument(
        "--real-time", action="store_true", help="Run moves on the wall clock instead of virtual time"
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=DEMO_MISSION_TIMEOUT,
        help="Wall-clock mission limit in seconds (default: %(default)s)",
    )
    return parser


def run_mission(args: argparse.Namespace, data_collector: Optional[DataCollector] = None) -> int:
    """Run the demo mission and return the process exit code."""
    if args.real_time:
        mission = build_demo_mission(
            args.seed, args.goals, time.monotonic, time.sleep, data_collector=data_collector
        )
    else:
        mission = build_demo_mission(args.seed, args.goals, data_collector=data_collector)

    start = mission.drive.position
    logging.info(
        f"{TERM_BLUE}Mission: {len(mission.goals)} goals, "
        f"{len(mission.field.waypoints)} waypoints, start ({start.x:.2f}, {start.y:.2f}){TERM_RESET}"
    )
    for goal in mission.goals:
        logging.info(f"  {goal} benefit {goal.value:.2f}")

    began = time.monotonic()
    planner = mission.planner
    planner.start()
    try:
        finished = planner.wait_until_empty(args.timeout)
    finally:
        planner.stop()
    elapsed = time.monotonic() - began

    completed = planner.outcomes[GoalOutcome.COMPLETED]
    evicted = planner.outcomes[GoalOutcome.EVICTED]
    remaining = len(planner.goals)
    truth = mission.drivetrain.pose
    estimate = mission.drive.position
    logging.info(
        f"{TERM_BLUE}Mission {'complete' if finished else 'timed out'}: "
        f"{completed} completed, {evicted} evicted, {remaining} remaining in {elapsed:.1f}s{TERM_RESET}"
    )
    logging.info(
        f"Final pose ({truth.x:.3f}, {truth.y:.3f}), estimate ({estimate.x:.3f}, {estimate.y:.3f}), "
        f"error {truth.distance_to(estimate):.3f}m"
    )
    if data_collector is not None:
        data_collector.log_summary(completed, evicted, remaining, elapsed)

    if planner.error is not None:
        return 1
    return 0 if finished else 2


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)

    if args.no_log:
        return run_mission(args)
    with DataCollector(args.output_dir) as collector:
        return run_mission(args, collector)
