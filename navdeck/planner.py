"""Goal planner: picks goals, localizes, paths, drives and acts.

Each planner iteration walks through the same states:

    IDLE -> SELECTING -> LOCALIZING -> PATHING -> EXECUTING -> ACTING -> SELECTING

- SELECTING picks the goal with the highest benefit. Ties go to the goal that
  was added first.
- LOCALIZING asks the position integrator for a fix, retrying with capped
  exponential backoff while none qualifies.
- PATHING plans moves on the field. An unreachable goal is evicted.
- EXECUTING drives each move. A hardware failure keeps the goal for a later
  attempt; a collision evicts it.
- ACTING re-localizes once (falling back to the drive's estimate) and hands the
  position to the goal, which may add or remove goals itself.

The loop runs on one worker thread (``start``/``stop``) or one iteration at a
time through ``step``. Goal registration is safe from any thread.
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from collections import Counter
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Generic, List, Optional, Tuple, TypeVar

from .config import (
    PLANNER_IDLE_WAIT,
    PLANNER_LOCALIZE_MAX_RETRY_DELAY,
    PLANNER_LOCALIZE_RETRY_DELAY,
    PLANNER_MIN_CORRELATION,
    PLANNER_STOP_TIMEOUT,
    TERM_ORANGE,
    TERM_RESET,
)
from .data_collector import DataCollector
from .drive import RobotDrive
from .errors import ObstacleError, RobotHardwareError
from .field import Field
from .integrator import PositionIntegrator
from .position import Position, PositionLike
from .sensor import LocationCandidate

T = TypeVar("T")


class Goal(ABC, Generic[T]):
    """Something worth driving to.

    ``T`` is whatever the application uses to describe the robot's state; the
    planner passes it through untouched.
    """

    def __init__(self, location: PositionLike, name: str = ""):
        self._location = location.materialize()
        self.name = name or type(self).__name__

    @property
    def location(self) -> Position:
        return self._location

    @abstractmethod
    def benefit(self, state: T, planner: "GoalPlanner[T]") -> float:
        """Expected benefit of achieving this goal from the given state."""

    @abstractmethod
    def act(self, position: Position, state: T, planner: "GoalPlanner[T]") -> None:
        """Act once the robot has arrived.

        May sense, operate effectors, or add and remove goals (including this
        one) on the planner.
        """

    def __repr__(self) -> str:
        return f"{self.name}@({self._location.x:.2f}, {self._location.y:.2f})"


class PlannerState(Enum):
    IDLE = "idle"
    SELECTING = "selecting"
    LOCALIZING = "localizing"
    PATHING = "pathing"
    EXECUTING = "executing"
    ACTING = "acting"


class GoalOutcome(Enum):
    COMPLETED = "completed"
    EVICTED = "evicted"
    HARDWARE_FAILURE = "hardware_failure"
    NOT_LOCALIZED = "not_localized"
    IDLE = "idle"


@dataclass
class StepResult:
    """Result of one planner iteration."""

    goal: Optional[Goal]
    outcome: GoalOutcome
    benefit: Optional[float] = None
    position: Optional[Position] = None


class GoalPlanner(Generic[T]):
    """Runs the select / localize / path / execute / act loop over a goal set."""

    def __init__(
        self,
        initial_state: T,
        drive: RobotDrive,
        integrator: PositionIntegrator,
        field: Field,
        min_correlation: float = PLANNER_MIN_CORRELATION,
        retry_delay: float = PLANNER_LOCALIZE_RETRY_DELAY,
        max_retry_delay: float = PLANNER_LOCALIZE_MAX_RETRY_DELAY,
        idle_wait: float = PLANNER_IDLE_WAIT,
        data_collector: Optional[DataCollector] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the planner.

        Args:
            initial_state: Application-defined robot state handed to goals.
            drive: Drive used to execute planned moves.
            integrator: Position integrator used for localization.
            field: Field description used for path planning.
            min_correlation: Correlation a localization fix must exceed.
            retry_delay: First delay between failed localization attempts (seconds).
            max_retry_delay: Cap on the localization backoff (seconds).
            idle_wait: Longest single wait while no goals exist (seconds).
            data_collector: Optional CSV logger for fixes, moves and outcomes.
            clock: Time source for logged timestamps.
        """
        self._robot_state = initial_state
        self._drive = drive
        self._integrator = integrator
        self._field = field
        self.min_correlation = min_correlation
        self.retry_delay = retry_delay
        self.max_retry_delay = max_retry_delay
        self.idle_wait = idle_wait
        self.data_collector = data_collector
        self.clock = clock

        # insertion-ordered; values unused
        self._goals: Dict[Goal, None] = {}
        self._condition = threading.Condition(threading.RLock())
        self._step_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread_lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self._phase = PlannerState.IDLE
        self.outcomes: Counter = Counter()
        self.error: Optional[BaseException] = None

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def robot_state(self) -> T:
        return self._robot_state

    @property
    def drive(self) -> RobotDrive:
        return self._drive

    @property
    def integrator(self) -> PositionIntegrator:
        return self._integrator

    @property
    def field(self) -> Field:
        return self._field

    @property
    def phase(self) -> PlannerState:
        return self._phase

    @property
    def goals(self) -> List[Goal]:
        """Snapshot of the goal set in insertion order."""
        with self._condition:
            return list(self._goals)

    @property
    def running(self) -> bool:
        thread = self._thread
        return thread is not None and thread.is_alive()

    # ------------------------------------------------------------------
    # Goal set
    # ------------------------------------------------------------------

    def add_goal(self, goal: Goal) -> bool:
        """Add a goal if not already present. Wakes an idle planner."""
        with self._condition:
            if goal in self._goals:
                return False
            self._goals[goal] = None
            self._condition.notify_all()
        logging.debug(f"Added goal {goal}")
        return True

    def remove_goal(self, goal: Goal) -> bool:
        with self._condition:
            if goal not in self._goals:
                return False
            del self._goals[goal]
            self._condition.notify_all()
        logging.debug(f"Removed goal {goal}")
        return True

    def wait_until_empty(self, timeout: Optional[float] = None) -> bool:
        """Block until no goals remain.

        Returns:
            True if the goal set emptied, False on timeout.
        """
        with self._condition:
            return self._condition.wait_for(lambda: not self._goals, timeout)

    # ------------------------------------------------------------------
    # One iteration
    # ------------------------------------------------------------------

    def step(self, block: bool = False) -> StepResult:
        """Run one SELECTING -> ACTING pass.

        Args:
            block: Wait for a goal when none exists and keep retrying
                localization until it succeeds or the planner is stopped.
                Without blocking, each of those returns immediately.

        Returns:
            The goal that was worked on (if any) and the outcome.
        """
        with self._step_lock:
            try:
                return self._step(block)
            finally:
                self._phase = PlannerState.IDLE

    def _step(self, block: bool) -> StepResult:
        self._phase = PlannerState.SELECTING
        selected = self._select(block)
        if selected is None:
            return StepResult(None, GoalOutcome.IDLE)
        goal, benefit = selected
        logging.info(f"Selected goal {goal} (benefit {benefit:.3f})")

        self._phase = PlannerState.LOCALIZING
        fix = self._localize(block)
        if fix is None:
            return self._finish(goal, benefit, GoalOutcome.NOT_LOCALIZED)

        self._phase = PlannerState.PATHING
        try:
            moves = self._field.plan_path(fix.position, goal.location)
        except ObstacleError as e:
            return self._evict(goal, benefit, f"no path: {e}")
        logging.debug(f"Planned {len(moves)} moves to {goal}")

        self._phase = PlannerState.EXECUTING
        try:
            for travel in moves:
                estimate = self._drive.move(travel)
                self._log_move(travel, estimate)
        except RobotHardwareError:
            logging.error(f"Drive failed on the way to {goal}; goal kept for retry", exc_info=True)
            return self._finish(goal, benefit, GoalOutcome.HARDWARE_FAILURE)
        except ObstacleError as e:
            return self._evict(goal, benefit, f"collision: {e}")

        self._phase = PlannerState.ACTING
        arrival = self._integrator.localize(self.min_correlation)
        self._log_localization(arrival, 1)
        if arrival is not None:
            position = arrival.position
        else:
            position = self._drive.position
            logging.warning(f"Re-localization at {goal} failed; using drive estimate {position}")

        try:
            goal.act(position, self._robot_state, self)
        except Exception:
            logging.error(f"Goal {goal} failed while acting", exc_info=True)
            return self._evict(goal, benefit, "act failed", position)
        logging.info(f"Completed goal {goal} at ({position.x:.3f}, {position.y:.3f})")
        return self._finish(goal, benefit, GoalOutcome.COMPLETED, position)

    def _select(self, block: bool) -> Optional[Tuple[Goal, float]]:
        while True:
            with self._condition:
                if block:
                    while not self._goals and not self._stop_event.is_set():
                        self._phase = PlannerState.IDLE
                        self._condition.wait(self.idle_wait)
                    self._phase = PlannerState.SELECTING
                candidates = list(self._goals)
            if not candidates or (block and self._stop_event.is_set()):
                return None

            best: Optional[Tuple[Goal, float]] = None
            for goal in candidates:
                try:
                    benefit = float(goal.benefit(self._robot_state, self))
                except Exception:
                    logging.error(f"Goal {goal} failed to compute its benefit", exc_info=True)
                    self._evict(goal, float("nan"), "benefit failed")
                    continue
                # strict comparison keeps the earliest goal on ties
                if best is None or benefit > best[1]:
                    best = (goal, benefit)
            if best is not None:
                return best
            if not block:
                return None

    def _localize(self, block: bool) -> Optional[LocationCandidate]:
        delay = self.retry_delay
        attempt = 0
        while True:
            attempt += 1
            fix = self._integrator.localize(self.min_correlation)
            self._log_localization(fix, attempt)
            if fix is not None:
                logging.debug(f"Localized at {fix} after {attempt} attempt(s)")
                return fix

            if attempt == 1:
                logging.warning(f"No location candidate above {self.min_correlation:.2f}; retrying")
            else:
                logging.debug(f"Localization attempt {attempt} failed; next retry in {delay:.2f}s")
            if not block:
                return None
            if self._stop_event.wait(delay):
                return None
            delay = min(delay * 2.0, self.max_retry_delay)

    def _evict(
        self, goal: Goal, benefit: float, reason: str, position: Optional[Position] = None
    ) -> StepResult:
        self.remove_goal(goal)
        logging.warning(f"{TERM_ORANGE}Evicted goal {goal}: {reason}{TERM_RESET}")
        return self._finish(goal, benefit, GoalOutcome.EVICTED, position)

    def _finish(
        self, goal: Goal, benefit: float, outcome: GoalOutcome, position: Optional[Position] = None
    ) -> StepResult:
        self.outcomes[outcome] += 1
        if self.data_collector is not None:
            self.data_collector.log_goal(self.clock(), goal.name, goal.location, benefit, outcome.value)
        return StepResult(goal, outcome, benefit, position)

    def _log_localization(self, fix: Optional[LocationCandidate], attempt: int) -> None:
        if self.data_collector is None:
            return
        if fix is None:
            self.data_collector.log_localization(self.clock(), None, 0.0, attempt)
        else:
            self.data_collector.log_localization(
                self.clock(), fix.position, fix.correlation_strength, attempt
            )

    def _log_move(self, travel, estimate: Position) -> None:
        if self.data_collector is None:
            return
        state = self._drive.state
        self.data_collector.log_move(
            self.clock(), travel, estimate, state.collected_drift, state.collected_angular_drift
        )

    # ------------------------------------------------------------------
    # Worker thread
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the worker thread. Does nothing if it is already running.

        A worker that was asked to stop but has not exited yet (``stop`` timed
        out), or that is exiting after an error, is waited for before the new
        one starts. Called from the worker
        itself, this cancels a pending stop instead.
        """
        while True:
            with self._thread_lock:
                thread = self._thread
                if thread is None or not thread.is_alive():
                    self._stop_event.clear()
                    self.error = None
                    self._thread = threading.Thread(
                        target=self._run, name=f"goalplanner-{id(self):x}", daemon=True
                    )
                    self._thread.start()
                    break
                if thread is threading.current_thread():
                    self._stop_event.clear()
                    return
                if not self._stop_event.is_set() and self.error is None:
                    return
            logging.debug(f"Waiting for {thread.name} to exit before restarting")
            thread.join()
        logging.debug(f"Started {self._thread.name}")

    def stop(self, timeout: Optional[float] = PLANNER_STOP_TIMEOUT) -> None:
        """Stop the worker thread after its in-flight iteration completes.

        Safe to call repeatedly, and from a goal's ``act`` on the worker thread
        (the thread then exits after the current iteration without being joined).
        """
        self._stop_event.set()
        with self._condition:
            self._condition.notify_all()
        with self._thread_lock:
            thread = self._thread
        if thread is None or thread is threading.current_thread():
            return
        thread.join(timeout)
        if thread.is_alive():
            logging.warning(f"{thread.name} did not stop within {timeout}s")

    def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.step(block=True)
            except Exception as e:
                self.error = e
                logging.error("Goal planner stopped after an unexpected error", exc_info=True)
                break
        logging.debug(f"{threading.current_thread().name} exiting")

    def __enter__(self) -> "GoalPlanner[T]":
        self.start()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.stop()
