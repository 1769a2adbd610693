"""Tests for the goal planner loop."""

import logging
import threading

import pytest

from navdeck.data_collector import DataCollector
from navdeck.errors import ObstacleError, RobotHardwareError
from navdeck.geometry import Point2D
from navdeck.planner import GoalOutcome, GoalPlanner, PlannerState
from navdeck.position import Position
from navdeck.simulation import PointGoal


class ExplodingGoal(PointGoal):
    def act(self, position, state, planner):
        raise RuntimeError("effector jammed")


class BadBenefitGoal(PointGoal):
    def benefit(self, state, planner):
        raise ZeroDivisionError("no estimate")


class ChainGoal(PointGoal):
    """Adds a follow-up goal when reached."""

    def __init__(self, location, follow_up):
        super().__init__(location, 1.0, name="chain")
        self.follow_up = follow_up

    def act(self, position, state, planner):
        super().act(position, state, planner)
        planner.add_goal(self.follow_up)


class PhaseGoal(PointGoal):
    def act(self, position, state, planner):
        self.phase = planner.phase
        self.state = state
        super().act(position, state, planner)


class StopGoal(PointGoal):
    def act(self, position, state, planner):
        super().act(position, state, planner)
        planner.stop()


class BlockingGoal(PointGoal):
    """Holds the worker inside ``act`` until released."""

    def __init__(self, location):
        super().__init__(location, name="blocking")
        self.entered = threading.Event()
        self.release = threading.Event()

    def act(self, position, state, planner):
        self.entered.set()
        self.release.wait(10)
        super().act(position, state, planner)


class RestartGoal(PointGoal):
    def act(self, position, state, planner):
        super().act(position, state, planner)
        planner.stop()
        planner.start()


@pytest.fixture
def planner(drive, fake_integrator, grid_field):
    field, _ = grid_field
    return GoalPlanner(
        {"team": "blue"},
        drive,
        fake_integrator,
        field,
        retry_delay=0.001,
        max_retry_delay=0.004,
        idle_wait=0.01,
    )


@pytest.fixture
def grid(grid_field):
    return grid_field[1]


def close_to(a, b, tol=1e-9):
    return abs(a.x - b.x) <= tol and abs(a.y - b.y) <= tol


class TestStep:
    def test_idle_without_goals(self, planner):
        result = planner.step()
        assert result.goal is None
        assert result.outcome == GoalOutcome.IDLE
        assert planner.phase == PlannerState.IDLE

    def test_completes_goal(self, planner, drive, grid):
        goal = PointGoal(grid[(3, 2)].position)
        planner.add_goal(goal)
        result = planner.step()
        assert result.goal is goal
        assert result.outcome == GoalOutcome.COMPLETED
        assert planner.goals == []
        assert close_to(drive.position, goal.location)
        assert goal.visits == [drive.position]
        assert result.position == drive.position

    def test_goal_sees_acting_phase_and_state(self, planner, grid):
        goal = PhaseGoal(grid[(1, 1)].position)
        planner.add_goal(goal)
        planner.step()
        assert goal.phase == PlannerState.ACTING
        assert goal.state == {"team": "blue"}
        assert planner.phase == PlannerState.IDLE

    def test_highest_benefit_wins(self, planner, grid):
        low = PointGoal(grid[(1, 1)].position, 0.5, name="low")
        high = PointGoal(grid[(4, 4)].position, 2.0, name="high")
        planner.add_goal(low)
        planner.add_goal(high)
        assert planner.step().goal is high
        assert planner.goals == [low]

    def test_ties_go_to_earliest_goal(self, planner, grid):
        first = PointGoal(grid[(4, 4)].position, 1.0, name="first")
        second = PointGoal(grid[(1, 1)].position, 1.0, name="second")
        planner.add_goal(first)
        planner.add_goal(second)
        assert planner.step().goal is first
        assert planner.goals == [second]

    def test_add_is_idempotent(self, planner, grid):
        goal = PointGoal(grid[(1, 1)].position)
        assert planner.add_goal(goal)
        assert not planner.add_goal(goal)
        assert planner.goals == [goal]
        assert planner.remove_goal(goal)
        assert not planner.remove_goal(goal)

    def test_unreachable_goal_is_evicted(self, planner, drive, grid_field, caplog):
        field, _ = grid_field
        field.add_waypoint(field.waypoint_at(Point2D(2950, 2950)))
        goal = PointGoal(Position(2.95, 2.95))
        planner.add_goal(goal)
        start = drive.position
        with caplog.at_level(logging.WARNING):
            result = planner.step()
        assert result.outcome == GoalOutcome.EVICTED
        assert planner.goals == []
        assert goal.visits == []
        assert drive.position == start
        assert "Evicted goal" in caplog.text

    def test_hardware_failure_keeps_goal(self, planner, drive, executor, grid):
        goal = PointGoal(grid[(2, 3)].position)
        planner.add_goal(goal)
        executor.failures.append(RobotHardwareError("motor controller offline"))
        result = planner.step()
        assert result.outcome == GoalOutcome.HARDWARE_FAILURE
        assert planner.goals == [goal]
        assert drive.confidence == 0.0

        assert planner.step().outcome == GoalOutcome.COMPLETED
        assert planner.goals == []

    def test_collision_evicts_goal(self, planner, executor, grid):
        goal = PointGoal(grid[(2, 3)].position)
        planner.add_goal(goal)
        executor.failures.append(ObstacleError("bumper pressed"))
        assert planner.step().outcome == GoalOutcome.EVICTED
        assert planner.goals == []

    def test_not_localized_without_blocking(self, planner, fake_integrator, executor, grid):
        goal = PointGoal(grid[(2, 3)].position)
        planner.add_goal(goal)
        fake_integrator.script = [None]
        result = planner.step()
        assert result.outcome == GoalOutcome.NOT_LOCALIZED
        assert planner.goals == [goal]
        assert executor.executed == []

    def test_blocking_step_retries_localization(self, planner, fake_integrator, grid):
        planner.add_goal(PointGoal(grid[(2, 3)].position))
        fake_integrator.script = [None, None]
        assert planner.step(block=True).outcome == GoalOutcome.COMPLETED
        # three localization attempts, then one on arrival
        assert fake_integrator.calls == 4

    def test_arrival_falls_back_to_drive_estimate(self, planner, drive, fake_integrator, grid):
        goal = PointGoal(grid[(2, 3)].position)
        planner.add_goal(goal)
        fake_integrator.script = [drive.position, None]
        assert planner.step().outcome == GoalOutcome.COMPLETED
        assert goal.visits == [drive.position]

    def test_moves_start_from_localized_position(self, planner, drive, executor, fake_integrator, grid):
        fix = Position(0.6, 0.45, 0.0)
        goal = PointGoal(grid[(0, 1)].position)
        planner.add_goal(goal)
        fake_integrator.script = [fix]
        planner.step()
        position = fix
        for move in executor.executed:
            position = move.apply(position)
        assert close_to(position, goal.location)

    def test_failing_act_evicts_goal(self, planner, grid, caplog):
        goal = ExplodingGoal(grid[(1, 2)].position)
        planner.add_goal(goal)
        with caplog.at_level(logging.ERROR):
            result = planner.step()
        assert result.outcome == GoalOutcome.EVICTED
        assert planner.goals == []
        assert "effector jammed" in caplog.text

    def test_failing_benefit_evicts_goal(self, planner, grid):
        bad = BadBenefitGoal(grid[(1, 2)].position, name="bad")
        good = PointGoal(grid[(2, 1)].position, name="good")
        planner.add_goal(bad)
        planner.add_goal(good)
        result = planner.step()
        assert result.goal is good
        assert result.outcome == GoalOutcome.COMPLETED
        assert planner.goals == []
        assert planner.outcomes[GoalOutcome.EVICTED] == 1

    def test_act_may_add_goals(self, planner, grid):
        follow_up = PointGoal(grid[(0, 4)].position, name="follow-up")
        planner.add_goal(ChainGoal(grid[(4, 0)].position, follow_up))
        assert planner.step().outcome == GoalOutcome.COMPLETED
        assert planner.goals == [follow_up]
        assert planner.step().goal is follow_up
        assert planner.outcomes[GoalOutcome.COMPLETED] == 2


class TestDataCollection:
    def test_outcomes_written(self, drive, fake_integrator, grid_field, tmp_path):
        field, grid = grid_field
        collector = DataCollector(run_dir=str(tmp_path / "run"))
        collector.setup()
        planner = GoalPlanner(None, drive, fake_integrator, field, data_collector=collector)
        planner.add_goal(PointGoal(grid[(3, 3)].position, name="corner"))
        planner.step()
        collector.cleanup()

        goals = collector.goals_output_path.read_text().splitlines()
        assert len(goals) == 2
        assert "corner" in goals[1] and "completed" in goals[1]
        assert len(collector.localization_output_path.read_text().splitlines()) == 3
        assert len(collector.moves_output_path.read_text().splitlines()) > 1


class TestWorkerThread:
    def test_runs_goals_in_background(self, planner, grid):
        planner.start()
        planner.start()
        try:
            assert planner.running
            planner.add_goal(PointGoal(grid[(4, 4)].position))
            planner.add_goal(PointGoal(grid[(0, 4)].position))
            assert planner.wait_until_empty(timeout=10)
        finally:
            planner.stop(timeout=10)
        assert not planner.running
        assert planner.outcomes[GoalOutcome.COMPLETED] == 2
        assert planner.error is None

    def test_stop_wakes_idle_planner(self, planner):
        planner.start()
        planner.stop(timeout=10)
        assert not planner.running
        planner.stop()

    def test_stop_from_goal(self, planner, grid):
        planner.start()
        goal = StopGoal(grid[(1, 0)].position)
        planner.add_goal(goal)
        assert planner.wait_until_empty(timeout=10)
        planner.stop(timeout=10)
        assert not planner.running
        assert len(goal.visits) == 1

    def test_context_manager(self, planner, grid):
        with planner:
            planner.add_goal(PointGoal(grid[(2, 2)].position))
            assert planner.wait_until_empty(timeout=10)
        assert not planner.running

    def test_restart(self, planner, grid):
        planner.start()
        planner.stop(timeout=10)
        planner.start()
        try:
            planner.add_goal(PointGoal(grid[(1, 1)].position))
            assert planner.wait_until_empty(timeout=10)
        finally:
            planner.stop(timeout=10)

    def test_start_waits_for_worker_still_stopping(self, planner, grid):
        blocking = BlockingGoal(grid[(1, 1)].position)
        planner.start()
        planner.add_goal(blocking)
        assert blocking.entered.wait(10)
        planner.stop(timeout=0.01)
        assert planner.running

        timer = threading.Timer(0.05, blocking.release.set)
        timer.start()
        follow_up = PointGoal(grid[(2, 2)].position)
        try:
            planner.start()
            assert planner.running
            planner.add_goal(follow_up)
            assert planner.wait_until_empty(timeout=10)
        finally:
            blocking.release.set()
            timer.cancel()
            planner.stop(timeout=10)
        assert len(blocking.visits) == 1
        assert len(follow_up.visits) == 1

    def test_restart_from_goal_keeps_running(self, planner, grid):
        planner.start()
        try:
            planner.add_goal(RestartGoal(grid[(1, 0)].position))
            assert planner.wait_until_empty(timeout=10)
            follow_up = PointGoal(grid[(0, 1)].position)
            planner.add_goal(follow_up)
            assert planner.wait_until_empty(timeout=10)
            assert planner.running
        finally:
            planner.stop(timeout=10)
        assert len(follow_up.visits) == 1
