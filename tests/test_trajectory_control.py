import pathlib
import sys

import pytest

pytest.importorskip("numpy")
pytest.importorskip("casadi")

import numpy as np

_PROJECT_ROOT = pathlib.Path(__file__).resolve().parents[1]
_SRC_ROOT = _PROJECT_ROOT / "src"

if str(_SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(_SRC_ROOT))

from configuration import ControllerConfig
from mpc_solver import SolverResult
from trajectory_control import TrajectoryController, reference_trajectory
from pipeline import ControllerStatus, LocalPath, PathChannel, Pose2D, Twist2D, Waypoint


def _straight(length=3.0, points=7, y=0.0):
    xs = np.linspace(0.0, length, points)
    return LocalPath(waypoints=tuple(Waypoint(x=float(x), y=y) for x in xs), valid=True)


class FailingSolver:
    horizon = 5

    def __init__(self):
        self.calls = 0

    def solve(self, x0, reference, v_ref, u_prev, warm_start=None):
        self.calls += 1
        return SolverResult(
            success=False,
            states=np.zeros((self.horizon + 1, 4)),
            controls=np.full((self.horizon, 2), np.nan),
            message="Maximum_Iterations_Exceeded",
        )


class ResetDuringPoll(PathChannel):
    """Runs a controller reset between taking a snapshot and handing it over."""

    def __init__(self):
        super().__init__()
        self.controller = None

    def poll(self, since):
        update = super().poll(since)
        if update is not None and self.controller is not None:
            self.clear()
            self.controller.reset_controller()
        return update


# -------------------------
# Reference resampling
# -------------------------

def test_reference_advances_along_path_with_tapered_speed():
    path = np.array([[0.0, 0.0], [1.0, 0.0]])
    reference, v_ref = reference_trajectory(path, (0.0, 0.0), 5, 0.1, 0.8, 1.0)

    assert reference.shape == (5, 3)
    assert v_ref.shape == (5,)
    assert reference[0, 0] == pytest.approx(0.08)
    assert np.all(np.diff(reference[:, 0]) > 0.0)
    np.testing.assert_allclose(reference[:, 1:], 0.0)
    assert np.all(v_ref <= 0.8 + 1e-12)
    assert v_ref[-1] < 0.8


def test_reference_projects_vehicle_onto_path():
    path = np.array([[0.0, 0.0], [2.0, 0.0], [2.0, 2.0]])
    reference, _ = reference_trajectory(path, (1.0, 0.7), 3, 0.1, 0.5, 10.0)
    # Starts from the projection (1, 0), not from the nearest vertex.
    assert reference[0, 0] == pytest.approx(1.05)
    assert reference[0, 1] == pytest.approx(0.0)


def test_reference_at_path_end_holds_position():
    path = np.array([[0.0, 0.0], [1.0, 0.0], [1.0, 0.0], [1.0, 0.0]])
    reference, v_ref = reference_trajectory(path, (1.0, 0.0), 4, 0.1, 0.8, 1.0)
    np.testing.assert_allclose(reference[:, 0], 1.0)
    np.testing.assert_allclose(v_ref, 0.0)


def test_reference_of_degenerate_path_uses_fallback_heading():
    reference, v_ref = reference_trajectory(np.array([[2.0, 1.0]]), (0.0, 0.0), 3, 0.1, 0.8, 1.0, fallback_heading=0.4)
    np.testing.assert_allclose(reference, [[2.0, 1.0, 0.4]] * 3)
    np.testing.assert_allclose(v_ref, 0.0)


# -------------------------
# State machine
# -------------------------

def test_status_transitions():
    controller = TrajectoryController(ControllerConfig(horizon=5), solver=FailingSolver())
    assert controller.status is ControllerStatus.UNINITIALIZED

    controller.observe(Twist2D(0.0, 0.0), Pose2D(0.0, 0.0, 0.0))
    assert controller.status is ControllerStatus.UNINITIALIZED

    controller.on_path_received(_straight())
    assert controller.status is ControllerStatus.TRACKING
    assert controller.path_xy.shape == (controller.capacity, 2)
    np.testing.assert_allclose(controller.goal, [3.0, 0.0, 0.0])

    controller.on_path_received(LocalPath.empty())
    assert controller.status is ControllerStatus.IDLE
    assert controller.goal is None

    controller.on_path_received(_straight())
    assert controller.reset_controller() is True
    assert controller.status is ControllerStatus.IDLE
    assert controller.path_xy.shape == (0, 2)


def test_invalid_path_is_treated_as_empty():
    controller = TrajectoryController(ControllerConfig(horizon=5), solver=FailingSolver())
    controller.observe(Twist2D(0.0, 0.0), Pose2D())
    controller.on_path_received(LocalPath(waypoints=_straight().waypoints, valid=False))
    assert controller.status is ControllerStatus.IDLE


def test_long_path_is_truncated_to_capacity():
    controller = TrajectoryController(ControllerConfig(horizon=5, path_capacity=4), solver=FailingSolver())
    controller.on_path_received(_straight(length=9.0, points=10))
    np.testing.assert_allclose(controller.path_xy[:, 0], [0.0, 1.0, 2.0, 3.0])
    np.testing.assert_allclose(controller.goal, [3.0, 0.0, 0.0])


# -------------------------
# Neutral command
# -------------------------

def test_neutral_command_brakes_without_reversing():
    controller = TrajectoryController(ControllerConfig(horizon=5, step_duration=0.1, min_acceleration=-2.0), solver=FailingSolver())
    assert controller.neutral_command(1.0).acceleration == pytest.approx(-2.0)
    assert controller.neutral_command(0.1).acceleration == pytest.approx(-1.0)
    assert controller.neutral_command(0.0).acceleration == 0.0
    assert controller.neutral_command(1.0).steering_angle == 0.0


def test_neutral_command_defaults_to_observed_speed():
    controller = TrajectoryController(ControllerConfig(horizon=5), solver=FailingSolver())
    controller.observe(Twist2D(1.0, 0.0), Pose2D())
    assert controller.neutral_command() == controller.neutral_command(1.0)
    assert controller.neutral_command().acceleration < 0.0


@pytest.mark.parametrize("path", [LocalPath.empty(), LocalPath(waypoints=(Waypoint(1.0, 0.0),), valid=True)])
def test_short_paths_yield_neutral_command(path):
    solver = FailingSolver()
    controller = TrajectoryController(ControllerConfig(horizon=5), solver=solver)
    controller.observe(Twist2D(0.5, 0.0), Pose2D())
    controller.on_path_received(path)

    command = controller.control()

    assert command == controller.neutral_command(0.5)
    assert solver.calls == 0


def test_control_before_any_input_is_neutral():
    solver = FailingSolver()
    controller = TrajectoryController(ControllerConfig(horizon=5), solver=solver)
    command = controller.control()
    assert command.steering_angle == 0.0
    assert command.acceleration == 0.0
    assert solver.calls == 0


def test_reset_then_control_is_neutral():
    solver = FailingSolver()
    controller = TrajectoryController(ControllerConfig(horizon=5), solver=solver)
    controller.observe(Twist2D(0.8, 0.0), Pose2D())
    controller.on_path_received(_straight())
    controller.reset_controller()

    command = controller.control()

    assert command == controller.neutral_command(0.8)
    assert solver.calls == 0


def test_solver_failure_degrades_to_neutral_command():
    solver = FailingSolver()
    controller = TrajectoryController(ControllerConfig(horizon=5), solver=solver)
    controller.observe(Twist2D(0.5, 0.0), Pose2D())
    controller.on_path_received(_straight())

    command = controller.control()

    assert solver.calls == 1
    assert command == controller.neutral_command(0.5)
    assert controller.last_result is not None and not controller.last_result.success
    assert controller.state.last_acceleration == pytest.approx(command.acceleration)


# -------------------------
# Channel hand-off and tracking
# -------------------------

def test_control_takes_newest_path_from_channel():
    channel = PathChannel()
    solver = FailingSolver()
    controller = TrajectoryController(ControllerConfig(horizon=5), channel=channel, solver=solver)
    controller.observe(Twist2D(0.0, 0.0), Pose2D())

    channel.publish(_straight(length=1.0))
    channel.publish(_straight(length=2.0))
    controller.control()

    assert controller.status is ControllerStatus.TRACKING
    np.testing.assert_allclose(controller.goal[:2], [2.0, 0.0])

    channel.publish(LocalPath.empty())
    controller.control()
    assert controller.status is ControllerStatus.IDLE


def test_reset_ignores_snapshot_published_before_it():
    channel = PathChannel()
    solver = FailingSolver()
    controller = TrajectoryController(ControllerConfig(horizon=5), channel=channel, solver=solver)
    controller.observe(Twist2D(0.0, 0.0), Pose2D())
    channel.publish(_straight())
    controller.reset_controller()

    controller.control()

    assert controller.status is ControllerStatus.IDLE
    assert solver.calls == 0


def test_reset_racing_a_poll_drops_the_polled_snapshot():
    channel = ResetDuringPoll()
    solver = FailingSolver()
    controller = TrajectoryController(ControllerConfig(horizon=5), channel=channel, solver=solver)
    channel.controller = controller
    controller.observe(Twist2D(0.5, 0.0), Pose2D())
    channel.publish(_straight())

    command = controller.control()

    assert controller.status is ControllerStatus.IDLE
    assert controller.path_xy.shape == (0, 2)
    assert command == controller.neutral_command(0.5)
    assert solver.calls == 0


def test_snapshot_versions_are_taken_once():
    controller = TrajectoryController(ControllerConfig(horizon=5), solver=FailingSolver())
    controller.observe(Twist2D(0.0, 0.0), Pose2D())
    controller.on_path_received(_straight(), version=2)
    controller.on_path_received(LocalPath.empty(), version=2)
    assert controller.status is ControllerStatus.TRACKING


@pytest.mark.parametrize("backend", ["ipopt", "slsqp"])
def test_tracks_straight_path(backend):
    config = ControllerConfig(horizon=8)
    config.solver.backend = backend
    config.solver.max_iter = 200
    controller = TrajectoryController(config)
    controller.observe(Twist2D(0.5, 0.0), Pose2D(0.0, 0.0, 0.0))
    controller.on_path_received(_straight(length=4.0, points=9))

    command = controller.control()

    assert controller.last_result.success
    assert abs(command.steering_angle) < 1e-2
    assert command.acceleration > 0.0
    assert controller._warm_start is controller.last_result


def test_steers_back_towards_offset_path():
    controller = TrajectoryController(ControllerConfig(horizon=8))
    controller.observe(Twist2D(0.5, 0.0), Pose2D(0.0, 0.5, 0.0))
    controller.on_path_received(_straight(length=4.0, points=9))

    first = controller.control()
    second = controller.control()

    assert controller.last_result.success
    assert first.steering_angle < 0.0
    # Steering-rate limit relative to the previous command.
    assert abs(first.steering_angle) <= 2.0 * 0.1 + 1e-4
    assert abs(second.steering_angle - first.steering_angle) <= 2.0 * 0.1 + 1e-4
