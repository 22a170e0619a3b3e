import math
import pathlib
import sys

import pytest

pytest.importorskip("numpy")

import numpy as np

_PROJECT_ROOT = pathlib.Path(__file__).resolve().parents[1]
_SRC_ROOT = _PROJECT_ROOT / "src"

if str(_SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(_SRC_ROOT))

from path_utils import (
    circumscribed_radius,
    goal_from_path,
    oriented_footprint,
    pad_or_truncate,
    prune_count,
    prune_path,
    to_waypoints,
    wrap_angle,
)
from pipeline import Pose2D, Waypoint


def _path(*points):
    return [Waypoint(x=float(x), y=float(y)) for x, y in points]


def test_prune_keeps_waypoint_exactly_on_threshold():
    path = _path((0.5, 0.0), (1.0, 0.0))
    # Squared distance is exactly 0.25 for the first point.
    assert prune_count(Pose2D(0.0, 0.0), path) == 0


def test_prune_drops_waypoint_just_inside_threshold():
    path = _path((0.49, 0.0), (1.0, 0.0))
    assert prune_count(Pose2D(0.0, 0.0), path) == 1


def test_prune_stops_at_first_distant_waypoint():
    # The third point is close again but lies behind the stop point.
    path = _path((0.1, 0.0), (2.0, 0.0), (0.2, 0.0), (3.0, 0.0))
    pruned = prune_path(Pose2D(0.0, 0.0), path)
    assert [(w.x, w.y) for w in pruned] == [(2.0, 0.0), (0.2, 0.0), (3.0, 0.0)]


def test_prune_can_empty_a_short_path():
    path = _path((0.0, 0.0), (0.2, 0.0), (0.4, 0.0))
    assert prune_path(Pose2D(0.05, 0.0), path) == []


def test_prune_respects_trailing_points():
    path = _path((0.0, 0.0), (0.2, 0.0), (0.4, 0.0))
    pruned = prune_path(Pose2D(0.05, 0.0), path, keep_last=2)
    assert [(w.x, w.y) for w in pruned] == [(0.2, 0.0), (0.4, 0.0)]


def test_prune_of_empty_path_is_empty():
    assert prune_path(Pose2D(), []) == []


def test_goal_heading_follows_last_segment():
    goal = goal_from_path(_path((0.0, 0.0), (1.0, 1.0)), 0.1, 0.2)
    assert goal.x == pytest.approx(1.0)
    assert goal.y == pytest.approx(1.0)
    assert goal.heading == pytest.approx(math.pi / 4)
    assert goal.xy_tolerance == pytest.approx(0.1)
    assert goal.yaw_tolerance == pytest.approx(0.2)


def test_goal_of_single_point_uses_its_heading():
    goal = goal_from_path([Waypoint(x=2.0, y=0.0, heading=0.7)], 0.1, 0.2)
    assert goal.heading == pytest.approx(0.7)


def test_goal_of_empty_path_is_none():
    assert goal_from_path([], 0.1, 0.2) is None


def test_to_waypoints_fills_headings_from_next_segment():
    waypoints = to_waypoints([(0.0, 0.0), (1.0, 0.0), (1.0, 1.0)], "odom")
    assert [w.heading for w in waypoints] == pytest.approx([0.0, math.pi / 2, math.pi / 2])
    assert all(w.frame_id == "odom" for w in waypoints)
    assert [w.index for w in waypoints] == [0, 1, 2]


def test_to_waypoints_keeps_given_headings():
    waypoints = to_waypoints([(0.0, 0.0, 0.3), (1.0, 0.0, -0.3)], "odom")
    assert [w.heading for w in waypoints] == pytest.approx([0.3, -0.3])


def test_to_waypoints_rejects_flat_input():
    assert to_waypoints([], "odom") == []
    with pytest.raises(ValueError):
        to_waypoints([1.0, 2.0], "odom")


def test_pad_or_truncate_repeats_last_point():
    xy = np.array([[0.0, 0.0], [1.0, 0.0]])
    padded = pad_or_truncate(xy, 4)
    assert padded.shape == (4, 2)
    np.testing.assert_allclose(padded[2:], [[1.0, 0.0], [1.0, 0.0]])
    assert pad_or_truncate(np.arange(10.0).reshape(5, 2), 3).shape == (3, 2)
    assert pad_or_truncate(np.zeros((0, 2)), 3).shape == (0, 2)


def test_footprint_helpers():
    square = [(1.0, 0.0), (0.0, 1.0), (-1.0, 0.0), (0.0, -1.0)]
    assert circumscribed_radius(square) == pytest.approx(1.0)
    moved = oriented_footprint(Pose2D(2.0, 0.0, math.pi / 2), square)
    np.testing.assert_allclose(moved[0], [2.0, 1.0], atol=1e-12)


def test_wrap_angle_range():
    assert wrap_angle(3 * math.pi / 2) == pytest.approx(-math.pi / 2)
    assert -math.pi <= wrap_angle(math.pi) < math.pi
