"""Geometry helpers for plans and local paths."""

from __future__ import annotations

import math
from typing import List, Optional, Sequence

import numpy as np

from pipeline.interfaces import GoalTarget, Pose2D, Waypoint

# Squared distance under which a waypoint counts as already traversed.
PRUNE_DISTANCE_SQ = 0.25

# -------------------------
# Utilities
# -------------------------

def wrap_angle(angle: float) -> float:
    """Wrap an angle to [-pi, pi)."""
    return float((angle + np.pi) % (2.0 * np.pi) - np.pi)


def shortest_angular_distance(start: float, end: float) -> float:
    return wrap_angle(end - start)


def squared_distance(pose: Pose2D, waypoint: Waypoint) -> float:
    dx = pose.x - waypoint.x
    dy = pose.y - waypoint.y
    return dx * dx + dy * dy


# -------------------------
# Pruning
# -------------------------

def prune_count(
    pose: Pose2D,
    path: Sequence[Waypoint],
    keep_last: int = 0,
    threshold_sq: float = PRUNE_DISTANCE_SQ,
) -> int:
    """
    Number of leading waypoints that pruning would remove.

    Waypoints are dropped front to back while their squared distance to the
    vehicle is strictly below ``threshold_sq``; the first waypoint at or beyond
    the threshold stops the scan. ``keep_last`` trailing waypoints are never
    removed.
    """
    limit = max(len(path) - max(int(keep_last), 0), 0)
    count = 0
    while count < limit and squared_distance(pose, path[count]) < threshold_sq:
        count += 1
    return count


def prune_path(
    pose: Pose2D,
    path: Sequence[Waypoint],
    keep_last: int = 0,
    threshold_sq: float = PRUNE_DISTANCE_SQ,
) -> List[Waypoint]:
    """Return ``path`` without the traversed waypoints at its front."""
    removed = prune_count(pose, path, keep_last=keep_last, threshold_sq=threshold_sq)
    return list(path[removed:])


# -------------------------
# Goal and headings
# -------------------------

def goal_from_path(
    path: Sequence[Waypoint],
    xy_tolerance: float,
    yaw_tolerance: float,
) -> Optional[GoalTarget]:
    """
    Goal pose at the end of ``path``.

    The heading is the direction of the last segment; with a single point the
    point's own heading is used. Returns ``None`` for an empty path.
    """
    if not path:
        return None
    last = path[-1]
    if len(path) >= 2:
        before = path[-2]
        heading = math.atan2(last.y - before.y, last.x - before.x)
    else:
        heading = last.heading
    return GoalTarget(
        x=float(last.x),
        y=float(last.y),
        heading=float(heading),
        xy_tolerance=float(xy_tolerance),
        yaw_tolerance=float(yaw_tolerance),
    )


def to_waypoints(points: Sequence[Sequence[float]], frame_id: str) -> List[Waypoint]:
    """
    Convert planner output into waypoints with a heading on every point.

    Points may be ``(x, y)`` or ``(x, y, heading)``. Missing headings follow the
    direction of the next segment; the last point reuses the previous heading.
    """
    array = np.asarray(points, dtype=float)
    if array.size == 0:
        return []
    if array.ndim != 2 or array.shape[1] < 2:
        raise ValueError(f"Expected points with shape [N, 2] or [N, 3], got {array.shape}")

    if array.shape[1] >= 3:
        headings = array[:, 2]
    else:
        headings = np.zeros(array.shape[0], dtype=float)
        if array.shape[0] >= 2:
            delta = np.diff(array[:, :2], axis=0)
            segment_headings = np.arctan2(delta[:, 1], delta[:, 0])
            headings[:-1] = segment_headings
            headings[-1] = segment_headings[-1]

    return [
        Waypoint(x=float(px), y=float(py), heading=float(th), frame_id=frame_id, index=i)
        for i, (px, py, th) in enumerate(zip(array[:, 0], array[:, 1], headings))
    ]


def pad_or_truncate(xy: np.ndarray, capacity: int) -> np.ndarray:
    """Fit a [N, 2] path into ``capacity`` rows, repeating the last point."""
    if xy.shape[0] == 0:
        return np.zeros((0, 2), dtype=float)
    if xy.shape[0] >= capacity:
        return np.array(xy[:capacity], dtype=float)
    padding = np.repeat(xy[-1:], capacity - xy.shape[0], axis=0)
    return np.vstack([xy, padding]).astype(float, copy=False)


# -------------------------
# Footprint
# -------------------------

def oriented_footprint(pose: Pose2D, footprint: Sequence[Sequence[float]]) -> np.ndarray:
    """Rotate and translate a body-frame footprint polygon to ``pose``."""
    polygon = np.asarray(footprint, dtype=float).reshape(-1, 2)
    c, s = math.cos(pose.heading), math.sin(pose.heading)
    rotation = np.array([[c, -s], [s, c]])
    return polygon @ rotation.T + np.array([pose.x, pose.y])


def circumscribed_radius(footprint: Sequence[Sequence[float]]) -> float:
    polygon = np.asarray(footprint, dtype=float).reshape(-1, 2)
    if polygon.size == 0:
        return 0.0
    return float(np.max(np.hypot(polygon[:, 0], polygon[:, 1])))
