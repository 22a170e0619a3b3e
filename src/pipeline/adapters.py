"""Collaborator adapters: frame transforms, path provider, reset signal, vehicle."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np
from scipy.interpolate import CubicHermiteSpline

from configuration import PlannerConfig
from path_utils import circumscribed_radius, shortest_angular_distance

from .errors import InitializationError, TransformError
from .interfaces import ControlCommand, GoalTarget, PathProvider, Pose2D, SearchBound, Twist2D, Waypoint

logger = logging.getLogger(__name__)


# -------------------------
# Frame transforms
# -------------------------

def _compose(transform: Pose2D, waypoint: Waypoint, frame_id: str) -> Waypoint:
    c, s = math.cos(transform.heading), math.sin(transform.heading)
    return Waypoint(
        x=transform.x + c * waypoint.x - s * waypoint.y,
        y=transform.y + s * waypoint.x + c * waypoint.y,
        heading=waypoint.heading + transform.heading,
        frame_id=frame_id,
        index=waypoint.index,
    )


def _invert(transform: Pose2D) -> Pose2D:
    c, s = math.cos(transform.heading), math.sin(transform.heading)
    return Pose2D(
        x=-(c * transform.x + s * transform.y),
        y=s * transform.x - c * transform.y,
        heading=-transform.heading,
    )


class StaticTransformService:
    """Fixed planar transforms between named frames.

    ``transforms[(source, target)]`` is the pose of ``source`` expressed in
    ``target``; the inverse direction is derived automatically.
    """

    def __init__(self, transforms: Optional[Mapping[Tuple[str, str], Pose2D]] = None) -> None:
        self._transforms: Dict[Tuple[str, str], Pose2D] = dict(transforms or {})

    def set_transform(self, source: str, target: str, transform: Pose2D) -> None:
        self._transforms[(source, target)] = transform

    def _lookup(self, source: str, target: str) -> Pose2D:
        if (source, target) in self._transforms:
            return self._transforms[(source, target)]
        if (target, source) in self._transforms:
            return _invert(self._transforms[(target, source)])
        raise TransformError(f"No transform from {source!r} to {target!r}")

    def transform_plan(self, plan: Sequence[Waypoint], target_frame: str) -> List[Waypoint]:
        transformed = []
        for waypoint in plan:
            if waypoint.frame_id == target_frame:
                transformed.append(waypoint)
                continue
            transformed.append(_compose(self._lookup(waypoint.frame_id, target_frame), waypoint, target_frame))
        return transformed


# -------------------------
# Path provider
# -------------------------

@dataclass(frozen=True)
class CircleObstacle:
    x: float
    y: float
    radius: float


class HermitePathProvider:
    """
    Local paths as cubic Hermite splines between start and goal poses.

    The direct spline is tried first. When it collides, via points offset
    laterally from the chord midpoint are sampled (``num_samples`` of them) and
    up to ``num_paths`` collision-free candidates are kept; the shortest wins.
    The goal is pulled inside the search bound before planning.
    """

    def __init__(
        self,
        num_samples: int = 4,
        num_paths: int = 2,
        points_per_path: int = 20,
        footprint: Sequence[Sequence[float]] = ((0.45, 0.15), (-0.1, 0.15), (-0.1, -0.15), (0.45, -0.15)),
        obstacles: Sequence[CircleObstacle] = (),
        clearance: float = 0.05,
        lateral_step: float = 0.5,
    ) -> None:
        self.num_samples = max(int(num_samples), 0)
        self.num_paths = max(int(num_paths), 1)
        self.points_per_path = max(int(points_per_path), 2)
        self.robot_radius = circumscribed_radius(footprint)
        self.obstacles = tuple(obstacles)
        self.clearance = float(clearance)
        self.lateral_step = float(lateral_step)

    @classmethod
    def from_config(cls, config: PlannerConfig, obstacles: Sequence[CircleObstacle] = ()) -> "HermitePathProvider":
        return cls(
            num_samples=config.num_samples,
            num_paths=config.num_paths,
            points_per_path=config.points_per_path,
            footprint=config.footprint,
            obstacles=obstacles,
            clearance=config.obstacle_clearance,
        )

    # ----- collision -----

    def _point_is_free(self, x: float, y: float) -> bool:
        margin = self.robot_radius + self.clearance
        return all(math.hypot(x - o.x, y - o.y) > o.radius + margin for o in self.obstacles)

    def is_state_valid(self, pose: Pose2D) -> bool:
        return self._point_is_free(pose.x, pose.y)

    def _path_is_free(self, points: np.ndarray) -> bool:
        return all(self._point_is_free(px, py) for px, py in points[:, :2])

    # ----- geometry -----

    def _clip_goal(self, start: Pose2D, goal: GoalTarget, bound: SearchBound) -> np.ndarray:
        dx, dy = goal.x - start.x, goal.y - start.y
        scale = 1.0
        if abs(dx) > 0.5 * bound.width:
            scale = min(scale, 0.5 * bound.width / abs(dx))
        if abs(dy) > 0.5 * bound.height:
            scale = min(scale, 0.5 * bound.height / abs(dy))
        heading = goal.heading if scale >= 1.0 else math.atan2(dy, dx)
        offset = shortest_angular_distance(start.heading, heading)
        offset = float(np.clip(offset, -bound.heading_range, bound.heading_range))
        return np.array([start.x + scale * dx, start.y + scale * dy, start.heading + offset])

    def _spline(self, knots: np.ndarray, headings: np.ndarray) -> np.ndarray:
        chords = np.hypot(*np.diff(knots, axis=0).T)
        t = np.concatenate([[0.0], np.cumsum(chords)])
        tangents = np.column_stack([np.cos(headings), np.sin(headings)])
        spline = CubicHermiteSpline(t, knots, tangents, axis=0)
        samples = np.linspace(0.0, t[-1], self.points_per_path)
        xy = spline(samples)
        velocity = spline.derivative()(samples)
        heading = np.arctan2(velocity[:, 1], velocity[:, 0])
        return np.column_stack([xy, heading])

    @staticmethod
    def _length(points: np.ndarray) -> float:
        return float(np.sum(np.hypot(*np.diff(points[:, :2], axis=0).T)))

    # ----- planning -----

    def request_path(self, start: Pose2D, goal: GoalTarget, bound: SearchBound) -> List[Tuple[float, float, float]]:
        end = self._clip_goal(start, goal, bound)
        begin = np.array([start.x, start.y])
        chord = end[:2] - begin
        distance = float(np.hypot(*chord))
        if distance < 1e-6:
            return []

        direct = self._spline(np.vstack([begin, end[:2]]), np.array([start.heading, end[2]]))
        if self._path_is_free(direct):
            return [tuple(p) for p in direct]

        direction = chord / distance
        normal = np.array([-direction[1], direction[0]])
        midpoint = begin + 0.5 * chord
        chord_heading = math.atan2(direction[1], direction[0])

        candidates = []
        for i in range(self.num_samples):
            side = 1.0 if i % 2 == 0 else -1.0
            via = midpoint + side * (i // 2 + 1) * self.lateral_step * normal
            if abs(via[0] - start.x) > 0.5 * bound.width or abs(via[1] - start.y) > 0.5 * bound.height:
                continue
            knots = np.vstack([begin, via, end[:2]])
            path = self._spline(knots, np.array([start.heading, chord_heading, end[2]]))
            if self._path_is_free(path):
                candidates.append(path)
                if len(candidates) >= self.num_paths:
                    break

        if not candidates:
            logger.debug("No collision-free local path between (%.2f, %.2f) and (%.2f, %.2f)", start.x, start.y, end[0], end[1])
            return []
        best = min(candidates, key=self._length)
        return [tuple(p) for p in best]


def make_path_provider(
    handle: Optional[str],
    config: PlannerConfig,
    obstacles: Sequence[CircleObstacle] = (),
) -> PathProvider:
    """Resolve a provider handle from configuration."""

    if not handle:
        raise InitializationError("No path provider specified, did not initialize planner")
    factory = PATH_PROVIDERS.get(handle)
    if factory is None:
        raise InitializationError(f"Unknown path provider {handle!r}; available: {sorted(PATH_PROVIDERS)}")
    return factory(config, obstacles)


PATH_PROVIDERS: Dict[str, Callable[[PlannerConfig, Sequence[CircleObstacle]], PathProvider]] = {
    "hermite": HermitePathProvider.from_config,
}


# -------------------------
# Reset signal and vehicle
# -------------------------

class CallbackResetService:
    """Acknowledging wrapper around the controller's reset hook."""

    def __init__(self, callback: Callable[[], Any]) -> None:
        self.callback = callback

    def reset(self) -> bool:
        try:
            result = self.callback()
        except Exception as exc:
            logger.warning("Controller reset failed: %s", exc)
            return False
        return result is None or bool(result)


class EnvVehicleInterface:
    """Pose source and vehicle interface backed by a simulation environment."""

    def __init__(self, env: Any) -> None:
        self.env = env
        self.last_step: Optional[tuple] = None

    def get_pose(self) -> Optional[Pose2D]:
        return Pose2D(*self.env.unwrapped.pose)

    def read_odometry(self) -> Tuple[Pose2D, Twist2D]:
        base = self.env.unwrapped
        return Pose2D(*base.pose), Twist2D(linear=base.speed, angular=base.yaw_rate)

    def send(self, command: ControlCommand) -> None:
        self.last_step = self.env.step(command.as_array())
