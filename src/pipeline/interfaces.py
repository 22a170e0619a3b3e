"""Interfaces shared by the planning and control stages."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Protocol, Sequence, Tuple, runtime_checkable

import numpy as np

from .errors import CollisionDetected, NavigationError, NoPathFound, TransformError


@dataclass(frozen=True)
class Pose2D:
    """Planar pose; the frame is implied by the owner."""

    x: float = 0.0
    y: float = 0.0
    heading: float = 0.0

    def as_array(self) -> np.ndarray:
        return np.array([self.x, self.y, self.heading], dtype=float)

    def distance_to(self, other: "Pose2D") -> float:
        return float(math.hypot(other.x - self.x, other.y - self.y))


@dataclass(frozen=True)
class Waypoint:
    """Frame-qualified pose along a plan or local path."""

    x: float
    y: float
    heading: float = 0.0
    frame_id: str = "map"
    index: Optional[int] = None

    @property
    def pose(self) -> Pose2D:
        return Pose2D(self.x, self.y, self.heading)


@dataclass(frozen=True)
class Twist2D:
    """Velocity reading of the vehicle base."""

    linear: float = 0.0
    angular: float = 0.0


@dataclass
class VehicleState:
    """Estimate maintained by the trajectory controller."""

    x: float = 0.0
    y: float = 0.0
    heading: float = 0.0
    linear_velocity: float = 0.0
    angular_velocity: float = 0.0
    last_acceleration: float = 0.0
    last_steering_angle: float = 0.0

    def as_array(self) -> np.ndarray:
        return np.array([self.x, self.y, self.heading, self.linear_velocity], dtype=float)


@dataclass(frozen=True)
class GoalTarget:
    """Position and heading the vehicle must reach, with tolerances."""

    x: float
    y: float
    heading: float
    xy_tolerance: float
    yaw_tolerance: float

    @property
    def pose(self) -> Pose2D:
        return Pose2D(self.x, self.y, self.heading)


@dataclass(frozen=True)
class SearchBound:
    """Symmetric planner search box centred on the vehicle."""

    width: float = 6.0
    height: float = 6.0
    heading_range: float = math.pi


@dataclass(frozen=True)
class LocalPath:
    """Immutable snapshot of an accepted local path."""

    waypoints: Tuple[Waypoint, ...] = ()
    valid: bool = False

    def __len__(self) -> int:
        return len(self.waypoints)

    def xy(self) -> np.ndarray:
        """Return the path as an array with shape [N, 2]."""

        if not self.waypoints:
            return np.zeros((0, 2), dtype=float)
        return np.array([[w.x, w.y] for w in self.waypoints], dtype=float)

    @classmethod
    def empty(cls) -> "LocalPath":
        return cls(waypoints=(), valid=False)


@dataclass(frozen=True)
class ControlCommand:
    """Steering and acceleration command sent to the vehicle."""

    steering_angle: float = 0.0
    acceleration: float = 0.0

    @classmethod
    def zero(cls) -> "ControlCommand":
        return cls(0.0, 0.0)

    def as_array(self) -> np.ndarray:
        return np.array([self.steering_angle, self.acceleration], dtype=np.float32)


class FailureReason(Enum):
    POSE_UNAVAILABLE = "pose_unavailable"
    TRANSFORM_FAILED = "transform_failed"
    EMPTY_PLAN = "empty_plan"
    COLLISION = "collision"
    NO_PATH_FOUND = "no_path_found"
    PROVIDER_FAILED = "provider_failed"


@dataclass(frozen=True)
class CommandResult:
    """Outcome of one path-management cycle."""

    success: bool
    command: ControlCommand = field(default_factory=ControlCommand.zero)
    reason: Optional[FailureReason] = None

    def __bool__(self) -> bool:
        return self.success

    @classmethod
    def ok(cls) -> "CommandResult":
        return cls(success=True)

    @classmethod
    def failed(cls, reason: FailureReason) -> "CommandResult":
        return cls(success=False, reason=reason)

    def raise_for_failure(self) -> None:
        """Raise the matching :class:`NavigationError` if this cycle failed."""

        if self.success:
            return
        error = _FAILURE_ERRORS.get(self.reason, NavigationError)
        raise error(f"Planning cycle failed: {self.reason.value if self.reason else 'unknown'}")


_FAILURE_ERRORS = {
    FailureReason.TRANSFORM_FAILED: TransformError,
    FailureReason.COLLISION: CollisionDetected,
    FailureReason.NO_PATH_FOUND: NoPathFound,
}


class ControllerStatus(Enum):
    UNINITIALIZED = "uninitialized"
    TRACKING = "tracking"
    IDLE = "idle"


class PathProvider(Protocol):
    """Short-horizon path generator with a collision oracle."""

    def request_path(self, start: Pose2D, goal: GoalTarget, bound: SearchBound) -> Sequence[Sequence[float]]:
        ...

    def is_state_valid(self, pose: Pose2D) -> bool:
        ...


class TransformService(Protocol):
    """Converts plans between named planar frames."""

    def transform_plan(self, plan: Sequence[Waypoint], target_frame: str) -> Sequence[Waypoint]:
        ...


class PoseSource(Protocol):
    def get_pose(self) -> Optional[Pose2D]:
        ...


class ControllerResetService(Protocol):
    """Remote reset of the trajectory controller; returns an acknowledgement."""

    def reset(self) -> bool:
        ...


class VehicleInterface(Protocol):
    """Odometry feed in, steering/acceleration command out."""

    def read_odometry(self) -> Tuple[Pose2D, Twist2D]:
        ...

    def send(self, command: ControlCommand) -> None:
        ...


@runtime_checkable
class TelemetryObserver(Protocol):
    """Non-authoritative consumers of plans and footprints."""

    def on_global_plan(self, plan: Sequence[Waypoint]) -> None:
        ...

    def on_local_path(self, path: LocalPath) -> None:
        ...

    def on_footprint(self, polygon: np.ndarray) -> None:
        ...
