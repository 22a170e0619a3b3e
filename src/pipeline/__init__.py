"""Shared types, channel and telemetry for the local navigation stack.

Adapters, the control loop and the composition root live in
``pipeline.adapters``, ``pipeline.control`` and ``pipeline.core``; they depend
on the top-level planning and control modules and are imported explicitly.
"""

from .channel import PathChannel
from .errors import (
    CollisionDetected,
    InitializationError,
    NavigationError,
    NoPathFound,
    NotInitializedError,
    SolverNonconvergence,
    TransformError,
)
from .interfaces import (
    CommandResult,
    ControlCommand,
    ControllerResetService,
    ControllerStatus,
    FailureReason,
    GoalTarget,
    LocalPath,
    PathProvider,
    Pose2D,
    PoseSource,
    SearchBound,
    TelemetryObserver,
    TransformService,
    Twist2D,
    VehicleInterface,
    VehicleState,
    Waypoint,
)
from .telemetry import LoggingTelemetry, TelemetryRecorder, plan_to_array

__all__ = [
    "PathChannel",
    "CollisionDetected",
    "InitializationError",
    "NavigationError",
    "NoPathFound",
    "NotInitializedError",
    "SolverNonconvergence",
    "TransformError",
    "CommandResult",
    "ControlCommand",
    "ControllerResetService",
    "ControllerStatus",
    "FailureReason",
    "GoalTarget",
    "LocalPath",
    "PathProvider",
    "Pose2D",
    "PoseSource",
    "SearchBound",
    "TelemetryObserver",
    "TransformService",
    "Twist2D",
    "VehicleInterface",
    "VehicleState",
    "Waypoint",
    "LoggingTelemetry",
    "TelemetryRecorder",
    "plan_to_array",
]
