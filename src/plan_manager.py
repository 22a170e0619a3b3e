"""Path management: global plan bookkeeping, local path requests and goal checks."""

from __future__ import annotations

import logging
import math
from typing import Callable, List, Optional, Sequence

from configuration import PlannerConfig
from path_utils import goal_from_path, oriented_footprint, prune_count, prune_path, to_waypoints
from pipeline.channel import PathChannel
from pipeline.errors import NotInitializedError, TransformError
from pipeline.interfaces import (
    CommandResult,
    ControllerResetService,
    FailureReason,
    LocalPath,
    PathProvider,
    Pose2D,
    PoseSource,
    SearchBound,
    TelemetryObserver,
    TransformService,
    Waypoint,
)

logger = logging.getLogger(__name__)

# The final segment defines the goal heading, so it always survives pruning.
_GOAL_POINTS = 2

ProviderFactory = Callable[[Optional[str], PlannerConfig], PathProvider]


class PlanManager:
    """Turn a global plan and the live pose into a validated local path.

    One :meth:`compute_command` call is one planning cycle, invoked by the host
    at whatever rate it likes. The accepted local path is published on the
    :class:`PathChannel`; propulsion itself comes from the trajectory
    controller on its own schedule.
    """

    def __init__(
        self,
        transform_service: TransformService,
        pose_source: PoseSource,
        reset_service: ControllerResetService,
        channel: PathChannel,
        provider_factory: ProviderFactory,
        observers: Sequence[TelemetryObserver] = (),
    ) -> None:
        self.transform_service = transform_service
        self.pose_source = pose_source
        self.reset_service = reset_service
        self.channel = channel
        self.provider_factory = provider_factory
        self.observers = tuple(observers)

        self.config: Optional[PlannerConfig] = None
        self.provider: Optional[PathProvider] = None
        self.search_bound = SearchBound()
        self._initialized = False

        self._global_plan: List[Waypoint] = []
        self._local_plan: List[Waypoint] = []
        self._reached_goal = False
        self._valid_local_path = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    def initialize(self, config: PlannerConfig) -> None:
        """Resolve the path provider; a missing handle aborts initialisation."""

        if self._initialized:
            logger.warning("Plan manager has already been initialized, doing nothing")
            return

        provider = self.provider_factory(config.path_provider, config)
        self.config = config
        self.provider = provider
        bound = config.search_bound
        self.search_bound = SearchBound(bound.width, bound.height, bound.heading_range)
        self._initialized = True
        logger.info(
            "Initialized plan manager with provider %r (xy tolerance %.3f)",
            config.path_provider,
            config.xy_goal_tolerance,
        )

    def _require_initialized(self) -> PlannerConfig:
        if not self._initialized or self.config is None:
            logger.error("The plan manager has not been initialized, call initialize() first")
            raise NotInitializedError("Plan manager used before initialize()")
        return self.config

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def global_plan(self) -> List[Waypoint]:
        return list(self._global_plan)

    @property
    def local_path(self) -> LocalPath:
        return LocalPath(waypoints=tuple(self._local_plan), valid=len(self._local_plan) > 1)

    @property
    def local_path_valid(self) -> bool:
        return self._valid_local_path

    def is_goal_reached(self) -> bool:
        self._require_initialized()
        return self._reached_goal

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def set_plan(self, global_plan: Sequence[Waypoint]) -> bool:
        """Replace the global plan and drop everything derived from the old one."""

        self._require_initialized()

        self._global_plan = []
        self._local_plan = []
        self.channel.clear()
        if self.reset_service.reset():
            logger.info("Reset the trajectory controller")
        else:
            logger.warning("Was not able to reset the trajectory controller")

        self._global_plan = list(global_plan)
        self._reached_goal = False
        self._valid_local_path = False
        logger.info("New global plan with %d waypoints", len(self._global_plan))
        return True

    def compute_command(self, vehicle_pose: Optional[Pose2D] = None) -> CommandResult:
        """Run one planning cycle and publish the resulting local path."""

        config = self._require_initialized()
        if self._reached_goal:
            return CommandResult.ok()

        if vehicle_pose is not None:
            pose = vehicle_pose
        else:
            try:
                pose = self.pose_source.get_pose()
            except Exception as exc:
                logger.warning("Could not read the vehicle pose: %s", exc)
                return CommandResult.failed(FailureReason.POSE_UNAVAILABLE)
        if pose is None:
            logger.warning("Vehicle pose unavailable, skipping planning cycle")
            return CommandResult.failed(FailureReason.POSE_UNAVAILABLE)
        self._notify_footprint(oriented_footprint(pose, config.footprint))

        try:
            transformed = list(self.transform_service.transform_plan(self._global_plan, config.global_frame))
        except TransformError as exc:
            logger.warning("Could not transform the global plan to the frame of the controller: %s", exc)
            return CommandResult.failed(FailureReason.TRANSFORM_FAILED)

        if config.prune_plan:
            removed = prune_count(pose, transformed, keep_last=_GOAL_POINTS)
            del transformed[:removed]
            del self._global_plan[:removed]

        goal = goal_from_path(transformed, config.xy_goal_tolerance, config.yaw_goal_tolerance)
        if goal is None:
            logger.warning("Global plan is empty, nothing to follow")
            return CommandResult.failed(FailureReason.EMPTY_PLAN)

        if math.hypot(goal.x - pose.x, goal.y - pose.y) <= goal.xy_tolerance:
            logger.info("Reached goal at (%.3f, %.3f)", goal.x, goal.y)
            self._reached_goal = True
            self._valid_local_path = False
            self._local_plan = []
            self.channel.publish(LocalPath.empty())
            return CommandResult.ok()

        try:
            pose_is_valid = self.provider.is_state_valid(pose)
        except Exception as exc:
            logger.warning("Path provider could not check the vehicle pose: %s", exc)
            return CommandResult.failed(FailureReason.PROVIDER_FAILED)

        if not pose_is_valid:
            self._valid_local_path = False
            logger.warning("Vehicle is in collision at (%.3f, %.3f)", pose.x, pose.y)
            self._local_plan = []
            self.channel.publish(LocalPath.empty())
            return CommandResult.failed(FailureReason.COLLISION)

        try:
            raw = self.provider.request_path(pose, goal, self.search_bound)
            candidate = to_waypoints(raw if raw is not None else [], config.global_frame)
        except Exception as exc:
            logger.warning("Path provider failed to produce a local path: %s", exc)
            return CommandResult.failed(FailureReason.PROVIDER_FAILED)

        self._valid_local_path = False
        if len(candidate) > 1:
            self._local_plan = prune_path(pose, candidate, keep_last=_GOAL_POINTS)
            self._valid_local_path = True
        elif len(self._local_plan) <= 1:
            logger.warning("Did not find a local path and no previous path is usable")
            return CommandResult.failed(FailureReason.NO_PATH_FOUND)
        else:
            logger.info("Planner returned %d point(s), keeping the previous local path", len(candidate))

        local = self.local_path
        self.channel.publish(local)
        self._notify_plans(transformed, local)
        return CommandResult.ok()

    # ------------------------------------------------------------------
    # Telemetry
    # ------------------------------------------------------------------

    def _notify_footprint(self, polygon) -> None:
        for observer in self.observers:
            observer.on_footprint(polygon)

    def _notify_plans(self, transformed: Sequence[Waypoint], local: LocalPath) -> None:
        for observer in self.observers:
            observer.on_global_plan(list(transformed))
            observer.on_local_path(local)
