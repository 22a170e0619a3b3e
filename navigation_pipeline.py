"""Command-line entry point wiring configuration, planner and controller."""

from __future__ import annotations

import argparse
import functools
import logging
import pathlib
import sys
from typing import List, Optional

import gymnasium as gym

sys.path.append(str(pathlib.Path(__file__).resolve().parents[0] / "src"))

from configuration import AppConfig, DEFAULT_CONFIG_PATH, MissionConfig
from plan_manager import PlanManager
from trajectory_control import TrajectoryController
from vehicle_simulation import KinematicBicycleEnv
from pipeline import LoggingTelemetry, PathChannel, Pose2D, TelemetryObserver, Waypoint
from pipeline.adapters import (
    CallbackResetService,
    CircleObstacle,
    EnvVehicleInterface,
    StaticTransformService,
    make_path_provider,
)
from pipeline.core import NavigationPipeline, evaluate

__all__ = [
    "NavigationPipeline",
    "build_pipeline",
    "mission_plan",
    "evaluate",
    "main",
]


def mission_plan(mission: MissionConfig) -> List[Waypoint]:
    """Global plan described by the mission section of the configuration."""

    plan = []
    for index, point in enumerate(mission.waypoints):
        heading = point[2] if len(point) > 2 else 0.0
        plan.append(Waypoint(x=point[0], y=point[1], heading=heading, frame_id=mission.frame_id, index=index))
    return plan


def build_pipeline(
    config: AppConfig,
    env: gym.Env,
    *,
    observers: Optional[List[TelemetryObserver]] = None,
) -> NavigationPipeline:
    """Create a :class:`NavigationPipeline` from configuration and an environment."""

    channel = PathChannel()
    controller = TrajectoryController(config.controller, channel=channel)
    vehicle = EnvVehicleInterface(env)

    # The simulator reports poses in the planner frame; mission waypoints may
    # come in their own frame, which is identical to it here.
    transforms = StaticTransformService()
    if config.mission.frame_id != config.planner.global_frame:
        transforms.set_transform(config.mission.frame_id, config.planner.global_frame, Pose2D())

    obstacles = [CircleObstacle(o.x, o.y, o.radius) for o in config.environment.obstacles]
    plan_manager = PlanManager(
        transform_service=transforms,
        pose_source=vehicle,
        reset_service=CallbackResetService(controller.reset_controller),
        channel=channel,
        provider_factory=functools.partial(make_path_provider, obstacles=obstacles),
        observers=observers if observers is not None else [LoggingTelemetry()],
    )
    plan_manager.initialize(config.planner)

    return NavigationPipeline(
        env=env,
        plan_manager=plan_manager,
        controller=controller,
        vehicle=vehicle,
        max_steps=config.runtime.max_steps,
        plan_every=config.runtime.plan_every,
    )


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument(
        "--config",
        type=pathlib.Path,
        default=DEFAULT_CONFIG_PATH,
        help="Path to a YAML configuration file (defaults to config.yml)",
    )
    parser.add_argument("--episodes", type=int, default=None, help="override the number of episodes")
    parser.add_argument("--max-steps", type=int, default=None, help="override the step limit per episode")
    parser.add_argument("--verbose", action="store_true", help="log every controller tick")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(message)s",
    )

    config = AppConfig.from_file(args.config)
    if args.max_steps is not None:
        config.runtime.max_steps = args.max_steps
    episodes = args.episodes if args.episodes is not None else config.mission.episodes

    env = KinematicBicycleEnv(**config.environment.to_kwargs())
    pipeline = build_pipeline(config, env)

    try:
        evaluate(pipeline, mission_plan(config.mission), episodes)
    finally:
        pipeline.close()


if __name__ == "__main__":
    main()
