"""Closed-loop orchestration of path management and trajectory control."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

import gymnasium as gym
import numpy as np

from plan_manager import PlanManager
from trajectory_control import TrajectoryController

from .adapters import EnvVehicleInterface
from .interfaces import ControlCommand, FailureReason, Waypoint


@dataclass
class EpisodeSummary:
    """What happened during one simulated run."""

    steps: int
    goal_reached: bool
    distance_travelled: float
    final_pose: tuple
    planning_failures: Dict[FailureReason, int] = field(default_factory=dict)
    commands: List[ControlCommand] = field(default_factory=list)


@dataclass
class NavigationPipeline:
    """Composition root for a simulated vehicle.

    Each environment step is one controller tick. Planning runs on the host
    schedule, every ``plan_every`` ticks, and only talks to the controller
    through the path channel.
    """

    env: gym.Env
    plan_manager: PlanManager
    controller: TrajectoryController
    vehicle: EnvVehicleInterface
    max_steps: int = 1200
    plan_every: int = 4
    stop_speed: float = 0.05

    def run_episode(self, global_plan: Sequence[Waypoint], seed: Optional[int] = None) -> EpisodeSummary:
        self.env.reset(seed=seed)
        self.plan_manager.set_plan(global_plan)

        failures: Dict[FailureReason, int] = {}
        commands: List[ControlCommand] = []
        travelled = 0.0
        step = 0
        for step in range(self.max_steps):
            if step % self.plan_every == 0:
                result = self.plan_manager.compute_command()
                if not result and result.reason is not None:
                    failures[result.reason] = failures.get(result.reason, 0) + 1

            pose, velocity = self.vehicle.read_odometry()
            self.controller.observe(velocity, pose)
            command = self.controller.control()
            commands.append(command)
            self.vehicle.send(command)

            _, reward, terminated, truncated, _ = self.vehicle.last_step
            travelled += float(reward)

            if self.plan_manager.is_goal_reached() and abs(velocity.linear) <= self.stop_speed:
                break
            if terminated or truncated:
                break

        final_pose, _ = self.vehicle.read_odometry()
        return EpisodeSummary(
            steps=step + 1,
            goal_reached=self.plan_manager.is_goal_reached(),
            distance_travelled=travelled,
            final_pose=(final_pose.x, final_pose.y, final_pose.heading),
            planning_failures=failures,
            commands=commands,
        )

    def close(self) -> None:
        self.env.close()


def evaluate(pipeline: NavigationPipeline, global_plan: Sequence[Waypoint], episodes: int = 1) -> List[EpisodeSummary]:
    summaries = []
    for episode in range(episodes):
        summary = pipeline.run_episode(global_plan, seed=episode)
        print(
            f"episode {episode}\t goal {summary.goal_reached}\t steps {summary.steps}"
            f"\t distance {summary.distance_travelled:.3f}"
        )
        summaries.append(summary)
    reached = np.mean([s.goal_reached for s in summaries]) if summaries else 0.0
    print("---------------------------")
    print(" goal rate: %f" % reached)
    print("---------------------------")
    return summaries
