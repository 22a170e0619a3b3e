"""Kinematic bicycle vehicle exposed as a Gymnasium environment."""

from __future__ import annotations

from typing import Any, Dict, Optional, Sequence, Tuple

import gymnasium as gym
import numpy as np
from gymnasium import spaces


class KinematicBicycleEnv(gym.Env):
    """Ackermann vehicle integrated with explicit Euler steps.

    Actions are ``[steering_angle, acceleration]`` and are clipped to the action
    space. Observations are ``[x, y, heading, speed, yaw_rate]``; ``info``
    repeats pose and speed so adapters never have to index the array.
    """

    metadata = {"render_modes": []}

    def __init__(
        self,
        start_pose: Sequence[float] = (0.0, 0.0, 0.0),
        wheelbase: float = 0.33,
        timestep: float = 0.05,
        max_steering_angle: float = 0.4,
        acceleration_limits: Tuple[float, float] = (-2.0, 1.5),
        max_speed: float = 1.5,
        max_episode_steps: Optional[int] = None,
    ) -> None:
        super().__init__()
        if wheelbase <= 0.0:
            raise ValueError("wheelbase must be positive")
        if timestep <= 0.0:
            raise ValueError("timestep must be positive")

        self.start_pose = tuple(float(v) for v in start_pose)
        self.wheelbase = float(wheelbase)
        self.timestep = float(timestep)
        self.max_speed = float(max_speed)
        self.max_episode_steps = max_episode_steps

        low_accel, high_accel = acceleration_limits
        self.action_space = spaces.Box(
            low=np.array([-max_steering_angle, low_accel], dtype=np.float32),
            high=np.array([max_steering_angle, high_accel], dtype=np.float32),
        )
        self.observation_space = spaces.Box(low=-np.inf, high=np.inf, shape=(5,), dtype=np.float64)

        self._state = np.zeros(4, dtype=float)
        self._yaw_rate = 0.0
        self._steps = 0

    # ----- internal helpers -----

    def _observation(self) -> np.ndarray:
        return np.array([*self._state, self._yaw_rate], dtype=np.float64)

    def _info(self) -> Dict[str, Any]:
        x, y, heading, speed = self._state
        return {
            "pose": (float(x), float(y), float(heading)),
            "speed": float(speed),
            "yaw_rate": float(self._yaw_rate),
            "step": self._steps,
        }

    # ----- Gymnasium API -----

    def reset(self, *, seed: Optional[int] = None, options: Optional[Dict[str, Any]] = None):
        super().reset(seed=seed)
        start = self.start_pose
        if options and "start_pose" in options:
            start = tuple(float(v) for v in options["start_pose"])
        self._state = np.array([start[0], start[1], start[2], 0.0], dtype=float)
        self._yaw_rate = 0.0
        self._steps = 0
        return self._observation(), self._info()

    def step(self, action):
        steer, accel = np.clip(
            np.asarray(action, dtype=np.float32),
            self.action_space.low,
            self.action_space.high,
        ).astype(float)
        x, y, heading, speed = self._state
        dt = self.timestep
        travelled = speed * dt

        self._yaw_rate = speed / self.wheelbase * np.tan(steer)
        x += speed * np.cos(heading) * dt
        y += speed * np.sin(heading) * dt
        heading = (heading + self._yaw_rate * dt + np.pi) % (2.0 * np.pi) - np.pi
        speed = float(np.clip(speed + accel * dt, 0.0, self.max_speed))
        self._state = np.array([x, y, heading, speed], dtype=float)
        self._steps += 1

        truncated = self.max_episode_steps is not None and self._steps >= self.max_episode_steps
        # Progress reward: distance travelled this step.
        reward = float(travelled)
        return self._observation(), reward, False, bool(truncated), self._info()

    @property
    def pose(self) -> Tuple[float, float, float]:
        x, y, heading, _ = self._state
        return float(x), float(y), float(heading)

    @property
    def speed(self) -> float:
        return float(self._state[3])

    @property
    def yaw_rate(self) -> float:
        return float(self._yaw_rate)
