"""Configuration loader for the local navigation stack."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import yaml


def _as_dict(mapping: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    if mapping is None:
        return {}
    return {str(k): v for k, v in dict(mapping).items()}


def _optional_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    return float(value)


def _points(value: Any, default: Sequence[Sequence[float]]) -> List[Tuple[float, ...]]:
    if value is None:
        return [tuple(float(c) for c in p) for p in default]
    if not isinstance(value, Sequence) or isinstance(value, (str, bytes)):
        raise ValueError(f"Expected a list of points, got {value!r}")
    return [tuple(float(c) for c in point) for point in value]


def _default_footprint() -> List[Tuple[float, float]]:
    return [(-0.1, -0.15), (-0.1, 0.15), (0.45, 0.15), (0.45, -0.15)]


@dataclass
class SearchBoundConfig:
    width: float = 6.0
    height: float = 6.0
    heading_range: float = math.pi

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "SearchBoundConfig":
        payload = _as_dict(data)
        return cls(
            width=float(payload.get("width", cls.width)),
            height=float(payload.get("height", cls.height)),
            heading_range=float(payload.get("heading_range", cls.heading_range)),
        )


@dataclass
class PlannerConfig:
    path_provider: Optional[str] = None
    global_frame: str = "odom"
    xy_goal_tolerance: float = 0.1
    yaw_goal_tolerance: float = 0.2
    num_samples: int = 4
    num_paths: int = 2
    points_per_path: int = 20
    prune_plan: bool = True
    search_bound: SearchBoundConfig = field(default_factory=SearchBoundConfig)
    footprint: List[Tuple[float, float]] = field(default_factory=_default_footprint)
    obstacle_clearance: float = 0.05

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "PlannerConfig":
        payload = _as_dict(data)
        provider = payload.get("path_provider")
        provider = str(provider).strip() if provider is not None else None
        return cls(
            path_provider=provider or None,
            global_frame=str(payload.get("global_frame", cls.global_frame)),
            xy_goal_tolerance=float(payload.get("xy_goal_tolerance", cls.xy_goal_tolerance)),
            yaw_goal_tolerance=float(payload.get("yaw_goal_tolerance", cls.yaw_goal_tolerance)),
            num_samples=int(payload.get("num_samples", cls.num_samples)),
            num_paths=int(payload.get("num_paths", cls.num_paths)),
            points_per_path=int(payload.get("points_per_path", cls.points_per_path)),
            prune_plan=bool(payload.get("prune_plan", cls.prune_plan)),
            search_bound=SearchBoundConfig.from_mapping(payload.get("search_bound")),
            footprint=_points(payload.get("footprint"), _default_footprint()),
            obstacle_clearance=float(payload.get("obstacle_clearance", cls.obstacle_clearance)),
        )


@dataclass
class CostWeightsConfig:
    cross_track: float = 20.0
    along_track: float = 2.0
    heading: float = 10.0
    velocity: float = 5.0
    steering: float = 1.0
    acceleration: float = 0.5
    steering_rate: float = 20.0
    acceleration_rate: float = 2.0

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "CostWeightsConfig":
        payload = _as_dict(data)
        return cls(
            cross_track=float(payload.get("cross_track", cls.cross_track)),
            along_track=float(payload.get("along_track", cls.along_track)),
            heading=float(payload.get("heading", cls.heading)),
            velocity=float(payload.get("velocity", cls.velocity)),
            steering=float(payload.get("steering", cls.steering)),
            acceleration=float(payload.get("acceleration", cls.acceleration)),
            steering_rate=float(payload.get("steering_rate", cls.steering_rate)),
            acceleration_rate=float(payload.get("acceleration_rate", cls.acceleration_rate)),
        )


@dataclass
class SolverConfig:
    backend: str = "ipopt"
    max_iter: int = 100
    tolerance: float = 1e-4
    warm_start: bool = True

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "SolverConfig":
        payload = _as_dict(data)
        backend = str(payload.get("backend", cls.backend)).strip().lower()
        return cls(
            backend=backend if backend else cls.backend,
            max_iter=int(payload.get("max_iter", cls.max_iter)),
            tolerance=float(payload.get("tolerance", cls.tolerance)),
            warm_start=bool(payload.get("warm_start", cls.warm_start)),
        )


@dataclass
class ControllerConfig:
    rate_hz: float = 20.0
    horizon: int = 10
    step_duration: float = 0.1
    path_capacity: int = 20
    wheelbase: float = 0.33
    max_steering_angle: float = 0.4
    max_steering_rate: Optional[float] = 2.0
    min_acceleration: float = -2.0
    max_acceleration: float = 1.5
    max_jerk: Optional[float] = None
    min_speed: float = 0.0
    max_speed: float = 1.5
    target_speed: float = 0.8
    approach_gain: float = 1.0
    weights: CostWeightsConfig = field(default_factory=CostWeightsConfig)
    solver: SolverConfig = field(default_factory=SolverConfig)

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "ControllerConfig":
        payload = _as_dict(data)
        return cls(
            rate_hz=float(payload.get("rate_hz", cls.rate_hz)),
            horizon=int(payload.get("horizon", cls.horizon)),
            step_duration=float(payload.get("step_duration", cls.step_duration)),
            path_capacity=int(payload.get("path_capacity", cls.path_capacity)),
            wheelbase=float(payload.get("wheelbase", cls.wheelbase)),
            max_steering_angle=float(payload.get("max_steering_angle", cls.max_steering_angle)),
            max_steering_rate=_optional_float(payload.get("max_steering_rate", cls.max_steering_rate)),
            min_acceleration=float(payload.get("min_acceleration", cls.min_acceleration)),
            max_acceleration=float(payload.get("max_acceleration", cls.max_acceleration)),
            max_jerk=_optional_float(payload.get("max_jerk", cls.max_jerk)),
            min_speed=float(payload.get("min_speed", cls.min_speed)),
            max_speed=float(payload.get("max_speed", cls.max_speed)),
            target_speed=float(payload.get("target_speed", cls.target_speed)),
            approach_gain=float(payload.get("approach_gain", cls.approach_gain)),
            weights=CostWeightsConfig.from_mapping(payload.get("weights")),
            solver=SolverConfig.from_mapping(payload.get("solver")),
        )

    @property
    def period(self) -> float:
        return 1.0 / self.rate_hz if self.rate_hz > 0 else self.step_duration


@dataclass
class ObstacleConfig:
    x: float = 0.0
    y: float = 0.0
    radius: float = 0.5

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "ObstacleConfig":
        payload = _as_dict(data)
        return cls(
            x=float(payload.get("x", cls.x)),
            y=float(payload.get("y", cls.y)),
            radius=float(payload.get("radius", cls.radius)),
        )


@dataclass
class EnvironmentConfig:
    start_pose: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    wheelbase: float = 0.33
    timestep_seconds: float = 0.05
    max_steering_angle: float = 0.4
    min_acceleration: float = -2.0
    max_acceleration: float = 1.5
    max_speed: float = 1.5
    obstacles: List[ObstacleConfig] = field(default_factory=list)

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "EnvironmentConfig":
        payload = _as_dict(data)
        start = payload.get("start_pose", cls.start_pose)
        obstacles = payload.get("obstacles") or []
        return cls(
            start_pose=tuple(float(v) for v in start),
            wheelbase=float(payload.get("wheelbase", cls.wheelbase)),
            timestep_seconds=float(payload.get("timestep_seconds", cls.timestep_seconds)),
            max_steering_angle=float(payload.get("max_steering_angle", cls.max_steering_angle)),
            min_acceleration=float(payload.get("min_acceleration", cls.min_acceleration)),
            max_acceleration=float(payload.get("max_acceleration", cls.max_acceleration)),
            max_speed=float(payload.get("max_speed", cls.max_speed)),
            obstacles=[ObstacleConfig.from_mapping(o) for o in obstacles],
        )

    def to_kwargs(self) -> Dict[str, Any]:
        return {
            "start_pose": self.start_pose,
            "wheelbase": self.wheelbase,
            "timestep": self.timestep_seconds,
            "max_steering_angle": self.max_steering_angle,
            "acceleration_limits": (self.min_acceleration, self.max_acceleration),
            "max_speed": self.max_speed,
        }


@dataclass
class RuntimeConfig:
    max_steps: int = 1200
    plan_every: int = 4

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "RuntimeConfig":
        payload = _as_dict(data)
        return cls(
            max_steps=int(payload.get("max_steps", cls.max_steps)),
            plan_every=max(int(payload.get("plan_every", cls.plan_every)), 1),
        )


def _default_mission() -> List[Tuple[float, ...]]:
    return [(float(x), 0.0, 0.0) for x in range(0, 9)]


@dataclass
class MissionConfig:
    frame_id: str = "map"
    waypoints: List[Tuple[float, ...]] = field(default_factory=_default_mission)
    episodes: int = 1

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "MissionConfig":
        payload = _as_dict(data)
        return cls(
            frame_id=str(payload.get("frame_id", cls.frame_id)),
            waypoints=_points(payload.get("waypoints"), _default_mission()),
            episodes=int(payload.get("episodes", cls.episodes)),
        )


@dataclass
class AppConfig:
    planner: PlannerConfig = field(default_factory=PlannerConfig)
    controller: ControllerConfig = field(default_factory=ControllerConfig)
    environment: EnvironmentConfig = field(default_factory=EnvironmentConfig)
    runtime: RuntimeConfig = field(default_factory=RuntimeConfig)
    mission: MissionConfig = field(default_factory=MissionConfig)

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "AppConfig":
        payload = _as_dict(data)
        return cls(
            planner=PlannerConfig.from_mapping(payload.get("planner")),
            controller=ControllerConfig.from_mapping(payload.get("controller")),
            environment=EnvironmentConfig.from_mapping(payload.get("environment")),
            runtime=RuntimeConfig.from_mapping(payload.get("runtime")),
            mission=MissionConfig.from_mapping(payload.get("mission")),
        )

    @classmethod
    def from_file(cls, path: Optional[Path]) -> "AppConfig":
        if path is None:
            return cls()
        path = Path(path).expanduser()
        if not path.exists():
            return cls()
        with path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
        if not isinstance(data, Mapping):
            raise ValueError(f"Configuration file {path} must contain a mapping at the top level.")
        return cls.from_mapping(data)


DEFAULT_CONFIG_PATH = Path("config.yml")
