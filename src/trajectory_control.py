"""Fixed-rate trajectory tracking controller for the local navigation stack."""

from __future__ import annotations

import logging
import math
import threading
from typing import Optional, Tuple

import numpy as np

from configuration import ControllerConfig
from mpc_solver import RecedingHorizonSolver, SolverResult
from path_utils import pad_or_truncate
from pipeline.channel import PathChannel
from pipeline.errors import SolverNonconvergence
from pipeline.interfaces import ControlCommand, ControllerStatus, LocalPath, Pose2D, Twist2D, VehicleState

logger = logging.getLogger(__name__)


def reference_trajectory(
    path_xy: np.ndarray,
    position: Tuple[float, float],
    horizon: int,
    dt: float,
    target_speed: float,
    approach_gain: float,
    fallback_heading: float = 0.0,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Resample a stored path into per-step references.

    The vehicle position is projected onto the path polyline; from there each
    step advances along the arc length by its reference speed times ``dt``.
    Reference speeds taper with the remaining distance, so samples bunch up at
    the path end and the vehicle comes to rest on the goal.

    Returns:
        ``(reference, v_ref)`` with shapes ``[horizon, 3]`` and ``[horizon]``.
    """

    points = np.asarray(path_xy, dtype=float).reshape(-1, 2)
    # Drop repeated points (capacity padding) so every segment has a direction.
    if points.shape[0] > 1:
        keep = np.concatenate([[True], np.hypot(*np.diff(points, axis=0).T) > 1e-9])
        points = points[keep]

    if points.shape[0] < 2:
        anchor = points[-1] if points.shape[0] else np.asarray(position, dtype=float)
        reference = np.tile([anchor[0], anchor[1], fallback_heading], (horizon, 1))
        return reference, np.zeros(horizon, dtype=float)

    segments = np.diff(points, axis=0)
    lengths = np.hypot(segments[:, 0], segments[:, 1])
    cumulative = np.concatenate([[0.0], np.cumsum(lengths)])
    total = float(cumulative[-1])
    headings = np.arctan2(segments[:, 1], segments[:, 0])

    offsets = np.asarray(position, dtype=float) - points[:-1]
    t = np.clip(np.sum(offsets * segments, axis=1) / lengths ** 2, 0.0, 1.0)
    gaps = np.hypot(*(offsets - t[:, None] * segments).T)
    nearest = int(np.argmin(gaps))
    s = float(cumulative[nearest] + t[nearest] * lengths[nearest])

    stations = np.zeros(horizon, dtype=float)
    v_ref = np.zeros(horizon, dtype=float)
    for k in range(horizon):
        speed = float(np.clip(approach_gain * (total - s), 0.0, target_speed))
        s = min(s + speed * dt, total)
        stations[k] = s
        v_ref[k] = speed

    ref_x = np.interp(stations, cumulative, points[:, 0])
    ref_y = np.interp(stations, cumulative, points[:, 1])
    index = np.clip(np.searchsorted(cumulative, stations, side="right") - 1, 0, len(headings) - 1)
    return np.column_stack([ref_x, ref_y, headings[index]]), v_ref


class TrajectoryController:
    """Receding-horizon controller tracking the most recent local path.

    The controller keeps a fixed-capacity copy of the latest path, a vehicle
    state estimate and the previous optimal solution (the warm start). Every
    :meth:`control` call re-solves the horizon and executes only the first
    control; any numerical failure degrades to the neutral command.
    """

    def __init__(
        self,
        config: Optional[ControllerConfig] = None,
        channel: Optional[PathChannel] = None,
        solver: Optional[RecedingHorizonSolver] = None,
    ) -> None:
        self.config = config or ControllerConfig()
        self.channel = channel
        self.solver = solver or RecedingHorizonSolver(self.config)
        self.capacity = max(int(self.config.path_capacity), 2)

        self._lock = threading.Lock()
        self._state = VehicleState()
        self._observed = False
        self._path_received = False
        self._path_xy = np.zeros((0, 2), dtype=float)
        self._goal: Optional[np.ndarray] = None
        self._status = ControllerStatus.UNINITIALIZED
        self._channel_version = 0
        self._warm_start: Optional[SolverResult] = None
        self.last_result: Optional[SolverResult] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def status(self) -> ControllerStatus:
        with self._lock:
            return self._status

    @property
    def state(self) -> VehicleState:
        with self._lock:
            return VehicleState(**vars(self._state))

    @property
    def path_xy(self) -> np.ndarray:
        with self._lock:
            return self._path_xy.copy()

    @property
    def goal(self) -> Optional[np.ndarray]:
        with self._lock:
            return None if self._goal is None else self._goal.copy()

    def reset_controller(self) -> bool:
        """Forget the stored path and goal; idle until a new path arrives."""

        with self._lock:
            self._path_xy = np.zeros((0, 2), dtype=float)
            self._goal = None
            self._warm_start = None
            self._status = ControllerStatus.IDLE
            if self.channel is not None:
                self._channel_version = self.channel.version
        logger.info("Trajectory controller reset")
        return True

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------

    def observe(self, velocity: Twist2D, odometry: Pose2D) -> None:
        with self._lock:
            self._state.x = float(odometry.x)
            self._state.y = float(odometry.y)
            self._state.heading = float(odometry.heading)
            self._state.linear_velocity = float(velocity.linear)
            self._state.angular_velocity = float(velocity.angular)
            self._observed = True
            self._refresh_status()

    def on_path_received(self, local_path: LocalPath, version: Optional[int] = None) -> None:
        """Replace the stored reference path with ``local_path``.

        ``version`` is the channel version the snapshot was polled at. A
        snapshot no newer than the last reset is dropped.
        """

        xy = local_path.xy() if local_path.valid else np.zeros((0, 2), dtype=float)
        stored = pad_or_truncate(xy, self.capacity)
        kept = xy[: self.capacity]
        goal = None
        if kept.shape[0] >= 2:
            (bx, by), (gx, gy) = kept[-2], kept[-1]
            goal = np.array([gx, gy, math.atan2(gy - by, gx - bx)])

        with self._lock:
            if version is not None:
                if version <= self._channel_version:
                    logger.debug("Dropping stale local path snapshot %d", version)
                    return
                self._channel_version = version
            self._path_xy = stored
            self._goal = goal
            self._path_received = True
            if xy.shape[0] < 2:
                self._warm_start = None
            self._refresh_status()
        logger.debug("Received local path with %d points", xy.shape[0])

    def _refresh_status(self) -> None:
        if not (self._observed and self._path_received):
            return
        if self._path_xy.shape[0] >= 2 and self._goal is not None:
            self._status = ControllerStatus.TRACKING
        else:
            self._status = ControllerStatus.IDLE

    def _take_latest_path(self) -> None:
        if self.channel is None:
            return
        update = self.channel.poll(self._channel_version)
        if update is None:
            return
        version, path = update
        self.on_path_received(path, version)

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    def neutral_command(self, speed: Optional[float] = None) -> ControlCommand:
        """Zero steering and a braking (never accelerating) command."""

        if speed is None:
            with self._lock:
                speed = self._state.linear_velocity
        v = float(speed)
        decel = float(np.clip(-v / self.config.step_duration, self.config.min_acceleration, 0.0))
        return ControlCommand(steering_angle=0.0, acceleration=min(decel, 0.0))

    def control(self) -> ControlCommand:
        """Solve the horizon for the current tick and return its first action."""

        self._take_latest_path()

        with self._lock:
            status = self._status
            state = VehicleState(**vars(self._state))
            path_xy = self._path_xy.copy()
            warm = self._warm_start

        if status is not ControllerStatus.TRACKING or path_xy.shape[0] < 2:
            command = self.neutral_command(state.linear_velocity)
            self._remember(command, None)
            return command

        x0 = state.as_array()
        reference, v_ref = reference_trajectory(
            path_xy,
            (state.x, state.y),
            self.solver.horizon,
            self.config.step_duration,
            self.config.target_speed,
            self.config.approach_gain,
            fallback_heading=state.heading,
        )
        u_prev = np.array([state.last_steering_angle, state.last_acceleration])
        warm_vector = None
        if warm is not None and self.config.solver.warm_start:
            warm_vector = self.solver.shift(warm, x0)

        result = self.solver.solve(x0, reference, v_ref, u_prev, warm_start=warm_vector)
        self.last_result = result
        try:
            result.raise_for_failure()
        except SolverNonconvergence as exc:
            logger.warning("Trajectory optimisation did not converge (%s); holding neutral command", exc)
            command = self.neutral_command(state.linear_velocity)
            self._remember(command, None)
            return command

        steer, accel = (float(v) for v in result.first_control)
        command = ControlCommand(steering_angle=steer, acceleration=accel)
        self._remember(command, result)
        logger.debug("steer=%+.3f accel=%+.3f cost=%.4f iters=%d", steer, accel, result.cost, result.iterations)
        return command

    def _remember(self, command: ControlCommand, result: Optional[SolverResult]) -> None:
        with self._lock:
            self._state.last_steering_angle = command.steering_angle
            self._state.last_acceleration = command.acceleration
            # A reset during the solve wins over the solution it produced.
            self._warm_start = result if self._status is ControllerStatus.TRACKING else None
