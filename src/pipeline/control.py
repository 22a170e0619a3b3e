"""Fixed-rate control loop driving the trajectory controller."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Optional

from trajectory_control import TrajectoryController

from .interfaces import ControlCommand, VehicleInterface

logger = logging.getLogger(__name__)


@dataclass
class ControlLoop:
    """Run ``observe`` then ``control`` every ``period`` seconds on a worker thread.

    The loop never waits on planning: the controller pulls whatever local path
    is newest at the start of each tick.
    """

    controller: TrajectoryController
    vehicle: VehicleInterface
    period: float = 0.05
    ticks: int = field(init=False, default=0)
    overruns: int = field(init=False, default=0)
    last_command: ControlCommand = field(init=False, default_factory=ControlCommand.zero)
    _stop: threading.Event = field(init=False, default_factory=threading.Event, repr=False)
    _thread: Optional[threading.Thread] = field(init=False, default=None, repr=False)

    def __post_init__(self) -> None:
        if self.period <= 0.0:
            raise ValueError("period must be positive")

    def tick(self) -> ControlCommand:
        pose, velocity = self.vehicle.read_odometry()
        self.controller.observe(velocity, pose)
        command = self.controller.control()
        self.vehicle.send(command)
        self.last_command = command
        self.ticks += 1
        return command

    def _run(self) -> None:
        next_tick = time.monotonic()
        while not self._stop.is_set():
            try:
                self.tick()
            except Exception:
                logger.exception("Control tick failed, stopping control loop")
                self._stop.set()
                return
            next_tick += self.period
            delay = next_tick - time.monotonic()
            if delay < 0.0:
                self.overruns += 1
                next_tick = time.monotonic()
                continue
            self._stop.wait(delay)

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            logger.warning("Control loop already running")
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, daemon=True, name="TrajectoryControl")
        self._thread.start()
        logger.info("Control loop started at %.1f Hz", 1.0 / self.period)

    def stop(self, timeout: float = 2.0) -> None:
        """Stop ticking and send one neutral command."""

        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
        self.vehicle.send(self.controller.neutral_command())
        logger.info("Control loop stopped after %d ticks (%d overruns)", self.ticks, self.overruns)
