"""Telemetry observers for plans, local paths and the vehicle footprint."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import numpy as np

from .interfaces import LocalPath, TelemetryObserver, Waypoint

logger = logging.getLogger(__name__)


def plan_to_array(plan: Sequence[Waypoint]) -> np.ndarray:
    """Stack waypoints into an array with shape [N, 3]."""

    if not plan:
        return np.zeros((0, 3), dtype=float)
    return np.array([[w.x, w.y, w.heading] for w in plan], dtype=float)


@dataclass
class TelemetryRecorder(TelemetryObserver):
    """Keep the most recent telemetry and a bounded history of local paths."""

    max_history: int = 200
    global_plan: Optional[np.ndarray] = None
    local_path: Optional[LocalPath] = None
    footprint: Optional[np.ndarray] = None
    local_path_history: List[LocalPath] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.max_history <= 0:
            raise ValueError("max_history must be positive")

    def on_global_plan(self, plan: Sequence[Waypoint]) -> None:
        self.global_plan = plan_to_array(plan)

    def on_local_path(self, path: LocalPath) -> None:
        self.local_path = path
        self.local_path_history.append(path)
        if len(self.local_path_history) > self.max_history:
            del self.local_path_history[: len(self.local_path_history) - self.max_history]

    def on_footprint(self, polygon: np.ndarray) -> None:
        self.footprint = np.asarray(polygon, dtype=float)


class LoggingTelemetry(TelemetryObserver):
    """Write telemetry summaries to the debug log."""

    def on_global_plan(self, plan: Sequence[Waypoint]) -> None:
        logger.debug("global plan: %d waypoints", len(plan))

    def on_local_path(self, path: LocalPath) -> None:
        if path.waypoints:
            last = path.waypoints[-1]
            logger.debug("local path: %d points ending at (%.2f, %.2f)", len(path), last.x, last.y)
        else:
            logger.debug("local path: empty")

    def on_footprint(self, polygon: np.ndarray) -> None:
        logger.debug("footprint centroid: %s", np.round(np.mean(polygon, axis=0), 3))
