"""Error taxonomy shared by the planning and control stages."""

from __future__ import annotations


class NavigationError(RuntimeError):
    """Base class for navigation stack failures."""


class NotInitializedError(NavigationError):
    """Raised when an operation runs before successful initialisation."""


class InitializationError(NavigationError):
    """Required configuration is missing or unusable."""


class TransformError(NavigationError):
    """Frame conversion is unavailable this cycle."""


class CollisionDetected(NavigationError):
    """The current vehicle pose is judged unsafe."""


class NoPathFound(NavigationError):
    """The planner produced no usable local path and no fallback exists."""


class SolverNonconvergence(NavigationError):
    """The trajectory optimisation missed its tolerance or iteration budget."""
