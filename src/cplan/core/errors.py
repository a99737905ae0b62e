# cplan/core/errors.py
"""
Exception taxonomy for constrained planning runs.

Geometry errors (anchoring, chart binding, traversal) are raised synchronously
to the caller and never retried. A planner that finds no solution is not an
error; it ends the run in the FAILED state.
"""

from typing import Optional

import numpy as np

__all__ = [
    "PlanningError",
    "InvalidAnchorError",
    "ChartMismatchError",
    "TraversalDivergedError",
    "InvalidTimeLimitError",
    "UnknownProblemError",
    "UnknownPlannerError",
]


class PlanningError(Exception):
    """Base class for all cplan errors."""


class InvalidAnchorError(PlanningError):
    """A chart or configuration was anchored at a point off the manifold."""

    def __init__(self, point: np.ndarray, violation: float, tolerance: float):
        self.point = np.asarray(point, dtype=np.float64)
        self.violation = float(violation)
        self.tolerance = float(tolerance)
        super().__init__(
            f"Point {np.array2string(self.point, precision=4)} violates the constraint: "
            f"|F(x)| = {self.violation:.3e} > {self.tolerance:.1e}"
        )


class ChartMismatchError(PlanningError):
    """A configuration was bound to a chart that does not cover it."""

    def __init__(self, point: np.ndarray, chart_id: int):
        self.point = np.asarray(point, dtype=np.float64)
        self.chart_id = int(chart_id)
        super().__init__(
            f"Chart {self.chart_id} does not cover {np.array2string(self.point, precision=4)}"
        )


class TraversalDivergedError(PlanningError):
    """Manifold traversal could not reach its target within the step budget."""

    def __init__(
        self,
        source: np.ndarray,
        target: np.ndarray,
        steps: int,
        reason: Optional[str] = None,
    ):
        self.source = np.asarray(source, dtype=np.float64)
        self.target = np.asarray(target, dtype=np.float64)
        self.steps = int(steps)
        self.reason = reason or "step budget exhausted"
        super().__init__(
            f"Traversal {np.array2string(self.source, precision=4)} -> "
            f"{np.array2string(self.target, precision=4)} diverged after "
            f"{self.steps} step(s): {self.reason}"
        )


class InvalidTimeLimitError(PlanningError, ValueError):
    """The planning time budget is not a positive number of seconds."""

    def __init__(self, time_limit: float):
        self.time_limit = time_limit
        super().__init__(f"Time limit must be positive, got {time_limit!r}")


class UnknownProblemError(PlanningError, LookupError):
    """No built-in problem or problem file matches the requested name."""


class UnknownPlannerError(PlanningError, LookupError):
    """No registered planner matches the requested name."""
