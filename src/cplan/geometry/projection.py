"""
Projection-based manifold state space.

Keeps no persistent structure: samples are drawn uniformly in the ambient
box and pulled onto the manifold with Newton projection, and traversal steps
are ambient steps followed by the same projection.
"""

from __future__ import annotations

from typing import List, Optional, Tuple

import numpy as np

from cplan.core.config import ProjectionParameters
from cplan.core.enums import SpaceKind
from cplan.core.errors import InvalidAnchorError
from cplan.core.logging import logger
from cplan.geometry.constraint import Constraint
from cplan.geometry.states import Bounds, Configuration, StateArena
from cplan.geometry.traversal import ManifoldTraversal

__all__ = ["ProjectedStateSpace"]

_SHRINK_ATTEMPTS = 6
_SAMPLE_ATTEMPTS = 64


class ProjectedStateSpace:
    kind = SpaceKind.PROJECTED

    def __init__(
        self,
        constraint: Constraint,
        params: Optional[ProjectionParameters] = None,
        bounds: Optional[Bounds] = None,
        seed: Optional[int] = None,
        lambda_: float = 2.0,
    ):
        self.constraint = constraint
        self.params = params or ProjectionParameters()
        self.ambient_dim = constraint.ambient_dim
        self.manifold_dim = constraint.manifold_dim
        self.delta = self.params.delta
        self.equality_tolerance = constraint.tolerance
        self.bounds = bounds or Bounds.uniform(self.ambient_dim, -10.0, 10.0)
        self.rng = np.random.default_rng(seed)
        self.lambda_ = lambda_
        self._arena = StateArena(SpaceKind.PROJECTED, self.ambient_dim)

    def __repr__(self) -> str:
        return (f"ProjectedStateSpace({self.constraint.name!r}, n={self.ambient_dim}, "
                f"k={self.manifold_dim})")

    def set_bounds(self, low: float, high: float) -> None:
        self.bounds = Bounds.uniform(self.ambient_dim, low, high)

    # --- State lifecycle ---
    def alloc_state(self, vector: Optional[np.ndarray] = None, chart_id: Optional[int] = None) -> Configuration:
        return self._arena.allocate(vector)

    def free_state(self, state: Configuration) -> None:
        self._arena.release(state)

    def copy_state(self, state: Configuration) -> Configuration:
        return self._arena.allocate(state.vector.copy())

    @property
    def live_state_count(self) -> int:
        return self._arena.live_count

    def distance(self, a: Configuration, b: Configuration) -> float:
        return float(np.linalg.norm(a.vector - b.vector))

    def equal_states(self, a: Configuration, b: Configuration) -> bool:
        return float(np.linalg.norm(a.vector - b.vector)) <= self.equality_tolerance

    def set_real_state(self, state: Configuration, vector: np.ndarray) -> None:
        """
        Bind ``state`` to ``vector``.

        Raises:
            InvalidAnchorError: If ``vector`` is off the manifold.
        """
        x = np.array(vector, dtype=np.float64)
        violation = self.constraint.distance(x)
        if violation > self.constraint.tolerance:
            raise InvalidAnchorError(x, violation, self.constraint.tolerance)
        state.vector = x

    def begin_extension(self) -> None:
        pass

    def sample_uniform(self, state: Configuration) -> bool:
        """Uniform ambient sample projected onto the manifold; resamples on failure."""
        for _ in range(_SAMPLE_ATTEMPTS):
            x, converged = self.constraint.project(self.bounds.sample(self.rng))
            if converged and self.bounds.contains(x):
                state.vector = x
                return True
        logger.debug(f"Projected sampling gave up after {_SAMPLE_ATTEMPTS} attempts")
        return False

    def step_toward(
        self, x: np.ndarray, goal: np.ndarray, chart_id: Optional[int] = None
    ) -> Optional[Tuple[np.ndarray, None]]:
        """
        One traversal step of at most δ: ambient step along the tangent
        direction toward ``goal``, then Newton projection.
        Returns (x_next, None) or None without progress.
        """
        gap = float(np.linalg.norm(goal - x))
        basis = self.constraint.tangent_basis(x)
        heading = basis @ (basis.T @ (goal - x))
        norm = np.linalg.norm(heading)
        if norm < 1e-12:
            return None
        heading /= norm
        scale = min(self.delta, gap)
        for _ in range(_SHRINK_ATTEMPTS):
            y, converged = self.constraint.project(x + scale * heading)
            if not converged:
                scale *= 0.5
                continue
            moved = np.linalg.norm(y - x)
            if moved > self.delta * (1.0 + 1e-9):
                scale *= 0.9 * self.delta / moved
                continue
            if np.linalg.norm(goal - y) >= gap or not self.bounds.contains(y):
                return None
            return y, None
        return None

    def traverse_manifold(
        self, source: Configuration, target: Configuration, max_steps: Optional[int] = None
    ) -> List[Configuration]:
        return ManifoldTraversal(self, max_steps, self.lambda_).run(source, target)
