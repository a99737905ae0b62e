"""
Chart-based ("atlas") manifold state space.

The manifold is covered lazily by charts: local linear approximations
(anchor x₀, orthonormal tangent basis Φ) whose validity region is bounded by
a radius ρ, a deviation ε from the manifold, and an angle α between tangent
spaces. Points on the manifold are recovered from tangent coordinates u with
ψ, a Newton correction orthogonal to the chart's tangent plane:

    F(x) = 0,   Φᵀ (x - x₀) = u

Charts are created on demand and never removed during a run.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np

from cplan.core.config import AtlasParameters
from cplan.core.enums import SpaceKind
from cplan.core.errors import ChartMismatchError, InvalidAnchorError
from cplan.core.logging import logger
from cplan.geometry.constraint import Constraint
from cplan.geometry.kernels import (
    distance_to_tangent_plane,
    from_tangent_coordinates,
    tangent_coordinates,
)
from cplan.geometry.states import Bounds, Configuration, StateArena
from cplan.geometry.traversal import ManifoldTraversal

__all__ = ["AtlasChart", "AtlasStateSpace"]

_SHRINK_ATTEMPTS = 6
_SAMPLE_ATTEMPTS = 64
_REJECTIONS_BEFORE_SPAWN = 4
_POLYGON_VERTICES = 16
_FRONTIER_PROBES = 16


@dataclass
class AtlasChart:
    """Local linear approximation of the manifold around ``anchor``."""
    id: int
    anchor: np.ndarray
    basis: np.ndarray
    radius: float

    def to_local(self, x: np.ndarray) -> np.ndarray:
        return tangent_coordinates(self.basis, self.anchor, x)

    def to_ambient(self, u: np.ndarray) -> np.ndarray:
        return from_tangent_coordinates(self.basis, self.anchor, u)


class AtlasStateSpace:
    """
    Manifold state space backed by a growing atlas of charts.

    Args:
        constraint: The constraint defining the manifold.
        params: Atlas tuning (ρ, α, ε, δ, exploration, chart budget).
        bounds: Ambient bounding box; defaults to [-10, 10]ⁿ.
        seed: Seed for the space's random generator.
        lambda_: Traversal step budget factor.
    """

    kind = SpaceKind.ATLAS

    def __init__(
        self,
        constraint: Constraint,
        params: Optional[AtlasParameters] = None,
        bounds: Optional[Bounds] = None,
        seed: Optional[int] = None,
        lambda_: float = 2.0,
    ):
        self.constraint = constraint
        self.params = params or AtlasParameters()
        self.ambient_dim = constraint.ambient_dim
        self.manifold_dim = constraint.manifold_dim
        self.delta = self.params.delta
        self.equality_tolerance = constraint.tolerance
        self.bounds = bounds or Bounds.uniform(self.ambient_dim, -10.0, 10.0)
        self.rng = np.random.default_rng(seed)
        self.lambda_ = lambda_

        self._arena = StateArena(SpaceKind.ATLAS, self.ambient_dim)
        self._charts: List[AtlasChart] = []
        self._anchors = np.empty((0, self.ambient_dim))
        self._cos_alpha = float(np.cos(self.params.alpha))
        # Anchors further than this from x cannot cover x: ‖x - x₀‖² = ‖u‖² + d⊥².
        self._reach = float(np.hypot(self.params.rho, self.params.epsilon))
        self._spawned = 0

    def __repr__(self) -> str:
        return (f"AtlasStateSpace({self.constraint.name!r}, n={self.ambient_dim}, "
                f"k={self.manifold_dim}, charts={len(self._charts)})")

    @property
    def rho_s(self) -> float:
        return self.params.rho_s(self.manifold_dim)

    def set_bounds(self, low: float, high: float) -> None:
        self.bounds = Bounds.uniform(self.ambient_dim, low, high)

    # --- State lifecycle ---
    def alloc_state(self, vector: Optional[np.ndarray] = None, chart_id: Optional[int] = None) -> Configuration:
        return self._arena.allocate(vector, chart_id)

    def free_state(self, state: Configuration) -> None:
        self._arena.release(state)

    def copy_state(self, state: Configuration) -> Configuration:
        return self._arena.allocate(state.vector.copy(), state.chart_id)

    @property
    def live_state_count(self) -> int:
        return self._arena.live_count

    def distance(self, a: Configuration, b: Configuration) -> float:
        return float(np.linalg.norm(a.vector - b.vector))

    def equal_states(self, a: Configuration, b: Configuration) -> bool:
        return float(np.linalg.norm(a.vector - b.vector)) <= self.equality_tolerance

    # --- Charts ---
    @property
    def charts(self) -> Tuple[AtlasChart, ...]:
        return tuple(self._charts)

    def get_chart(self, chart_id: int) -> AtlasChart:
        return self._charts[chart_id]

    def get_chart_count(self) -> int:
        return len(self._charts)

    def anchor_chart(self, point: np.ndarray) -> AtlasChart:
        """
        Register a new chart anchored at ``point``.

        Raises:
            InvalidAnchorError: If ``point`` does not satisfy the constraint.
        """
        x = np.array(point, dtype=np.float64)
        violation = self.constraint.distance(x)
        if violation > self.constraint.tolerance:
            raise InvalidAnchorError(x, violation, self.constraint.tolerance)
        chart = AtlasChart(len(self._charts), x, self.constraint.tangent_basis(x), self.params.rho)
        self._charts.append(chart)
        self._anchors = np.vstack([self._anchors, x])
        logger.trace(f"Chart {chart.id} anchored at {np.round(x, 4).tolist()}")
        return chart

    def _spawn_chart(self, point: np.ndarray) -> Optional[AtlasChart]:
        """Create a chart within the current extension's budget."""
        if self._spawned >= self.params.max_charts_per_extension:
            return None
        self._spawned += 1
        return self.anchor_chart(point)

    def begin_extension(self) -> None:
        """Reset the per-call chart creation budget."""
        self._spawned = 0

    def covers(self, chart: AtlasChart, x: np.ndarray) -> bool:
        """Whether ``x`` lies inside the validity region of ``chart``."""
        u = chart.to_local(x)
        if np.linalg.norm(u) > chart.radius:
            return False
        if distance_to_tangent_plane(chart.basis, chart.anchor, x) > self.params.epsilon:
            return False
        cosines = np.linalg.svd(chart.basis.T @ self.constraint.tangent_basis(x), compute_uv=False)
        return float(cosines.min()) >= self._cos_alpha

    def owning_chart(self, x: np.ndarray, exclude: Optional[int] = None) -> Optional[AtlasChart]:
        """The nearest chart covering ``x``, or None."""
        if not self._charts:
            return None
        d = np.linalg.norm(self._anchors - x, axis=1)
        for idx in np.argsort(d):
            if d[idx] > self._reach:
                break
            if idx != exclude and self.covers(self._charts[idx], x):
                return self._charts[idx]
        return None

    def psi(self, chart: AtlasChart, u: np.ndarray) -> Optional[np.ndarray]:
        """Manifold point with tangent coordinates ``u`` in ``chart``, or None."""
        u = np.asarray(u, dtype=np.float64)
        return self._newton_psi(chart, u, chart.to_ambient(u))

    def _newton_psi(self, chart: AtlasChart, u: np.ndarray, guess: np.ndarray) -> Optional[np.ndarray]:
        x = np.array(guess, dtype=np.float64)
        tol = self.constraint.tolerance
        for _ in range(self.constraint.max_iterations):
            residual = np.concatenate([self.constraint.function(x), chart.basis.T @ (x - chart.anchor) - u])
            if np.linalg.norm(residual) <= tol:
                return x
            system = np.vstack([self.constraint.jacobian(x), chart.basis.T])
            x = x - np.linalg.lstsq(system, residual, rcond=None)[0]
            if not np.all(np.isfinite(x)):
                return None
        return x if self.constraint.is_satisfied(x) else None

    def set_real_state(self, state: Configuration, vector: np.ndarray, chart: AtlasChart) -> None:
        """
        Bind ``state`` to ``vector`` inside ``chart``.

        Raises:
            InvalidAnchorError: If ``vector`` is off the manifold.
            ChartMismatchError: If ``chart`` does not cover ``vector``.
        """
        x = np.array(vector, dtype=np.float64)
        violation = self.constraint.distance(x)
        if violation > self.constraint.tolerance:
            raise InvalidAnchorError(x, violation, self.constraint.tolerance)
        if not self.covers(chart, x):
            raise ChartMismatchError(x, chart.id)
        state.vector = x
        state.chart_id = chart.id

    # --- Sampling ---
    def _draw_tangent(self) -> np.ndarray:
        k = self.manifold_dim
        direction = self.rng.normal(size=k)
        direction /= np.linalg.norm(direction)
        rho = self.params.rho
        if self.rng.random() < self.params.exploration:
            # Uniform in the annulus ρ ≤ ‖u‖ ≤ ρ_s
            r = (rho ** k + self.rng.random() * (self.rho_s ** k - rho ** k)) ** (1.0 / k)
        else:
            r = rho * self.rng.random() ** (1.0 / k)
        return r * direction

    def sample_uniform(self, state: Configuration) -> bool:
        """
        Fill ``state`` with a random manifold point drawn through the atlas.

        Returns False (``state`` untouched) when no sample could be produced.
        """
        if not self._charts:
            raise RuntimeError("Cannot sample from an empty atlas; anchor a chart first")
        self.begin_extension()
        rejections = 0
        for _ in range(_SAMPLE_ATTEMPTS):
            chart = self._charts[self.rng.integers(len(self._charts))]
            u = self._draw_tangent()
            x = self.psi(chart, u)
            if x is None or not self.bounds.contains(x):
                rejections += 1
                if rejections % _REJECTIONS_BEFORE_SPAWN == 0:
                    self._spawn_partway(chart, u)
                continue
            owner = chart if self.covers(chart, x) else self.owning_chart(x)
            if owner is None:
                owner = self._spawn_chart(x)
                if owner is None:
                    return False
            state.vector = x
            state.chart_id = owner.id
            return True
        logger.debug(f"Atlas sampling gave up after {_SAMPLE_ATTEMPTS} attempts")
        return False

    def _spawn_partway(self, chart: AtlasChart, u: np.ndarray) -> None:
        scale = 0.5
        while scale * np.linalg.norm(u) > self.delta:
            x = self.psi(chart, scale * u)
            if x is not None and self.bounds.contains(x):
                self._spawn_chart(x)
                return
            scale *= 0.5

    # --- Traversal ---
    def _chart_for(self, x: np.ndarray, chart_id: Optional[int]) -> Optional[AtlasChart]:
        if chart_id is not None:
            chart = self._charts[chart_id]
            if self.covers(chart, x):
                return chart
        owner = self.owning_chart(x)
        return owner if owner is not None else self._spawn_chart(x)

    def _chart_step(self, chart: AtlasChart, x: np.ndarray, goal: np.ndarray, gap: float) -> Optional[np.ndarray]:
        u0 = chart.to_local(x)
        heading = chart.to_local(goal) - u0
        norm = np.linalg.norm(heading)
        if norm < 1e-12:
            return None
        heading /= norm
        scale = min(self.delta, gap)
        for _ in range(_SHRINK_ATTEMPTS):
            u = u0 + scale * heading
            y = self._newton_psi(chart, u, x + chart.basis @ (u - u0))
            if y is None:
                scale *= 0.5
                continue
            moved = np.linalg.norm(y - x)
            if moved > self.delta * (1.0 + 1e-9):
                scale *= 0.9 * self.delta / moved
                continue
            if np.linalg.norm(goal - y) >= gap or not self.bounds.contains(y):
                return None
            return y
        return None

    def step_toward(
        self, x: np.ndarray, goal: np.ndarray, chart_id: Optional[int]
    ) -> Optional[Tuple[np.ndarray, int]]:
        """
        One traversal step of at most δ from ``x`` toward ``goal``.

        Steps in the tangent coordinates of the chart holding ``x`` and maps
        back with ψ. If that fails, retries once from a chart anchored at x.

        Returns:
            (x_next, chart_id) or None when no step makes progress.
        """
        chart = self._chart_for(x, chart_id)
        if chart is None:
            return None
        gap = float(np.linalg.norm(goal - x))
        x_next = self._chart_step(chart, x, goal, gap)
        if x_next is None:
            chart = self._spawn_chart(x)
            if chart is None:
                return None
            x_next = self._chart_step(chart, x, goal, gap)
            if x_next is None:
                return None
        if not self.covers(chart, x_next):
            chart = self.owning_chart(x_next) or self._spawn_chart(x_next)
            if chart is None:
                return None
        return x_next, chart.id

    def traverse_manifold(
        self, source: Configuration, target: Configuration, max_steps: Optional[int] = None
    ) -> List[Configuration]:
        """Strict traversal; see :meth:`ManifoldTraversal.run`."""
        return ManifoldTraversal(self, max_steps, self.lambda_).run(source, target)

    # --- Diagnostics ---
    def _boundary_directions(self, count: int) -> np.ndarray:
        k = self.manifold_dim
        if k == 1:
            return np.array([[1.0], [-1.0]])
        if k == 2:
            theta = np.linspace(0.0, 2.0 * np.pi, count, endpoint=False)
            return np.column_stack([np.cos(theta), np.sin(theta)])
        # Fixed generator: diagnostics must not consume the sampling stream.
        d = np.random.default_rng(0).normal(size=(count, k))
        return d / np.linalg.norm(d, axis=1, keepdims=True)

    def estimate_frontier_percent(self) -> float:
        """Percentage of chart boundary probes not covered by another chart."""
        if not self._charts:
            return 0.0
        directions = self._boundary_directions(_FRONTIER_PROBES)
        total = 0
        open_ = 0
        for chart in self._charts:
            for direction in directions:
                total += 1
                x = self.psi(chart, chart.radius * direction)
                if x is None or self.owning_chart(x, exclude=chart.id) is None:
                    open_ += 1
        return 100.0 * open_ / total

    def chart_polygons(self) -> List[np.ndarray]:
        """
        Boundary polygon of every chart, as (m, n) arrays of manifold points.
        Curves (k = 1) give their two end points. Only defined for k ≤ 2.
        """
        if self.manifold_dim > 2:
            raise ValueError(f"Chart polygons need a manifold of dimension <= 2, got {self.manifold_dim}")
        directions = self._boundary_directions(_POLYGON_VERTICES)
        polygons = []
        for chart in self._charts:
            vertices = []
            for direction in directions:
                u = chart.radius * direction
                x = self.psi(chart, u)
                vertices.append(x if x is not None else chart.to_ambient(u))
            polygons.append(np.vstack(vertices))
        return polygons
