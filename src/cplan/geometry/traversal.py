"""
Walking along the constraint manifold between two configurations.

One walk loop serves three callers:

* ``ManifoldTraversal.run`` - strict: every step lands on the manifold, ends
  on the target, or raises TraversalDivergedError.
* ``ManifoldTraversal.extend`` - planner steering: stops quietly at the first
  invalid state, after a maximum travelled distance, or on divergence.
* ``reconstruct_path`` - densifies a waypoint sequence and measures it.

The per-step geometry (chart-local step + ψ, or ambient step + projection) is
delegated to the space's ``step_toward``.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Sequence, Tuple

import numpy as np

from cplan.core.errors import TraversalDivergedError
from cplan.core.logging import logger
from cplan.geometry.kernels import polyline_length
from cplan.geometry.states import Configuration

__all__ = [
    "ManifoldTraversal",
    "DensePath",
    "reconstruct_path",
    "simplify_waypoints",
]

ValidityFn = Callable[[np.ndarray], bool]


class _Outcome(Enum):
    REACHED = "reached"
    STOPPED = "stopped"
    DIVERGED = "diverged"


@dataclass
class _Walk:
    vectors: List[np.ndarray]
    chart_ids: List[Optional[int]]
    outcome: _Outcome
    reason: Optional[str] = None


@dataclass
class DensePath:
    """A reconstructed path: one row per pose, and its manifold length."""
    points: np.ndarray
    length: float
    segments: int
    degenerate_segments: int

    def __len__(self) -> int:
        return int(self.points.shape[0])


class ManifoldTraversal:
    """
    Steps from one configuration toward another, δ at a time, on the manifold.

    Args:
        space: An atlas or projected state space.
        max_steps: Fixed step budget. When None the budget is
            ceil(λ · ‖target - source‖ / δ) + 1.
        lambda_: Budget factor λ (> 1), how much longer than the chord the
            walk may be.
    """

    def __init__(self, space, max_steps: Optional[int] = None, lambda_: float = 2.0):
        if max_steps is not None and max_steps < 1:
            raise ValueError(f"max_steps must be >= 1, got {max_steps}")
        self.space = space
        self.max_steps = max_steps
        self.lambda_ = float(lambda_)

    def step_budget(self, source: np.ndarray, target: np.ndarray) -> int:
        if self.max_steps is not None:
            return self.max_steps
        chord = float(np.linalg.norm(target - source))
        return int(math.ceil(self.lambda_ * chord / self.space.delta)) + 1

    def _walk(
        self,
        source: Configuration,
        target: Configuration,
        max_distance: Optional[float] = None,
        is_valid: Optional[ValidityFn] = None,
    ) -> _Walk:
        space = self.space
        space.begin_extension()
        x = source.vector.copy()
        chart_id = source.chart_id
        goal = target.vector
        budget = self.step_budget(x, goal)

        walk = _Walk([], [], _Outcome.REACHED)
        travelled = 0.0
        while True:
            if np.linalg.norm(goal - x) <= space.delta:
                return walk
            if len(walk.vectors) >= budget:
                walk.outcome, walk.reason = _Outcome.DIVERGED, f"step budget of {budget} exhausted"
                return walk

            nxt = space.step_toward(x, goal, chart_id)
            if nxt is None:
                walk.outcome, walk.reason = _Outcome.DIVERGED, "no step makes progress on the manifold"
                return walk
            x_next, chart_id = nxt

            if max_distance is not None:
                travelled += float(np.linalg.norm(x_next - x))
                if travelled > max_distance:
                    walk.outcome, walk.reason = _Outcome.STOPPED, "range reached"
                    return walk
            if is_valid is not None and not is_valid(x_next):
                walk.outcome, walk.reason = _Outcome.STOPPED, "invalid state"
                return walk

            walk.vectors.append(x_next)
            walk.chart_ids.append(chart_id)
            x = x_next

    def _materialize(self, walk: _Walk) -> List[Configuration]:
        return [self.space.alloc_state(v, c) for v, c in zip(walk.vectors, walk.chart_ids)]

    def run(self, source: Configuration, target: Configuration) -> List[Configuration]:
        """
        Strict traversal from ``source`` to ``target``.

        Returns:
            Freshly allocated configurations, both endpoints included. The
            caller owns all of them and must release them with ``free_state``.

        Raises:
            TraversalDivergedError: If the target is not reached within budget.
        """
        walk = self._walk(source, target)
        if walk.outcome is not _Outcome.REACHED:
            raise TraversalDivergedError(source.vector, target.vector, len(walk.vectors), walk.reason)
        states = [self.space.copy_state(source)]
        states.extend(self._materialize(walk))
        states.append(self.space.copy_state(target))
        return states

    def extend(
        self,
        source: Configuration,
        target: Configuration,
        max_distance: Optional[float] = None,
        is_valid: Optional[ValidityFn] = None,
    ) -> Tuple[List[Configuration], bool]:
        """
        Walk from ``source`` toward ``target`` as far as allowed.

        Returns:
            (states, reached): new configurations after ``source`` (the last
            one is a copy of ``target`` when reached). Caller owns them.
        """
        walk = self._walk(source, target, max_distance, is_valid)
        states = self._materialize(walk)
        reached = walk.outcome is _Outcome.REACHED
        if reached:
            states.append(self.space.copy_state(target))
        return states, reached


def reconstruct_path(
    space,
    waypoints: Sequence[Configuration],
    traversal: Optional[ManifoldTraversal] = None,
) -> DensePath:
    """
    Densify a planner's waypoint sequence by traversing each consecutive pair.

    The path opens with the first waypoint. A degenerate segment (traversal
    collapsed to a single point) contributes one representative point, unless
    it repeats the last emitted point, and no length. Transient states are
    released as soon as they are copied out.

    Raises:
        TraversalDivergedError: From the first segment that cannot be
            traversed; a partial path is never returned.
    """
    traversal = traversal or ManifoldTraversal(space)
    if not waypoints:
        return DensePath(np.empty((0, space.ambient_dim)), 0.0, 0, 0)

    dense = [waypoints[0].vector.copy()]
    length = 0.0
    degenerate = 0
    for i in range(len(waypoints) - 1):
        states = traversal.run(waypoints[i], waypoints[i + 1])
        try:
            if space.equal_states(states[0], states[-1]):
                degenerate += 1
                if np.linalg.norm(dense[-1] - states[0].vector) > space.equality_tolerance:
                    dense.append(states[0].vector.copy())
            else:
                segment = np.vstack([s.vector for s in states])
                dense.extend(segment[1:])
                length += polyline_length(segment)
        finally:
            for state in states:
                space.free_state(state)

    logger.debug(
        f"Reconstructed {len(waypoints) - 1} segment(s) into {len(dense)} poses "
        f"({degenerate} degenerate), length {length:.4f}"
    )
    return DensePath(np.vstack(dense), length, len(waypoints) - 1, degenerate)


def simplify_waypoints(
    space,
    waypoints: Sequence[Configuration],
    is_valid: Optional[ValidityFn] = None,
    traversal: Optional[ManifoldTraversal] = None,
) -> List[Configuration]:
    """
    Drop interior waypoints that a direct, valid traversal can skip.

    Single forward pass: waypoint i is dropped when the last kept waypoint
    reaches waypoint i + 1 directly. Returns a sublist of the input objects;
    nothing new is allocated past the call.
    """
    if len(waypoints) < 3:
        return list(waypoints)
    traversal = traversal or ManifoldTraversal(space)
    kept = [waypoints[0]]
    for i in range(1, len(waypoints) - 1):
        states, reached = traversal.extend(kept[-1], waypoints[i + 1], is_valid=is_valid)
        for state in states:
            space.free_state(state)
        if not reached:
            kept.append(waypoints[i])
    kept.append(waypoints[-1])
    logger.debug(f"Simplified {len(waypoints)} waypoints to {len(kept)}")
    return kept
