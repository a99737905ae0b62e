"""
The structural interface shared by the atlas and projected state spaces,
and the factory that builds one from a run configuration.
"""

from __future__ import annotations

from typing import List, Optional, Protocol, Tuple, Union, runtime_checkable

import numpy as np

from cplan.core.config import ExperimentConfig
from cplan.core.enums import SpaceKind
from cplan.geometry.atlas import AtlasStateSpace
from cplan.geometry.constraint import Constraint
from cplan.geometry.projection import ProjectedStateSpace
from cplan.geometry.states import Bounds, Configuration

__all__ = ["ManifoldStateSpace", "make_state_space"]


@runtime_checkable
class ManifoldStateSpace(Protocol):
    kind: SpaceKind
    constraint: Constraint
    ambient_dim: int
    manifold_dim: int
    delta: float
    equality_tolerance: float
    bounds: Bounds
    rng: np.random.Generator

    def alloc_state(self, vector: Optional[np.ndarray] = None,
                    chart_id: Optional[int] = None) -> Configuration:
        """Without a vector this is an off-manifold scratch state."""

    def free_state(self, state: Configuration) -> None: ...

    def copy_state(self, state: Configuration) -> Configuration: ...

    @property
    def live_state_count(self) -> int: ...

    def distance(self, a: Configuration, b: Configuration) -> float: ...

    def equal_states(self, a: Configuration, b: Configuration) -> bool: ...

    def set_bounds(self, low: float, high: float) -> None: ...

    def sample_uniform(self, state: Configuration) -> bool: ...

    def begin_extension(self) -> None: ...

    def step_toward(self, x: np.ndarray, goal: np.ndarray,
                    chart_id: Optional[int]) -> Optional[Tuple[np.ndarray, Optional[int]]]: ...

    def traverse_manifold(self, source: Configuration, target: Configuration,
                          max_steps: Optional[int] = None) -> List[Configuration]: ...


def make_state_space(
    kind: Union[SpaceKind, str],
    constraint: Constraint,
    config: Optional[ExperimentConfig] = None,
    seed: Optional[int] = None,
) -> ManifoldStateSpace:
    """Build the requested space variant with bounds and tuning from ``config``."""
    config = config or ExperimentConfig()
    kind = SpaceKind(kind)
    bounds = Bounds.uniform(constraint.ambient_dim, config.bounds.low, config.bounds.high)
    lambda_ = config.traversal.lambda_
    if kind is SpaceKind.ATLAS:
        return AtlasStateSpace(constraint, config.atlas, bounds, seed, lambda_)
    return ProjectedStateSpace(constraint, config.projection, bounds, seed, lambda_)
