"""
Configurations, their allocator, and the ambient bounding box.

A state space is the sole owner of the configurations it hands out. Every
allocation goes through a StateArena, and every configuration must be handed
back with ``free_state`` once no path or tree references it. The arena only
does bookkeeping; it exists so that leaks and double releases are caught.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional

import numpy as np

from cplan.core.enums import SpaceKind

__all__ = ["Configuration", "StateArena", "Bounds"]


@dataclass(eq=False)
class Configuration:
    """
    A point of the ambient space produced by a manifold state space.

    ``chart_id`` indexes the atlas chart registry (None for projected states);
    it is a lookup key, not an owning reference.
    """
    vector: np.ndarray
    kind: SpaceKind
    chart_id: Optional[int] = None
    handle: int = field(default=-1, repr=False)

    def __post_init__(self):
        self.vector = np.array(self.vector, dtype=np.float64)

    @property
    def dim(self) -> int:
        return int(self.vector.shape[0])


class StateArena:
    """Tracks live configurations of one state space."""

    def __init__(self, kind: SpaceKind, dim: int):
        self.kind = kind
        self.dim = dim
        self._live: Dict[int, Configuration] = {}
        self._next_handle = 0

    def allocate(self, vector: Optional[np.ndarray] = None, chart_id: Optional[int] = None) -> Configuration:
        """
        Register a new configuration holding a copy of ``vector``.

        Without a vector the configuration is the zero vector, which is
        generally off the manifold. Such states are scratch buffers for
        planners to overwrite, never results.
        """
        if vector is None:
            vector = np.zeros(self.dim)
        elif np.shape(vector) != (self.dim,):
            raise ValueError(f"Expected a vector of shape ({self.dim},), got {np.shape(vector)}")
        state = Configuration(vector, self.kind, chart_id, handle=self._next_handle)
        self._live[state.handle] = state
        self._next_handle += 1
        return state

    def release(self, state: Configuration) -> None:
        if self._live.get(state.handle) is not state:
            raise ValueError(f"Configuration {state.handle} is not live in this space (double free?)")
        del self._live[state.handle]

    @property
    def live_count(self) -> int:
        return len(self._live)


@dataclass
class Bounds:
    """Axis-aligned ambient bounding box."""
    low: np.ndarray
    high: np.ndarray

    @classmethod
    def uniform(cls, dim: int, low: float, high: float) -> "Bounds":
        return cls(np.full(dim, float(low)), np.full(dim, float(high)))

    def contains(self, x: np.ndarray) -> bool:
        return bool(np.all(x >= self.low) and np.all(x <= self.high))

    def sample(self, rng: np.random.Generator) -> np.ndarray:
        return rng.uniform(self.low, self.high)
