"""
Everything a planner is given: the state space, start and goal, the validity
predicate, and the allocator of valid-state samplers.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable, Optional

import numpy as np

from cplan.geometry.states import Configuration
from cplan.geometry.traversal import ManifoldTraversal

__all__ = ["ValidityChecker", "ValidStateSampler", "PlanningContext"]


class ValidityChecker:
    """
    Callable validity predicate over ambient vectors.

    Sleeps ``delay`` seconds per check to emulate an expensive collision
    checker, and counts checks for the run diagnostics.
    """

    def __init__(self, predicate: Optional[Callable[[np.ndarray], bool]] = None, delay: float = 0.0):
        self.predicate = predicate
        self.delay = float(delay)
        self.checks = 0

    def __call__(self, x: np.ndarray) -> bool:
        self.checks += 1
        if self.delay > 0.0:
            time.sleep(self.delay)
        return True if self.predicate is None else bool(self.predicate(x))


class ValidStateSampler:
    """Draws from the space until a sample passes the validity predicate."""

    def __init__(self, space, is_valid: Callable[[np.ndarray], bool], attempts: int = 100):
        self.space = space
        self.is_valid = is_valid
        self.attempts = attempts

    def sample(self, state: Configuration) -> bool:
        for _ in range(self.attempts):
            if self.space.sample_uniform(state) and self.is_valid(state.vector):
                return True
        return False


def default_sampler_allocator(context: "PlanningContext") -> ValidStateSampler:
    return ValidStateSampler(context.space, context.is_valid)


@dataclass
class PlanningContext:
    space: object
    start: Configuration
    goal: Configuration
    is_valid: Callable[[np.ndarray], bool] = field(default_factory=ValidityChecker)
    sampler_allocator: Callable[["PlanningContext"], ValidStateSampler] = default_sampler_allocator
    traversal: Optional[ManifoldTraversal] = None

    def __post_init__(self):
        if self.traversal is None:
            self.traversal = ManifoldTraversal(self.space, lambda_=getattr(self.space, "lambda_", 2.0))

    def register_sampler_allocator(self, allocator: Callable[["PlanningContext"], ValidStateSampler]) -> None:
        self.sampler_allocator = allocator

    def allocate_sampler(self) -> ValidStateSampler:
        return self.sampler_allocator(self)

    @property
    def validity_checks(self) -> int:
        return getattr(self.is_valid, "checks", 0)
