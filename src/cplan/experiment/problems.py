"""
Planning problems: a constraint, a start/goal pair and obstacles.

Problems are plain data. Equations and obstacle predicates are SymPy strings
over the problem's variables; a state is invalid when any obstacle
expression evaluates true. Built-in problems are registered by name, and any
YAML file with the same fields can be loaded in their place.
"""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Dict, List, Optional, Union

import numpy as np
import sympy as sp
from pydantic import BaseModel, ConfigDict, Field, model_validator

from cplan.core.config import ConstraintSettings
from cplan.core.errors import UnknownProblemError
from cplan.core.logging import logger
from cplan.core.utils import load_yaml
from cplan.geometry.constraint import Constraint

__all__ = ["ProblemDefinition", "BUILTIN_PROBLEMS", "load_problem"]


class ProblemDefinition(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str
    description: str = ""
    variables: List[str] = Field(min_length=1)
    equations: List[str] = Field(min_length=1)
    start: List[float]
    goal: List[float]
    obstacles: List[str] = Field(default_factory=list)
    delay: float = Field(0.0, ge=0.0, description="Artificial seconds per validity check")

    @model_validator(mode="after")
    def check_dimensions(self):
        n = len(self.variables)
        for label, point in (("start", self.start), ("goal", self.goal)):
            if len(point) != n:
                raise ValueError(f"{label} has {len(point)} coordinates, expected {n}")
        local = {v: sp.Symbol(v, real=True) for v in self.variables}
        for expr in self.equations + self.obstacles:
            try:
                sp.sympify(expr, locals=local)
            except sp.SympifyError as e:
                raise ValueError(f"Cannot parse expression {expr!r}: {e}") from e
        return self

    @property
    def ambient_dim(self) -> int:
        return len(self.variables)

    def start_vector(self) -> np.ndarray:
        return np.array(self.start, dtype=np.float64)

    def goal_vector(self) -> np.ndarray:
        return np.array(self.goal, dtype=np.float64)

    def constraint(self, settings: Optional[ConstraintSettings] = None) -> Constraint:
        settings = settings or ConstraintSettings()
        return Constraint(
            self.variables,
            self.equations,
            tolerance=settings.tolerance,
            max_iterations=settings.max_iterations,
            name=self.name,
        )

    def validity_predicate(self) -> Optional[Callable[[np.ndarray], bool]]:
        """Compiled obstacle test, or None for an obstacle-free problem."""
        if not self.obstacles:
            return None
        symbols = [sp.Symbol(v, real=True) for v in self.variables]
        local = {s.name: s for s in symbols}
        tests = [sp.lambdify(symbols, sp.sympify(o, locals=local), modules="numpy") for o in self.obstacles]

        def is_valid(x: np.ndarray) -> bool:
            return not any(bool(test(*x)) for test in tests)

        return is_valid


BUILTIN_PROBLEMS: Dict[str, ProblemDefinition] = {
    p.name: p for p in (
        ProblemDefinition(
            name="circle",
            description="Unit circle in the plane",
            variables=["x", "y"],
            equations=["x**2 + y**2 - 1"],
            start=[1.0, 0.0],
            goal=[-1.0, 0.0],
        ),
        ProblemDefinition(
            name="plane",
            description="The plane z = 0 with a wall to walk around",
            variables=["x", "y", "z"],
            equations=["z"],
            start=[-1.0, 0.0, 0.0],
            goal=[1.0, 0.0, 0.0],
            obstacles=["(abs(x) < 0.1) & (abs(y) < 1.0)"],
        ),
        ProblemDefinition(
            name="sphere",
            description="Unit sphere, pole to pole through two latitude bands with gaps",
            variables=["x", "y", "z"],
            equations=["x**2 + y**2 + z**2 - 1"],
            start=[0.0, 0.0, -1.0],
            goal=[0.0, 0.0, 1.0],
            obstacles=[
                "(abs(z + 0.5) < 0.1) & ((abs(x) > 0.2) | (y > 0))",
                "(abs(z - 0.5) < 0.1) & ((abs(x) > 0.2) | (y < 0))",
            ],
        ),
        ProblemDefinition(
            name="torus",
            description="Torus with major radius 2 and minor radius 1",
            variables=["x", "y", "z"],
            equations=["(sqrt(x**2 + y**2) - 2)**2 + z**2 - 1"],
            start=[3.0, 0.0, 0.0],
            goal=[-1.0, 0.0, 0.0],
        ),
    )
}


def load_problem(name_or_path: Union[str, Path]) -> ProblemDefinition:
    """
    Resolve a built-in problem name or a YAML problem file.

    Raises:
        UnknownProblemError: If neither a built-in nor an existing file matches.
    """
    key = str(name_or_path)
    if key in BUILTIN_PROBLEMS:
        return BUILTIN_PROBLEMS[key]
    path = Path(key)
    if path.suffix in (".yml", ".yaml") and path.is_file():
        data = load_yaml(path)
        data.setdefault("name", path.stem)
        problem = ProblemDefinition.model_validate(data)
        logger.debug(f"Loaded problem {problem.name!r} from {path}")
        return problem
    raise UnknownProblemError(
        f"Unknown problem {key!r}; choose from {', '.join(BUILTIN_PROBLEMS)} or a YAML file"
    )
