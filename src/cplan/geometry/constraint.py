"""
Equality constraints F(x) = 0 over an ambient vector space.

A Constraint is defined symbolically with SymPy; the function and its exact
Jacobian are lambdified to NumPy once at construction. The manifold is the
zero set of F, of dimension k = n - m for m independent equations.
"""

from __future__ import annotations

from typing import Optional, Sequence, Tuple, Union

import numpy as np
import sympy as sp

__all__ = ["Constraint"]

ExprLike = Union[str, sp.Expr]


class Constraint:
    """
    Differentiable equality constraint F: Rⁿ → Rᵐ.

    Args:
        variables: Ambient coordinate names or symbols, in vector order.
        equations: Expressions (strings are parsed by ``sympy.sympify``) that
            vanish on the manifold.
        tolerance: Satisfaction tolerance on ‖F(x)‖.
        max_iterations: Newton iteration cap for :meth:`project`.
        name: Label used in logs and reports.
    """

    def __init__(
        self,
        variables: Sequence[Union[str, sp.Symbol]],
        equations: Sequence[ExprLike],
        tolerance: float = 1e-6,
        max_iterations: int = 50,
        name: str = "constraint",
    ):
        if not equations:
            raise ValueError("A constraint needs at least one equation")
        self.symbols = tuple(sp.Symbol(v, real=True) if isinstance(v, str) else v for v in variables)
        local = {s.name: s for s in self.symbols}
        self.expressions = tuple(
            sp.sympify(e, locals=local) if isinstance(e, str) else e for e in equations
        )
        unknown = set().union(*(e.free_symbols for e in self.expressions)) - set(self.symbols)
        if unknown:
            raise ValueError(f"Equations use undeclared variables: {sorted(s.name for s in unknown)}")

        self.name = name
        self.tolerance = float(tolerance)
        self.max_iterations = int(max_iterations)
        self.ambient_dim = len(self.symbols)
        self.co_dim = len(self.expressions)
        self.manifold_dim = self.ambient_dim - self.co_dim
        if self.manifold_dim < 1:
            raise ValueError(
                f"{self.co_dim} equation(s) over {self.ambient_dim} variable(s) leave no manifold"
            )

        F = sp.Matrix(self.expressions)
        self._f = sp.lambdify(self.symbols, F, modules="numpy")
        self._j = sp.lambdify(self.symbols, F.jacobian(self.symbols), modules="numpy")

    def __repr__(self) -> str:
        eqs = ", ".join(str(e) for e in self.expressions)
        return f"Constraint({self.name!r}: {eqs} = 0 in R^{self.ambient_dim})"

    # --- Evaluation ---
    def function(self, x: np.ndarray) -> np.ndarray:
        """F(x) as an (m,) array."""
        return np.asarray(self._f(*x), dtype=np.float64).reshape(self.co_dim)

    def jacobian(self, x: np.ndarray) -> np.ndarray:
        """J(x) = ∂F/∂x as an (m, n) array."""
        return np.asarray(self._j(*x), dtype=np.float64).reshape(self.co_dim, self.ambient_dim)

    def distance(self, x: np.ndarray) -> float:
        """Constraint violation ‖F(x)‖."""
        return float(np.linalg.norm(self.function(x)))

    def is_satisfied(self, x: np.ndarray, tolerance: Optional[float] = None) -> bool:
        tol = self.tolerance if tolerance is None else tolerance
        return self.distance(x) <= tol

    # --- Geometry ---
    def project(self, x0: np.ndarray) -> Tuple[np.ndarray, bool]:
        """
        Newton-Raphson projection onto the manifold: x ← x - J(x)⁺ F(x).

        Returns:
            (x, converged): the last iterate and whether ‖F(x)‖ ≤ tolerance.
        """
        x = np.array(x0, dtype=np.float64)
        for _ in range(self.max_iterations):
            f = self.function(x)
            if np.linalg.norm(f) <= self.tolerance:
                return x, True
            step = np.linalg.lstsq(self.jacobian(x), f, rcond=None)[0]
            x = x - step
            if not np.all(np.isfinite(x)):
                return x, False
        return x, self.is_satisfied(x)

    def tangent_basis(self, x: np.ndarray) -> np.ndarray:
        """
        Orthonormal basis Φ (n, k) of the tangent space at x: the null space of J(x).
        """
        _, _, vt = np.linalg.svd(self.jacobian(x), full_matrices=True)
        return np.ascontiguousarray(vt[self.co_dim:].T)
