"""Tests for cplan.geometry.constraint.Constraint"""

import numpy as np
import pytest

from cplan.geometry.constraint import Constraint


def _circle(**kwargs):
    return Constraint(["x", "y"], ["x**2 + y**2 - 1"], name="circle", **kwargs)


def test_dimensions():
    sphere = Constraint(["x", "y", "z"], ["x**2 + y**2 + z**2 - 1"])
    assert sphere.ambient_dim == 3
    assert sphere.co_dim == 1
    assert sphere.manifold_dim == 2

    curve = Constraint(["x", "y", "z"], ["z", "x**2 + y**2 - 1"])
    assert curve.manifold_dim == 1


def test_function_and_jacobian():
    c = _circle()
    assert c.function(np.array([1.0, 0.0])) == pytest.approx([0.0])
    assert c.function(np.array([2.0, 0.0])) == pytest.approx([3.0])
    np.testing.assert_allclose(c.jacobian(np.array([1.0, 2.0])), [[2.0, 4.0]])


def test_constant_jacobian_has_full_shape():
    plane = Constraint(["x", "y", "z"], ["z"])
    np.testing.assert_allclose(plane.jacobian(np.array([0.3, -0.2, 0.0])), [[0.0, 0.0, 1.0]])


def test_rejects_undeclared_variables():
    with pytest.raises(ValueError, match="undeclared"):
        Constraint(["x", "y"], ["x + y + w"])


def test_rejects_overdetermined_system():
    with pytest.raises(ValueError):
        Constraint(["x"], ["x - 1"])


def test_project_converges_onto_manifold():
    c = _circle()
    x, converged = c.project(np.array([2.0, 0.0]))
    assert converged
    assert c.is_satisfied(x)
    np.testing.assert_allclose(x, [1.0, 0.0], atol=1e-6)


def test_project_reports_failure_on_iteration_cap():
    c = _circle(max_iterations=1)
    _, converged = c.project(np.array([5.0, 5.0]))
    assert not converged


def test_tangent_basis_is_orthonormal_null_space():
    c = Constraint(["x", "y", "z"], ["x**2 + y**2 + z**2 - 1"])
    x = np.array([0.0, 0.6, 0.8])
    basis = c.tangent_basis(x)
    assert basis.shape == (3, 2)
    assert basis.flags["C_CONTIGUOUS"]
    np.testing.assert_allclose(basis.T @ basis, np.eye(2), atol=1e-12)
    np.testing.assert_allclose(c.jacobian(x) @ basis, np.zeros((1, 2)), atol=1e-12)
