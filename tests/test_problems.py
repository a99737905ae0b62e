from pathlib import Path

import numpy as np
import pytest
from pydantic import ValidationError

from cplan.core.config import ConstraintSettings
from cplan.core.errors import UnknownProblemError
from cplan.experiment.problems import BUILTIN_PROBLEMS, ProblemDefinition, load_problem

PROBLEM_DIR = Path(__file__).resolve().parent.parent / "configs" / "problems"


@pytest.mark.parametrize("name", sorted(BUILTIN_PROBLEMS))
def test_builtin_endpoints_are_on_manifold_and_valid(name):
    problem = load_problem(name)
    constraint = problem.constraint()
    assert constraint.is_satisfied(problem.start_vector())
    assert constraint.is_satisfied(problem.goal_vector())
    is_valid = problem.validity_predicate()
    if is_valid is not None:
        assert is_valid(problem.start_vector())
        assert is_valid(problem.goal_vector())


def test_plane_wall():
    is_valid = BUILTIN_PROBLEMS["plane"].validity_predicate()
    assert not is_valid(np.array([0.0, 0.0, 0.0]))
    assert is_valid(np.array([0.0, 1.5, 0.0]))
    assert is_valid(np.array([0.5, 0.0, 0.0]))


def test_sphere_bands_have_gaps():
    is_valid = BUILTIN_PROBLEMS["sphere"].validity_predicate()
    r = np.sqrt(0.75)
    assert not is_valid(np.array([r, 0.0, 0.5]))
    assert is_valid(np.array([0.0, r, 0.5]))
    assert not is_valid(np.array([0.0, r, -0.5]))
    assert is_valid(np.array([0.0, -r, -0.5]))


def test_obstacle_free_problem_has_no_predicate():
    assert BUILTIN_PROBLEMS["circle"].validity_predicate() is None


def test_constraint_uses_settings():
    constraint = BUILTIN_PROBLEMS["torus"].constraint(ConstraintSettings(tolerance=1e-8, max_iterations=7))
    assert constraint.tolerance == pytest.approx(1e-8)
    assert constraint.max_iterations == 7
    assert constraint.manifold_dim == 2
    assert constraint.name == "torus"


def test_load_yaml_problem():
    problem = load_problem(PROBLEM_DIR / "ellipse.yml")
    assert problem.name == "ellipse"
    assert problem.ambient_dim == 2
    assert problem.constraint().is_satisfied(problem.start_vector())
    assert not problem.validity_predicate()(np.array([0.0, 1.0]))


def test_yaml_problem_name_defaults_to_file_stem(tmp_path):
    path = tmp_path / "line.yml"
    path.write_text("variables: [x, y]\nequations: ['y']\nstart: [0, 0]\ngoal: [1, 0]\n")
    assert load_problem(path).name == "line"


def test_unknown_problem():
    with pytest.raises(UnknownProblemError):
        load_problem("klein-bottle")
    with pytest.raises(LookupError):
        load_problem("missing.yml")


def test_dimension_mismatch_rejected():
    with pytest.raises(ValidationError):
        ProblemDefinition(name="bad", variables=["x", "y"], equations=["x"], start=[0.0], goal=[0.0, 0.0])


@pytest.mark.parametrize("field, value", [
    ("equations", ["x**2 + y**2 -"]),
    ("obstacles", ["abs(x) <"]),
])
def test_unparsable_expression_rejected_at_load(field, value):
    data = dict(name="broken", variables=["x", "y"], equations=["x**2 + y**2 - 1"],
                start=[1.0, 0.0], goal=[-1.0, 0.0])
    data[field] = value
    with pytest.raises(ValidationError, match="Cannot parse expression"):
        ProblemDefinition.model_validate(data)
