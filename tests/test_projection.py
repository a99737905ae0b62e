import numpy as np
import pytest

from cplan.core.config import ExperimentConfig
from cplan.core.enums import SpaceKind
from cplan.core.errors import InvalidAnchorError
from cplan.geometry.atlas import AtlasStateSpace
from cplan.geometry.constraint import Constraint
from cplan.geometry.projection import ProjectedStateSpace
from cplan.geometry.space import ManifoldStateSpace, make_state_space


@pytest.fixture
def sphere():
    return Constraint(["x", "y", "z"], ["x**2 + y**2 + z**2 - 1"], name="sphere")


def test_set_real_state_validates(sphere):
    space = ProjectedStateSpace(sphere)
    state = space.alloc_state()
    with pytest.raises(InvalidAnchorError):
        space.set_real_state(state, np.array([0.0, 0.0, 0.5]))
    space.set_real_state(state, np.array([0.0, 0.0, 1.0]))
    assert state.chart_id is None
    assert state.kind is SpaceKind.PROJECTED


def test_samples_are_on_manifold_and_in_bounds(sphere):
    space = ProjectedStateSpace(sphere, seed=5)
    space.set_bounds(-2.0, 2.0)
    state = space.alloc_state()
    for _ in range(100):
        assert space.sample_uniform(state)
        assert sphere.is_satisfied(state.vector)
        assert space.bounds.contains(state.vector)


def test_step_toward_is_bounded_by_delta(sphere):
    space = ProjectedStateSpace(sphere)
    x = np.array([1.0, 0.0, 0.0])
    x_next, chart_id = space.step_toward(x, np.array([0.0, 1.0, 0.0]), None)
    assert chart_id is None
    assert np.linalg.norm(x_next - x) <= space.delta * (1 + 1e-6)
    assert sphere.is_satisfied(x_next)


def test_step_toward_without_progress(sphere):
    space = ProjectedStateSpace(sphere)
    x = np.array([1.0, 0.0, 0.0])
    assert space.step_toward(x, x.copy(), None) is None
    # Antipodal target: the ambient step projects straight back onto x.
    assert space.step_toward(x, -x, None) is None


def test_traversal_on_sphere(sphere):
    space = ProjectedStateSpace(sphere)
    a = space.alloc_state(np.array([1.0, 0.0, 0.0]))
    b = space.alloc_state(np.array([0.0, 0.6, 0.8]))
    states = space.traverse_manifold(a, b)
    assert len(states) >= 2
    for s in states:
        assert sphere.is_satisfied(s.vector)
    for p, q in zip(states, states[1:]):
        assert space.distance(p, q) <= space.delta * (1 + 1e-6)
    for s in states:
        space.free_state(s)
    assert space.live_state_count == 2


def test_make_state_space_dispatch(sphere):
    config = ExperimentConfig.model_validate({"atlas": {"rho": 0.3}, "projection": {"delta": 0.05}})
    atlas = make_state_space("atlas", sphere, config)
    projected = make_state_space(SpaceKind.PROJECTED, sphere, config)
    assert isinstance(atlas, AtlasStateSpace)
    assert isinstance(projected, ProjectedStateSpace)
    assert atlas.params.rho == pytest.approx(0.3)
    assert projected.delta == pytest.approx(0.05)
    assert isinstance(atlas, ManifoldStateSpace)
    assert isinstance(projected, ManifoldStateSpace)
