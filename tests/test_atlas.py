"""Tests for cplan.geometry.atlas.AtlasStateSpace

Small circle and sphere atlases; no planner involved.
"""

import numpy as np
import pytest

from cplan.core.config import AtlasParameters
from cplan.core.errors import ChartMismatchError, InvalidAnchorError, TraversalDivergedError
from cplan.geometry.atlas import AtlasStateSpace
from cplan.geometry.constraint import Constraint


def _circle_space(seed=0):
    return AtlasStateSpace(Constraint(["x", "y"], ["x**2 + y**2 - 1"]), seed=seed)


def _sphere_space(seed=0, params=None):
    return AtlasStateSpace(Constraint(["x", "y", "z"], ["x**2 + y**2 + z**2 - 1"]), params, seed=seed)


def _anchored(space, point):
    point = np.asarray(point, dtype=float)
    chart = space.anchor_chart(point)
    state = space.alloc_state()
    space.set_real_state(state, point, chart)
    return state


def test_anchor_off_manifold_raises():
    space = _circle_space()
    with pytest.raises(InvalidAnchorError) as exc:
        space.anchor_chart(np.array([2.0, 2.0]))
    assert exc.value.violation == pytest.approx(7.0)
    assert space.get_chart_count() == 0


def test_anchor_registers_chart():
    space = _circle_space()
    chart = space.anchor_chart(np.array([1.0, 0.0]))
    assert chart.id == 0
    assert chart.basis.shape == (2, 1)
    assert chart.radius == pytest.approx(0.5)
    assert space.get_chart_count() == 1
    assert space.covers(chart, np.array([1.0, 0.0]))


def test_set_real_state_checks_chart_and_manifold():
    space = _circle_space()
    chart = space.anchor_chart(np.array([1.0, 0.0]))
    state = space.alloc_state()

    with pytest.raises(ChartMismatchError):
        space.set_real_state(state, np.array([-1.0, 0.0]), chart)
    with pytest.raises(InvalidAnchorError):
        space.set_real_state(state, np.array([0.5, 0.0]), chart)

    near = np.array([np.cos(0.1), np.sin(0.1)])
    space.set_real_state(state, near, chart)
    assert state.chart_id == chart.id
    np.testing.assert_allclose(state.vector, near)


def test_psi_lands_on_manifold_with_requested_coordinates():
    space = _sphere_space()
    chart = space.anchor_chart(np.array([0.0, 0.0, 1.0]))
    u = np.array([0.3, -0.2])
    x = space.psi(chart, u)
    assert x is not None
    assert space.constraint.is_satisfied(x)
    np.testing.assert_allclose(chart.to_local(x), u, atol=1e-6)


def test_rho_s():
    space = _sphere_space()
    assert space.rho_s == pytest.approx(0.5 / np.sqrt(0.5))
    assert AtlasParameters(exploration=0.0).rho_s(2) == pytest.approx(0.5)


def test_sampling_satisfies_constraint_and_charts_grow_monotonically():
    space = _sphere_space(seed=3)
    _anchored(space, [0.0, 0.0, 1.0])
    state = space.alloc_state()
    counts = [space.get_chart_count()]
    for _ in range(200):
        assert space.sample_uniform(state)
        assert space.constraint.is_satisfied(state.vector)
        assert space.covers(space.get_chart(state.chart_id), state.vector)
        counts.append(space.get_chart_count())
    assert all(b >= a for a, b in zip(counts, counts[1:]))
    assert counts[-1] > counts[0]


def test_sampling_an_empty_atlas_is_an_error():
    space = _circle_space()
    with pytest.raises(RuntimeError):
        space.sample_uniform(space.alloc_state())


def test_traversal_steps_are_short_and_on_manifold():
    space = _circle_space()
    a = _anchored(space, [1.0, 0.0])
    b = _anchored(space, [0.0, 1.0])
    before = space.get_chart_count()

    states = space.traverse_manifold(a, b)
    assert len(states) >= 2
    np.testing.assert_allclose(states[0].vector, a.vector)
    np.testing.assert_allclose(states[-1].vector, b.vector)
    for s in states:
        assert space.constraint.is_satisfied(s.vector)
    for p, q in zip(states, states[1:]):
        assert space.distance(p, q) <= space.delta * (1 + 1e-6)
    assert space.get_chart_count() >= before

    for s in states:
        space.free_state(s)


def test_identical_atlases_traverse_identically():
    paths = []
    for _ in range(2):
        space = _circle_space(seed=11)
        a = _anchored(space, [1.0, 0.0])
        b = _anchored(space, [-0.6, 0.8])
        paths.append(np.vstack([s.vector for s in space.traverse_manifold(a, b)]))
    np.testing.assert_array_equal(paths[0], paths[1])


def test_frontier_of_single_chart_is_fully_open():
    space = _circle_space()
    space.anchor_chart(np.array([1.0, 0.0]))
    assert space.estimate_frontier_percent() == pytest.approx(100.0)
    assert _circle_space().estimate_frontier_percent() == 0.0


def test_frontier_closes_as_charts_overlap():
    space = _circle_space()
    for theta in np.linspace(0.0, 2 * np.pi, 40, endpoint=False):
        space.anchor_chart(np.array([np.cos(theta), np.sin(theta)]))
    assert space.estimate_frontier_percent() < 100.0


def test_chart_polygons():
    space = _sphere_space()
    space.anchor_chart(np.array([0.0, 0.0, 1.0]))
    space.anchor_chart(np.array([1.0, 0.0, 0.0]))
    polygons = space.chart_polygons()
    assert len(polygons) == 2
    for poly in polygons:
        assert poly.shape == (16, 3)
        assert all(space.constraint.is_satisfied(v) for v in poly)


def test_state_release_accounting():
    space = _circle_space()
    a = space.alloc_state(np.array([1.0, 0.0]))
    b = space.copy_state(a)
    assert space.live_state_count == 2
    assert b is not a
    space.free_state(a)
    space.free_state(b)
    assert space.live_state_count == 0
    with pytest.raises(ValueError):
        space.free_state(a)


def test_sampling_creates_at_most_one_chart_per_call_when_capped():
    space = _sphere_space(seed=5, params=AtlasParameters(max_charts_per_extension=1))
    _anchored(space, [0.0, 0.0, 1.0])
    state = space.alloc_state()
    for _ in range(300):
        before = space.get_chart_count()
        space.sample_uniform(state)
        assert space.get_chart_count() - before <= 1
    assert space.get_chart_count() > 1


def _long_arc_endpoints(space):
    theta = 2.4
    return _anchored(space, [0.0, 0.0, 1.0]), _anchored(space, [np.sin(theta), 0.0, np.cos(theta)])


def test_traversal_past_the_chart_cap_diverges():
    space = _sphere_space(params=AtlasParameters(max_charts_per_extension=1))
    a, b = _long_arc_endpoints(space)
    before = space.get_chart_count()
    with pytest.raises(TraversalDivergedError):
        space.traverse_manifold(a, b)
    assert space.get_chart_count() - before <= 1
    assert space.live_state_count == 2


def test_same_long_traversal_succeeds_with_default_cap():
    space = _sphere_space()
    a, b = _long_arc_endpoints(space)
    states = space.traverse_manifold(a, b)
    assert space.get_chart_count() > 3
    np.testing.assert_allclose(states[-1].vector, b.vector)
    for s in states:
        space.free_state(s)


def test_alloc_without_vector_is_an_off_manifold_scratch_state():
    space = _circle_space()
    state = space.alloc_state()
    np.testing.assert_array_equal(state.vector, [0.0, 0.0])
    assert not space.constraint.is_satisfied(state.vector)
    space.free_state(state)
