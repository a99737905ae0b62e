"""Tests for cplan.planning: contexts, samplers and the reference planners."""

import numpy as np
import pytest

from cplan.core.enums import PlannerStatus
from cplan.core.errors import UnknownPlannerError
from cplan.geometry.constraint import Constraint
from cplan.geometry.projection import ProjectedStateSpace
from cplan.planning.context import PlanningContext, ValidityChecker, ValidStateSampler
from cplan.planning.planners import PLANNERS, PRM, RRT, RRTConnect, make_planner


def _circle_context(predicate=None, seed=0):
    space = ProjectedStateSpace(Constraint(["x", "y"], ["x**2 + y**2 - 1"]), seed=seed)
    start = space.alloc_state(np.array([1.0, 0.0]))
    goal = space.alloc_state(np.array([-1.0, 0.0]))
    return PlanningContext(space, start, goal, ValidityChecker(predicate))


def _check_solution(context, path):
    np.testing.assert_allclose(path[0].vector, context.start.vector)
    np.testing.assert_allclose(path[-1].vector, context.goal.vector)
    for state in path:
        assert context.space.constraint.is_satisfied(state.vector)


def test_validity_checker_counts_checks():
    checker = ValidityChecker(lambda x: x[0] > 0)
    assert checker(np.array([1.0, 0.0]))
    assert not checker(np.array([-1.0, 0.0]))
    assert checker.checks == 2
    assert ValidityChecker()(np.zeros(2))


def test_valid_state_sampler_respects_predicate():
    context = _circle_context(predicate=lambda x: x[1] > 0)
    sampler = context.allocate_sampler()
    assert isinstance(sampler, ValidStateSampler)
    state = context.space.alloc_state()
    for _ in range(20):
        assert sampler.sample(state)
        assert state.vector[1] > 0


def test_registered_sampler_allocator_is_used():
    context = _circle_context()
    context.register_sampler_allocator(lambda ctx: ValidStateSampler(ctx.space, ctx.is_valid, attempts=3))
    assert context.allocate_sampler().attempts == 3


def test_make_planner_registry():
    context = _circle_context()
    assert set(PLANNERS) == {"RRT", "RRTConnect", "PRM"}
    assert isinstance(make_planner("rrtconnect", context, 0.7), RRTConnect)
    assert isinstance(make_planner("PRM", context, 0.7), PRM)
    with pytest.raises(UnknownPlannerError, match="RRTConnect"):
        make_planner("RRTStar", context, 0.7)
    with pytest.raises(ValueError):
        make_planner("RRT", context, 0.0)


@pytest.mark.parametrize("planner_cls", [RRT, RRTConnect, PRM])
def test_planner_solves_half_circle(planner_cls):
    context = _circle_context(seed=1)
    planner = planner_cls(context, 0.7)
    planner.setup()
    status = planner.solve(5.0)
    assert status is PlannerStatus.EXACT
    path = planner.solution_path()
    assert len(path) >= 2
    _check_solution(context, path)

    data = planner.planner_data()
    assert data.num_vertices >= 2
    assert data.edges.shape[1] == 2
    diagnostics = planner.get_diagnostics()
    assert diagnostics["planner"] == planner_cls.name
    assert diagnostics["validity_checks"] > 0

    planner.clear()
    assert planner.solution_path() == []
    assert context.space.live_state_count == 2


def test_rrt_reports_approximate_solution_when_goal_is_cut_off():
    # Both arcs from (1, 0) to (-1, 0) cross x = 0.
    context = _circle_context(predicate=lambda x: abs(x[0]) > 0.1)
    planner = RRT(context, 0.7)
    planner.setup()
    assert planner.solve(1.0) is PlannerStatus.APPROXIMATE
    approx = float(planner.planner_data().properties["approx goal distance REAL"])
    assert approx > 0.1
    assert planner.solution_path()[0].vector == pytest.approx(context.start.vector)
    planner.clear()
    assert context.space.live_state_count == 2


def test_invalid_start_times_out_immediately():
    context = _circle_context(predicate=lambda x: x[0] < 0.5)
    planner = RRTConnect(context, 0.7)
    planner.setup()
    assert planner.solve(5.0) is PlannerStatus.TIMEOUT
    assert planner.iterations == 0
    planner.clear()
