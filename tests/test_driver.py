"""End-to-end tests for cplan.experiment.driver.ExperimentDriver"""

import io

import numpy as np
import pytest
import yaml
from rich.console import Console

from cplan.core.config import ExperimentConfig
from cplan.core.enums import PlannerStatus, RunState, SpaceKind
from cplan.core.errors import InvalidAnchorError, InvalidTimeLimitError
from cplan.experiment.driver import ExperimentDriver
from cplan.experiment.problems import ProblemDefinition


def _quiet_console():
    return Console(file=io.StringIO(), width=120)


def _driver(tmp_path, problem="circle", planner="RRTConnect", space="projected", time_limit=5.0, **config):
    cfg = ExperimentConfig.model_validate({"seed": 0, **config})
    return ExperimentDriver(problem, planner, space, time_limit, cfg, tmp_path, console=_quiet_console())


def test_circle_half_turn_length_is_pi(tmp_path):
    driver = _driver(tmp_path, simplify=True)
    report = driver.run()

    assert driver.state is RunState.REPORT_EMITTED
    assert report.solved
    assert report.status == PlannerStatus.EXACT.value
    assert report.length == pytest.approx(np.pi, rel=0.05)
    assert report.live_states == 0

    poses = np.loadtxt(tmp_path / "anim.txt")
    assert poses.shape[1] == 2
    np.testing.assert_allclose(poses[0], [1.0, 0.0], atol=1e-8)
    np.testing.assert_allclose(poses[-1], [-1.0, 0.0], atol=1e-8)
    np.testing.assert_allclose(np.hypot(poses[:, 0], poses[:, 1]), 1.0, atol=1e-5)

    saved = yaml.safe_load((tmp_path / "report.yml").read_text())
    assert saved["solved"] is True
    assert saved["problem"] == "circle"
    used = yaml.safe_load((tmp_path / "used_config.yml").read_text())
    assert used["simplify"] is True

    printed = driver.console.file.getvalue()
    assert "Length:" in printed
    assert "seconds." in printed


def test_zero_time_limit_fails_before_planning(tmp_path, monkeypatch):
    driver = _driver(tmp_path, space="atlas", time_limit=0)
    driver.parse_problem()
    driver.configure_space()

    def _must_not_run(*args, **kwargs):
        raise AssertionError("planner invoked")

    monkeypatch.setattr(driver.planner, "solve", _must_not_run)
    with pytest.raises(InvalidTimeLimitError):
        driver.plan()
    assert driver.state is RunState.SPACE_CONFIGURED


def test_run_releases_states_on_error(tmp_path):
    driver = _driver(tmp_path, space="atlas", time_limit=-1.0)
    with pytest.raises(InvalidTimeLimitError):
        driver.run()
    assert driver.space.live_state_count == 0


def test_off_manifold_start_is_rejected(tmp_path):
    problem = ProblemDefinition(
        name="bad-start", variables=["x", "y"], equations=["x**2 + y**2 - 1"],
        start=[2.0, 2.0], goal=[-1.0, 0.0],
    )
    driver = _driver(tmp_path, problem=problem, space="atlas")
    driver.parse_problem()
    with pytest.raises(InvalidAnchorError):
        driver.configure_space()


def test_phases_out_of_order(tmp_path):
    driver = _driver(tmp_path)
    with pytest.raises(RuntimeError):
        driver.plan()
    driver.parse_problem()
    with pytest.raises(RuntimeError):
        driver.parse_problem()
    with pytest.raises(RuntimeError):
        driver.emit_report()


def test_failed_run_still_reports(tmp_path):
    problem = ProblemDefinition(
        name="blocked-circle", variables=["x", "y"], equations=["x**2 + y**2 - 1"],
        start=[1.0, 0.0], goal=[-1.0, 0.0], obstacles=["abs(x) < 0.1"],
    )
    driver = _driver(tmp_path, problem=problem, planner="RRTConnect", time_limit=0.5)
    report = driver.run()
    assert driver.state is RunState.REPORT_EMITTED
    assert not report.solved
    assert report.length is None
    assert report.live_states == 0
    assert not (tmp_path / "anim.txt").exists()
    printed = driver.console.file.getvalue()
    assert "No solution found." in printed
    assert "seconds." not in printed
    assert report.seconds > 0.0


def test_atlas_sphere_run_reports_charts_and_artifacts(tmp_path):
    driver = ExperimentDriver(
        "sphere", "RRT", SpaceKind.ATLAS, 1.0,
        ExperimentConfig(seed=2), tmp_path, dump_artifacts=True, console=_quiet_console(),
    )
    report = driver.run()
    assert report.chart_count >= 2
    assert 0.0 <= report.frontier_percent <= 100.0
    assert report.live_states == 0
    assert (tmp_path / "atlas.ply").exists()
    assert (tmp_path / "graph.ply").exists()
    if report.solved:
        assert (tmp_path / "path.ply").exists()
        assert (tmp_path / "path.png").exists()
    printed = driver.console.file.getvalue()
    assert "Atlas created" in printed
    assert "% open." in printed
