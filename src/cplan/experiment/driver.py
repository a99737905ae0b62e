"""
Experiment driver: one constrained planning run, from problem to report.

The driver walks a fixed sequence of phases, held in ``RunState``:

    INIT -> CONSTRAINT_PARSED -> SPACE_CONFIGURED -> PLANNED
         -> SUCCEEDED | FAILED -> REPORT_EMITTED

Each phase is a public method; calling one out of order raises RuntimeError.
``run()`` executes them all and always releases the states it allocated.

Outputs (in ``output_dir``):
    - anim.txt: one pose per line, whitespace-separated (solved runs only)
    - report.yml, used_config.yml
    - path.ply, atlas.ply, graph.ply, path.png when artifacts are dumped
"""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import List, Optional, Union

import numpy as np
import yaml
from rich.console import Console

from cplan.core.config import ExperimentConfig
from cplan.core.enums import PlannerStatus, RunState, SpaceKind
from cplan.core.errors import InvalidTimeLimitError, TraversalDivergedError
from cplan.core.logging import logger
from cplan.experiment import artifacts
from cplan.experiment.problems import ProblemDefinition, load_problem
from cplan.geometry.space import make_state_space
from cplan.geometry.traversal import (
    DensePath,
    ManifoldTraversal,
    reconstruct_path,
    simplify_waypoints,
)
from cplan.planning.context import PlanningContext, ValidityChecker, ValidStateSampler
from cplan.planning.planners import make_planner

__all__ = ["ExperimentReport", "ExperimentDriver"]

_APPROX_KEY = "approx goal distance REAL"


@dataclass
class ExperimentReport:
    problem: str
    planner: str
    space: str
    time_limit: float
    status: str
    solved: bool
    approximate: bool
    seconds: float
    length: Optional[float] = None
    waypoints: int = 0
    dense_points: int = 0
    degenerate_segments: int = 0
    approx_goal_distance: Optional[float] = None
    chart_count: Optional[int] = None
    frontier_percent: Optional[float] = None
    live_states: int = 0
    diagnostics: dict = field(default_factory=dict)
    artifacts: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


class ExperimentDriver:
    """
    Run one planning experiment.

    Args:
        problem: A ProblemDefinition, a built-in problem name, or a YAML path.
        planner: Registered planner name (RRT, RRTConnect, PRM).
        space: ``SpaceKind`` or its value ("atlas" / "projected").
        time_limit: Planning budget in seconds; must be positive.
        config: Run configuration; defaults to ``ExperimentConfig()``.
        output_dir: Where anim.txt, reports and artifacts go.
        dump_artifacts: Write PLY meshes and the path plot.
        console: Rich console for the summary (a default one if None).
    """

    def __init__(
        self,
        problem: Union[ProblemDefinition, str, Path],
        planner: str,
        space: Union[SpaceKind, str],
        time_limit: float,
        config: Optional[ExperimentConfig] = None,
        output_dir: Optional[Union[str, Path]] = None,
        dump_artifacts: bool = False,
        console: Optional[Console] = None,
    ):
        self.problem_ref = problem
        self.planner_name = planner
        self.space_kind = SpaceKind(space)
        self.time_limit = time_limit
        self.config = config or ExperimentConfig()
        self.output_dir = Path(output_dir) if output_dir is not None else Path(".")
        self.dump_artifacts = dump_artifacts
        self.console = console or Console()

        self.state = RunState.INIT
        self.problem: Optional[ProblemDefinition] = None
        self.constraint = None
        self.is_valid: Optional[ValidityChecker] = None
        self.space = None
        self.context: Optional[PlanningContext] = None
        self.planner = None
        self.traversal: Optional[ManifoldTraversal] = None
        self.status: Optional[PlannerStatus] = None
        self.seconds = 0.0
        self.waypoints = []
        self.path: Optional[DensePath] = None
        self._start = None
        self._goal = None

    def _require(self, expected, new: Optional[RunState] = None) -> None:
        expected = expected if isinstance(expected, tuple) else (expected,)
        if self.state not in expected:
            allowed = " or ".join(s.name for s in expected)
            target = new.name if new is not None else "this phase"
            raise RuntimeError(f"Cannot enter {target} from {self.state.name}; expected {allowed}")

    def _advance(self, expected, new: RunState) -> None:
        self._require(expected, new)
        logger.debug(f"Run state {self.state.name} -> {new.name}")
        self.state = new

    # --- Phases ---
    def parse_problem(self) -> None:
        """Resolve the problem and build its constraint and validity checker."""
        self._advance(RunState.INIT, RunState.CONSTRAINT_PARSED)
        if isinstance(self.problem_ref, ProblemDefinition):
            self.problem = self.problem_ref
        else:
            self.problem = load_problem(self.problem_ref)
        self.constraint = self.problem.constraint(self.config.constraint)
        self.is_valid = ValidityChecker(self.problem.validity_predicate(), self.problem.delay)
        logger.info(f"Problem {self.problem.name!r}: {self.constraint}")

    def configure_space(self) -> None:
        """Build the state space, anchor start and goal, and set up the planner."""
        self._advance(RunState.CONSTRAINT_PARSED, RunState.SPACE_CONFIGURED)
        cfg = self.config
        space = make_state_space(self.space_kind, self.constraint, cfg, cfg.seed)
        space.set_bounds(cfg.bounds.low, cfg.bounds.high)
        self.space = space

        start, goal = self.problem.start_vector(), self.problem.goal_vector()
        self._start, self._goal = space.alloc_state(), space.alloc_state()
        if self.space_kind is SpaceKind.ATLAS:
            space.set_real_state(self._start, start, space.anchor_chart(start))
            space.set_real_state(self._goal, goal, space.anchor_chart(goal))
            range_ = space.rho_s
        else:
            space.set_real_state(self._start, start)
            space.set_real_state(self._goal, goal)
            range_ = cfg.planner.projected_range

        self.traversal = ManifoldTraversal(space, cfg.traversal.max_steps, cfg.traversal.lambda_)
        self.context = PlanningContext(space, self._start, self._goal, self.is_valid, traversal=self.traversal)
        attempts = cfg.planner.sampler_attempts
        self.context.register_sampler_allocator(lambda ctx: ValidStateSampler(ctx.space, ctx.is_valid, attempts))

        self.planner = make_planner(self.planner_name, self.context, range_, cfg.planner)
        self.planner.setup()
        logger.info(f"{space!r} with {self.planner!r}")

    def plan(self) -> PlannerStatus:
        """
        Solve within the time limit.

        Raises:
            InvalidTimeLimitError: If the time limit is not positive. The
                planner is not invoked and the run stays configured.
        """
        self._require(RunState.SPACE_CONFIGURED, RunState.PLANNED)
        if not self.time_limit > 0:
            raise InvalidTimeLimitError(self.time_limit)
        self._advance(RunState.SPACE_CONFIGURED, RunState.PLANNED)

        tic = time.perf_counter()
        self.status = self.planner.solve(float(self.time_limit))
        self.seconds = time.perf_counter() - tic
        logger.info(f"{self.planner.name} finished with {self.status.value} in {self.seconds:.3f}s")
        return self.status

    def reconstruct(self) -> Optional[DensePath]:
        """
        Densify the solution into a constraint-satisfying path.

        Raises:
            TraversalDivergedError: If a solution segment cannot be traversed.
        """
        self._require(RunState.PLANNED)
        if not self.status.solved:
            self._advance(RunState.PLANNED, RunState.FAILED)
            return None
        waypoints = self.planner.solution_path()
        if self.config.simplify:
            waypoints = simplify_waypoints(self.space, waypoints, self.is_valid, self.traversal)
        self.waypoints = waypoints
        try:
            self.path = reconstruct_path(self.space, waypoints, self.traversal)
        except TraversalDivergedError:
            self._advance(RunState.PLANNED, RunState.FAILED)
            raise
        self._advance(RunState.PLANNED, RunState.SUCCEEDED)
        return self.path

    def emit_report(self) -> ExperimentReport:
        """Print the summary, write outputs, release states and return the report."""
        self._advance((RunState.SUCCEEDED, RunState.FAILED), RunState.REPORT_EMITTED)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        data = self.planner.planner_data()
        approx = data.properties.get(_APPROX_KEY)

        report = ExperimentReport(
            problem=self.problem.name,
            planner=self.planner.name,
            space=self.space_kind.value,
            time_limit=float(self.time_limit),
            status=self.status.value,
            solved=self.path is not None,
            approximate=self.status is PlannerStatus.APPROXIMATE,
            seconds=self.seconds,
            approx_goal_distance=float(approx) if approx is not None else None,
            diagnostics=self.planner.get_diagnostics(),
        )

        out = self.console.print
        if self.path is not None:
            if report.approximate:
                out("Solution is approximate.")
            report.length = self.path.length
            report.waypoints = len(self.waypoints)
            report.dense_points = len(self.path)
            report.degenerate_segments = self.path.degenerate_segments
            out(f"Length: {self.path.length:.6f}")
            out(f"Took {self.seconds:.6f} seconds.")
            anim = self.output_dir / "anim.txt"
            np.savetxt(anim, self.path.points, fmt="%.10g")
            report.artifacts.append(str(anim))
        else:
            out("No solution found.")
        if approx is not None:
            out(f"Approx goal distance: {approx}")

        if self.space_kind is SpaceKind.ATLAS:
            report.chart_count = self.space.get_chart_count()
            out(f"Atlas created {report.chart_count} charts.")
            if self.space.ambient_dim == 3:
                report.frontier_percent = self.space.estimate_frontier_percent()
                out(f"{report.frontier_percent:.2f}% open.")

        if self.dump_artifacts:
            report.artifacts.extend(str(p) for p in self._dump(data))

        self.close()
        report.live_states = self.space.live_state_count
        if report.live_states:
            logger.warning(f"{report.live_states} configuration(s) still live after the run")

        with open(self.output_dir / "report.yml", "w") as f:
            yaml.safe_dump(report.to_dict(), f, sort_keys=False)
        with open(self.output_dir / "used_config.yml", "w") as f:
            yaml.safe_dump(self.config.dump(), f, sort_keys=False)
        return report

    def _dump(self, data) -> List[Path]:
        written = []
        if self.path is not None:
            written.append(artifacts.plot_path(
                self.path.points, self.output_dir / "path.png",
                title=f"{self.problem.name} / {self.planner.name} / {self.space_kind.value}",
            ))
        if self.space.ambient_dim != 3:
            return written
        if self.path is not None:
            written.append(artifacts.write_path_ply(self.path.points, self.output_dir / "path.ply"))
        if self.space_kind is SpaceKind.ATLAS and self.space.manifold_dim <= 2:
            written.append(artifacts.write_atlas_ply(self.space.chart_polygons(), self.output_dir / "atlas.ply"))
        written.append(artifacts.write_graph_ply(data, self.output_dir / "graph.ply"))
        return written

    def close(self) -> None:
        """Release planner-owned and anchored states. Safe to call twice."""
        if self.planner is not None:
            self.planner.clear()
        for attr in ("_start", "_goal"):
            state = getattr(self, attr)
            if state is not None:
                self.space.free_state(state)
                setattr(self, attr, None)
        self.waypoints = []

    def run(self) -> ExperimentReport:
        """All phases in order."""
        try:
            self.parse_problem()
            self.configure_space()
            self.plan()
            self.reconstruct()
            return self.emit_report()
        finally:
            if self.state is not RunState.REPORT_EMITTED and self.space is not None:
                self.close()
