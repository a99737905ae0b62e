#!/usr/bin/env python3
"""
Constrained planning benchmark (problems x planners x spaces x trials)

- Reads a YAML sweep (default: ./configs/default_run_planning_benchmark.yml)
- Runs ExperimentDriver for every case, without mesh artifacts
- Rich progress bar over the case grid
- Saves results.csv, a success/time summary plot and used_config.yml into a
  timestamped output directory

Example CLI:
    python run_planning_benchmark.py -c ./configs/default_run_planning_benchmark.yml
"""
from __future__ import annotations

import argparse
import io
import itertools
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import yaml
from rich.console import Console
from rich.progress import BarColumn, Progress, TimeElapsedColumn, TimeRemainingColumn

from cplan.core.config import ExperimentConfig
from cplan.core.errors import PlanningError
from cplan.core.logging import logger, set_console_level, setup_logfile
from cplan.core.utils import load_config, make_output_dir
from cplan.experiment.driver import ExperimentDriver

_console = Console()

DEFAULT_CONFIG = Path("configs") / "default_run_planning_benchmark.yml"


@dataclass(frozen=True)
class BenchmarkCase:
    problem: str
    planner: str
    space: str
    trial: int

    @property
    def label(self) -> str:
        return f"{self.problem}_{self.planner}_{self.space}_{self.trial}"


def build_cases(cfg: Dict) -> List[BenchmarkCase]:
    trials = int(cfg.get("trials", 1))
    return [
        BenchmarkCase(problem, planner, space, trial)
        for problem, planner, space, trial in itertools.product(
            cfg["problems"], cfg["planners"], cfg["spaces"], range(trials)
        )
    ]


# =============================================================================
# Core worker: one planning run
# =============================================================================

def run_case(case: BenchmarkCase, time_limit: float, experiment: Dict, base_seed: int, out_dir: Path) -> Dict:
    config = ExperimentConfig.model_validate({**experiment, "seed": base_seed + case.trial})
    driver = ExperimentDriver(
        case.problem, case.planner, case.space, time_limit, config,
        output_dir=out_dir / "runs" / case.label,
        console=Console(file=io.StringIO()),
    )
    record = {"problem": case.problem, "planner": case.planner, "space": case.space, "trial": case.trial}
    try:
        report = driver.run()
    except PlanningError as e:
        logger.warning(f"[{case.label}] {type(e).__name__}: {e}")
        record.update(solved=False, seconds=np.nan, error=type(e).__name__)
        return record

    record.update(
        status=report.status,
        solved=report.solved,
        approximate=report.approximate,
        seconds=report.seconds,
        length=report.length if report.length is not None else np.nan,
        waypoints=report.waypoints,
        dense_points=report.dense_points,
        chart_count=report.chart_count if report.chart_count is not None else np.nan,
        frontier_percent=report.frontier_percent if report.frontier_percent is not None else np.nan,
        vertices=report.diagnostics.get("vertices", 0),
        validity_checks=report.diagnostics.get("validity_checks", 0),
        live_states=report.live_states,
        error="",
    )
    logger.debug(f"[{case.label}] {report.status} in {report.seconds:.3f}s")
    return record


# =============================================================================
# Plotting
# =============================================================================

def plot_summary(df: pd.DataFrame, out_dir: Path) -> Path:
    """Success rate and mean planning time per (problem, space), one bar per planner."""
    grouped = df.groupby(["problem", "space", "planner"])
    success = grouped["solved"].mean().unstack("planner")
    seconds = grouped["seconds"].mean().unstack("planner")

    fig, (ax1, ax2) = plt.subplots(1, 2, figsize=(14, 5))
    success.plot.bar(ax=ax1, rot=30)
    ax1.set_ylabel("Success rate")
    ax1.set_ylim(0.0, 1.05)
    ax1.set_title("Solved runs")
    seconds.plot.bar(ax=ax2, rot=30)
    ax2.set_ylabel("Seconds")
    ax2.set_title("Mean planning time")
    for ax in (ax1, ax2):
        ax.set_xlabel("")
        ax.grid(True, axis="y", linestyle="--", alpha=0.6)

    path = out_dir / "benchmark_summary.png"
    fig.savefig(path, dpi=200, bbox_inches="tight", facecolor="white")
    plt.close(fig)
    return path


# =============================================================================
# Orchestration
# =============================================================================

def run_benchmark(cfg: Dict) -> Tuple[pd.DataFrame, Path]:
    out_dir = make_output_dir("run_planning_benchmark", base_output_dir=cfg.get("output_dir", "./outputs"))
    (out_dir / "used_config.yml").write_text(yaml.safe_dump(cfg, sort_keys=False))
    setup_logfile(str(out_dir / "benchmark.log"), level="DEBUG")

    time_limit = float(cfg.get("time_limit", 1.0))
    base_seed = int(cfg.get("seed", 0))
    experiment = dict(cfg.get("experiment", {}))
    cases = build_cases(cfg)
    logger.info(f"Benchmark: {len(cases)} case(s), {time_limit:g}s each")

    results: List[Dict] = []
    with Progress("{task.description}", BarColumn(), "[progress.percentage]{task.percentage:>3.0f}%",
                  TimeElapsedColumn(), TimeRemainingColumn(), console=_console) as progress:
        task = progress.add_task("Planning", total=len(cases))
        for case in cases:
            results.append(run_case(case, time_limit, experiment, base_seed, out_dir))
            progress.advance(task)

    df = pd.DataFrame(results)
    df.to_csv(out_dir / "results.csv", index=False)
    plot_summary(df, out_dir)

    summary = df.groupby(["problem", "space", "planner"])["solved"].mean()
    logger.info(f"Success rates:\n{summary.to_string()}")
    return df, out_dir


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Benchmark constrained planners across problems and spaces")
    parser.add_argument("-c", "--config", type=Path, default=DEFAULT_CONFIG, help="YAML sweep config")
    parser.add_argument("--set", dest="overrides", action="append", default=[],
                        help="Override a config key, e.g. --set time_limit=5")
    args = parser.parse_args(argv)
    set_console_level("WARNING")

    try:
        cfg, _ = load_config(args.config, args.overrides)
        _, out_dir = run_benchmark(cfg)
    except Exception:
        logger.exception("Benchmark failed")
        return 1
    _console.print(f"[green]Results written to[/green] {out_dir}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
