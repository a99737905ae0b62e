# src/cplan/cli/main.py
from pathlib import Path
from typing import List, Optional

import typer
import yaml
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from cplan.cli.common import parse_seed, resolve_config_path, resolve_output_path
from cplan.core.config import load_experiment_config
from cplan.core.enums import SpaceKind
from cplan.core.errors import PlanningError, UnknownProblemError
from cplan.core.logging import logger, set_console_level, setup_logfile
from cplan.experiment.driver import ExperimentDriver
from cplan.experiment.problems import BUILTIN_PROBLEMS, load_problem
from cplan.planning.planners import PLANNERS

console = Console()

app = typer.Typer(
    help="cplan: sampling-based planning on constraint manifolds",
    context_settings={"help_option_names": ["-h", "--help"]},
    add_completion=False,
)

USAGE = "Usage: cplan <problem> <planner> <timelimit> (-a | -p) [-v]"


def print_usage(reason: Optional[str] = None) -> None:
    """Usage line, then the available problems and planners."""
    if reason:
        console.print(f"[red]{escape(reason)}[/red]")
    console.print(USAGE)

    problems = Table(title="Problems")
    problems.add_column("Name", style="cyan")
    problems.add_column("Dim", justify="right")
    problems.add_column("Description", style="green")
    for name, problem in BUILTIN_PROBLEMS.items():
        problems.add_row(name, str(problem.ambient_dim), problem.description)
    problems.add_row("<file>.yml", "-", "YAML problem file")
    console.print(problems)

    planners = Table(title="Planners")
    planners.add_column("Name", style="cyan")
    planners.add_column("Description", style="green")
    for name, cls in PLANNERS.items():
        planners.add_row(name, (cls.__doc__ or "").strip().splitlines()[0])
    console.print(planners)


@app.command()
def plan(
    problem: str = typer.Argument(..., help="Built-in problem name or YAML problem file"),
    planner: str = typer.Argument(..., help="Planner name"),
    time_limit: float = typer.Argument(..., metavar="TIMELIMIT", help="Planning time in seconds"),
    atlas: bool = typer.Option(False, "-a", "--atlas", help="Use the atlas (chart-based) state space"),
    projected: bool = typer.Option(False, "-p", "--projected", help="Use the projection-based state space"),
    dump: bool = typer.Option(False, "-v", "--dump", help="Dump PLY meshes and a path plot"),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Configuration file path (default: auto-detect)"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Output directory (default: ./outputs/plan/<timestamp>)"),
    seed: Optional[str] = typer.Option(None, "--seed", help="Random seed (integer or 'random' for time-based)"),
    simplify: bool = typer.Option(False, "--simplify", help="Drop waypoints a direct traversal can skip"),
    overrides: Optional[List[str]] = typer.Option(None, "--set", help="Config override, e.g. atlas.rho=0.3"),
    log_level: str = typer.Option("INFO", "--log-level", help="Console log level"),
):
    """Plan from start to goal on the problem's constraint manifold."""
    set_console_level(log_level)

    if atlas == projected:
        print_usage("Choose exactly one of -a/--atlas or -p/--projected.")
        raise typer.Exit(1)
    if not time_limit > 0:
        print_usage(f"Time limit must be positive, got {time_limit}.")
        raise typer.Exit(1)
    if planner.lower() not in {name.lower() for name in PLANNERS}:
        print_usage(f"Unknown planner {planner!r}.")
        raise typer.Exit(1)
    try:
        problem_def = load_problem(problem)
    except UnknownProblemError as e:
        print_usage(str(e))
        raise typer.Exit(1)
    except (ValidationError, ValueError, yaml.YAMLError) as e:
        print_usage(f"Malformed problem file {problem}: {e}")
        raise typer.Exit(1)

    extra = list(overrides or [])
    run_seed = parse_seed(seed)
    if run_seed is not None:
        extra.append(f"seed={run_seed}")
    if simplify:
        extra.append("simplify=true")
    config_path = resolve_config_path(config, "plan")
    try:
        cfg = load_experiment_config(config_path, extra)
    except (ValidationError, ValueError) as e:
        console.print(f"[red]Invalid configuration:[/red] {escape(str(e))}")
        raise typer.Exit(1)

    out_dir = resolve_output_path(output, "plan")
    sink_id = setup_logfile(str(out_dir / "plan.log"), level="DEBUG")
    logger.info(f"Config: {config_path or 'built-in defaults'}; outputs: {out_dir}")

    space = SpaceKind.ATLAS if atlas else SpaceKind.PROJECTED
    driver = ExperimentDriver(problem_def, planner, space, time_limit, cfg, out_dir, dump, console)
    failed = False
    try:
        driver.run()
    except PlanningError as e:
        logger.error(f"Planning run failed: {e}")
        console.print(f"[red]{type(e).__name__}:[/red] {escape(str(e))}")
        failed = True
    except Exception:
        logger.exception("Unexpected error during planning run")
        failed = True
    finally:
        logger.remove(sink_id)
    if failed:
        raise typer.Exit(1)
    console.print(f"[green]Outputs written to[/green] {out_dir}")


if __name__ == "__main__":
    app()
