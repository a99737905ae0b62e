"""
CLI helpers shared by cplan commands: seeds, config lookup, output dirs.
"""
import time
from pathlib import Path
from typing import List, Optional

import typer

from cplan.core.utils import make_output_dir


def parse_seed(seed_str: Optional[str]) -> Optional[int]:
    """Parse seed string into integer, handling 'random' case."""
    if seed_str is None:
        return None
    if seed_str.lower() == 'random':
        return int(time.time() * 1000) % (2**31)  # Keep it within int32 range
    try:
        return int(seed_str)
    except ValueError:
        raise typer.BadParameter(f"Seed must be an integer or 'random', got: {seed_str}")


def default_search_dirs() -> List[Path]:
    return [
        Path.cwd() / "configs",
        Path(__file__).parent.parent.parent.parent / "configs",  # Project root configs
    ]


def resolve_config_path(
    config: Optional[Path],
    script_name: str,
    search_dirs: Optional[List[Path]] = None,
) -> Optional[Path]:
    """
    Resolve configuration file path with smart defaults.

    Args:
        config: Explicit config path from user
        script_name: Name of the calling command (looks for default_<name>.yml)
        search_dirs: Directories to search (default: ./configs, project configs)

    Returns:
        Path to the configuration file, or None when no default exists

    Raises:
        typer.BadParameter: If an explicit config file is not found
    """
    if config is not None:
        if config.exists():
            return config.resolve()
        raise typer.BadParameter(f"Configuration file not found: {config}")

    default_names = [f"default_{script_name}.yml", f"default_{script_name}.yaml"]
    for search_dir in search_dirs if search_dirs is not None else default_search_dirs():
        if not search_dir.exists():
            continue
        for name in default_names:
            candidate = search_dir / name
            if candidate.exists():
                return candidate.resolve()
    return None


def resolve_output_path(output: Optional[Path], script_name: str) -> Path:
    """
    Resolve output directory: the explicit path (created if needed) or a
    timestamped directory under ./outputs/<script_name>.
    """
    if output:
        output.mkdir(parents=True, exist_ok=True)
        return output.resolve()
    return make_output_dir(script_name, base_output_dir=Path.cwd() / "outputs")
