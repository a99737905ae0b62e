"""
Unified logging utilities for the cplan package.

Exports:
    - logger: Global Loguru logger (ready for use/import).
    - setup_logfile: Add file logging with rotation/compression.
    - setup_json_logfile: Add a JSON-format log file for machine parsing.
    - set_console_level: Replace the default stderr sink with a filtered one.
"""

import sys

from loguru import logger

__all__ = [
    "logger",
    "setup_logfile",
    "setup_json_logfile",
    "set_console_level",
]

_CONSOLE_SINK_ID = None


def set_console_level(level: str = "INFO") -> None:
    """
    Route console logging to stderr at the given level.

    Loguru ships with a DEBUG-level stderr sink; the planners log per-run
    detail at DEBUG, so the CLI narrows this to INFO unless asked otherwise.
    """
    global _CONSOLE_SINK_ID
    if _CONSOLE_SINK_ID is None:
        try:
            logger.remove(0)
        except ValueError:
            pass
    else:
        logger.remove(_CONSOLE_SINK_ID)
    _CONSOLE_SINK_ID = logger.add(sys.stderr, level=level.upper())


def setup_logfile(
    log_path: str,
    rotation: str = "10 MB",
    retention: str = "10 days",
    compression: str = "zip",
    level: str = "INFO",
    colorize: bool = False,
) -> int:
    """
    Add a rotating file handler to the global logger.

    Args:
        log_path (str): Path to the log file.
        rotation (str): Size or time string for log rotation.
        retention (str): How long to keep old logs.
        compression (str): Compression method for rotated logs.
        level (str): Logging level (DEBUG, INFO, etc.).
        colorize (bool): Colorize file output (default: False).

    Returns:
        int: Sink id, usable with ``logger.remove``.
    """
    sink_id = logger.add(
        log_path,
        rotation=rotation,
        retention=retention,
        compression=compression,
        level=level.upper(),
        colorize=colorize,
        backtrace=True,
        diagnose=True,
    )
    logger.info(f"Loguru file logging initialized: {log_path}")
    return sink_id


def setup_json_logfile(log_path: str, **kwargs) -> int:
    """
    Add a JSON-format log file (for machine parsing).

    Args:
        log_path (str): Path to JSON log file.
        **kwargs: Passed to logger.add().
    """
    sink_id = logger.add(
        log_path,
        serialize=True,
        **kwargs
    )
    logger.info(f"Loguru JSON logging initialized: {log_path}")
    return sink_id
