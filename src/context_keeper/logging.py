"""Logging configuration for context-keeper.

Component loggers are children of ``context_keeper`` and only get handlers
when a CLI calls ``setup_logging``. Log lines can carry transcript text
(commands, file paths, error output), so handlers accept logging filters;
the CLIs attach ``RedactingLogFilter`` from ``context_keeper.processor.filter``.
"""

import logging
import sys
from pathlib import Path
from typing import Iterable

ROOT_LOGGER = "context_keeper"
DEFAULT_LOG_DIR = Path.home() / ".context-keeper" / "logs"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def parse_level(level: int | str) -> int:
    """Accept a logging level as a number or a name such as ``"debug"``.

    Raises:
        ValueError: If the name is not a standard level
    """
    if isinstance(level, int):
        return level
    value = logging.getLevelName(level.strip().upper())
    if not isinstance(value, int):
        raise ValueError(f"Unknown log level: {level}")
    return value


def setup_logging(
    name: str,
    log_dir: Path | None = None,
    level: int | str = logging.INFO,
    console: bool = True,
    filters: Iterable[logging.Filter] = (),
) -> logging.Logger:
    """Configure logging for a context-keeper command.

    Attaches a file handler writing ``<log_dir>/<name>.log`` and, optionally,
    a stderr handler to the package root logger. Calling it again only
    updates the level.

    Args:
        name: Command name (used for the log filename)
        log_dir: Directory for log files (defaults to ~/.context-keeper/logs/)
        level: Logging level as number or name (defaults to INFO)
        console: Whether to also log to stderr
        filters: Filters attached to every handler, e.g. redaction

    Returns:
        Logger for the command
    """
    log_dir = log_dir or DEFAULT_LOG_DIR
    level = parse_level(level)

    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(level)
    if root.handlers:
        return get_logger(name)

    log_dir.mkdir(parents=True, exist_ok=True)
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)

    handlers: list[logging.Handler] = [logging.FileHandler(log_dir / f"{name}.log", encoding="utf-8")]
    if console:
        handlers.append(logging.StreamHandler(sys.stderr))

    for handler in handlers:
        handler.setFormatter(formatter)
        for log_filter in filters:
            handler.addFilter(log_filter)
        root.addHandler(handler)

    return get_logger(name)


def get_logger(name: str) -> logging.Logger:
    """Logger for a component, named ``context_keeper.<name>``."""
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")
