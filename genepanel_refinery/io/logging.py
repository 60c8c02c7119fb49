"""Logging utilities for GenePanel-Refinery.

Provides timestamped file logging for long searches and structured run
records (JSON lines, YAML documents).
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Tuple, Union

import yaml

PathLike = Union[str, Path]

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


def get_timestamped_log_path(log_path: PathLike) -> Path:
    """Insert a timestamp before the suffix of a log path.

    Example: gene_search.log -> gene_search_20260105_142233.log
    """
    log_path = Path(log_path)
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    suffix = log_path.suffix or ".log"
    return log_path.parent / f"{log_path.stem}_{timestamp}{suffix}"


def get_logger(
    name: str,
    log_path: PathLike,
    level: int = logging.INFO,
    timestamped: bool = True,
    propagate: bool = True,
) -> Tuple[logging.Logger, Path]:
    """Attach a file handler to the named logger.

    Parameters
    ----------
    name : str
        Logger name, e.g. "genepanel_refinery" to capture every engine.
    log_path : PathLike
        Base path for the log file.
    level : int
        Logging level (default: INFO).
    timestamped : bool
        If True, add a timestamp to the filename so previous runs are kept.
        If False, overwrite the existing log file.
    propagate : bool
        Whether records also reach the root (console) handlers.

    Returns
    -------
    Tuple[logging.Logger, Path]
        The logger and the path actually written to.
    """
    log_path = Path(log_path)
    if timestamped:
        actual_log_path = get_timestamped_log_path(log_path)
    else:
        actual_log_path = log_path
        actual_log_path.unlink(missing_ok=True)
    actual_log_path.parent.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(name)
    logger.setLevel(level)
    logger.propagate = propagate
    for handler in list(logger.handlers):
        if isinstance(handler, logging.FileHandler):
            logger.removeHandler(handler)
            handler.close()
    handler = logging.FileHandler(actual_log_path, mode="a", encoding="utf-8")
    handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT))
    logger.addHandler(handler)
    return logger, actual_log_path


def _prepare_log_destination(log_path: PathLike) -> Path:
    path = Path(log_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    return path


def log_json(log_path: PathLike, record: dict[str, Any]) -> None:
    """Append one JSON line (e.g. one search step) to log_path."""
    path = _prepare_log_destination(log_path)
    with path.open("a", encoding="utf-8") as handle:
        handle.write(json.dumps(record, default=str))
        handle.write("\n")


def log_yaml(
    log_path: PathLike,
    record: dict[str, Any],
    *,
    logger: logging.Logger | None = None,
) -> None:
    """Append a YAML document to log_path.

    Parameters
    ----------
    log_path : PathLike
        Path to the run record file.
    record : dict
        Plain (YAML-safe) dictionary, e.g. a config plus result summary.
    logger : logging.Logger, optional
        If provided, the document is logged instead of written.
    """
    yaml_text = yaml.safe_dump(record, sort_keys=False).rstrip("\n")
    message = f"{yaml_text}\n---"
    if logger is not None:
        logger.info("%s", message)
        return

    path = _prepare_log_destination(log_path)
    with path.open("a", encoding="utf-8") as handle:
        handle.write(message)
        handle.write("\n")
