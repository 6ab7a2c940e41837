"""
structlog setup for harness runs.

A run (one script invocation, possibly many sessions) logs to stderr and to
its own file under the log directory. Batch runs are unattended, so the
default renderer is JSON; debug mode switches to the colored console
renderer. Session id and turn ride along on every event via contextvars,
which keeps concurrent sessions in a batch apart.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import List, Optional

import structlog
from structlog.typing import Processor

from playtest_harness.core.config import settings

RUN_LOG_GLOB = "harness_*.log"


def _prune_run_logs(logs_dir: Path, keep: int) -> None:
    """Remove all but the `keep` newest run logs."""
    runs = sorted(logs_dir.glob(RUN_LOG_GLOB), key=lambda p: p.stat().st_mtime)
    stale = runs[: max(len(runs) - keep, 0)]
    for path in stale:
        # A concurrent run may still hold its file open
        path.unlink(missing_ok=True)


def _processors(debug: bool) -> List[Processor]:
    processors: List[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.ExtraAdder(),
    ]
    if debug:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))
    else:
        processors += [structlog.processors.dict_tracebacks, structlog.processors.JSONRenderer()]
    return processors


def _install_handlers(log_file: Path, level: int) -> None:
    """Replace the root handlers with stderr + run file handlers."""
    root = logging.getLogger()
    for handler in list(root.handlers):
        handler.close()
        root.removeHandler(handler)

    plain = logging.Formatter("%(message)s")
    for handler in (logging.StreamHandler(), logging.FileHandler(log_file, mode="w")):
        handler.setFormatter(plain)
        root.addHandler(handler)
    root.setLevel(level)


def configure_logging(
    log_runs_to_keep: int = 5,
    debug: Optional[bool] = None,
    logs_dir: Optional[Path] = None,
) -> Path:
    """
    Configure structlog once per process, before the first event.

    Args:
        log_runs_to_keep: Run logs retained, this run included
        debug: Console renderer and DEBUG level (default: settings.debug)
        logs_dir: Directory for run logs (default: settings.log_dir)

    Returns:
        Path of this run's log file (logs/harness_YYYYMMDD_HHMMSS.log)
    """
    debug = settings.debug if debug is None else debug
    logs_dir = Path(logs_dir or settings.log_dir)
    logs_dir.mkdir(parents=True, exist_ok=True)
    _prune_run_logs(logs_dir, keep=max(log_runs_to_keep - 1, 0))

    log_file = logs_dir / f"harness_{datetime.now():%Y%m%d_%H%M%S}.log"
    level = logging.DEBUG if debug else logging.INFO
    _install_handlers(log_file, level)

    structlog.configure(
        processors=_processors(debug),
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    return log_file


def get_logger(name: str) -> structlog.BoundLogger:
    """Logger for a module: `log = get_logger(__name__)`."""
    return structlog.get_logger(name)


def bind_context(**kwargs) -> None:
    """Attach fields (session_id, turn) to every later event in this task."""
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    """Drop bound fields once a session finishes."""
    structlog.contextvars.clear_contextvars()
