"""crabctl logging configuration.

Logs go to `$XDG_STATE_HOME/crabctl/crabctl.log` by default. When that
directory cannot be created, logging falls back to stderr so the watcher
never fails to start over a log path.
Set `CRABCTL_LOG_LEVEL` (or pass `level`) to change verbosity.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Optional

from crabctl.paths import log_path

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
_THIRD_PARTY_LOGGERS = ("aiosqlite", "asyncio")


def setup_logging(level: Optional[str] = None, *, to_stderr: bool = False) -> None:
    """Configure crabctl logging.

    Args:
        level: Optional override for `CRABCTL_LOG_LEVEL`.
        to_stderr: Log to stderr instead of the log file (used by `crabctl watch -v`).
    """
    if level:
        os.environ["CRABCTL_LOG_LEVEL"] = level

    level_name = os.getenv("CRABCTL_LOG_LEVEL", "INFO").upper()
    numeric_level = logging.getLevelName(level_name)
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    handler: logging.Handler
    if to_stderr:
        handler = logging.StreamHandler(sys.stderr)
    else:
        path = log_path()
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            handler = logging.FileHandler(path, encoding="utf-8")
        except OSError:
            handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(_LOG_FORMAT))

    root = logging.getLogger("crabctl")
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(numeric_level)
    root.propagate = False

    for name in _THIRD_PARTY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
