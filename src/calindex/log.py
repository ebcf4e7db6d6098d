from __future__ import annotations

import logging
import os
import time

from rich.console import Console
from rich.logging import RichHandler


LOG_LEVEL_ENV = "CALINDEX_LOG_LEVEL"
_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")


def _resolve_level(level: str | None) -> str:
    raw = level if level is not None else os.environ.get(LOG_LEVEL_ENV, "INFO")
    name = str(raw).strip().upper()
    return name if name in _LEVELS else "INFO"


def setup_logging(level: str | None = None) -> None:
    """Install a RichHandler on the root logger.

    The level is taken from ``level``, else ``$CALINDEX_LOG_LEVEL``, else INFO.
    Logs go to stderr, so ``calindex select`` output on stdout stays
    machine-readable. Calling it again replaces the previous handlers.
    """

    root = logging.getLogger()
    for h in list(root.handlers):
        root.removeHandler(h)

    handler = RichHandler(
        console=Console(stderr=True),
        rich_tracebacks=True,
        show_path=False,
        omit_repeated_times=False,
        log_time_format="[%H:%M:%S]",
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    root.addHandler(handler)
    root.setLevel(_resolve_level(level))


class timer:
    """Log how long a block takes (DEBUG), or that it failed (ERROR).

    Example:
        with timer("load flat index"):
            ...
    """

    def __init__(self, name: str, logger: logging.Logger | None = None):
        self.name = name
        self.logger = logger or logging.getLogger("calindex")
        self.t0 = 0.0
        self.elapsed = 0.0

    def __enter__(self):
        self.t0 = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.elapsed = time.perf_counter() - self.t0
        if exc is None:
            self.logger.debug("%s took %.3f s", self.name, self.elapsed)
        else:
            self.logger.error("%s failed after %.3f s: %s", self.name, self.elapsed, exc)
        return False
