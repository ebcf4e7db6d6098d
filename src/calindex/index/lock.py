"""Lock file guarding a persisted index.

Several pipelines may share one on-disk index. Appends and rewrites are a
critical section: the lock is a sibling ``<index>.lock`` file created with
``O_CREAT | O_EXCL``, holding the owner's pid. Readers do not lock; a loaded
index is a snapshot.
"""

from __future__ import annotations

import logging
import os
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from calindex.errors import IndexLockTimeout


log = logging.getLogger(__name__)


def lock_path_for(path: str | Path) -> Path:
    p = Path(path)
    return p.with_name(p.name + ".lock")


@contextmanager
def index_lock(path: str | Path, *, timeout: float = 10.0, poll: float = 0.05) -> Iterator[Path]:
    """Hold the lock for ``path`` for the duration of the ``with`` block.

    Raises
    ------
    IndexLockTimeout
        If the lock file still exists after ``timeout`` seconds.
    """

    lock = lock_path_for(path)
    lock.parent.mkdir(parents=True, exist_ok=True)
    deadline = time.monotonic() + max(0.0, float(timeout))
    while True:
        try:
            fd = os.open(str(lock), os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            if time.monotonic() >= deadline:
                raise IndexLockTimeout(
                    f"Could not lock {path} within {timeout:g} s (lock file {lock} exists; "
                    "remove it if no other pipeline is running)"
                ) from None
            time.sleep(poll)
            continue
        break

    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(f"{os.getpid()}\n")
        log.debug("Locked %s", path)
        yield lock
    finally:
        lock.unlink(missing_ok=True)
        log.debug("Unlocked %s", path)
