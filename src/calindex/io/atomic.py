"""Crash-safe file writes for index files and selection reports.

Whole-file rewrites go through :func:`replacing`, which writes a sibling temp
file and ``os.replace``-s it over the target. Index appends go through
:func:`append_line`, which fsyncs before returning.
"""

from __future__ import annotations

import json
import os
import tempfile
from contextlib import contextmanager
from enum import Enum
from pathlib import Path
from typing import IO, Any, Iterator


@contextmanager
def replacing(path: str | Path, *, encoding: str = "utf-8") -> Iterator[IO[str]]:
    """Open a temp file next to ``path``; on clean exit it replaces ``path``."""

    dst = Path(path)
    dst.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=f".{dst.name}.", suffix=".part", dir=dst.parent)
    try:
        with os.fdopen(fd, "w", encoding=encoding, newline="\n") as f:
            yield f
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, dst)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


def atomic_write_text(path: str | Path, text: str, *, encoding: str = "utf-8") -> Path:
    with replacing(path, encoding=encoding) as f:
        f.write(text)
    return Path(path)


def _to_json(o: Any) -> Any:
    if isinstance(o, Enum):
        return o.value
    if isinstance(o, Path):
        return str(o)
    if hasattr(o, "to_dict"):
        return o.to_dict()
    raise TypeError(f"{type(o).__name__} is not JSON serialisable")


def atomic_write_json(path: str | Path, obj: Any, *, indent: int = 2) -> Path:
    with replacing(path) as f:
        json.dump(obj, f, indent=indent, ensure_ascii=False, default=_to_json)
        f.write("\n")
    return Path(path)


def append_line(path: str | Path, line: str, *, encoding: str = "utf-8") -> Path:
    """Append ``line`` plus a newline and fsync."""

    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    with p.open("a", encoding=encoding, newline="\n") as f:
        f.write(line.rstrip("\n") + "\n")
        f.flush()
        os.fsync(f.fileno())
    return p
