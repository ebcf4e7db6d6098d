"""I/O helpers."""

from __future__ import annotations

from .atomic import append_line, atomic_write_json, atomic_write_text

__all__ = ["append_line", "atomic_write_json", "atomic_write_text"]
