"""Version helpers."""

from __future__ import annotations

import platform
import sys
from dataclasses import dataclass, field
from importlib import metadata


__version__ = "1.0.0"

# distributions reported by ``calindex version``
RUNTIME_DEPS = ("pydantic", "PyYAML", "rich")


@dataclass(frozen=True)
class VersionInfo:
    package_version: str
    python: str
    platform: str
    deps: dict[str, str | None] = field(default_factory=dict)


def _dist_version(name: str) -> str | None:
    try:
        return metadata.version(name)
    except metadata.PackageNotFoundError:
        return None


def get_version_info() -> VersionInfo:
    return VersionInfo(
        package_version=__version__,
        python=platform.python_version(),
        platform=f"{sys.platform} {platform.machine()}",
        deps={name: _dist_version(name) for name in RUNTIME_DEPS},
    )
