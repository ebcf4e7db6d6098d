"""Module entry-point.

    python -m calindex

When invoked without arguments, print the version and exit successfully.
"""

from __future__ import annotations

import sys

from calindex.cli import main


def _run() -> None:
    if len(sys.argv) == 1:
        sys.argv.append("version")
    sys.exit(main())


if __name__ == "__main__":
    _run()
