from __future__ import annotations

import logging

import pytest
from rich.logging import RichHandler

from calindex.flags import MULTIPLE_BEST, NO_MATCH, Severity, has_code, make_flag, max_severity
from calindex.log import LOG_LEVEL_ENV, setup_logging, timer


def test_setup_logging_level_resolution(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv(LOG_LEVEL_ENV, "debug")
    setup_logging()
    root = logging.getLogger()
    assert root.level == logging.DEBUG

    setup_logging("nonsense")
    assert root.level == logging.INFO

    # re-initialising never stacks handlers
    setup_logging("WARNING")
    rich_handlers = [h for h in root.handlers if isinstance(h, RichHandler)]
    assert len(rich_handlers) == 1
    assert root.level == logging.WARNING


def test_timer_measures_and_propagates():
    with timer("noop") as t:
        pass
    assert t.elapsed >= 0.0

    with pytest.raises(RuntimeError):
        with timer("failing"):
            raise RuntimeError("boom")


def test_flag_helpers():
    flags = [
        make_flag(MULTIPLE_BEST, "info", " tie "),
        make_flag(NO_MATCH, "warning", "none", kind="flat", names=None),
    ]
    assert flags[0]["message"] == "tie"
    assert flags[1]["severity"] == "WARN"
    assert "names" not in flags[1] and flags[1]["kind"] == "flat"
    assert max_severity(flags) == "WARN"
    assert max_severity([]) == "INFO"
    assert has_code(flags, NO_MATCH)
    assert Severity.parse("fatal") is Severity.ERROR
    assert Severity.parse("bogus") is Severity.INFO
