from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
from typing import Sequence

from rich import print
from rich.markup import escape
from rich.table import Table

from calindex.calib import Calibrations
from calindex.config import config_from_dict, load_config
from calindex.errors import CalIndexError, MalformedRule
from calindex.headers import HeaderSet
from calindex.index.store import format_row, index_columns
from calindex.io import atomic_write_json
from calindex.log import setup_logging
from calindex.rules.parser import load_rules
from calindex.version import get_version_info


log = logging.getLogger("calindex")

EXIT_OK = 0
EXIT_NO_MATCH = 1
EXIT_ERROR = 2


def _add_config_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--config", default=None, help="calindex YAML config")
    p.add_argument(
        "--instrument",
        default=None,
        help="Use the packaged defaults for this instrument (when no --config is given)",
    )
    p.add_argument("--type", dest="kind", required=True, help="Calibration type (flat, dark, arc, ...)")


def _calibrations(args: argparse.Namespace) -> Calibrations:
    if args.config:
        cfg = load_config(args.config)
    else:
        cfg = config_from_dict({"instrument": args.instrument})
    return Calibrations(cfg)


def _reference_header(args: argparse.Namespace) -> HeaderSet:
    data: dict = {}
    if getattr(args, "header_file", None):
        raw = json.loads(Path(args.header_file).read_text(encoding="utf-8"))
        if not isinstance(raw, dict):
            raise ValueError(f"{args.header_file}: expected a JSON object of header fields")
        data.update(raw)
    data.update(HeaderSet.from_pairs(args.header or []))
    return HeaderSet.coerce(data, side="reference")


def _cmd_version(args: argparse.Namespace) -> int:
    v = get_version_info()
    print(f"calindex {v.package_version} (Python {v.python}, {v.platform})")
    for name, ver in v.deps.items():
        print(f"  {name} {ver or 'not installed'}")
    return EXIT_OK


def _cmd_check_rules(args: argparse.Namespace) -> int:
    rc = EXIT_OK
    for path in args.files:
        try:
            rs = load_rules(path)
        except MalformedRule as e:
            print(f"[red]✗[/red] {escape(str(e))}")
            rc = max(rc, 1)
            continue
        except OSError as e:
            print(f"[red]✗[/red] {escape(str(e))}")
            rc = EXIT_ERROR
            continue

        table = Table(title=f"{rs.name} ({path})", show_lines=False)
        table.add_column("line", justify="right")
        table.add_column("field")
        table.add_column("op")
        table.add_column("rhs")
        for rule in rs:
            rhs = rule.rhs.to_text() if rule.rhs is not None else ""
            table.add_row(str(rule.lineno or ""), rule.field, rule.operator.value, escape(rhs))
        print(table)
        print(f"[green]✓[/green] {len(rs)} rules, columns: {', '.join(rs.columns)}")
    return rc


def _cmd_select(args: argparse.Namespace) -> int:
    cal = _calibrations(args)
    reference = _reference_header(args)
    result = cal.select(args.kind, reference, policy=args.policy)
    if args.report:
        atomic_write_json(args.report, {"kind": args.kind, **result.to_dict()})
    for flag in result.warnings:
        colour = "yellow" if flag["severity"] in {"WARN", "ERROR"} else "cyan"
        print(f"[{colour}]{flag['code']}[/{colour}]: {escape(flag['message'])}")
    if result.record is None:
        return EXIT_NO_MATCH
    print(escape(result.record.name))
    return EXIT_OK


def _cmd_show_index(args: argparse.Namespace) -> int:
    cal = _calibrations(args)
    idx = cal.index(args.kind)
    columns = index_columns(cal.rules(args.kind).columns)

    table = Table(title=f"{args.kind} index ({cal.store(args.kind).path})")
    table.add_column("#", justify="right")
    table.add_column("name")
    for c in columns:
        table.add_column(c)
    for rec in idx:
        table.add_row(str(rec.seq), rec.name, *(escape(v) for v in format_row(rec, columns)))
    print(table)
    return EXIT_OK


def _cmd_add(args: argparse.Namespace) -> int:
    cal = _calibrations(args)
    header = HeaderSet.from_pairs(args.header or [], side="candidate")
    rec = cal.add(args.kind, args.name, header)
    print(f"[green]Added[/green] {rec.name} to {args.kind} index ({cal.store(args.kind).path})")
    return EXIT_OK


def main(argv: Sequence[str] | None = None) -> int:
    p = argparse.ArgumentParser(prog="calindex")
    p.add_argument(
        "--log-level",
        default=None,
        help="CRITICAL|ERROR|WARNING|INFO|DEBUG (or env CALINDEX_LOG_LEVEL)",
    )
    sub = p.add_subparsers(dest="cmd", required=True)

    p_ver = sub.add_parser("version", help="Print version information")
    p_ver.set_defaults(func=_cmd_version)

    p_chk = sub.add_parser("check-rules", help="Parse rules files and print their rules")
    p_chk.add_argument("files", nargs="+")
    p_chk.set_defaults(func=_cmd_check_rules)

    p_sel = sub.add_parser("select", help="Select the best calibration for a frame header")
    _add_config_args(p_sel)
    p_sel.add_argument("--header", action="append", metavar="KEY=VALUE", help="Reference header field (repeatable)")
    p_sel.add_argument("--header-file", default=None, help="JSON object with the reference header")
    p_sel.add_argument("--policy", default=None, help="before|nearest|latest (default: the type's policy)")
    p_sel.add_argument("--report", default=None, help="Write the selection result as JSON")
    p_sel.set_defaults(func=_cmd_select)

    p_show = sub.add_parser("show-index", help="Print the index for a calibration type")
    _add_config_args(p_show)
    p_show.set_defaults(func=_cmd_show_index)

    p_add = sub.add_parser("add", help="Append a calibration frame to an index")
    _add_config_args(p_add)
    p_add.add_argument("--name", required=True)
    p_add.add_argument("--header", action="append", metavar="KEY=VALUE", required=True)
    p_add.set_defaults(func=_cmd_add)

    args = p.parse_args(argv)
    setup_logging(args.log_level)

    try:
        return int(args.func(args))
    except (CalIndexError, OSError, ValueError) as e:
        log.error("%s", e)
        return EXIT_ERROR


if __name__ == "__main__":
    raise SystemExit(main())
