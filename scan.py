#!/usr/bin/env python3
"""azqr — Azure Quick Review command line.

Commands:
  scan              run the scan pipeline and write the reports
  types             list supported resource types
  recommendations   list the recommendation catalog
  plugins           list internal and discovered YAML plugins
  serve             start the HTTP server

Exit codes: 0 success, 1 configuration error (nothing ran), 2 scan error
(a stage failed or the scan was cancelled), 3 unexpected internal error.

Usage:
    azqr scan --subscriptions <id>,<id> --stages cost,-advisor --json
    azqr scan --management-groups <mg> --filter-file filters.yaml --mask
    azqr recommendations
"""
from __future__ import annotations

import argparse
import logging
import sys
from datetime import datetime
from typing import Iterable, Optional

from config import load_settings
from engine.builder import ScanParams, parse_stage_list, parse_stage_options, run_scan
from engine.errors import AzqrError, ConfigurationError, ScanCancelled, StageError
from engine.filters import load_filters
from engine.stages import ADVISOR_SCAN, ARC_SCAN, COST_SCAN, DEFENDER_SCAN, POLICY_SCAN
from plugins.registry import available_plugins
from reporting.catalog_listing import listing_catalog, plugins_table, recommendations_table, types_table
from reporting.csv_report import write_csv
from reporting.document import render_markdown_table, write_document
from reporting.excel import write_excel
from reporting.json_report import write_json
from reporting.report_data import ReportData
from schemas.resource_id import is_resource_group_id

_log = logging.getLogger("azqr")

EXIT_OK = 0
EXIT_CONFIG = 1
EXIT_SCAN = 2
EXIT_INTERNAL = 3

# --flag -> stage it toggles
_STAGE_FLAGS = {
    "defender": DEFENDER_SCAN,
    "advisor": ADVISOR_SCAN,
    "cost": COST_SCAN,
    "policy": POLICY_SCAN,
    "arc": ARC_SCAN,
}


def configure_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if not debug:
        for name in ("azure", "urllib3"):
            logging.getLogger(name).setLevel(logging.WARNING)


def _split(values: Optional[Iterable[str]]) -> list[str]:
    """Flatten repeated and comma-separated flag values."""
    out: list[str] = []
    for value in values or ():
        out.extend(v.strip() for v in value.split(",") if v.strip())
    return out


def default_output_name() -> str:
    return "azqr_action_plan_" + datetime.now().strftime("%Y_%m_%d_T%H%M%S")


# ── Parser ────────────────────────────────────────────────────────
def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="azqr", description="Azure Quick Review")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    scan = sub.add_parser("scan", help="Scan subscriptions and write reports")
    scan.add_argument("--debug", action="store_true", default=argparse.SUPPRESS,
                      help="Enable debug logging")
    scope = scan.add_argument_group("scope")
    scope.add_argument("-s", "--subscriptions", action="append", help="Subscription ids (comma separated)")
    scope.add_argument("--management-groups", action="append", help="Management group ids (comma separated)")
    scope.add_argument("-g", "--resource-groups", action="append",
                       help="Resource group ids: /subscriptions/<id>/resourceGroups/<name>")
    scope.add_argument("-e", "--filter-file", help="YAML filter file")
    scope.add_argument("--scanners", action="append", help="Scanner abbreviations (comma separated)")
    scope.add_argument("--enable-plugins", action="append", help="Plugin names (comma separated)")
    scope.add_argument("--plugin-dir", action="append", help="Extra YAML plugin directories")

    stages = scan.add_argument_group("stages")
    for flag in _STAGE_FLAGS:
        stages.add_argument(f"--{flag}", action=argparse.BooleanOptionalAction, default=None,
                            help=f"Enable or disable the {_STAGE_FLAGS[flag]} stage")
    stages.add_argument("--stages", help="Stage list, e.g. 'cost,carbon,-advisor'")
    stages.add_argument("--stage-option", action="append", default=[],
                        help="Stage option stage.key=value, e.g. cost.previousMonth=true")
    stages.add_argument("--plugin-only", action="store_true",
                        help="Run only subscription discovery and the plugin stage")

    output = scan.add_argument_group("output")
    output.add_argument("-o", "--output-name", help="Report file prefix")
    output.add_argument("--mask", action="store_true", help="Mask subscription ids in reports")
    output.add_argument("--xlsx", action=argparse.BooleanOptionalAction, default=True,
                        help="Write the Excel report (default on)")
    output.add_argument("--csv", action="store_true", help="Write one CSV file per table")
    output.add_argument("--json", action="store_true", help="Write the JSON report")
    output.add_argument("--md", action="store_true", help="Write the Markdown report")

    sub.add_parser("types", help="List supported resource types")
    sub.add_parser("recommendations", help="List the recommendation catalog")
    plugins = sub.add_parser("plugins", help="List available plugins")
    plugins.add_argument("--plugin-dir", action="append", help="Extra YAML plugin directories")

    serve = sub.add_parser("serve", help="Start the HTTP server")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8080)
    return parser


# ── Scan ──────────────────────────────────────────────────────────
def params_from_args(args: argparse.Namespace) -> ScanParams:
    """Translate parsed flags into ``ScanParams``; raises ``ConfigurationError``."""
    resource_groups = _split(args.resource_groups)
    bad = [rg for rg in resource_groups if not is_resource_group_id(rg)]
    if bad:
        raise ConfigurationError(f"Invalid resource group id(s): {', '.join(bad)}")

    toggles = parse_stage_list(args.stages)
    for flag, stage in _STAGE_FLAGS.items():
        value = getattr(args, flag)
        if value is not None:
            toggles[stage] = value

    plugin_dirs = _split(args.plugin_dir) or [load_settings().plugin_dir]
    return ScanParams(
        subscriptions=_split(args.subscriptions),
        management_groups=_split(args.management_groups),
        resource_groups=resource_groups,
        filters=load_filters(args.filter_file),
        scanners=_split(args.scanners),
        plugins=_split(args.enable_plugins),
        plugin_dirs=plugin_dirs,
        mask=args.mask,
        plugin_only=args.plugin_only,
        stage_toggles=toggles,
        stage_options=parse_stage_options(args.stage_option),
    )


def write_reports(data: ReportData, args: argparse.Namespace) -> None:
    if args.xlsx:
        write_excel(data)
    if args.csv:
        write_csv(data)
    if args.json:
        write_json(data)
    if args.md:
        write_document(data)


def cmd_scan(args: argparse.Namespace) -> int:
    try:
        params = params_from_args(args)
        context = run_scan(params)
    except ConfigurationError as e:
        _log.error("Configuration error: %s", e)
        return EXIT_CONFIG
    except StageError as e:
        _log.error("Scan failed in stage %s after %.2fs: %s", e.stage, e.elapsed, e.cause)
        return EXIT_SCAN
    except ScanCancelled as e:
        _log.error("Scan cancelled: %s", e)
        return EXIT_SCAN
    except AzqrError as e:
        _log.error("Scan failed: %s", e)
        return EXIT_SCAN

    data = ReportData.from_context(context, output_name=args.output_name or default_output_name(),
                                   mask=params.mask)
    write_reports(data, args)
    for name, m in context.metrics.items():
        _log.info("  %-24s %7.2fs %6d records", name, m.elapsed, m.records)
    return EXIT_OK


# ── Listings ──────────────────────────────────────────────────────
def cmd_types(args: argparse.Namespace) -> int:
    print(render_markdown_table(types_table(listing_catalog())), end="")
    return EXIT_OK


def cmd_recommendations(args: argparse.Namespace) -> int:
    print(render_markdown_table(recommendations_table(listing_catalog())), end="")
    return EXIT_OK


def cmd_plugins(args: argparse.Namespace) -> int:
    dirs = _split(args.plugin_dir) or [load_settings().plugin_dir]
    print(render_markdown_table(plugins_table(available_plugins(dirs))), end="")
    return EXIT_OK


def cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    from server.api import create_app

    uvicorn.run(create_app(), host=args.host, port=args.port)
    return EXIT_OK


COMMANDS = {
    "scan": cmd_scan,
    "types": cmd_types,
    "recommendations": cmd_recommendations,
    "plugins": cmd_plugins,
    "serve": cmd_serve,
}


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.debug or load_settings().debug)
    try:
        return COMMANDS[args.command](args)
    except KeyboardInterrupt:
        _log.error("Interrupted")
        return EXIT_SCAN
    except Exception as e:
        _log.error("Internal error: %s: %s", type(e).__name__, e)
        _log.debug("Traceback", exc_info=True)
        return EXIT_INTERNAL


if __name__ == "__main__":
    sys.exit(main())
