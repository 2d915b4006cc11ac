# SPDX-License-Identifier: GPL-3.0-or-later
"""
goal: command-line launcher for Sentinel. builds the one AppState/SentinelService pair for this process and
either serves the JSON API (default) or runs a single operation and prints the result: one analysis pass, the
event history, a report export, or the current top processes.
"""

from __future__ import annotations  # lets us use string annotations before classes are defined

import argparse  # for parsing command line arguments
import json  # for --json output
import logging  # for the console log handler
import sys  # for the exit code
from collections.abc import Sequence

from colorama import Fore, Style
from colorama import init as colorama_init
from dotenv import load_dotenv

from agent.errors import SentinelError
from algorithm.analyzer import AnalysisPersistenceError, AnalyzeSystemResponse
from dashboard.app import run_dashboard
from dashboard.config import Config, load_config
from dashboard.service import SentinelService

log = logging.getLogger("sentinel.console")

_SEVERITY_COLOR = {"warn": Fore.YELLOW, "ok": Fore.GREEN}


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
    )
    # silence waitress web server log messages so the console stays clean
    logging.getLogger("waitress").setLevel(logging.ERROR)
    logging.getLogger("waitress.queue").setLevel(logging.CRITICAL)


def print_banner(cfg: Config) -> None:
    c, d, r = Fore.CYAN + Style.BRIGHT, Style.DIM, Style.RESET_ALL
    print(f"{d}┌──────────────────────────────────────────────┐{r}")
    print(f"{d}│{r}{c}          S  e  n  t  i  n  e  l{r}{d}                │{r}")
    print(f"{d}├──────────────────────────────────────────────┤{r}")
    print(f"  API   http://{cfg.host}:{cfg.port}/api/ping")
    print(f"  data  {cfg.base_dir}")
    print(f"{d}└──────────────────────────────────────────────┘{r}")


def _print_report(report: AnalyzeSystemResponse) -> None:
    snap = report.system_snapshot
    print(f"{snap.machine_name} ({snap.os_version}), {snap.processor_count} CPUs")
    print(f"total CPU {report.total_cpu:.2f}%, total memory {report.total_memory_mb:.2f} MB")
    for f in report.findings:
        color = _SEVERITY_COLOR.get(f.severity, "")
        print(f"{color}[{f.severity}] {f.title}{Style.RESET_ALL}: {f.evidence}")
    for s in report.recent_spikes:
        print(f"  spike {s.metric} {s.process_name} pid={s.pid} peak={s.peak_value:.2f}")
    print(f"report: {report.report_path}")


def _cmd_analyze(service: SentinelService, args: argparse.Namespace) -> int:
    try:
        report = service.analyze_system()
    except AnalysisPersistenceError as exc:
        _print_report(exc.report)
        raise
    if args.json:
        print(json.dumps(report.to_dict(), indent=2))
    else:
        _print_report(report)
    return 0


def _cmd_history(service: SentinelService, args: argparse.Namespace) -> int:
    history = service.get_spike_events(args.days)
    if args.json:
        print(json.dumps(history.to_dict(), indent=2))
        return 0
    for s in history.spike_events:
        print(f"{s.start_utc:%Y-%m-%d %H:%M:%S} spike  {s.metric} {s.process_name} peak={s.peak_value:.2f}")
    for c in history.change_events:
        print(f"{c.detected_utc:%Y-%m-%d %H:%M:%S} change {c.category}/{c.change_type} {c.name}: {c.details}")
    return 0


def _cmd_export(service: SentinelService, args: argparse.Namespace) -> int:
    print(service.export_report())
    return 0


def _cmd_processes(service: SentinelService, args: argparse.Namespace) -> int:
    procs = service.list_processes()[: args.limit]
    if args.json:
        print(json.dumps([p.to_dict() for p in procs], indent=2))
        return 0
    for p in procs:
        print(f"{p.pid:>7} {p.cpu:6.2f}% {p.memory_mb:9.1f} MB  {p.risk.value:<10} {p.name}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="sentinel", description="local machine-health agent")
    parser.add_argument("--json", action="store_true", help="print machine-readable output")
    # same flag after the sub-command; SUPPRESS keeps a top-level --json from being reset to False
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--json", action="store_true", default=argparse.SUPPRESS, help="print machine-readable output"
    )
    sub = parser.add_subparsers(dest="command")
    sub.add_parser("serve", help="serve the JSON API (default)")
    sub.add_parser("analyze", parents=[common], help="run one analysis pass")
    history = sub.add_parser("history", parents=[common], help="show recorded spike and change events")
    history.add_argument("--days", type=int, default=None, help="days back (default from config)")
    sub.add_parser("export", parents=[common], help="export the latest report and logs as a zip archive")
    procs = sub.add_parser("processes", parents=[common], help="list processes by CPU")
    procs.add_argument("--limit", type=int, default=20)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    load_dotenv()  # load .env file if it exists
    colorama_init()  # ANSI colors on Windows terminals
    args = build_parser().parse_args(argv)
    cfg = load_config()
    configure_logging(cfg.log_level)

    try:
        service = SentinelService.from_config(cfg)
    except SentinelError as exc:
        log.error("failed to initialize Sentinel: %s", exc)
        return 1

    if args.command in (None, "serve"):
        print_banner(cfg)
        run_dashboard(service, cfg)
        return 0

    commands = {
        "analyze": _cmd_analyze,
        "history": _cmd_history,
        "export": _cmd_export,
        "processes": _cmd_processes,
    }
    try:
        return commands[args.command](service, args)
    except SentinelError as exc:
        print(f"{Fore.RED}error:{Style.RESET_ALL} {exc}", file=sys.stderr)
        return 1
    finally:
        service.shutdown()


if __name__ == "__main__":
    sys.exit(main())
