"""Command-line interface for codemap.

Subcommands:
    - codemap init: Create .codemap/ and take the first snapshot
    - codemap update: Re-analyze incrementally and publish a new snapshot
    - codemap summary: Show the project brief and top entry points
    - codemap diff: Show what changed between the last two snapshots
    - codemap show: List the most recent runs
    - codemap auth: Store the AI provider API key

Example:
    $ codemap init /my/project
    $ codemap update /my/project --no-ai
    $ codemap summary /my/project
    $ codemap diff /my/project --compact
    $ codemap show /my/project -n 5
    $ codemap auth sk-...
"""

import argparse
import getpass
import json
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import List, Optional

from . import __version__
from .colors import get_colors
from .config import API_KEY_ENV, config_path, load_config, save_config
from .errors import CodemapError, SnapshotVersionError
from .extractors import EXTRACTOR_VERSION
from .merge import diff_snapshots
from .models import DiffStatus
from .pipeline import RULES_VERSION, Analyzer, RunResult
from .store import CodemapStore

logger = logging.getLogger(__name__)

NO_CONTEXT = "No context found. Run `codemap init` then `codemap update`."


def _dump(data, compact: bool) -> str:
    if compact:
        return json.dumps(data, separators=(",", ":"))
    return json.dumps(data, indent=2)


def _print_run(result: RunResult, root: Path, no_color: bool) -> None:
    """Print run statistics to stderr."""
    c = get_colors(no_color=no_color)
    run = result.report.run
    print(
        f"\n{c.success('✓')} Snapshot {c.cyan('v' + str(run['version']))} of {c.cyan(str(root))}",
        file=sys.stderr,
    )
    print(f"  Files: {run['files']}  Functions: {run['functions']}", file=sys.stderr)
    for status in (
        DiffStatus.ADDED,
        DiffStatus.MODIFIED,
        DiffStatus.UNCHANGED,
        DiffStatus.MOVED,
        DiffStatus.REMOVED,
    ):
        count = c.status(status, str(run[status.value]))
        print(f"  {status.value.capitalize()}: {count}", file=sys.stderr)
    print(
        f"  Reuse: {run['reuse_ratio'] * 100:.1f}%  Time: {run['duration_ms']} ms",
        file=sys.stderr,
    )
    for warning in result.report.warnings:
        print(f"  {c.warning('!')} [{warning.kind}] {warning.scope}: {warning.message}", file=sys.stderr)


def _run_summary(result: RunResult) -> dict:
    report = result.report
    return {
        "version": result.snapshot.version,
        "architecture": report.architecture.to_dict(),
        "entry_points": [entry.to_dict() for entry in report.entry_points],
        "diff_summary": report.diff_summary,
        "degraded": report.degraded,
    }


def run_init(args: argparse.Namespace) -> int:
    root = Path(args.path).resolve()
    store = CodemapStore(root, compact=args.compact)
    store.init_project()
    config = load_config(store.config_path)
    result = Analyzer(root, config, store=store, use_ai=False).run()
    _print_run(result, root, args.no_color)
    print(_dump(_run_summary(result), args.compact))
    return 0


def run_update(args: argparse.Namespace) -> int:
    root = Path(args.path).resolve()
    config = load_config(config_path(root))
    store = CodemapStore(root, compact=args.compact)
    result = Analyzer(root, config, store=store, use_ai=not args.no_ai).run()
    _print_run(result, root, args.no_color)
    print(_dump(_run_summary(result), args.compact))
    return 0


def run_summary(args: argparse.Namespace) -> int:
    c = get_colors(no_color=args.no_color)
    report = CodemapStore(Path(args.path).resolve()).load_report()
    if report is None:
        print(NO_CONTEXT, file=sys.stderr)
        return 1

    print(c.bold("== Project Brief =="))
    print(report.get("project_brief") or "")
    print()
    print(c.bold("== Top Entry Points =="))
    for entry in report.get("entry_points", []):
        print(f"[{entry['rank']}] {c.cyan(entry['target'])} - {entry['rationale']}")
    architecture = report.get("architecture", {})
    if architecture:
        print()
        print(
            f"Architecture: {architecture.get('pattern')} "
            f"({architecture.get('confidence', 0.0):.2f})"
        )
    if report.get("degraded"):
        print(c.warning("(AI insight unavailable; heuristic ranking shown)"), file=sys.stderr)
    return 0


def run_diff(args: argparse.Namespace) -> int:
    store = CodemapStore(Path(args.path).resolve())
    try:
        latest = store.load_latest(EXTRACTOR_VERSION, RULES_VERSION)
        if latest is None:
            print(NO_CONTEXT, file=sys.stderr)
            return 1
        previous = store.load_previous(EXTRACTOR_VERSION, RULES_VERSION)
    except SnapshotVersionError as e:
        # hashes from another extractor or rule set are not comparable
        print(f"{e}; run `codemap update` for a comparable baseline.", file=sys.stderr)
        return 0
    print(_dump(diff_snapshots(previous, latest).to_dict(), args.compact))
    return 0


def run_show(args: argparse.Namespace) -> int:
    root = Path(args.path).resolve()
    store = CodemapStore(root)
    if not store.exists():
        print(NO_CONTEXT, file=sys.stderr)
        return 1
    count = args.count
    if count is None:
        count = load_config(store.config_path).default_history_count
    if count <= 0:
        print("Please provide a positive number of entries to show.", file=sys.stderr)
        return 1

    c = get_colors(no_color=args.no_color)
    history = store.load_run_metrics()
    for entry in reversed(history[-count:]):
        changes = "  ".join(
            f"{status.value} {c.status(status, str(entry.get(status.value, 0)))}"
            for status in (DiffStatus.ADDED, DiffStatus.MODIFIED, DiffStatus.MOVED, DiffStatus.REMOVED)
        )
        print(
            f"{entry.get('timestamp', '?')}  {c.cyan('v' + str(entry.get('version', '?')))}  "
            f"files {entry.get('files', 0)}  functions {entry.get('functions', 0)}  {changes}"
        )
    return 0


def run_auth(args: argparse.Namespace) -> int:
    key = args.key or getpass.getpass("API key: ")
    key = key.strip()
    if not key:
        print("No API key given.", file=sys.stderr)
        return 1
    path = config_path(Path(args.path).resolve())
    config = load_config(path)
    save_config(path, replace(config, ai=replace(config.ai, api_key=key)))
    print(f"API key saved. (Env var {API_KEY_ENV} overrides config.)", file=sys.stderr)
    return 0


def _configure_logging(verbose: bool, debug: bool) -> None:
    level = logging.DEBUG if debug else logging.INFO if verbose else logging.WARNING
    logging.basicConfig(
        level=level, format="%(levelname)s %(name)s: %(message)s", stream=sys.stderr
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="codemap",
        description="Structural index and incremental function-level diff of a codebase",
        epilog="Run 'codemap <command> --help' for more information on a command.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log progress")
    parser.add_argument("--debug", action="store_true", help="Log per-file decisions")

    subparsers = parser.add_subparsers(dest="command", metavar="<command>")

    # codemap init
    init_parser = subparsers.add_parser(
        "init",
        help="Create .codemap/ and take the first snapshot",
        epilog="Example: codemap init /my/project",
    )
    init_parser.add_argument("path", nargs="?", default=".", help="Project root (default: .)")
    init_parser.add_argument("--compact", action="store_true", help="Write compact JSON")
    init_parser.add_argument("--no-color", action="store_true", help="Disable colored output")

    # codemap update
    update_parser = subparsers.add_parser(
        "update",
        help="Re-analyze and publish a new snapshot",
        epilog="Example: codemap update /my/project --no-ai",
    )
    update_parser.add_argument("path", nargs="?", default=".", help="Project root (default: .)")
    update_parser.add_argument("--no-ai", action="store_true", help="Skip AI insight for this run")
    update_parser.add_argument("--compact", action="store_true", help="Write compact JSON")
    update_parser.add_argument("--no-color", action="store_true", help="Disable colored output")

    # codemap summary
    summary_parser = subparsers.add_parser(
        "summary",
        help="Show the project brief and top entry points",
        epilog="Example: codemap summary /my/project",
    )
    summary_parser.add_argument("path", nargs="?", default=".", help="Project root (default: .)")
    summary_parser.add_argument("--no-color", action="store_true", help="Disable colored output")

    # codemap diff
    diff_parser = subparsers.add_parser(
        "diff",
        help="Show changes between the last two snapshots",
        epilog="Example: codemap diff /my/project --compact",
    )
    diff_parser.add_argument("path", nargs="?", default=".", help="Project root (default: .)")
    diff_parser.add_argument("--compact", action="store_true", help="Output compact JSON")

    # codemap show
    show_parser = subparsers.add_parser(
        "show",
        help="List the most recent runs, newest first",
        epilog="Example: codemap show /my/project -n 5",
    )
    show_parser.add_argument("path", nargs="?", default=".", help="Project root (default: .)")
    show_parser.add_argument(
        "-n", "--count", type=int, help="Number of runs (default: default_history_count)"
    )
    show_parser.add_argument("--no-color", action="store_true", help="Disable colored output")

    # codemap auth
    auth_parser = subparsers.add_parser(
        "auth",
        help="Store the AI provider API key in config.toml",
        epilog=f"Example: codemap auth sk-...   ({API_KEY_ENV} overrides the stored key)",
    )
    auth_parser.add_argument("key", nargs="?", help="API key (prompted when omitted)")
    auth_parser.add_argument("--path", default=".", help="Project root (default: .)")

    return parser


COMMANDS = {
    "init": run_init,
    "update": run_update,
    "summary": run_summary,
    "diff": run_diff,
    "show": run_show,
    "auth": run_auth,
}


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point for the ``codemap`` command.

    Usage:
        codemap init [PATH] [--compact]
        codemap update [PATH] [--no-ai] [--compact]
        codemap summary [PATH]
        codemap diff [PATH] [--compact]
        codemap show [PATH] [-n COUNT]
        codemap auth [KEY] [--path PATH]

    Returns:
        Process exit code.
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.verbose, args.debug)

    if args.command is None:
        parser.print_help()
        return 0

    try:
        return COMMANDS[args.command](args)
    except CodemapError as e:
        c = get_colors(no_color=getattr(args, "no_color", False))
        print(f"{c.error('Error:')} {e}", file=sys.stderr)
        logger.debug("Command failed", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
