"""CLI for checking and repairing a local rpm repository mirror."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import ValidationError

from repocheck.config import Settings
from repocheck.services.reconcile_service import find_excess, remove_excess
from repocheck.services.sync_service import RECORDED_SOURCE, synchronize

if TYPE_CHECKING:
    from collections.abc import Sequence

    from repocheck.services.sync_service import SyncReport


def _configure_logging(debug: bool) -> None:
    """Configure console logging."""
    level = logging.DEBUG if debug else logging.INFO
    fmt = "%(asctime)s %(levelname)-8s %(name)s: %(message)s" if debug else "%(message)s"
    logging.basicConfig(
        level=level,
        format=fmt,
        stream=sys.stdout,
        force=True,
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def _print_progress(relative_path: str, written: int, total: int | None) -> None:
    if not sys.stdout.isatty():
        return
    if total:
        line = f"\r{written} / {total} ({written / total:.2%})  "
    else:
        line = f"\r{written} bytes  "
    sys.stdout.write(line)
    if total is not None and written >= total:
        sys.stdout.write("\n")
    sys.stdout.flush()


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="repocheck",
        description="Check a local rpm repository mirror and repair it from a remote source",
    )
    parser.add_argument(
        "root",
        nargs="?",
        default=".",
        help="Mirror root directory (default: current)",
    )
    parser.add_argument(
        "-u",
        dest="url",
        nargs="?",
        const=RECORDED_SOURCE,
        default=None,
        metavar="URL",
        help="Update from URL; without a value, reuse the recorded source "
        "(place it after the root directory)",
    )
    parser.add_argument(
        "-c",
        dest="check_hash",
        action="store_const",
        const=True,
        default=None,
        help="Verify checksums as well as existence and size (default)",
    )
    parser.add_argument(
        "--size-only",
        dest="check_hash",
        action="store_const",
        const=False,
        help="Only check existence and size",
    )
    parser.add_argument(
        "-r",
        dest="excess",
        action="count",
        default=0,
        help="List excess files; -rr also deletes them",
    )
    parser.add_argument("-j", "--workers", type=int, default=None, help="Verification threads")
    parser.add_argument("--timeout", type=float, default=None, help="Fetch timeout in seconds")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def _load_settings(args: argparse.Namespace) -> Settings:
    overrides: dict[str, object] = {}
    if args.check_hash is not None:
        overrides["check_hash"] = args.check_hash
    if args.workers is not None:
        overrides["workers"] = args.workers
    if args.timeout is not None:
        overrides["fetch_timeout"] = args.timeout
    if args.verbose:
        overrides["debug"] = True
    return Settings(**overrides)  # type: ignore[arg-type]


def _report_excess(root: Path, report: SyncReport, delete: bool) -> None:
    excess = find_excess(root, report.expected)
    if not excess:
        return
    print("Excess files:")
    if not delete:
        for rel in excess:
            print(rel)
        return
    removed = set(remove_excess(root, excess))
    for rel in excess:
        print(f"{rel} removed." if rel in removed else f"{rel} NOT removed.")
    print("Done.")


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point. Returns the process exit code."""
    parser = _build_parser()
    args = parser.parse_args(argv)
    try:
        settings = _load_settings(args)
    except ValidationError as exc:
        print(f"Fatal: invalid option: {exc}")
        return 1
    _configure_logging(settings.debug)

    if args.url and "://" not in args.url and Path(args.url).is_dir():
        print(
            f"Fatal: {args.url!r} was taken as the source URL of -u; "
            "give the mirror directory before -u (repocheck DIR -u [URL])"
        )
        return 1

    root = Path(args.root)
    suffix = "" if root.is_absolute() else f" ({root.resolve()})"
    print(f"Checking repository at {root}{suffix}")

    report = synchronize(root, args.url, settings, progress=_print_progress)
    print(f"{len(report.results)} file(s) checked, {report.failures} failure(s).")
    if not report.success:
        print("Bad repo.")
        return 1

    print("The repo is OK.")
    if args.excess:
        _report_excess(root, report, delete=args.excess > 1)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
