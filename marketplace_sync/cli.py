"""
marketplace_sync/cli.py - Command-line interface for the marketplace import.

Usage:
    python -m marketplace_sync import --feed packages.json   # reconcile a feed into the store
    python -m marketplace_sync status                        # record counts of the store
    python -m marketplace_sync export --out packages.csv     # package table as CSV

All commands read GITHUB_TOKEN from .env in the working directory (or the
path given by --env-file) before falling back to the environment variable.
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
import time
from pathlib import Path

from marketplace_sync.config import DEFAULT_CONFIG


# ── Environment file ─────────────────────────────────────────────────────────

_QUOTES = ('"', "'")


def _find_env_file() -> Path | None:
    """Nearest .env in the working directory or one of its parents."""
    cwd = Path.cwd()
    for directory in (cwd, *cwd.parents):
        if (directory / ".env").is_file():
            return directory / ".env"
    return None


def _parse_env_line(line: str) -> tuple[str, str] | None:
    text = line.strip()
    if not text or text.startswith("#") or "=" not in text:
        return None
    name, _, value = text.partition("=")
    value = value.strip()
    if len(value) >= 2 and value[0] in _QUOTES and value[-1] == value[0]:
        value = value[1:-1]
    name = name.strip()
    return (name, value) if name else None


def _load_dotenv(env_file: str | None = None) -> dict[str, str]:
    """Export the KEY=VALUE lines of a .env file into os.environ.

    Variables that are already set win over the file. *env_file* defaults to
    the nearest .env found from the working directory upwards; a missing file
    is not an error.

    Returns:
        The variables this call actually exported.
    """
    path = Path(env_file) if env_file else _find_env_file()
    if path is None or not path.is_file():
        return {}

    exported: dict[str, str] = {}
    for line in path.read_text(encoding="utf-8").splitlines():
        pair = _parse_env_line(line)
        if pair is None or pair[0] in os.environ:
            continue
        os.environ[pair[0]] = pair[1]
        exported[pair[0]] = pair[1]
    return exported


# ── Logging ───────────────────────────────────────────────────────────────────

_LOG_FORMAT = "%(asctime)s %(levelname)-7s [%(name)s] %(message)s"
_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


def _setup_logging(level: str = "INFO") -> None:
    """Send log records to stderr; only the CLI installs handlers."""
    logging.basicConfig(
        level=logging.getLevelName(level.upper()) if level.upper() in _LOG_LEVELS else logging.INFO,
        format=_LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,
    )


logger = logging.getLogger("marketplace_sync.cli")


def _open_store(path: str):
    from marketplace_sync.storage.graph_store import GraphRecordStore

    return GraphRecordStore.load(path)


# ── Subcommand: import ───────────────────────────────────────────────────────

def cmd_import(args: argparse.Namespace) -> int:
    """Reconcile a registry feed into the store, then prune stale records."""
    _load_dotenv(args.env_file)
    _setup_logging(args.log_level)

    from marketplace_sync.errors import MalformedUpstreamData
    from marketplace_sync.importer import PackageImporter
    from marketplace_sync.ingestion.cache import FileResponseCache
    from marketplace_sync.ingestion.feed import load_feed
    from marketplace_sync.ingestion.github_client import GitHubMetricsFetcher

    try:
        feed = load_feed(args.feed)
    except (OSError, MalformedUpstreamData) as exc:
        logger.error("Cannot read feed %s: %s", args.feed, exc)
        return 1

    store = _open_store(args.store)

    fetcher = None
    if not args.no_github:
        token = args.token or os.environ.get("GITHUB_TOKEN")
        cache = FileResponseCache(args.cache_dir, ttl_seconds=DEFAULT_CONFIG.cache_ttl_seconds)
        fetcher = GitHubMetricsFetcher(token=token, cache=cache)

    importer = PackageImporter(store, fetcher=fetcher, force=args.force)

    t0 = time.monotonic()
    result = importer.run(feed, max_workers=args.workers, cleanup=not args.no_cleanup)
    elapsed = time.monotonic() - t0

    store.save(args.store)

    print()
    print("=" * 60)
    print("  IMPORT COMPLETE")
    print("=" * 60)
    print(f"  Elapsed            : {elapsed:.1f}s")
    print(f"  Packages processed : {result.processed}")
    print(f"  Packages failed    : {result.failed}")
    print(f"  Packages removed   : {result.removed_packages}")
    print(f"  Vendors removed    : {result.removed_vendors}")
    print(f"  Store              : {args.store}")
    print("=" * 60)

    if result.errors:
        print("\n  Errors encountered:")
        for err in result.errors[:10]:
            print(f"    [{err.get('package', '?')}] {err.get('error', '?')}")
        if len(result.errors) > 10:
            print(f"    ... and {len(result.errors) - 10} more")

    return 0 if result.ok else 1


# ── Subcommand: status ────────────────────────────────────────────────────────

def cmd_status(args: argparse.Namespace) -> int:
    """Show record counts of the store without changing anything."""
    _load_dotenv(args.env_file)
    _setup_logging("WARNING")

    from marketplace_sync.report import store_summary

    token = args.token or os.environ.get("GITHUB_TOKEN")
    print("\nMarketplace store status")
    print("=" * 40)
    print(f"  GITHUB_TOKEN  : {'present' if token else 'not set'}")
    print(f"  Store         : {args.store}{'' if os.path.exists(args.store) else ' (missing)'}")

    summary = store_summary(_open_store(args.store))
    for key, value in summary.items():
        print(f"  {key.capitalize():<13} : {value}")
    print("=" * 40)
    return 0


# ── Subcommand: export ────────────────────────────────────────────────────────

def cmd_export(args: argparse.Namespace) -> int:
    """Write the package table to CSV."""
    _load_dotenv(args.env_file)
    _setup_logging(args.log_level)

    from marketplace_sync.report import export_packages_csv

    count = export_packages_csv(_open_store(args.store), args.out)
    print(f"Exported {count} packages to {args.out}")
    return 0


# ── Argument parser ───────────────────────────────────────────────────────────

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="marketplace-sync",
        description=(
            "Reconcile registry package metadata and GitHub metrics into the\n"
            "marketplace record store. Reads GITHUB_TOKEN from .env automatically."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Import a Packagist dump, pruning packages that disappeared upstream
  python -m marketplace_sync import --feed packages.json

  # Re-convert every package and use four vendor workers
  python -m marketplace_sync import --feed packages.json --force --workers 4

  # Registry data only, no GitHub calls
  python -m marketplace_sync import --feed packages.json --no-github

  # Inspect the store
  python -m marketplace_sync status
  python -m marketplace_sync export --out packages.csv
        """,
    )

    # Global flags
    parser.add_argument(
        "--env-file",
        default=None,
        metavar="PATH",
        help="Path to .env file (default: auto-detect .env from the working directory up)",
    )
    parser.add_argument(
        "--token",
        default=None,
        metavar="GITHUB_TOKEN",
        help="GitHub personal access token (overrides .env and environment)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=_LOG_LEVELS,
        help="Log level (default: INFO)",
    )
    parser.add_argument(
        "--store",
        default=DEFAULT_CONFIG.store_path,
        metavar="PATH",
        help=f"Record store JSON file (default: {DEFAULT_CONFIG.store_path})",
    )

    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")
    subparsers.required = True

    # import
    p_import = subparsers.add_parser(
        "import",
        help="Reconcile a registry feed into the store",
    )
    p_import.add_argument(
        "--feed",
        required=True,
        metavar="PATH",
        help="JSON file of Packagist package documents",
    )
    p_import.add_argument(
        "--force",
        action="store_true",
        help="Convert every package, even those that look up to date",
    )
    p_import.add_argument(
        "--workers",
        type=int,
        default=DEFAULT_CONFIG.max_workers,
        metavar="N",
        help=f"Vendor-level worker threads (default: {DEFAULT_CONFIG.max_workers})",
    )
    p_import.add_argument(
        "--cache-dir",
        default=DEFAULT_CONFIG.cache_dir,
        metavar="PATH",
        help=f"GitHub response cache directory (default: {DEFAULT_CONFIG.cache_dir})",
    )
    p_import.add_argument(
        "--no-github",
        action="store_true",
        help="Skip GitHub metrics and READMEs",
    )
    p_import.add_argument(
        "--no-cleanup",
        action="store_true",
        help="Keep packages and vendors that are missing from the feed",
    )
    p_import.set_defaults(func=cmd_import)

    # status
    p_status = subparsers.add_parser(
        "status",
        help="Show record counts of the store",
    )
    p_status.set_defaults(func=cmd_status)

    # export
    p_export = subparsers.add_parser(
        "export",
        help="Export the package table as CSV",
    )
    p_export.add_argument(
        "--out",
        required=True,
        metavar="PATH",
        help="CSV output path",
    )
    p_export.set_defaults(func=cmd_export)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
