import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import List, Optional

from .core.config import Settings, build_catalog, load_settings
from .core.errors import SecretWatchError
from .core.ingest import IngestionCoordinator, ScriptFetcher
from .core.kvstore import SqliteKeyValueStore
from .core.reporting import Reporter, tab_status_payload
from .core.scanner import DirectoryScanner, SingleFileScanner, configure_logging
from .core.tabstate import TabStateStore
from .core.utils import read_text_safely


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="secretwatch",
        description="Scan JavaScript for embedded credentials and keep per-tab findings.",
    )
    sub = p.add_subparsers(dest="mode", required=True)

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--config", type=Path, default=None, help="Settings file (default: ~/.secretwatch/config.json).")
    common.add_argument("--verbose", action="store_true", help="Enable verbose logging output.")

    store_opts = argparse.ArgumentParser(add_help=False)
    store_opts.add_argument("--db", type=Path, default=None, help="Tab state database (default from settings).")

    # dir mode
    d = sub.add_parser("dir", parents=[common], help="Scan a directory of scripts recursively.")
    d.add_argument("path", type=Path, help="Directory to scan recursively.")
    d.add_argument("--out", type=Path, default=Path("./scan_output"), help="Output directory.")
    d.add_argument("--workers", type=int, default=8, help="Number of worker threads for scanning.")
    d.add_argument("--include", default="*.js,*.mjs,*.cjs,*.html,*.htm", help="Glob(s) to include, comma-separated.")
    d.add_argument("--exclude", default=".git,.venv,venv,.tox,.mypy_cache,.pytest_cache,__pycache__", help="Dir names to exclude, comma-separated.")
    d.add_argument("--max-file-size", type=int, default=5_000_000, help="Max file size in bytes to scan (default 5MB).")
    d.add_argument("--no-progress", action="store_true", help="Disable the progress bar during directory scans.")

    # file mode
    f = sub.add_parser("file", parents=[common], help="Scan a single script.")
    f.add_argument("path", type=Path, help="File to scan.")
    f.add_argument("--out", type=Path, default=Path("./scan_output"), help="Output directory.")

    # tab store modes
    i = sub.add_parser("ingest", parents=[common, store_opts], help="Feed a script into a tab's stored findings.")
    i.add_argument("--tab", type=int, required=True, help="Tab id.")
    src = i.add_mutually_exclusive_group(required=True)
    src.add_argument("--url", help="Fetch the script from this URL (source = URL).")
    src.add_argument("--file", type=Path, help="Read the script from a local file.")
    i.add_argument("--source", default=None, help="Source locator for --file (default: file URI).")

    s = sub.add_parser("status", parents=[common, store_opts], help="Print stored findings for a tab as JSON.")
    target = s.add_mutually_exclusive_group(required=True)
    target.add_argument("--tab", type=int, help="Tab id.")
    target.add_argument("--all", action="store_true", help="Print every stored tab.")

    c = sub.add_parser("clear", parents=[common, store_opts], help="Delete a tab's stored record.")
    c.add_argument("--tab", type=int, required=True, help="Tab id.")

    return p


def _settings(args: argparse.Namespace) -> Settings:
    settings = load_settings(args.config)
    if getattr(args, "db", None) is not None:
        settings.db_path = args.db
    if args.verbose:
        settings.verbose = True
    return settings


def run_dir(args: argparse.Namespace, settings: Settings) -> int:
    if not args.path.is_dir():
        print(f"Not a directory: {args.path}", file=sys.stderr)
        return 2
    scanner = DirectoryScanner(
        root=args.path,
        catalog=build_catalog(settings),
        include_globs=[g.strip() for g in args.include.split(",") if g.strip()],
        exclude_dirs=[e.strip() for e in args.exclude.split(",") if e.strip()],
        max_file_size=args.max_file_size,
        workers=args.workers,
        logger=configure_logging(verbose=settings.verbose),
        verbose=settings.verbose,
        show_progress=not args.no_progress,
    )
    reports = scanner.scan()
    Reporter(args.out).write_all(reports)
    return 0


def run_file(args: argparse.Namespace, settings: Settings) -> int:
    if not args.path.is_file():
        print(f"No such file: {args.path}", file=sys.stderr)
        return 2
    scanner = SingleFileScanner(
        file_path=args.path,
        catalog=build_catalog(settings),
        max_file_size=settings.max_script_chars,
        logger=configure_logging(verbose=settings.verbose),
        verbose=settings.verbose,
    )
    reports = scanner.scan()
    Reporter(args.out).write_all(reports)
    return 0


async def _ingest(args: argparse.Namespace, settings: Settings) -> int:
    store = TabStateStore(SqliteKeyValueStore(settings.resolved_db_path))
    coordinator = IngestionCoordinator(
        store,
        catalog=build_catalog(settings),
        fetcher=ScriptFetcher(timeout=settings.fetch_timeout),
        max_script_chars=settings.max_script_chars,
    )
    if args.url:
        result = await coordinator.ingest_remote(args.tab, args.url)
        if result is None:
            print(f"Could not fetch {args.url}; recorded as a fetch error.", file=sys.stderr)
            return 0
    else:
        content = read_text_safely(args.file, max_bytes=settings.max_script_chars)
        if content is None:
            print(f"Unable to read {args.file} as text", file=sys.stderr)
            return 2
        source = args.source or args.file.resolve().as_uri()
        result = await coordinator.ingest(args.tab, content, source)
    print(json.dumps({"tab_id": args.tab, "added": result.added, "total": result.total}))
    return 0


async def _status(args: argparse.Namespace, settings: Settings) -> int:
    store = TabStateStore(SqliteKeyValueStore(settings.resolved_db_path))
    tab_ids = await store.tab_ids() if args.all else [args.tab]
    payloads = []
    for tab_id in tab_ids:
        record = await store.read(tab_id)
        if record is None:
            continue
        payloads.append(tab_status_payload(tab_id, record))
    if args.all:
        print(json.dumps(payloads, indent=2))
    elif payloads:
        print(json.dumps(payloads[0], indent=2))
    else:
        print(f"No record for tab {args.tab}", file=sys.stderr)
        return 2
    return 0


async def _clear(args: argparse.Namespace, settings: Settings) -> int:
    store = TabStateStore(SqliteKeyValueStore(settings.resolved_db_path))
    await store.delete(args.tab)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_arg_parser()
    args = parser.parse_args(argv)
    try:
        settings = _settings(args)
        configure_logging(verbose=settings.verbose)
        if args.mode == "dir":
            return run_dir(args, settings)
        elif args.mode == "file":
            return run_file(args, settings)
        elif args.mode == "ingest":
            return asyncio.run(_ingest(args, settings))
        elif args.mode == "status":
            return asyncio.run(_status(args, settings))
        elif args.mode == "clear":
            return asyncio.run(_clear(args, settings))
    except SecretWatchError as exc:
        print(f"secretwatch: {exc}", file=sys.stderr)
        return 1
    parser.print_help()
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
