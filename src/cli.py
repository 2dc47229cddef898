"""
Command-line interface for Tabular Mirror.

Subcommands mirror the HTTP API: list datasets, refresh datasets, list
canonical files and query one of them.
"""

import argparse
import dataclasses
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from src.config.settings import Settings, load_settings
from src.ingest.catalog import CatalogValidationError, find_enabled, load_catalog
from src.ingest.coordinator import AcquisitionCoordinator
from src.logging_config import configure_logging
from src.query.engine import NotFoundError, QueryEngine, QueryError


def build_settings(args: argparse.Namespace) -> Settings:
    """Environment/config settings with command-line overrides applied."""
    settings = load_settings(args.config)
    overrides = {}
    if args.catalog:
        overrides["catalog_path"] = Path(args.catalog)
    if args.out_dir:
        overrides["out_dir"] = Path(args.out_dir)
    if args.storage_dir:
        overrides["storage_dir"] = Path(args.storage_dir)
    return dataclasses.replace(settings, **overrides)


def cmd_datasets(args: argparse.Namespace) -> int:
    """List configured datasets."""
    settings = build_settings(args)
    try:
        descriptors = load_catalog(settings.catalog_path)
    except (OSError, CatalogValidationError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    for d in descriptors:
        status = "enabled" if d.enabled else "disabled"
        print(f"{d.key:<24} {status:<9} {len(d.sources)} source(s)  {d.label}")
        if args.verbose:
            for s in d.sources:
                print(f"    [{s.type}] {s.url}")
    return 0


def cmd_refresh(args: argparse.Namespace) -> int:
    """Refresh datasets; exits nonzero if any dataset failed."""
    settings = build_settings(args)
    coordinator = AcquisitionCoordinator.from_settings(settings)

    try:
        if args.all:
            keys = [d.key for d in find_enabled(load_catalog(settings.catalog_path))]
        else:
            keys = args.keys
        if not keys:
            print("Error: no dataset keys given (use --all to refresh every enabled dataset)", file=sys.stderr)
            return 2
        outcomes = coordinator.refresh(keys)
    except (OSError, CatalogValidationError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.json:
        print(json.dumps([o.to_dict() for o in outcomes], indent=2))
    else:
        for o in outcomes:
            mark = "✓" if o.ok else "✗"
            print(f"  {mark} {o.key}: {o.note} ({o.source_url or '-'})")
            if args.verbose:
                for a in o.attempts:
                    print(f"      {a.state.value:<16} {a.url} {a.detail}")

    return 0 if all(o.ok for o in outcomes) else 1


def cmd_files(args: argparse.Namespace) -> int:
    """List canonical CSV files."""
    settings = build_settings(args)
    coordinator = AcquisitionCoordinator.from_settings(settings)
    for name in coordinator.list_canonical_files():
        print(name)
    return 0


def cmd_query(args: argparse.Namespace) -> int:
    """Print one page of matching rows as JSON."""
    settings = build_settings(args)
    coordinator = AcquisitionCoordinator.from_settings(settings)
    engine = QueryEngine(coordinator.dataset_store, max_limit=settings.max_limit)

    limit = args.limit if args.limit is not None else settings.default_limit
    try:
        result = engine.query(args.key, q=args.q, limit=limit, offset=args.offset)
    except NotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except QueryError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    print(json.dumps(result.to_dict(), indent=2, ensure_ascii=False))
    return 0


def main(argv: Optional[list] = None) -> int:
    """Main CLI entrypoint."""
    parser = argparse.ArgumentParser(
        prog="tabular-mirror",
        description="Mirror remote tabular datasets as canonical CSV"
    )

    # Global options
    parser.add_argument("--catalog", help="Path to dataset catalog (default: from environment)")
    parser.add_argument("--out-dir", help="Directory for canonical CSV files")
    parser.add_argument("--storage-dir", help="Directory for the manifest and scratch space")
    parser.add_argument("--config", help="Path to ingest.yaml")
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Verbose output"
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    datasets_parser = subparsers.add_parser("datasets", help="List configured datasets")
    datasets_parser.set_defaults(func=cmd_datasets)

    refresh_parser = subparsers.add_parser("refresh", help="Fetch and normalize datasets")
    refresh_parser.add_argument("keys", nargs="*", help="Dataset keys to refresh")
    refresh_parser.add_argument("--all", action="store_true", help="Refresh every enabled dataset")
    refresh_parser.add_argument("--json", action="store_true", help="Print results as JSON")
    refresh_parser.set_defaults(func=cmd_refresh)

    files_parser = subparsers.add_parser("files", help="List canonical CSV files")
    files_parser.set_defaults(func=cmd_files)

    query_parser = subparsers.add_parser("query", help="Search a canonical CSV file")
    query_parser.add_argument("key", help="Dataset key or <key>.csv")
    query_parser.add_argument("--q", default="", help="Case-insensitive substring filter")
    query_parser.add_argument("--limit", type=int, help="Page size")
    query_parser.add_argument("--offset", type=int, default=0, help="Matches to skip")
    query_parser.set_defaults(func=cmd_query)

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    configure_logging(logging.DEBUG if args.verbose else logging.INFO, log_dir=build_settings(args).log_dir)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
