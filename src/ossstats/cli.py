"""Command-line interface for ossstats.

Provides commands for refreshing, serving and inspecting cached statistics.

Usage:
    ossstats refresh
    ossstats refresh --scope packages react-query swr
    ossstats serve --port 8000
    ossstats stats org
    ossstats stats compare swr @tanstack/react-query --range 90d --bin weekly
    ossstats chunks @tanstack/react-query --start 2019-10-25
"""

import argparse
import asyncio
import json
import logging
import sys
from concurrent.futures import ThreadPoolExecutor
from datetime import date as date_type
from datetime import timedelta
from typing import Any, Optional

from ossstats import __version__
from ossstats.api import NpmStatsInput, StatsReader, StatsUnavailable, npm_stats
from ossstats.cache import CacheStore, PackageRegistry
from ossstats.chunks import NPM_EPOCH, generate_chunks
from ossstats.config import settings
from ossstats.pipeline import RefreshOrchestrator

logger = logging.getLogger(__name__)

_executor = ThreadPoolExecutor(max_workers=1)


def create_parser() -> argparse.ArgumentParser:
    """Create the CLI argument parser.

    Returns:
        Configured ArgumentParser with all commands and arguments.
    """
    parser = argparse.ArgumentParser(
        prog="ossstats",
        description="ossstats: npm download and GitHub statistics cache",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  ossstats refresh
  ossstats stats org --format json
  ossstats stats packages
  ossstats stats compare swr @tanstack/react-query --range 90d
  ossstats chunks @tanstack/react-query --start 2019-10-25
        """,
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # refresh command
    refresh_parser = subparsers.add_parser(
        "refresh",
        help="Fetch fresh statistics from npm and GitHub",
    )
    refresh_parser.add_argument(
        "--scope",
        choices=["full", "org", "libraries", "packages"],
        default="full",
        help="What to refresh (default: full)",
    )
    refresh_parser.add_argument(
        "packages",
        nargs="*",
        help="Package names (with --scope packages)",
    )
    refresh_parser.add_argument(
        "--format",
        choices=["text", "json"],
        default="text",
        help="Output format (default: text)",
    )

    # serve command
    serve_parser = subparsers.add_parser("serve", help="Run the HTTP service")
    serve_parser.add_argument("--host", default=settings.host, help="Bind address")
    serve_parser.add_argument("--port", type=int, default=settings.port, help="Port")
    serve_parser.add_argument(
        "--no-scheduler",
        action="store_true",
        help="Do not run the periodic refresh in-process",
    )

    # stats command
    stats_parser = subparsers.add_parser(
        "stats",
        help="Show cached statistics (never calls upstream)",
    )
    stats_parser.add_argument(
        "what",
        choices=["org", "libraries", "library", "compare", "presets", "preset", "packages", "cache"],
        help="Which statistic to show",
    )
    stats_parser.add_argument(
        "names",
        nargs="*",
        help="Library id, preset id or package names",
    )
    stats_parser.add_argument("--range", default="1y", help="Comparison range (default: 1y)")
    stats_parser.add_argument("--bin", default="weekly", help="Comparison bin (default: weekly)")
    stats_parser.add_argument(
        "--format",
        choices=["text", "json"],
        default="text",
        help="Output format (default: text)",
    )

    # chunks command
    chunks_parser = subparsers.add_parser(
        "chunks",
        help="Print the chunk plan and cache keys of a package",
    )
    chunks_parser.add_argument("package", help="npm package name")
    chunks_parser.add_argument(
        "--start",
        default=NPM_EPOCH.isoformat(),
        help="Series start date YYYY-MM-DD (default: 2015-01-10)",
    )
    chunks_parser.add_argument(
        "--as-of",
        default=None,
        help="As-of date YYYY-MM-DD (default: today)",
    )
    chunks_parser.add_argument(
        "--size",
        type=int,
        default=settings.chunk_size_days,
        help="Days per chunk",
    )

    # version command
    subparsers.add_parser("version", help="Show version information")

    return parser


def _run_async(coro):
    """Run an async coroutine from synchronous CLI context.

    Spins up a new event loop in a dedicated thread to avoid conflicts
    with any existing event loop.
    """
    def _target():
        loop = asyncio.new_event_loop()
        try:
            return loop.run_until_complete(coro)
        finally:
            loop.close()

    future = _executor.submit(_target)
    return future.result()


def _open_cache() -> tuple[CacheStore, PackageRegistry]:
    store = CacheStore(
        settings.cache_db_path,
        mutable_ttl=timedelta(hours=settings.mutable_ttl_hours),
    )
    return store, PackageRegistry(settings.cache_db_path)


def _print(data: Any, fmt: str) -> None:
    if fmt == "json":
        print(json.dumps(data, indent=2, default=str))
        return

    if isinstance(data, list):
        for row in data:
            print("  ".join(f"{k}={v}" for k, v in row.items() if k != "data"))
    elif isinstance(data, dict):
        for key, value in data.items():
            if isinstance(value, (dict, list)):
                value = f"<{len(value)} items>"
            print(f"{key}: {value}")
    else:
        print(data)


def cmd_refresh(args: argparse.Namespace) -> int:
    """Execute the refresh command.

    Returns:
        Exit code (0 if every subject refreshed, 1 otherwise)
    """
    try:
        store, registry = _open_cache()
        orchestrator = RefreshOrchestrator(store, registry)

        if args.scope == "org":
            coro = orchestrator.refresh_org_stats()
        elif args.scope == "libraries":
            coro = orchestrator.refresh_all_libraries()
        elif args.scope == "packages":
            if not args.packages:
                print("Error: --scope packages needs package names", file=sys.stderr)
                return 1
            coro = orchestrator.refresh_packages(args.packages)
        else:
            coro = orchestrator.run_full_refresh()

        result = _run_async(coro)

        if args.format == "json":
            print(json.dumps(result.to_dict(), indent=2))
        else:
            print(result.summary())
            for subject, error in sorted(result.failures.items()):
                print(f"  FAILED {subject}: {error}")

        return 0 if result.ok else 1

    except KeyboardInterrupt:
        logger.warning("Interrupted by user")
        return 130
    except Exception as e:
        logger.error("Refresh failed: %s", e, exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_serve(args: argparse.Namespace) -> int:
    """Execute the serve command."""
    import uvicorn

    from ossstats.server import create_app

    config = settings.model_copy(update={"enable_scheduler": not args.no_scheduler})
    try:
        uvicorn.run(create_app(config), host=args.host, port=args.port, log_config=None)
    except KeyboardInterrupt:
        return 130
    return 0


async def _stats(args: argparse.Namespace) -> Any:
    store, registry = _open_cache()
    reader = StatsReader(store, registry, org=settings.org, chunk_size_days=settings.chunk_size_days)

    if args.what == "cache":
        return await store.stats()
    if args.what == "libraries":
        return await reader.list_libraries()
    if args.what == "presets":
        return reader.list_presets()
    if args.what == "packages":
        return [
            {
                "package": row.package_name,
                "library": row.library_id,
                "legacy": row.is_legacy,
                "created": row.created_date,
                "checked_at": row.metadata_checked_at,
            }
            for row in await registry.list_all()
        ]

    params: dict[str, Any] = {"range": args.range, "bin": args.bin}
    if args.what == "library":
        params["library"] = args.names[0] if args.names else None
    elif args.what == "preset":
        params["preset"] = args.names[0] if args.names else None
    elif args.what == "compare":
        params["packages"] = args.names
    return await npm_stats(reader, NpmStatsInput(**params))


def cmd_stats(args: argparse.Namespace) -> int:
    """Execute the stats command.

    Returns:
        Exit code (0 for success, 1 if nothing is cached or input is invalid)
    """
    if args.what in ("library", "preset", "compare") and not args.names:
        print(f"Error: stats {args.what} needs at least one name", file=sys.stderr)
        return 1

    try:
        data = _run_async(_stats(args))
    except StatsUnavailable as e:
        print(f"No data: {e}. Run 'ossstats refresh' first.", file=sys.stderr)
        return 1
    except (KeyError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.format == "text" and isinstance(data, dict) and data.get("kind") == "comparison":
        data = data["packages"]
    _print(data, args.format)
    return 0


def cmd_chunks(args: argparse.Namespace) -> int:
    """Execute the chunks command."""
    try:
        start = date_type.fromisoformat(args.start)
        as_of = date_type.fromisoformat(args.as_of) if args.as_of else date_type.today()
        chunks = generate_chunks(start, as_of, args.size)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    for chunk in chunks:
        state = "immutable" if chunk.is_immutable(as_of) else "mutable"
        print(f"{chunk.cache_key(args.package)}  {chunk.days:>3}d  {state}")
    return 0


def cmd_version(args: argparse.Namespace) -> int:
    """Execute the version command.

    Returns:
        Exit code (0 for success)
    """
    print(f"ossstats v{__version__}")
    print("npm download and GitHub statistics cache")
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    """Main CLI entry point.

    Args:
        argv: Command-line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code (0 for success, non-zero for failure)
    """
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    parser = create_parser()
    args = parser.parse_args(argv)

    # Route to command handler
    if args.command == "refresh":
        return cmd_refresh(args)
    elif args.command == "serve":
        return cmd_serve(args)
    elif args.command == "stats":
        return cmd_stats(args)
    elif args.command == "chunks":
        return cmd_chunks(args)
    elif args.command == "version":
        return cmd_version(args)
    else:
        # No command specified
        parser.print_help()
        return 0


def cli_entry() -> None:
    """Console script entry point for setuptools."""
    sys.exit(main())


if __name__ == "__main__":
    cli_entry()
