#!/usr/bin/env python3
"""ossstats: scheduled refresh runner.

Runs one full refresh (org npm totals, GitHub stats, comparison presets)
and writes the result as JSON. Meant for cron when the HTTP service's own
scheduler is disabled.

Usage:
    python scripts/refresh_run.py
    python scripts/refresh_run.py --org tanstack --budget 600

Scheduling (every 6 hours):
    crontab -e
    0 */6 * * * /path/to/ossstats/.venv/bin/python /path/to/ossstats/scripts/refresh_run.py >> /path/to/ossstats/logs/refresh.log 2>&1
"""

import argparse
import asyncio
import json
import logging
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

# Ensure project root is on sys.path so 'ossstats' is importable
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT / "src"))

# Load .env before importing ossstats (pydantic-settings needs env vars)
try:
    from dotenv import load_dotenv
    load_dotenv(PROJECT_ROOT / ".env")
except ImportError:
    pass  # python-dotenv not installed, env vars must be set externally

from ossstats.cache import CacheStore, PackageRegistry
from ossstats.config import settings
from ossstats.pipeline import RefreshOrchestrator, RefreshResult


def setup_logging(log_dir: Path, stamp: str) -> None:
    """Configure logging to both console and a per-run log file."""
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / f"refresh_{stamp}.log"

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(log_file, encoding="utf-8"),
        ],
    )


async def run_refresh(org: str, budget: float, db_path: str) -> RefreshResult:
    """Run one budgeted full refresh.

    Args:
        org: npm scope / GitHub org
        budget: Wall-clock budget in seconds
        db_path: SQLite cache file

    Returns:
        The run's RefreshResult
    """
    config = settings.model_copy(update={"refresh_budget_seconds": budget, "org": org})
    store = CacheStore(db_path, mutable_ttl=timedelta(hours=config.mutable_ttl_hours))
    registry = PackageRegistry(db_path)
    orchestrator = RefreshOrchestrator(store, registry, config=config)
    return await orchestrator.run_full_refresh(org)


def save_result(result: RefreshResult, stamp: str, output_dir: Path) -> None:
    """Save the run result as JSON for inspection."""
    output_dir.mkdir(parents=True, exist_ok=True)
    output_file = output_dir / f"refresh_{stamp}.json"

    with open(output_file, "w", encoding="utf-8") as f:
        json.dump(result.to_dict(), f, indent=2)

    logging.getLogger(__name__).info("Result saved to %s", output_file)


def main() -> int:
    """Main entry point for the refresh runner."""
    parser = argparse.ArgumentParser(
        description="ossstats: scheduled statistics refresh",
    )
    parser.add_argument(
        "--org",
        type=str,
        default=settings.org,
        help=f"npm scope / GitHub org (default: {settings.org})",
    )
    parser.add_argument(
        "--budget",
        type=float,
        default=settings.refresh_budget_seconds,
        help="Wall-clock budget in seconds (default: 900)",
    )
    parser.add_argument(
        "--db",
        type=str,
        default=settings.cache_db_path,
        help="SQLite cache file (default: data/stats.db)",
    )
    parser.add_argument(
        "--output-dir",
        type=str,
        default=str(PROJECT_ROOT / "output"),
        help="JSON results directory (default: output/)",
    )
    args = parser.parse_args()

    stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M")
    setup_logging(PROJECT_ROOT / "logs", stamp)
    logger = logging.getLogger(__name__)

    logger.info("Starting ossstats refresh")
    logger.info("  Org: %s", args.org)
    logger.info("  Budget: %.0fs", args.budget)
    logger.info("  Cache: %s", args.db)

    try:
        result = asyncio.run(run_refresh(args.org.lstrip("@").lower(), args.budget, args.db))
        logger.info(result.summary())
        for subject, error in sorted(result.failures.items()):
            logger.warning("  %s: %s", subject, error)
        save_result(result, stamp, Path(args.output_dir))
        return 0 if result.ok else 1

    except KeyboardInterrupt:
        logger.warning("Interrupted by user")
        return 130
    except Exception as e:
        logger.error("Refresh run failed: %s", e, exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
