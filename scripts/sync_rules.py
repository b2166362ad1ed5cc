#!/usr/bin/env python3
"""
Detection Rule Sync CLI: run a sync from the command line, without the API server.

Pulls rule files from the configured GitHub repository, indexes them into
Elasticsearch and saves the sync checkpoint, then prints a summary.

Usage:
    python scripts/sync_rules.py                     # One incremental sync
    python scripts/sync_rules.py --force             # One run labelled as full sync
    python scripts/sync_rules.py --interval 3600     # Sync every hour until interrupted
    python scripts/sync_rules.py --report json       # JSON output

Configuration comes from RULESYNC_* environment variables (see api/config.py).
"""

import argparse
import asyncio
import json
import logging
import signal
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from api.config import settings  # noqa: E402
from api.models.sync import SyncStats  # noqa: E402
from api.services.errors import RuleSyncError  # noqa: E402
from api.services.sync_orchestrator import sync_orchestrator  # noqa: E402

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
log = logging.getLogger("rule-sync")


def format_report(stats: SyncStats, fmt: str) -> str:
    """Format run statistics as text or JSON."""
    if fmt == "json":
        return json.dumps(stats.model_dump(mode="json"), indent=2)

    duration = (stats.end_time - stats.start_time).total_seconds() if stats.end_time else 0.0
    lines = [
        "",
        "=" * 60,
        "DETECTION RULE SYNC REPORT",
        "=" * 60,
        f"  Source:     {settings.github_owner}/{settings.github_repo} @ {stats.marker or 'unknown'}",
        f"  Mode:       {'full' if stats.force else 'incremental'}",
        f"  Status:     {stats.status.value}",
        f"  Started:    {stats.start_time.isoformat()}",
        f"  Duration:   {duration:.1f}s",
        f"  Files:      {stats.processed}/{stats.total_files} processed",
        f"  Indexed:    {stats.indexed} new, {stats.updated} updated",
        f"  Skipped:    {stats.skipped}",
        f"  Errors:     {stats.errors}",
    ]
    if stats.error:
        lines.append(f"  Failure:    {stats.error}")
    lines.append("=" * 60)
    return "\n".join(lines)


async def run_once(force: bool, report_fmt: str) -> bool:
    """Run one sync and print its report. Returns True on success."""
    try:
        await sync_orchestrator.run(force=force)
        ok = True
    except RuleSyncError:
        ok = False
    if sync_orchestrator.last_result is not None:
        print(format_report(sync_orchestrator.last_result, report_fmt))
    return ok


async def run_interval(force: bool, report_fmt: str, interval: int) -> None:
    """Sync every ``interval`` seconds until SIGINT/SIGTERM."""
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    log.info("Sync daemon started (every %d seconds)", interval)
    while not stop.is_set():
        await run_once(force, report_fmt)
        try:
            await asyncio.wait_for(stop.wait(), timeout=interval)
        except asyncio.TimeoutError:
            pass
    log.info("Sync daemon stopped")


async def _main(args) -> int:
    try:
        if args.interval:
            await run_interval(args.force, args.report, args.interval)
            return 0
        return 0 if await run_once(args.force, args.report) else 1
    finally:
        await sync_orchestrator.source.close()
        await sync_orchestrator.store.close()


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Detection Rule Sync: index GitHub detection rules into Elasticsearch",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--force", action="store_true",
        help="Label the run as a full sync",
    )
    parser.add_argument(
        "--interval", type=int, default=None,
        help="Repeat the sync every N seconds until interrupted",
    )
    parser.add_argument(
        "--report", choices=["text", "json"], default="text",
        help="Output format (default: text)",
    )
    args = parser.parse_args()

    if args.interval is not None and args.interval <= 0:
        log.error("--interval must be a positive number of seconds")
        return 1

    return asyncio.run(_main(args))


if __name__ == "__main__":
    sys.exit(main())
