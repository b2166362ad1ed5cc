"""Coordinates a rule sync run: enumerate, batch, index, checkpoint."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone

from api import metrics
from api.config import settings
from api.models.sync import FileOutcome, RunStatus, SyncState, SyncStats
from api.services.errors import (
    ConcurrentRunError,
    ConfigurationError,
    EmptyResultError,
    StoreError,
)
from api.services.github_source import GitHubRuleSource, RuleFile, rule_source
from api.services.indexer import index_rule_file
from api.services.rule_store import RuleStore, rule_store

logger = logging.getLogger(__name__)


class SyncOrchestrator:
    """Runs one sync at a time and keeps the current and last run statistics.

    Files are processed in batches of ``batch_size`` concurrent tasks; batches
    run strictly in enumeration order with ``batch_delay`` seconds between
    them to stay under the GitHub rate limits.
    """

    def __init__(
        self,
        source: GitHubRuleSource,
        store: RuleStore,
        batch_size: int | None = None,
        batch_delay: float | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.source = source
        self.store = store
        self.batch_size = batch_size or settings.sync_batch_size
        self.batch_delay = batch_delay if batch_delay is not None else settings.sync_batch_delay
        self._sleep = sleep
        self._current: SyncStats | None = None
        self._last: SyncStats | None = None
        self._tasks: set[asyncio.Task] = set()

    @property
    def current_run(self) -> SyncStats | None:
        return self._current

    @property
    def last_result(self) -> SyncStats | None:
        return self._last

    @property
    def is_running(self) -> bool:
        return self._current is not None

    def begin(self, force: bool = False) -> SyncStats:
        """Claim the single run slot. Raises ConcurrentRunError if it is taken."""
        if self._current is not None:
            raise ConcurrentRunError(self._current.progress)
        self._current = SyncStats(force=force)
        metrics.sync_running.set(1)
        return self._current

    async def run(self, force: bool = False) -> SyncStats:
        """Run a sync to completion and return its final statistics."""
        stats = self.begin(force)
        return await self._execute(stats)

    def start(self, force: bool = False) -> SyncStats:
        """Start a sync in the background and return its live statistics."""
        stats = self.begin(force)
        task = asyncio.create_task(self._execute(stats), name="rule-sync")
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return stats

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning("Background sync task was cancelled")
        elif task.exception() is not None:
            logger.debug("Background sync task ended with %r", task.exception())

    async def wait_idle(self) -> None:
        """Wait for background runs to finish (used on shutdown)."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    async def _execute(self, stats: SyncStats) -> SyncStats:
        mode = "full" if stats.force else "incremental"
        logger.info(
            "Starting %s sync from %s/%s (%s GitHub access)",
            mode, self.source.owner, self.source.repo,
            "authenticated" if self.source.authenticated else "public",
        )
        try:
            await self._sync(stats)
        except Exception as e:
            logger.error("Sync failed after %s files: %s", stats.progress, e)
            self._last = stats.finish(RunStatus.FAILED, str(e))
            metrics.sync_runs_total.labels(status=RunStatus.FAILED.value).inc()
            raise
        finally:
            self._current = None
            metrics.sync_running.set(0)
            metrics.sync_duration_seconds.observe(
                (datetime.now(timezone.utc) - stats.start_time).total_seconds()
            )

        self._last = stats.finish(RunStatus.COMPLETED)
        metrics.sync_runs_total.labels(status=RunStatus.COMPLETED.value).inc()
        metrics.sync_last_success_timestamp.set(self._last.end_time.timestamp())
        logger.info(
            "Sync completed! New: %d, Updated: %d, Skipped: %d, Errors: %d",
            stats.indexed, stats.updated, stats.skipped, stats.errors,
        )
        return self._last

    async def _sync(self, stats: SyncStats) -> None:
        if not self.store.is_configured:
            raise ConfigurationError("Elasticsearch client not configured")
        await self.store.ensure_schema()

        previous = await self._load_checkpoint()
        stats.previous_marker = previous.last_marker

        marker = await self.source.resolve_marker()
        stats.marker = marker
        if previous.last_marker == marker:
            logger.info("Source unchanged since last sync (%s); processing all files", marker)

        files = await self.source.list_rule_files()
        stats.total_files = len(files)
        logger.info("Found %d rule files to process", len(files))
        if not files:
            raise EmptyResultError("No rule files found. Check repository access.")

        batches = [files[i:i + self.batch_size] for i in range(0, len(files), self.batch_size)]
        for number, batch in enumerate(batches, start=1):
            await asyncio.gather(*(self._process(stats, f) for f in batch))
            logger.info(
                "Progress: %s (%d new, %d updated, %d skipped, %d errors)",
                stats.progress, stats.indexed, stats.updated, stats.skipped, stats.errors,
            )
            if number < len(batches):
                await self._sleep(self.batch_delay)

        await self.store.refresh()
        await self._save_checkpoint(
            SyncState(last_marker=marker, last_sync_time=datetime.now(timezone.utc).isoformat())
        )

    async def _process(self, stats: SyncStats, rule_file: RuleFile) -> None:
        try:
            outcome = await index_rule_file(rule_file, self.source, self.store)
        except Exception:
            logger.exception("Unexpected failure processing %s", rule_file.name)
            outcome = FileOutcome.ERROR
        stats.record(outcome)
        metrics.sync_files_total.labels(outcome=outcome.value).inc()

    async def _load_checkpoint(self) -> SyncState:
        try:
            return await self.store.get_checkpoint()
        except (StoreError, ConfigurationError, ValueError) as e:
            logger.warning("Could not load sync state, starting fresh: %s", e)
            return SyncState()

    async def _save_checkpoint(self, state: SyncState) -> None:
        try:
            await self.store.put_checkpoint(state)
        except StoreError as e:
            logger.error("Failed to save sync state: %s", e)


# Singleton used across the application
sync_orchestrator = SyncOrchestrator(rule_source, rule_store)
