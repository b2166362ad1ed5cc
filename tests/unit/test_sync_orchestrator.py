"""
Unit tests for the sync orchestrator.

Runs against in-memory fakes of the rule source and store; pacing delays are
recorded instead of slept.
"""

import asyncio

import pytest

from api.models.sync import FileOutcome, RunStatus, SyncState
from api.services.errors import (
    ConcurrentRunError,
    ConfigurationError,
    EmptyResultError,
)
from api.services.github_source import RuleFile
from api.services.indexer import index_rule_file
from api.services.sync_orchestrator import SyncOrchestrator
from helpers import FakeRuleSource, FakeRuleStore, rule_files, rule_toml


def make_orchestrator(source, store, fake_sleep, batch_size=5, batch_delay=2.0):
    return SyncOrchestrator(source, store, batch_size=batch_size, batch_delay=batch_delay, sleep=fake_sleep)


# ============================================================
# Batching
# ============================================================

@pytest.mark.unit
class TestBatching:

    @pytest.mark.asyncio
    async def test_twelve_files_three_batches(self, fake_source, fake_store, fake_sleep, sleep_calls):
        orchestrator = make_orchestrator(fake_source, fake_store, fake_sleep)

        stats = await orchestrator.run()

        assert stats.status == RunStatus.COMPLETED
        assert stats.total_files == 12
        assert stats.processed == 12
        assert stats.indexed == 12
        assert sleep_calls == [2.0, 2.0]

    @pytest.mark.asyncio
    async def test_concurrency_bounded_by_batch_size(self, fake_source, fake_store, fake_sleep):
        orchestrator = make_orchestrator(fake_source, fake_store, fake_sleep)

        await orchestrator.run()

        assert 1 <= fake_source.max_in_flight <= 5

    @pytest.mark.asyncio
    async def test_batches_follow_enumeration_order(self, fake_source, fake_store, fake_sleep):
        orchestrator = make_orchestrator(fake_source, fake_store, fake_sleep)

        await orchestrator.run()

        names = list(fake_source.files)
        events = fake_source.events
        assert set(events[:5]) == set(names[:5])
        assert set(events[5:10]) == set(names[5:10])
        assert set(events[10:]) == set(names[10:])

    @pytest.mark.asyncio
    async def test_single_batch_does_not_sleep(self, fake_store, fake_sleep, sleep_calls):
        source = FakeRuleSource(rule_files(5))
        orchestrator = make_orchestrator(source, fake_store, fake_sleep)

        await orchestrator.run()

        assert sleep_calls == []

    @pytest.mark.asyncio
    async def test_fetch_failures_still_counted(self, twelve_rule_files, fake_store, fake_sleep, sleep_calls):
        source = FakeRuleSource(twelve_rule_files, fail_fetch={"rule_03.toml", "rule_07.toml"})
        orchestrator = make_orchestrator(source, fake_store, fake_sleep)

        stats = await orchestrator.run()

        assert stats.processed == 12
        assert stats.errors == 2
        assert stats.indexed == 10
        assert sleep_calls == [2.0, 2.0]

    @pytest.mark.asyncio
    async def test_counters_add_up(self, fake_sleep):
        files = rule_files(6)
        files["broken.toml"] = rule_toml(name=None)
        source = FakeRuleSource(files, fail_fetch={"rule_01.toml"})
        store = FakeRuleStore(fail_upsert={"rule_02"})
        orchestrator = make_orchestrator(source, store, fake_sleep)

        stats = await orchestrator.run()

        assert stats.processed == 7
        assert stats.indexed + stats.updated + stats.skipped + stats.errors == stats.processed
        assert stats.skipped == 1
        assert stats.errors == 2


# ============================================================
# Idempotence and Checkpoints
# ============================================================

@pytest.mark.unit
class TestIdempotence:

    @pytest.mark.asyncio
    async def test_second_run_updates_same_documents(self, fake_source, fake_store, fake_sleep):
        orchestrator = make_orchestrator(fake_source, fake_store, fake_sleep)

        first = await orchestrator.run()
        documents = set(fake_store.documents)
        second = await orchestrator.run()

        assert first.indexed == 12
        assert second.indexed == 0
        assert second.updated == 12
        assert set(fake_store.documents) == documents
        assert len(documents) == 12

    @pytest.mark.asyncio
    async def test_checkpoint_written_after_refresh(self, fake_source, fake_store, fake_sleep):
        orchestrator = make_orchestrator(fake_source, fake_store, fake_sleep)

        await orchestrator.run()

        assert fake_store.refreshes == 1
        assert fake_store.checkpoint_writes == 1
        assert fake_store.checkpoint.last_marker == "0123abcd"
        assert fake_store.checkpoint.last_sync_time is not None

    @pytest.mark.asyncio
    async def test_previous_marker_reported(self, fake_source, fake_store, fake_sleep):
        fake_store.checkpoint = SyncState(last_marker="old-sha")
        orchestrator = make_orchestrator(fake_source, fake_store, fake_sleep)

        stats = await orchestrator.run(force=True)

        assert stats.previous_marker == "old-sha"
        assert stats.marker == "0123abcd"
        assert stats.force is True

    @pytest.mark.asyncio
    async def test_unchanged_marker_still_processes(self, fake_source, fake_store, fake_sleep):
        fake_store.checkpoint = SyncState(last_marker="0123abcd")
        orchestrator = make_orchestrator(fake_source, fake_store, fake_sleep)

        stats = await orchestrator.run()

        assert stats.processed == 12

    @pytest.mark.asyncio
    async def test_checkpoint_read_failure_tolerated(self, fake_source, fake_sleep):
        store = FakeRuleStore(fail_checkpoint_read=True)
        orchestrator = make_orchestrator(fake_source, store, fake_sleep)

        stats = await orchestrator.run()

        assert stats.status == RunStatus.COMPLETED
        assert stats.previous_marker is None


# ============================================================
# Fatal Errors
# ============================================================

@pytest.mark.unit
class TestFatalErrors:

    @pytest.mark.asyncio
    async def test_empty_enumeration(self, fake_store, fake_sleep):
        orchestrator = make_orchestrator(FakeRuleSource({}), fake_store, fake_sleep)

        with pytest.raises(EmptyResultError, match="No rule files found"):
            await orchestrator.run()

        assert fake_store.checkpoint_writes == 0
        assert orchestrator.last_result.status == RunStatus.FAILED
        assert "No rule files found" in orchestrator.last_result.error
        assert orchestrator.is_running is False

    @pytest.mark.asyncio
    async def test_store_not_configured(self, fake_source, fake_sleep):
        store = FakeRuleStore(configured=False)
        orchestrator = make_orchestrator(fake_source, store, fake_sleep)

        with pytest.raises(ConfigurationError):
            await orchestrator.run()

        assert store.schema_calls == 0
        assert fake_source.events == []

    @pytest.mark.asyncio
    async def test_schema_failure(self, fake_source, fake_sleep):
        store = FakeRuleStore(fail_schema=True)
        orchestrator = make_orchestrator(fake_source, store, fake_sleep)

        with pytest.raises(ConfigurationError, match="Cannot create indices"):
            await orchestrator.run()

        assert fake_source.events == []
        assert store.checkpoint_writes == 0

    @pytest.mark.asyncio
    async def test_slot_released_after_failure(self, fake_source, fake_sleep):
        store = FakeRuleStore(fail_schema=True)
        orchestrator = make_orchestrator(fake_source, store, fake_sleep)

        with pytest.raises(ConfigurationError):
            await orchestrator.run()
        store.fail_schema = False
        stats = await orchestrator.run()

        assert stats.status == RunStatus.COMPLETED


# ============================================================
# Concurrency Guard
# ============================================================

@pytest.mark.unit
class TestConcurrencyGuard:

    @pytest.mark.asyncio
    async def test_second_start_rejected(self, twelve_rule_files, fake_store, fake_sleep):
        gate = asyncio.Event()
        source = FakeRuleSource(twelve_rule_files, gate=gate)
        orchestrator = make_orchestrator(source, fake_store, fake_sleep)

        running = orchestrator.start()
        await asyncio.sleep(0.01)
        assert orchestrator.is_running

        with pytest.raises(ConcurrentRunError) as exc_info:
            orchestrator.start(force=True)
        assert exc_info.value.progress == "0/12"
        assert orchestrator.current_run is running
        assert running.force is False

        gate.set()
        await orchestrator.wait_idle()

        assert orchestrator.is_running is False
        assert orchestrator.last_result.processed == 12
        assert orchestrator.last_result.status == RunStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_run_rejected_while_background_run_active(self, twelve_rule_files, fake_store, fake_sleep):
        gate = asyncio.Event()
        orchestrator = make_orchestrator(FakeRuleSource(twelve_rule_files, gate=gate), fake_store, fake_sleep)

        orchestrator.start()
        with pytest.raises(ConcurrentRunError):
            await orchestrator.run()

        gate.set()
        await orchestrator.wait_idle()

    @pytest.mark.asyncio
    async def test_wait_idle_without_runs(self, fake_source, fake_store, fake_sleep):
        orchestrator = make_orchestrator(fake_source, fake_store, fake_sleep)
        await orchestrator.wait_idle()
        assert orchestrator.last_result is None


# ============================================================
# Per-file Indexing
# ============================================================

@pytest.mark.unit
class TestIndexRuleFile:

    @pytest.fixture
    def rule_file(self):
        return RuleFile(name="rule_00.toml", path="rules/rule_00.toml", download_url="https://raw.example.test/x")

    @pytest.mark.asyncio
    async def test_new_rule_indexed(self, rule_file):
        store = FakeRuleStore()
        outcome = await index_rule_file(rule_file, FakeRuleSource(rule_files(1)), store)

        assert outcome == FileOutcome.INDEXED
        assert store.documents["rule_00"]["name"] == "Rule 0"

    @pytest.mark.asyncio
    async def test_existing_rule_updated(self, rule_file):
        store = FakeRuleStore()
        store.documents["rule_00"] = {}
        outcome = await index_rule_file(rule_file, FakeRuleSource(rule_files(1)), store)

        assert outcome == FileOutcome.UPDATED

    @pytest.mark.asyncio
    async def test_existence_check_failure_counts_as_new(self, rule_file):
        store = FakeRuleStore(fail_exists=True)
        outcome = await index_rule_file(rule_file, FakeRuleSource(rule_files(1)), store)

        assert outcome == FileOutcome.INDEXED
        assert "rule_00" in store.documents

    @pytest.mark.asyncio
    async def test_upsert_failure_is_error(self, rule_file):
        store = FakeRuleStore(fail_upsert={"rule_00"})
        outcome = await index_rule_file(rule_file, FakeRuleSource(rule_files(1)), store)

        assert outcome == FileOutcome.ERROR
        assert store.documents == {}

    @pytest.mark.asyncio
    async def test_rejected_rule_skipped(self, rule_file):
        store = FakeRuleStore()
        source = FakeRuleSource({"rule_00.toml": rule_toml(query=None)})
        outcome = await index_rule_file(rule_file, source, store)

        assert outcome == FileOutcome.SKIPPED
        assert store.documents == {}

    @pytest.mark.asyncio
    async def test_fetch_failure_is_error(self, rule_file):
        source = FakeRuleSource(rule_files(1), fail_fetch={"rule_00.toml"})
        outcome = await index_rule_file(rule_file, source, FakeRuleStore())

        assert outcome == FileOutcome.ERROR
