"""Pydantic models for sync runs and checkpoints."""

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class FileOutcome(str, Enum):
    """How a single rule file ended up after fetch, parse and upsert."""

    INDEXED = "indexed"
    UPDATED = "updated"
    SKIPPED = "skipped"
    ERROR = "error"


class RunStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class SyncState(BaseModel):
    """Checkpoint persisted between runs."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    last_marker: str | None = Field(default=None, description="Source revision synced last")
    last_sync_time: str | None = Field(default=None, description="ISO-8601 time of the last sync")

    def to_document(self) -> dict:
        """Checkpoint document shape: lastMarker, lastSyncTime, updatedAt."""
        doc = self.model_dump(by_alias=True)
        doc["updatedAt"] = datetime.now(timezone.utc).isoformat()
        return doc


class SyncStats(BaseModel):
    """Counters for one sync run."""

    total_files: int = 0
    processed: int = 0
    indexed: int = 0
    updated: int = 0
    skipped: int = 0
    errors: int = 0
    start_time: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    end_time: datetime | None = None
    marker: str | None = Field(default=None, description="Source revision being synced")
    previous_marker: str | None = None
    force: bool = False
    status: RunStatus = RunStatus.RUNNING
    error: str | None = None

    @property
    def progress(self) -> str:
        return f"{self.processed}/{self.total_files}"

    def record(self, outcome: FileOutcome) -> None:
        """Count one processed file."""
        self.processed += 1
        if outcome is FileOutcome.INDEXED:
            self.indexed += 1
        elif outcome is FileOutcome.UPDATED:
            self.updated += 1
        elif outcome is FileOutcome.SKIPPED:
            self.skipped += 1
        else:
            self.errors += 1

    def finish(self, status: RunStatus, error: str | None = None) -> "SyncStats":
        """Stamp the end of the run and return a frozen copy for reporting."""
        self.status = status
        self.error = error
        self.end_time = datetime.now(timezone.utc)
        return self.model_copy()


class SyncRequest(BaseModel):
    """Body of POST /sync."""

    force: bool = Field(default=False, description="Label the run as a full sync")


class SyncStarted(BaseModel):
    success: bool
    message: str
    timestamp: datetime


class CurrentSync(BaseModel):
    """Progress of the run in flight, if any."""

    running: bool = False
    progress: str | None = None
    processed: int | None = None
    total: int | None = None
    errors: int | None = None
    start_time: datetime | None = None

    @classmethod
    def from_stats(cls, stats: "SyncStats | None") -> "CurrentSync":
        if stats is None:
            return cls()
        return cls(
            running=True,
            progress=stats.progress,
            processed=stats.processed,
            total=stats.total_files,
            errors=stats.errors,
            start_time=stats.start_time,
        )


class SyncStatus(BaseModel):
    """Response of GET /sync/status."""

    last_sync: SyncStats | None = None
    current_sync: CurrentSync
    sync_state: SyncState
