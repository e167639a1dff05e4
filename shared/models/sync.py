"""Pydantic models shared by the vector sync engine, its API and its runner.

  VectorDocument: the unit written to the vector index.
  SyncRunStats: outcome of one sync cycle.
  TrackerState: persisted document of the change tracker.
  HealthReport: combined tracker / provider health.
"""

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from shared.models.order import Order

ScalarValue = str | int | float | bool

SyncMode = Literal["incremental", "full_rebuild"]
SyncStatus = Literal["running", "succeeded", "partial", "failed", "skipped"]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class VectorDocument(BaseModel):
    """A single vector with its flat metadata.

    Attributes:
        id:        Deterministic id derived from the record identity ("job-<identity>").
        embedding: The embedding vector.
        metadata:  Scalar-only metadata, as required by the index providers.
    """

    id: str
    embedding: list[float]
    metadata: dict[str, ScalarValue] = {}


class SyncPartition(BaseModel):
    """Classification of a full snapshot against the tracked state.

    retained_ids are tracked identities the source still lists but delivered
    as invalid records. Their vectors are left untouched.
    """

    new: list[Order] = []
    updated: list[Order] = []
    unchanged: list[Order] = []
    deleted_ids: list[str] = []
    retained_ids: list[str] = []

    @property
    def change_count(self) -> int:
        return len(self.new) + len(self.updated) + len(self.deleted_ids)


class SyncRunStats(BaseModel):
    """Statistics of one sync cycle.

    A cycle never raises on item or batch failures; it reports them in
    ``errors`` and sets ``status`` to "partial" instead.
    """

    run_id: str
    mode: SyncMode = "incremental"
    status: SyncStatus = "running"
    started_at: datetime = Field(default_factory=utc_now)
    finished_at: datetime | None = None
    elapsed_seconds: float = 0.0

    total_records: int = 0
    new_vectors: int = 0
    updated_vectors: int = 0
    deleted_vectors: int = 0
    unchanged_vectors: int = 0

    embedding_calls: int = 0
    index_calls: int = 0
    estimated_tokens: int = 0
    throughput_per_second: float = 0.0

    errors: list[str] = []

    @property
    def changed_vectors(self) -> int:
        return self.new_vectors + self.updated_vectors + self.deleted_vectors


class TrackerState(BaseModel):
    """Persisted layout of the change tracker.

    Serialised with camelCase keys (``processedIds``, ``fingerprints``, ...).
    """

    model_config = ConfigDict(populate_by_name=True)

    last_sync_time: datetime | None = Field(default=None, alias="lastSyncTime")
    last_full_rebuild_time: datetime | None = Field(default=None, alias="lastFullRebuildTime")
    processed_ids: list[str] = Field(default=[], alias="processedIds")
    fingerprints: dict[str, str] = {}
    deleted_ids: list[str] = Field(default=[], alias="deletedIds")
    history: list[SyncRunStats] = []


class TrackerSummary(BaseModel):
    last_sync_time: datetime | None = None
    last_full_rebuild_time: datetime | None = None
    tracked_records: int = 0
    deleted_records: int = 0
    history_length: int = 0


class ProviderHealth(BaseModel):
    """Reachability of one external provider."""

    engine: str
    reachable: bool
    error: str | None = None
    details: dict = {}


class HealthReport(BaseModel):
    healthy: bool
    tracker_summary: TrackerSummary
    source: ProviderHealth
    embedding: ProviderHealth
    index: ProviderHealth
    checked_at: datetime = Field(default_factory=utc_now)


class SyncStatusReport(BaseModel):
    """Current orchestrator state plus recent history, for the status endpoint and CLI."""

    state: str
    cycle_running: bool
    tracker_summary: TrackerSummary
    recent_runs: list[SyncRunStats] = []
