"""Persisted change tracker.

Maps every order identity currently represented in the vector index to the
fingerprint it was indexed with. An identity enters the tracker only after its
vector was confirmed written, and leaves it only after its vector was
confirmed deleted.
"""

import asyncio
import json
import os
import tempfile
from datetime import datetime
from pathlib import Path

from pydantic import ValidationError

from services.vector_sync.errors import TrackerCorruption
from services.vector_sync.fingerprint import fingerprint
from shared.helper.HelperConfig import HelperConfig
from shared.models.order import Order
from shared.models.sync import SyncPartition, SyncRunStats, TrackerState, TrackerSummary


class ChangeTracker:
    """Single writer identity → fingerprint store backed by one JSON file."""

    def __init__(self, helper_config: HelperConfig, state_path: str | Path, history_limit: int = 50) -> None:
        self.logging = helper_config.get_logger()
        self._path = Path(state_path)
        self._history_limit = history_limit

        self._processed_ids: set[str] = set()
        self._fingerprints: dict[str, str] = {}
        self._deleted_ids: set[str] = set()
        self._last_sync_time: datetime | None = None
        self._last_full_rebuild_time: datetime | None = None
        self._history: list[SyncRunStats] = []

        # serialises commits of concurrently running batches
        self.lock = asyncio.Lock()

    ##########################################
    ################ GETTER ##################
    ##########################################

    @property
    def path(self) -> Path:
        return self._path

    @property
    def processed_ids(self) -> frozenset[str]:
        return frozenset(self._processed_ids)

    @property
    def fingerprints(self) -> dict[str, str]:
        return dict(self._fingerprints)

    @property
    def deleted_ids(self) -> frozenset[str]:
        return frozenset(self._deleted_ids)

    @property
    def history(self) -> list[SyncRunStats]:
        return list(self._history)

    @property
    def last_sync_time(self) -> datetime | None:
        return self._last_sync_time

    @property
    def last_full_rebuild_time(self) -> datetime | None:
        return self._last_full_rebuild_time

    def is_tracked(self, identity: str) -> bool:
        return identity in self._processed_ids

    def summary(self) -> TrackerSummary:
        """Counts and timestamps for health and status reporting."""
        return TrackerSummary(
            last_sync_time=self._last_sync_time,
            last_full_rebuild_time=self._last_full_rebuild_time,
            tracked_records=len(self._processed_ids),
            deleted_records=len(self._deleted_ids),
            history_length=len(self._history),
        )

    ##########################################
    ############### PARTITION ################
    ##########################################

    def partition(self, orders: list[Order], retained_ids: list[str] | None = None) -> SyncPartition:
        """Classify a full snapshot against the tracked state.

        An order is new if its identity is not tracked, updated if it is tracked
        under a different fingerprint and unchanged otherwise. Tracked identities
        missing from the snapshot are deleted, unless they are listed in
        retained_ids. If an identity occurs more than once in the snapshot, its
        last occurrence wins.

        Args:
            orders (list[Order]): The complete current set of orders.
            retained_ids (list[str] | None): Identities the source still holds but could not deliver as valid orders.

        Returns:
            SyncPartition: new, updated and unchanged orders, the deleted identities and the retained ones.
        """
        current: dict[str, Order] = {}
        for order in orders:
            if order.job_number in current:
                self.logging.warning("Duplicate identity %s in snapshot, keeping the last occurrence.", order.job_number)
            current[order.job_number] = order

        result = SyncPartition()
        for identity, order in current.items():
            if identity not in self._processed_ids:
                result.new.append(order)
            elif fingerprint(order) != self._fingerprints.get(identity):
                result.updated.append(order)
            else:
                result.unchanged.append(order)
        missing = self._processed_ids - current.keys()
        retained = missing & set(retained_ids or [])
        result.retained_ids = sorted(retained)
        result.deleted_ids = sorted(missing - retained)
        return result

    ##########################################
    ############### MUTATION #################
    ##########################################

    def commit(self, identity: str, content_fingerprint: str) -> None:
        """Mark an identity as indexed. Call only after the upsert was confirmed."""
        self._processed_ids.add(identity)
        self._fingerprints[identity] = content_fingerprint
        self._deleted_ids.discard(identity)

    def commit_deletion(self, identity: str) -> None:
        """Forget an identity. Call only after the delete was confirmed."""
        self._processed_ids.discard(identity)
        self._fingerprints.pop(identity, None)
        self._deleted_ids.add(identity)

    def reset(self, identities: set[str] | None = None) -> None:
        """Drop tracked identities ahead of a full rebuild. History and timestamps are kept.

        Args:
            identities (set[str] | None): Forget only these identities. All others stay
                tracked, so vectors not yet confirmed deleted are still found by the next
                partition. None forgets everything.
        """
        self._deleted_ids.clear()
        if identities is None:
            self._processed_ids.clear()
            self._fingerprints.clear()
            return
        for identity in identities:
            self._processed_ids.discard(identity)
            self._fingerprints.pop(identity, None)

    def mark_synced(self, at: datetime, full_rebuild: bool = False) -> None:
        self._last_sync_time = at
        if full_rebuild:
            self._last_full_rebuild_time = at

    def record_run(self, stats: SyncRunStats) -> None:
        """Append run statistics, keeping only the newest history_limit entries."""
        self._history.append(stats.model_copy(deep=True))
        if len(self._history) > self._history_limit:
            self._history = self._history[-self._history_limit:]

    ##########################################
    ############## PERSISTENCE ###############
    ##########################################

    def to_state(self) -> TrackerState:
        return TrackerState(
            last_sync_time=self._last_sync_time,
            last_full_rebuild_time=self._last_full_rebuild_time,
            processed_ids=sorted(self._processed_ids),
            fingerprints=dict(sorted(self._fingerprints.items())),
            deleted_ids=sorted(self._deleted_ids),
            history=list(self._history),
        )

    def persist(self) -> None:
        """Write the full tracker to disk.

        The document is written to a temporary file next to the target and moved
        into place with os.replace, so a crash never leaves a half written file.

        Raises:
            OSError: If the state directory is not writable.
        """
        self._path.parent.mkdir(parents=True, exist_ok=True)
        payload = self.to_state().model_dump_json(by_alias=True, indent=2)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{self._path.name}.", suffix=".tmp", dir=self._path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as tmp:
                tmp.write(payload)
                tmp.flush()
                os.fsync(tmp.fileno())
            os.replace(tmp_name, self._path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
        self.logging.debug("Persisted change tracker to %s (%d tracked).", self._path, len(self._processed_ids))

    def load(self) -> None:
        """Restore the tracker from disk.

        A missing file yields an empty tracker. An unreadable or malformed file is
        logged and also yields an empty tracker; it is never fatal.
        """
        if not self._path.exists():
            self.logging.info("No change tracker found at %s, starting with an empty state.", self._path)
            self._apply(TrackerState())
            return
        try:
            raw = self._path.read_text(encoding="utf-8")
            state = self._decode(raw)
        except (OSError, UnicodeDecodeError, TrackerCorruption) as e:
            self.logging.warning("Change tracker at %s is unreadable (%s), starting with an empty state.", self._path, e)
            self._apply(TrackerState())
            return
        self._apply(state)
        self.logging.info("Loaded change tracker from %s: %d tracked, %d runs in history.", self._path, len(self._processed_ids), len(self._history))

    def _decode(self, raw: str) -> TrackerState:
        """Parse a persisted tracker document.

        Invalid history entries are dropped individually; everything else must be valid.

        Raises:
            TrackerCorruption: If the document is not valid JSON or its core fields are invalid.
        """
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise TrackerCorruption(f"invalid JSON: {e}") from e
        if not isinstance(data, dict):
            raise TrackerCorruption("top level value is not an object")

        raw_history = data.pop("history", [])
        try:
            state = TrackerState.model_validate(data)
        except ValidationError as e:
            raise TrackerCorruption(f"invalid tracker fields: {e.error_count()} errors") from e

        history: list[SyncRunStats] = []
        for entry in raw_history if isinstance(raw_history, list) else []:
            try:
                history.append(SyncRunStats.model_validate(entry))
            except ValidationError:
                self.logging.warning("Dropping unreadable history entry from change tracker.")
        state.history = history[-self._history_limit:]
        return state

    def _apply(self, state: TrackerState) -> None:
        processed = set(state.processed_ids)
        fingerprints = dict(state.fingerprints)
        if processed != fingerprints.keys():
            self.logging.warning(
                "Change tracker ids and fingerprints disagree (%d vs %d), repairing.",
                len(processed), len(fingerprints),
            )
            # an empty fingerprint never matches, so these records are re-indexed next cycle
            for identity in processed - fingerprints.keys():
                fingerprints[identity] = ""
            processed |= fingerprints.keys()
        self._processed_ids = processed
        self._fingerprints = fingerprints
        self._deleted_ids = set(state.deleted_ids) - processed
        self._last_sync_time = state.last_sync_time
        self._last_full_rebuild_time = state.last_full_rebuild_time
        self._history = list(state.history)
