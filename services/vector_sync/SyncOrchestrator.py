"""Sync orchestrator.

Drives one synchronisation cycle end to end: pull a full order snapshot,
partition it against the change tracker, embed new and updated orders,
upsert their vectors, delete vectors of vanished orders and persist the
tracker. Only one cycle runs at a time.
"""

import asyncio
import time
import uuid
from enum import Enum

from services.vector_sync.ChangeTracker import ChangeTracker
from services.vector_sync.ContentRenderer import ContentRenderer
from services.vector_sync.EmbeddingBatcher import EmbeddingBatcher
from services.vector_sync.IndexSynchronizer import IndexSynchronizer
from services.vector_sync.errors import ConcurrentCycleRejected, EmbeddingItemFailure, SourceUnavailable
from services.vector_sync.fingerprint import fingerprint
from shared.clients.ClientInterface import ClientInterface
from shared.clients.embed.EmbedClientInterface import EmbedClientInterface
from shared.clients.rag.RAGClientInterface import RAGClientInterface
from shared.clients.source.SourceClientInterface import SourceClientInterface
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import SyncSettings
from shared.models.order import Order
from shared.models.sync import (
    HealthReport,
    ProviderHealth,
    SyncMode,
    SyncPartition,
    SyncRunStats,
    SyncStatusReport,
    utc_now,
)


class SyncState(str, Enum):
    IDLE = "idle"
    FETCHING_SNAPSHOT = "fetching_snapshot"
    PARTITIONING = "partitioning"
    EMBEDDING = "embedding"
    UPSERTING = "upserting"
    DELETING = "deleting"
    PERSISTING = "persisting"
    FAILED = "failed"


class SyncOrchestrator:
    """Runs incremental syncs and full rebuilds against injected source, embedding and index clients.

    Args:
        helper_config (HelperConfig): Provides the logger.
        settings (SyncSettings): Batch sizes, timeouts and retry policy.
        source_client (SourceClientInterface): Delivers the full order snapshot.
        embed_client (EmbedClientInterface): Turns texts into vectors.
        index_client (RAGClientInterface): The vector index.
        tracker (ChangeTracker | None): Defaults to a tracker at settings.state_path.
        renderer (ContentRenderer | None): Defaults to a renderer with settings.max_text_chars.
    """

    def __init__(
        self,
        helper_config: HelperConfig,
        settings: SyncSettings,
        source_client: SourceClientInterface,
        embed_client: EmbedClientInterface,
        index_client: RAGClientInterface,
        tracker: ChangeTracker | None = None,
        renderer: ContentRenderer | None = None,
        sleep=asyncio.sleep,
    ) -> None:
        self.logging = helper_config.get_logger()
        self.settings = settings
        self._source_client = source_client
        self._embed_client = embed_client
        self._index_client = index_client

        self.tracker = tracker or ChangeTracker(helper_config, settings.state_path, history_limit=settings.history_limit)
        self.renderer = renderer or ContentRenderer(max_text_chars=settings.max_text_chars)
        self.batcher = EmbeddingBatcher(
            helper_config,
            embed_client,
            batch_size=settings.embed_batch_size,
            call_timeout=settings.batch_timeout,
        )
        self.synchronizer = IndexSynchronizer(
            helper_config,
            index_client,
            self.tracker,
            batch_size=settings.index_batch_size,
            max_attempts=settings.max_attempts,
            retry_base_delay=settings.retry_base_delay,
            inter_batch_delay=settings.inter_batch_delay,
            batch_timeout=settings.batch_timeout,
            sleep=sleep,
        )

        self.state = SyncState.IDLE
        self._batches_embedding = 0
        self._cycle_lock = asyncio.Lock()
        self._loaded = False

    ##########################################
    ################ GETTER ##################
    ##########################################

    @property
    def cycle_running(self) -> bool:
        return self._cycle_lock.locked()

    @property
    def clients(self) -> list[ClientInterface]:
        return [self._source_client, self._embed_client, self._index_client]

    async def prepare_index(self) -> None:
        """Create the index collection if the backend needs one, sized by the embedding model."""
        vector_size, distance = await self._embed_client.do_fetch_embedding_vector_size()
        await self._index_client.do_ensure_collection(vector_size, distance)

    def load_state(self) -> None:
        """Load the persisted tracker. Called lazily by the first cycle when not called before."""
        self.tracker.load()
        self._loaded = True

    def get_status(self, recent: int = 10) -> SyncStatusReport:
        """Current state, tracker summary and the most recent run statistics."""
        if not self._loaded:
            self.load_state()
        history = self.tracker.history
        return SyncStatusReport(
            state=self.state.value,
            cycle_running=self.cycle_running,
            tracker_summary=self.tracker.summary(),
            recent_runs=history[-recent:] if recent > 0 else [],
        )

    async def get_health(self) -> HealthReport:
        """Check reachability of all three providers and summarise the tracker."""
        if not self._loaded:
            self.load_state()
        source, embedding, index = await asyncio.gather(
            self._check_provider(self._source_client),
            self._check_provider(self._embed_client),
            self._check_provider(self._index_client, with_stats=True),
        )
        return HealthReport(
            healthy=source.reachable and embedding.reachable and index.reachable,
            tracker_summary=self.tracker.summary(),
            source=source,
            embedding=embedding,
            index=index,
        )

    async def _check_provider(self, client: ClientInterface, with_stats: bool = False) -> ProviderHealth:
        engine = client.get_engine_name()
        try:
            await asyncio.wait_for(client.do_healthcheck(), timeout=self.settings.batch_timeout)
        except Exception as e:
            self.logging.warning("Health check of %s failed: %s", engine, e)
            return ProviderHealth(engine=engine, reachable=False, error=str(e) or type(e).__name__)
        details = {}
        if with_stats:
            try:
                details = await asyncio.wait_for(client.do_describe_stats(), timeout=self.settings.batch_timeout)
            except Exception as e:
                self.logging.warning("Could not read index statistics from %s: %s", engine, e)
                details = {"stats_error": str(e) or type(e).__name__}
        return ProviderHealth(engine=engine, reachable=True, details=details)

    ##########################################
    ############### CORE SYNC ################
    ##########################################

    async def run_incremental_sync(self) -> SyncRunStats:
        """Bring the index in line with the current snapshot, touching only changed orders.

        Returns:
            SyncRunStats: Statistics of the cycle. Partial failures are reported in errors.

        Raises:
            ConcurrentCycleRejected: If another cycle is running.
            SourceUnavailable: If the snapshot could not be fetched.
        """
        return await self._run_cycle("incremental")

    async def run_full_rebuild(self) -> SyncRunStats:
        """Forget all tracked state and index every current order as new.

        Raises:
            ConcurrentCycleRejected: If another cycle is running.
            SourceUnavailable: If the snapshot could not be fetched.
        """
        return await self._run_cycle("full_rebuild")

    async def _run_cycle(self, mode: SyncMode) -> SyncRunStats:
        if self._cycle_lock.locked():
            raise ConcurrentCycleRejected(f"A sync cycle is already running, {mode} request rejected.")

        async with self._cycle_lock:
            if not self._loaded:
                self.load_state()

            stats = SyncRunStats(run_id=uuid.uuid4().hex, mode=mode)
            started = time.monotonic()
            self.logging.info("Starting %s sync cycle %s...", mode, stats.run_id)

            try:
                await asyncio.wait_for(self._execute(mode, stats), timeout=self.settings.cycle_timeout)
            except SourceUnavailable as e:
                stats.status = "failed"
                stats.errors.append(str(e))
                self._finish(stats, started)
                raise
            except asyncio.TimeoutError:
                self.logging.error("Sync cycle %s exceeded %ss, remaining batches aborted.", stats.run_id, self.settings.cycle_timeout)
                stats.errors.append(f"cycle timed out after {self.settings.cycle_timeout}s")
            except Exception as e:
                self.logging.error("Sync cycle %s failed unexpectedly: %s", stats.run_id, e)
                stats.status = "failed"
                stats.errors.append(f"{type(e).__name__}: {e}")
                self._finish(stats, started)
                raise

            self._finish(stats, started)
            return stats

    async def _execute(self, mode: SyncMode, stats: SyncRunStats) -> None:
        self.state = SyncState.FETCHING_SNAPSHOT
        orders = await self._fetch_snapshot()
        skipped_ids = list(self._source_client.skipped_identities)
        stats.total_records = len(orders) + len(skipped_ids)

        if mode == "full_rebuild":
            await self._prepare_rebuild(orders, stats)

        self.state = SyncState.PARTITIONING
        partition = self.tracker.partition(orders, retained_ids=skipped_ids)
        stats.unchanged_vectors = len(partition.unchanged) + len(partition.retained_ids)
        self.logging.info(
            "Partitioned %d orders: %d new, %d updated, %d unchanged, %d deleted.",
            len(orders), len(partition.new), len(partition.updated), len(partition.unchanged), len(partition.deleted_ids),
        )
        if partition.retained_ids:
            self.logging.warning("Keeping %d indexed orders the source delivered as invalid records: %s", len(partition.retained_ids), ", ".join(partition.retained_ids[:10]))

        if mode == "incremental" and self._is_insignificant(partition):
            stats.status = "skipped"
            self.logging.info("Change count %d is below the configured thresholds, skipping cycle.", partition.change_count)
            return

        await self._process_changes(partition, stats)

        if partition.deleted_ids:
            self.state = SyncState.DELETING
            result = await self.synchronizer.delete_batch(partition.deleted_ids)
            stats.index_calls += result.calls
            stats.deleted_vectors += len(result.succeeded)
            stats.errors.extend(result.errors)

    async def _fetch_snapshot(self) -> list[Order]:
        try:
            orders = await self._source_client.do_fetch_all()
        except Exception as e:
            self.logging.error("Fetching the order snapshot failed: %s", e)
            raise SourceUnavailable(f"Order source unavailable: {type(e).__name__}: {e}") from e
        self.logging.info("Fetched %d orders from %s.", len(orders), self._source_client.get_engine_name())
        return orders

    async def _prepare_rebuild(self, orders: list[Order], stats: SyncRunStats) -> None:
        """Reset the tracker for a full rebuild and optionally clear the index.

        Only identities present in the snapshot are forgotten. Identities that
        left the snapshot stay tracked, so the partition reports them as deleted
        and a failed delete is retried by the next cycle.
        """
        if self.settings.clear_index_on_rebuild and await self._clear_index(stats):
            async with self.tracker.lock:
                self.tracker.reset()
            return
        async with self.tracker.lock:
            self.tracker.reset({order.job_number for order in orders})

    async def _clear_index(self, stats: SyncRunStats) -> bool:
        stats.index_calls += 1
        try:
            await self._index_client.do_delete_all()
        except Exception as e:
            self.logging.error("Clearing the vector index failed: %s", e)
            stats.errors.append(f"clear index failed: {type(e).__name__}: {e}")
            return False
        self.logging.info("Cleared vector index before full rebuild.")
        return True

    def _is_insignificant(self, partition: SyncPartition) -> bool:
        ratio, count = self.settings.min_change_ratio, self.settings.min_change_count
        if ratio <= 0 and count <= 0:
            return False
        changes = partition.change_count
        present = len(partition.new) + len(partition.updated) + len(partition.unchanged) + len(partition.retained_ids)
        population = max(present, len(self.tracker.processed_ids), 1)
        below_ratio = ratio <= 0 or changes / population < ratio
        below_count = count <= 0 or changes < count
        return below_ratio and below_count

    ##########################################
    ############### WORK BATCHES #############
    ##########################################

    async def _process_changes(self, partition: SyncPartition, stats: SyncRunStats) -> None:
        work = partition.new + partition.updated
        if not work:
            return
        new_ids = {order.job_number for order in partition.new}
        batch_size = self.synchronizer.batch_size
        batches = [work[i:i + batch_size] for i in range(0, len(work), batch_size)]

        sem = asyncio.Semaphore(max(1, self.settings.concurrency))
        # the cycle reports EMBEDDING until the last batch has its vectors, then UPSERTING
        self.state = SyncState.EMBEDDING
        self._batches_embedding = len(batches)
        tasks = [asyncio.ensure_future(self._process_work_batch(batch, new_ids, stats, sem)) for batch in batches]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    async def _process_work_batch(self, orders: list[Order], new_ids: set[str], stats: SyncRunStats, sem: asyncio.Semaphore) -> None:
        async with sem:
            texts = [self.renderer.to_embedding_text(order) for order in orders]
            stats.estimated_tokens += sum(self.renderer.estimate_tokens(text) for text in texts)

            embedded = await self.batcher.embed_batch(texts)
            self._batches_embedding -= 1
            if self._batches_embedding == 0:
                self.state = SyncState.UPSERTING
            stats.embedding_calls += embedded.calls
            for position, error in embedded.errors:
                failure = EmbeddingItemFailure(f"embedding failed for {orders[position].job_number}: {error}", identity=orders[position].job_number)
                stats.errors.append(str(failure))

            documents = []
            fingerprints: dict[str, str] = {}
            for position, vector in sorted(embedded.vectors.items()):
                order = orders[position]
                content_fingerprint = fingerprint(order)
                fingerprints[order.job_number] = content_fingerprint
                documents.append(self.renderer.to_vector_document(order, vector, content_fingerprint=content_fingerprint))
            if not documents:
                return

            result = await self.synchronizer.upsert_batch(documents, fingerprints)
            stats.index_calls += result.calls
            stats.errors.extend(result.errors)
            for identity in result.succeeded:
                if identity in new_ids:
                    stats.new_vectors += 1
                else:
                    stats.updated_vectors += 1

    ##########################################
    ################ FINISH ##################
    ##########################################

    def _finish(self, stats: SyncRunStats, started: float) -> None:
        """Close the statistics, record them and persist the tracker."""
        self.state = SyncState.PERSISTING
        stats.finished_at = utc_now()
        stats.elapsed_seconds = round(time.monotonic() - started, 3)
        if stats.status == "running":
            stats.status = "partial" if stats.errors else "succeeded"
        processed = stats.new_vectors + stats.updated_vectors
        stats.throughput_per_second = round(processed / stats.elapsed_seconds, 2) if stats.elapsed_seconds > 0 else 0.0

        if stats.status != "failed":
            self.tracker.mark_synced(stats.finished_at, full_rebuild=stats.mode == "full_rebuild")
        self.tracker.record_run(stats)
        try:
            self.tracker.persist()
        except OSError as e:
            self.logging.error("Could not persist change tracker after cycle %s: %s", stats.run_id, e)
            stats.errors.append(f"persist failed: {e}")

        self.state = SyncState.FAILED if stats.status == "failed" else SyncState.IDLE
        log = self.logging.warning if stats.errors else self.logging.info
        log(
            "Sync cycle %s %s in %.2fs: %d new, %d updated, %d deleted, %d unchanged, %d errors.",
            stats.run_id, stats.status, stats.elapsed_seconds, stats.new_vectors, stats.updated_vectors,
            stats.deleted_vectors, stats.unchanged_vectors, len(stats.errors),
        )
