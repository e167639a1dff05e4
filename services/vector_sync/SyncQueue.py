"""Queue handoff between sync triggers and the orchestrator.

Triggers (API calls, data updates) enqueue a request and return at once. A
single worker task drains the queue and runs one cycle at a time. While a
request of one kind is still waiting, further requests of the same kind are
folded into it.
"""

import asyncio

from services.vector_sync.SyncOrchestrator import SyncOrchestrator
from services.vector_sync.errors import ConcurrentCycleRejected, SourceUnavailable
from shared.helper.HelperConfig import HelperConfig
from shared.models.sync import SyncMode, SyncRunStats


class SyncQueue:
    def __init__(self, helper_config: HelperConfig, orchestrator: SyncOrchestrator) -> None:
        self.logging = helper_config.get_logger()
        self._orchestrator = orchestrator
        self._queue: asyncio.Queue[SyncMode] = asyncio.Queue()
        self._pending: set[SyncMode] = set()
        self._worker: asyncio.Task | None = None
        self.last_result: SyncRunStats | None = None
        self.completed_cycles = 0

    ##########################################
    ################ GETTER ##################
    ##########################################

    @property
    def pending(self) -> list[SyncMode]:
        return sorted(self._pending)

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    ##########################################
    ############### LIFECYCLE ################
    ##########################################

    def start(self) -> None:
        """Start the worker task. Must be called from within a running event loop."""
        if self.running:
            return
        self._worker = asyncio.create_task(self._run(), name="vector-sync-worker")
        self.logging.info("Sync queue worker started.")

    async def stop(self) -> None:
        """Cancel the worker. A cycle in progress is aborted, its committed batches stay committed."""
        if self._worker is None:
            return
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None
        self.logging.info("Sync queue worker stopped.")

    async def join(self) -> None:
        """Wait until every enqueued request has been processed."""
        await self._queue.join()

    ##########################################
    ################ ENQUEUE #################
    ##########################################

    def enqueue(self, mode: SyncMode = "incremental") -> bool:
        """Request a sync cycle without waiting for it.

        Args:
            mode (SyncMode): "incremental" or "full_rebuild".

        Returns:
            bool: True if a new request was queued, False if it was folded into a pending one.
        """
        if mode in self._pending:
            self.logging.debug("A %s sync is already pending, request coalesced.", mode)
            return False
        self._pending.add(mode)
        self._queue.put_nowait(mode)
        self.logging.info("Queued %s sync request (%d pending).", mode, len(self._pending))
        return True

    ##########################################
    ################ WORKER ##################
    ##########################################

    async def _run(self) -> None:
        while True:
            mode = await self._queue.get()
            # requests arriving from now on queue a fresh cycle
            self._pending.discard(mode)
            try:
                await self._execute(mode)
            finally:
                self._queue.task_done()

    async def _execute(self, mode: SyncMode) -> None:
        try:
            if mode == "full_rebuild":
                stats = await self._orchestrator.run_full_rebuild()
            else:
                stats = await self._orchestrator.run_incremental_sync()
        except ConcurrentCycleRejected:
            self.logging.warning("A cycle started outside the queue is still running, dropping queued %s request.", mode)
            return
        except SourceUnavailable as e:
            self.logging.error("Queued %s sync aborted: %s", mode, e)
            return
        except Exception as e:
            # keep the worker alive for the next request
            self.logging.exception("Queued %s sync crashed: %s", mode, e)
            return
        self.last_result = stats
        self.completed_cycles += 1
