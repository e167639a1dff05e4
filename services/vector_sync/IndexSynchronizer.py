"""Batched upserts and deletes against the vector index, with retry and backoff.

Successful chunks are committed into the change tracker item by item. Failed
chunks commit nothing, so their records are picked up again by the next cycle.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable

import httpx

from services.vector_sync.ChangeTracker import ChangeTracker
from services.vector_sync.ContentRenderer import identity_from_vector_id, vector_id
from services.vector_sync.errors import IndexBatchFailure
from shared.clients.ClientInterface import ClientRequestError
from shared.clients.rag.RAGClientInterface import RAGClientInterface
from shared.helper.HelperConfig import HelperConfig
from shared.models.sync import VectorDocument


def is_transient(exc: BaseException) -> bool:
    """Transport errors, timeouts, rate limiting and 5xx answers are worth another attempt."""
    if isinstance(exc, ClientRequestError):
        return exc.is_transient
    return isinstance(exc, (httpx.TransportError, asyncio.TimeoutError))


@dataclass
class IndexBatchResult:
    """Outcome of upsert_batch / delete_batch.

    Attributes:
        succeeded: Identities whose operation was confirmed and committed.
        failed:    Identities of chunks that failed for good.
        errors:    One description per failed chunk.
        calls:     Number of index requests made, retries included.
    """

    succeeded: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    calls: int = 0


class IndexSynchronizer:
    def __init__(
        self,
        helper_config: HelperConfig,
        index_client: RAGClientInterface,
        tracker: ChangeTracker,
        batch_size: int = 100,
        max_attempts: int = 3,
        retry_base_delay: float = 1.0,
        inter_batch_delay: float = 0.5,
        batch_timeout: float | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.logging = helper_config.get_logger()
        self._index_client = index_client
        self._tracker = tracker
        # never exceed what the index client accepts per call
        self.batch_size = max(1, min(batch_size, getattr(index_client, "max_batch_size", batch_size)))
        self.max_attempts = max_attempts
        self.retry_base_delay = retry_base_delay
        self.inter_batch_delay = inter_batch_delay
        self.batch_timeout = batch_timeout
        self._sleep = sleep
        self._last_call_done = False

    ##########################################
    ################ UPSERT ##################
    ##########################################

    async def upsert_batch(self, documents: list[VectorDocument], fingerprints: dict[str, str]) -> IndexBatchResult:
        """Upsert documents in chunks and commit every confirmed chunk.

        Args:
            documents (list[VectorDocument]): Documents to write.
            fingerprints (dict[str, str]): Fingerprint per record identity, committed on success.

        Returns:
            IndexBatchResult: Committed and failed identities.
        """
        result = IndexBatchResult()
        for chunk in self._chunks(documents):
            identities = [identity_from_vector_id(document.id) for document in chunk]
            if not await self._run_chunk("upsert", lambda: self._index_client.do_upsert_documents(chunk), identities, result):
                continue
            async with self._tracker.lock:
                for identity in identities:
                    self._tracker.commit(identity, fingerprints[identity])
                self._persist(result)
            result.succeeded.extend(identities)
        return result

    ##########################################
    ################ DELETE ##################
    ##########################################

    async def delete_batch(self, identities: list[str]) -> IndexBatchResult:
        """Delete the vectors of the given record identities and forget them in the tracker.

        Args:
            identities (list[str]): Record identities whose vectors should be removed.

        Returns:
            IndexBatchResult: Committed and failed identities.
        """
        result = IndexBatchResult()
        for chunk in self._chunks(identities):
            ids = [vector_id(identity) for identity in chunk]
            if not await self._run_chunk("delete", lambda: self._index_client.do_delete_documents(ids), list(chunk), result):
                continue
            async with self._tracker.lock:
                for identity in chunk:
                    self._tracker.commit_deletion(identity)
                self._persist(result)
            result.succeeded.extend(chunk)
        return result

    ##########################################
    ################ HELPER ##################
    ##########################################

    def _chunks(self, items: list) -> list[list]:
        return [items[i:i + self.batch_size] for i in range(0, len(items), self.batch_size)]

    async def _run_chunk(self, operation: str, call: Callable[[], Awaitable], identities: list[str], result: IndexBatchResult) -> bool:
        # rate limit between successive index calls of this synchronizer
        if self._last_call_done and self.inter_batch_delay > 0:
            await self._sleep(self.inter_batch_delay)
        try:
            result.calls += await self._with_retry(operation, call, identities)
            return True
        except IndexBatchFailure as e:
            result.calls += e.attempts
            result.failed.extend(identities)
            result.errors.append(str(e))
            return False
        finally:
            self._last_call_done = True

    async def _with_retry(self, operation: str, call: Callable[[], Awaitable], identities: list[str]) -> int:
        """Run one index call with exponential backoff.

        Returns:
            int: The number of attempts used.

        Raises:
            IndexBatchFailure: After a non transient error or when all attempts are exhausted.
        """
        last_exc: BaseException | None = None
        attempts = 0
        for attempt in range(self.max_attempts):
            attempts = attempt + 1
            try:
                if self.batch_timeout:
                    await asyncio.wait_for(call(), timeout=self.batch_timeout)
                else:
                    await call()
                return attempts
            except Exception as exc:
                last_exc = exc
                if not is_transient(exc):
                    self.logging.error("Index %s of %d items failed permanently: %s", operation, len(identities), exc)
                    break
                if attempt < self.max_attempts - 1:
                    delay = self.retry_base_delay * (2 ** attempt)
                    self.logging.warning(
                        "Index %s attempt %d/%d failed: %s. Retrying in %.2fs...",
                        operation, attempts, self.max_attempts, str(exc) or type(exc).__name__, delay,
                    )
                    await self._sleep(delay)

        description = f"{type(last_exc).__name__}: {last_exc}" if last_exc else "unknown error"
        raise IndexBatchFailure(
            f"{operation} of {len(identities)} items failed after {attempts} attempt(s): {description}",
            operation=operation,
            identities=identities,
            attempts=attempts,
        )

    def _persist(self, result: IndexBatchResult) -> None:
        # the cycle persists again at its end, a failed write here is not fatal
        try:
            self._tracker.persist()
        except OSError as e:
            self.logging.error("Could not persist change tracker: %s", e)
            result.errors.append(f"persist failed: {e}")
