"""Embedding of rendered texts in bounded batches with per-item failure isolation."""

import asyncio
from dataclasses import dataclass, field

from shared.clients.embed.EmbedClientInterface import EmbedClientInterface
from shared.helper.HelperConfig import HelperConfig


@dataclass
class EmbeddingBatchResult:
    """Outcome of embed_batch.

    Attributes:
        vectors: Successful vectors keyed by the position of their text in the input.
        errors:  (position, error description) for every text that could not be embedded.
        calls:   Number of provider calls made.
    """

    vectors: dict[int, list[float]] = field(default_factory=dict)
    errors: list[tuple[int, str]] = field(default_factory=list)
    calls: int = 0


class EmbeddingBatcher:
    """Stateless adapter between rendered texts and the embedding provider.

    Each chunk of batch_size texts is sent as one provider call. When that call
    fails or returns the wrong number of vectors, the chunk is retried once per
    item, so a single bad text only costs itself. There is no retry beyond that.

    Args:
        helper_config (HelperConfig): Provides the logger.
        embed_client (EmbedClientInterface): A booted embedding client.
        batch_size (int): Texts per provider call.
        call_timeout (float | None): Upper bound for a single provider call, in seconds.
    """

    def __init__(
        self,
        helper_config: HelperConfig,
        embed_client: EmbedClientInterface,
        batch_size: int = 10,
        call_timeout: float | None = None,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.logging = helper_config.get_logger()
        self._embed_client = embed_client
        self.batch_size = batch_size
        self.call_timeout = call_timeout

    ##########################################
    ################ EMBED ###################
    ##########################################

    async def embed_batch(self, texts: list[str]) -> EmbeddingBatchResult:
        """Embed an ordered list of texts.

        Args:
            texts (list[str]): Texts to embed. Empty or whitespace only texts fail without a provider call.

        Returns:
            EmbeddingBatchResult: Vectors aligned to their input position, plus per-item errors.
        """
        result = EmbeddingBatchResult()

        positions: list[int] = []
        for position, text in enumerate(texts):
            if not text or not text.strip():
                result.errors.append((position, "empty text"))
            else:
                positions.append(position)

        for start in range(0, len(positions), self.batch_size):
            chunk = positions[start:start + self.batch_size]
            await self._embed_chunk(texts, chunk, result)

        if result.errors:
            self.logging.warning("Embedding finished with %d of %d texts failed.", len(result.errors), len(texts))
        return result

    async def _embed_chunk(self, texts: list[str], chunk: list[int], result: EmbeddingBatchResult) -> None:
        result.calls += 1
        try:
            vectors = await self._call([texts[p] for p in chunk])
            if len(vectors) != len(chunk):
                raise ValueError(f"provider returned {len(vectors)} vectors for {len(chunk)} texts")
        except asyncio.TimeoutError:
            # a hung provider would hang once per item as well
            self.logging.error("Embedding call for %d texts timed out after %ss.", len(chunk), self.call_timeout)
            result.errors.extend((p, f"embedding timed out after {self.call_timeout}s") for p in chunk)
            return
        except Exception as exc:
            if len(chunk) == 1:
                self._record_failure(chunk[0], exc, result)
                return
            self.logging.warning("Embedding call for %d texts failed (%s), falling back to single texts.", len(chunk), exc)
            await self._embed_single(texts, chunk, result)
            return

        for position, vector in zip(chunk, vectors):
            if not vector:
                result.errors.append((position, "provider returned an empty vector"))
            else:
                result.vectors[position] = vector

    async def _embed_single(self, texts: list[str], chunk: list[int], result: EmbeddingBatchResult) -> None:
        for position in chunk:
            result.calls += 1
            try:
                vectors = await self._call([texts[position]])
            except asyncio.TimeoutError:
                result.errors.append((position, f"embedding timed out after {self.call_timeout}s"))
                continue
            except Exception as exc:
                self._record_failure(position, exc, result)
                continue
            if not vectors or not vectors[0]:
                result.errors.append((position, "provider returned an empty vector"))
            else:
                result.vectors[position] = vectors[0]

    async def _call(self, texts: list[str]) -> list[list[float]]:
        if self.call_timeout:
            return await asyncio.wait_for(self._embed_client.do_embed(texts), timeout=self.call_timeout)
        return await self._embed_client.do_embed(texts)

    def _record_failure(self, position: int, exc: Exception, result: EmbeddingBatchResult) -> None:
        self.logging.error("Embedding failed for text #%d: %s", position, exc)
        result.errors.append((position, f"{type(exc).__name__}: {exc}"))
