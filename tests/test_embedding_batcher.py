import asyncio

import pytest

from services.vector_sync.EmbeddingBatcher import EmbeddingBatcher


async def test_embeds_in_chunks_of_batch_size(helper_config, embed):
    batcher = EmbeddingBatcher(helper_config, embed, batch_size=10)
    texts = [f"text {i}" for i in range(25)]

    result = await batcher.embed_batch(texts)

    assert [len(call) for call in embed.calls] == [10, 10, 5]
    assert result.calls == 3
    assert sorted(result.vectors) == list(range(25))
    assert result.vectors[7] == embed.vector_for("text 7")
    assert result.errors == []


async def test_single_failing_item_does_not_abort_siblings(helper_config, embed):
    embed.fail_markers = {"BROKEN"}
    batcher = EmbeddingBatcher(helper_config, embed, batch_size=5)
    texts = ["a", "b", "BROKEN c", "d", "e"]

    result = await batcher.embed_batch(texts)

    assert sorted(result.vectors) == [0, 1, 3, 4]
    assert [position for position, _ in result.errors] == [2]
    # one failed chunk call followed by one call per item
    assert result.calls == 1 + 5


async def test_empty_texts_fail_without_provider_call(helper_config, embed):
    batcher = EmbeddingBatcher(helper_config, embed, batch_size=10)

    result = await batcher.embed_batch(["", "   ", "ok"])

    assert embed.calls == [["ok"]]
    assert sorted(position for position, _ in result.errors) == [0, 1]
    assert list(result.vectors) == [2]


async def test_wrong_vector_count_falls_back_to_single_items(helper_config, embed):
    class ShortEmbed:
        def __init__(self):
            self.calls = []

        async def do_embed(self, texts):
            self.calls.append(list(texts))
            return [[1.0]] * (len(texts) - 1 if len(texts) > 1 else 1)

    short = ShortEmbed()
    batcher = EmbeddingBatcher(helper_config, short, batch_size=3)

    result = await batcher.embed_batch(["a", "b", "c"])

    assert sorted(result.vectors) == [0, 1, 2]
    assert short.calls == [["a", "b", "c"], ["a"], ["b"], ["c"]]


async def test_timeout_fails_the_whole_chunk(helper_config):
    class HangingEmbed:
        async def do_embed(self, texts):
            await asyncio.sleep(10)

    batcher = EmbeddingBatcher(helper_config, HangingEmbed(), batch_size=2, call_timeout=0.01)

    result = await batcher.embed_batch(["a", "b"])

    assert result.vectors == {}
    assert [position for position, _ in result.errors] == [0, 1]
    assert all("timed out" in error for _, error in result.errors)


def test_batch_size_must_be_positive(helper_config, embed):
    with pytest.raises(ValueError):
        EmbeddingBatcher(helper_config, embed, batch_size=0)
