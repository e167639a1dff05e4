import json
import uuid

import httpx
import pytest

from shared.clients.ClientInterface import ClientRequestError
from shared.clients.embed.EmbedClientManager import EmbedClientManager
from shared.clients.embed.ollama.EmbedClientOllama import EmbedClientOllama
from shared.clients.embed.openai.EmbedClientOpenai import EmbedClientOpenai
from shared.clients.rag.RAGClientManager import RAGClientManager
from shared.clients.rag.pinecone.RAGClientPinecone import RAGClientPinecone
from shared.clients.rag.qdrant.RAGClientQdrant import RAGClientQdrant, make_point_id
from shared.clients.source.SourceClientManager import SourceClientManager
from shared.clients.source.oms.SourceClientOms import SourceClientOms
from shared.models.sync import VectorDocument


class Recorder:
    """MockTransport handler that records requests and answers from a route table."""

    def __init__(self, routes: dict | None = None):
        self.routes = routes or {}
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        answer = self.routes.get((request.method, request.url.path), {})
        if callable(answer):
            return answer(request)
        if isinstance(answer, httpx.Response):
            return answer
        return httpx.Response(200, json=answer)

    def body(self, position: int = -1):
        return json.loads(self.requests[position].content)


async def _booted(client, recorder: Recorder):
    await client.boot(transport=httpx.MockTransport(recorder))
    return client


def _documents():
    return [
        VectorDocument(id="job-1", embedding=[0.1, 0.2], metadata={"job_number": "1", "customer": "Acme"}),
        VectorDocument(id="job-2", embedding=[0.3, 0.4], metadata={"job_number": "2"}),
    ]


##########################################
################ QDRANT ##################
##########################################

@pytest.fixture
def qdrant_env(monkeypatch):
    monkeypatch.setenv("RAG_QDRANT_BASE_URL", "http://qdrant:6333")
    monkeypatch.setenv("RAG_QDRANT_API_KEY", "secret")
    monkeypatch.setenv("RAG_QDRANT_COLLECTION", "orders_test")


async def test_qdrant_upsert_uses_uuid_point_ids(helper_config, qdrant_env):
    recorder = Recorder()
    client = await _booted(RAGClientQdrant(helper_config), recorder)

    await client.do_upsert_documents(_documents())

    request = recorder.requests[0]
    assert request.method == "PUT"
    assert request.url.path == "/collections/orders_test/points"
    assert request.url.params["wait"] == "true"
    assert request.headers["api-key"] == "secret"
    point = recorder.body()["points"][0]
    assert point["id"] == str(uuid.UUID(point["id"]))
    assert point["id"] == make_point_id("job-1")
    assert point["payload"] == {"job_number": "1", "customer": "Acme", "document_id": "job-1"}
    assert point["vector"] == [0.1, 0.2]


async def test_qdrant_delete_and_delete_all(helper_config, qdrant_env):
    recorder = Recorder()
    client = await _booted(RAGClientQdrant(helper_config), recorder)

    await client.do_delete_documents(["job-1"])
    await client.do_delete_all()

    assert recorder.requests[0].url.path == "/collections/orders_test/points/delete"
    assert recorder.body(0) == {"points": [make_point_id("job-1")]}
    assert recorder.body(1) == {"filter": {"must": []}}


def test_qdrant_point_id_is_stable():
    assert make_point_id("job-1") == make_point_id("job-1")
    assert make_point_id("job-1") != make_point_id("job-2")


async def test_qdrant_creates_missing_collection(helper_config, qdrant_env):
    recorder = Recorder({("GET", "/collections/orders_test/exists"): {"result": {"exists": False}}})
    client = await _booted(RAGClientQdrant(helper_config), recorder)

    await client.do_ensure_collection(768, "Cosine")

    create = recorder.requests[-1]
    assert create.method == "PUT"
    assert create.url.path == "/collections/orders_test"
    assert recorder.body() == {"vectors": {"size": 768, "distance": "Cosine"}}


async def test_qdrant_keeps_existing_collection(helper_config, qdrant_env):
    recorder = Recorder({("GET", "/collections/orders_test/exists"): {"result": {"exists": True}}})
    client = await _booted(RAGClientQdrant(helper_config), recorder)

    await client.do_ensure_collection(768)

    assert len(recorder.requests) == 1


async def test_qdrant_stats(helper_config, qdrant_env):
    recorder = Recorder({("GET", "/collections/orders_test"): {"result": {"points_count": 42, "status": "green", "indexed_vectors_count": 40}}})
    client = await _booted(RAGClientQdrant(helper_config), recorder)

    stats = await client.do_describe_stats()

    assert stats == {"vector_count": 42, "status": "green", "indexed_vectors_count": 40}


async def test_oversized_batch_is_refused(helper_config, qdrant_env, monkeypatch):
    monkeypatch.setenv("RAG_MAX_BATCH_SIZE", "1")
    recorder = Recorder()
    client = await _booted(RAGClientQdrant(helper_config), recorder)

    with pytest.raises(ValueError):
        await client.do_upsert_documents(_documents())
    assert recorder.requests == []


async def test_non_2xx_raises_client_request_error(helper_config, qdrant_env):
    recorder = Recorder({("PUT", "/collections/orders_test/points"): httpx.Response(503, text="overloaded")})
    client = await _booted(RAGClientQdrant(helper_config), recorder)

    with pytest.raises(ClientRequestError) as exc_info:
        await client.do_upsert_documents(_documents())

    assert exc_info.value.status_code == 503
    assert exc_info.value.is_transient


async def test_request_before_boot_fails(helper_config, qdrant_env):
    with pytest.raises(RuntimeError):
        await RAGClientQdrant(helper_config).do_healthcheck()


def test_missing_required_config_fails_fast(helper_config, monkeypatch):
    monkeypatch.delenv("RAG_QDRANT_BASE_URL", raising=False)

    with pytest.raises(ValueError):
        RAGClientQdrant(helper_config)


##########################################
############### PINECONE #################
##########################################

@pytest.fixture
def pinecone_env(monkeypatch):
    monkeypatch.setenv("RAG_PINECONE_BASE_URL", "https://orders-abc.svc.pinecone.io")
    monkeypatch.setenv("RAG_PINECONE_API_KEY", "pc-key")
    monkeypatch.setenv("RAG_PINECONE_NAMESPACE", "prod")


async def test_pinecone_upsert_payload(helper_config, pinecone_env):
    recorder = Recorder()
    client = await _booted(RAGClientPinecone(helper_config), recorder)

    await client.do_upsert_documents(_documents())

    request = recorder.requests[0]
    assert request.method == "POST"
    assert request.url.path == "/vectors/upsert"
    assert request.headers["Api-Key"] == "pc-key"
    body = recorder.body()
    assert body["namespace"] == "prod"
    assert body["vectors"][0] == {"id": "job-1", "values": [0.1, 0.2], "metadata": {"job_number": "1", "customer": "Acme"}}


async def test_pinecone_delete_and_delete_all(helper_config, pinecone_env):
    recorder = Recorder()
    client = await _booted(RAGClientPinecone(helper_config), recorder)

    await client.do_delete_documents(["job-1", "job-2"])
    await client.do_delete_all()

    assert recorder.body(0) == {"ids": ["job-1", "job-2"], "namespace": "prod"}
    assert recorder.body(1) == {"deleteAll": True, "namespace": "prod"}


async def test_pinecone_stats(helper_config, pinecone_env):
    recorder = Recorder({("POST", "/describe_index_stats"): {"totalVectorCount": 7, "dimension": 1536, "indexFullness": 0.0, "namespaces": {"prod": {"vectorCount": 7}}}})
    client = await _booted(RAGClientPinecone(helper_config), recorder)

    stats = await client.do_describe_stats()

    assert stats["vector_count"] == 7
    assert stats["dimension"] == 1536
    assert recorder.requests[0].method == "POST"


##########################################
################# EMBED ##################
##########################################

async def test_ollama_embed(helper_config, monkeypatch):
    monkeypatch.setenv("EMBED_OLLAMA_BASE_URL", "http://ollama:11434")
    monkeypatch.setenv("EMBED_MODEL", "nomic-embed-text")
    recorder = Recorder({("POST", "/api/embed"): {"embeddings": [[0.1, 0.2], [0.3, 0.4]]}})
    client = await _booted(EmbedClientOllama(helper_config), recorder)

    vectors = await client.do_embed(["a", "b"])

    assert vectors == [[0.1, 0.2], [0.3, 0.4]]
    assert recorder.body() == {"model": "nomic-embed-text", "input": ["a", "b"]}


async def test_ollama_vector_size_from_model_info(helper_config, monkeypatch):
    monkeypatch.setenv("EMBED_OLLAMA_BASE_URL", "http://ollama:11434")
    recorder = Recorder({("POST", "/api/show"): {"model_info": {"nomic-bert.embedding_length": 768}}})
    client = await _booted(EmbedClientOllama(helper_config), recorder)

    assert await client.do_fetch_embedding_vector_size() == (768, "Cosine")


async def test_openai_embed_orders_by_index(helper_config, monkeypatch):
    monkeypatch.setenv("EMBED_OPENAI_API_KEY", "sk-test")
    monkeypatch.setenv("EMBED_OPENAI_DIMENSIONS", "2")
    response = {"data": [{"index": 1, "embedding": [0.3, 0.4]}, {"index": 0, "embedding": [0.1, 0.2]}]}
    recorder = Recorder({("POST", "/v1/embeddings"): response})
    client = await _booted(EmbedClientOpenai(helper_config), recorder)

    vectors = await client.do_embed(["a", "b"])

    assert vectors == [[0.1, 0.2], [0.3, 0.4]]
    assert recorder.requests[0].headers["Authorization"] == "Bearer sk-test"
    assert recorder.body()["dimensions"] == 2


async def test_embed_count_mismatch_raises(helper_config, monkeypatch):
    monkeypatch.setenv("EMBED_OLLAMA_BASE_URL", "http://ollama:11434")
    recorder = Recorder({("POST", "/api/embed"): {"embeddings": [[0.1, 0.2]]}})
    client = await _booted(EmbedClientOllama(helper_config), recorder)

    with pytest.raises(ValueError):
        await client.do_embed(["a", "b"])


async def test_embed_error_status_raises(helper_config, monkeypatch):
    monkeypatch.setenv("EMBED_OLLAMA_BASE_URL", "http://ollama:11434")
    recorder = Recorder({("POST", "/api/embed"): httpx.Response(429, text="slow down")})
    client = await _booted(EmbedClientOllama(helper_config), recorder)

    with pytest.raises(ClientRequestError) as exc_info:
        await client.do_embed("a")

    assert exc_info.value.is_transient


##########################################
################ SOURCE ##################
##########################################

@pytest.fixture
def oms_env(monkeypatch):
    monkeypatch.setenv("SOURCE_OMS_BASE_URL", "http://oms.local")
    monkeypatch.setenv("SOURCE_OMS_API_KEY", "oms-key")
    monkeypatch.setenv("SOURCE_PAGE_SIZE", "2")


def _raw_order(job_number: str) -> dict:
    return {"jobNumber": job_number, "orderNumber": f"PO-{job_number}", "description": "Flyers"}


async def test_oms_follows_pagination(helper_config, oms_env):
    def listing(request: httpx.Request) -> httpx.Response:
        page = int(request.url.params["page"])
        pages = {1: [_raw_order("1"), _raw_order("2")], 2: [_raw_order("3")]}
        return httpx.Response(200, json={"orders": pages[page], "page": page, "totalPages": 2, "totalCount": 3})

    recorder = Recorder({("GET", "/api/orders"): listing})
    client = await _booted(SourceClientOms(helper_config), recorder)

    orders = await client.do_fetch_all()

    assert [order.job_number for order in orders] == ["1", "2", "3"]
    assert [request.url.params["page"] for request in recorder.requests] == ["1", "2"]
    assert recorder.requests[0].url.params["pageSize"] == "2"
    assert recorder.requests[0].headers["Authorization"] == "Bearer oms-key"


async def test_oms_accepts_a_plain_list(helper_config, oms_env):
    recorder = Recorder({("GET", "/api/orders"): [_raw_order("1"), _raw_order("2")]})
    client = await _booted(SourceClientOms(helper_config), recorder)

    orders = await client.do_fetch_all()

    assert len(orders) == 2
    assert len(recorder.requests) == 1


async def test_oms_skips_invalid_records(helper_config, oms_env):
    broken = {**_raw_order("2"), "jobNumber": 2, "jobQuantity": "lots"}
    recorder = Recorder({("GET", "/api/orders"): [_raw_order("1"), {"orderNumber": "no job number"}, broken]})
    client = await _booted(SourceClientOms(helper_config), recorder)

    orders = await client.do_fetch_all()

    assert [order.job_number for order in orders] == ["1"]
    assert client.skipped_identities == ["2"]


async def test_oms_skipped_identities_are_reset_per_fetch(helper_config, oms_env):
    pages = [[{**_raw_order("1"), "jobQuantity": "lots"}], [_raw_order("1")]]
    recorder = Recorder({("GET", "/api/orders"): lambda request: httpx.Response(200, json=pages.pop(0))})
    client = await _booted(SourceClientOms(helper_config), recorder)

    await client.do_fetch_all()
    assert client.skipped_identities == ["1"]

    orders = await client.do_fetch_all()
    assert [order.job_number for order in orders] == ["1"]
    assert client.skipped_identities == []


async def test_oms_rejects_unknown_listing_format(helper_config, oms_env):
    recorder = Recorder({("GET", "/api/orders"): {"items": []}})
    client = await _booted(SourceClientOms(helper_config), recorder)

    with pytest.raises(ValueError):
        await client.do_fetch_all()


async def test_oms_server_error_propagates(helper_config, oms_env):
    recorder = Recorder({("GET", "/api/orders"): httpx.Response(500)})
    client = await _booted(SourceClientOms(helper_config), recorder)

    with pytest.raises(ClientRequestError):
        await client.do_fetch_all()


##########################################
############### MANAGERS #################
##########################################

def test_managers_pick_engines_from_env(helper_config, monkeypatch, qdrant_env, oms_env):
    monkeypatch.setenv("RAG_ENGINE", "qdrant")
    monkeypatch.setenv("EMBED_ENGINE", "OPENAI")
    monkeypatch.setenv("EMBED_OPENAI_API_KEY", "sk-test")

    assert isinstance(RAGClientManager(helper_config).get_client(), RAGClientQdrant)
    assert isinstance(EmbedClientManager(helper_config).get_client(), EmbedClientOpenai)
    assert isinstance(SourceClientManager(helper_config).get_client(), SourceClientOms)


def test_unsupported_engine_is_rejected(helper_config, monkeypatch):
    monkeypatch.setenv("RAG_ENGINE", "nosuchdb")

    with pytest.raises(ValueError, match="Unsupported RAG engine"):
        RAGClientManager(helper_config)
