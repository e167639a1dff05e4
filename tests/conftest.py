import hashlib
import logging

import pytest

from services.vector_sync.ChangeTracker import ChangeTracker
from services.vector_sync.SyncOrchestrator import SyncOrchestrator
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import SyncSettings
from shared.models.order import Order
from shared.models.sync import VectorDocument


def build_order(job_number: str, description: str = "Business cards, double sided", **overrides) -> Order:
    data = {
        "jobNumber": job_number,
        "orderNumber": f"PO-{job_number}",
        "customer": {"id": 7, "company": "Acme Print", "contactPerson": "Jo Miller"},
        "description": description,
        "comments": "",
        "jobQuantity": 500,
        "status": {"master": "In Production", "masterStatusId": 3, "stock": "Stock OK"},
        "dates": {
            "dateEntered": "2024-03-01T09:00:00Z",
            "dateDue": "2024-03-15T17:00:00Z",
            "daysToDueDate": 14,
        },
        "location": {"code": "MAIN", "name": "Main Plant", "deliveryOption": "Pickup"},
        "production": {
            "processes": [{"code": "DIG", "displayCode": "Digital", "quantity": 500}],
            "gangCodes": ["G1"],
            "timeSensitive": True,
        },
        "lineItems": [
            {
                "lineId": 1,
                "assetSKU": "BC-01",
                "description": "Cards 85x55",
                "category": "Stationery",
                "quantity": 500,
                "materials": ["Silk 350"],
                "processCodes": ["DIG"],
            }
        ],
        "shipments": [],
        "files": [],
        "tags": [{"tag": "rush"}],
        "metadata": {"lastAPIUpdate": "2024-03-02T10:00:00Z", "dataFreshness": "fresh"},
    }
    data.update(overrides)
    return Order.model_validate(data)


##########################################
################# FAKES ##################
##########################################

class FakeSourceClient:
    """Serves orders. Identities in invalid are reported as skipped invalid records."""

    def __init__(self, orders: list[Order] | None = None):
        self.orders = list(orders or [])
        self.invalid: list[str] = []
        self.skipped_identities: list[str] = []
        self.error: Exception | None = None
        self.fetch_calls = 0

    def get_engine_name(self) -> str:
        return "fakesource"

    def get_client_type(self) -> str:
        return "source"

    async def boot(self, transport=None) -> None:
        return None

    async def close(self) -> None:
        return None

    async def do_healthcheck(self) -> None:
        if self.error:
            raise self.error

    async def do_fetch_all(self) -> list[Order]:
        self.fetch_calls += 1
        if self.error:
            raise self.error
        self.skipped_identities = list(self.invalid)
        return [order.model_copy(deep=True) for order in self.orders]


class FakeEmbedClient:
    """Deterministic embeddings. Texts containing one of fail_markers cannot be embedded."""

    def __init__(self, dimension: int = 4):
        self.dimension = dimension
        self.calls: list[list[str]] = []
        self.fail_markers: set[str] = set()
        self.unreachable = False

    def get_engine_name(self) -> str:
        return "fakeembed"

    def get_client_type(self) -> str:
        return "embed"

    async def boot(self, transport=None) -> None:
        return None

    async def close(self) -> None:
        return None

    async def do_healthcheck(self) -> None:
        if self.unreachable:
            raise ConnectionError("embedding provider down")

    async def do_fetch_embedding_vector_size(self) -> tuple[int, str]:
        return self.dimension, "Cosine"

    def vector_for(self, text: str) -> list[float]:
        digest = hashlib.sha256(text.encode("utf-8")).digest()
        return [b / 255 for b in digest[: self.dimension]]

    async def do_embed(self, texts: list[str] | str) -> list[list[float]]:
        texts = [texts] if isinstance(texts, str) else list(texts)
        self.calls.append(texts)
        for text in texts:
            if any(marker in text for marker in self.fail_markers):
                raise ValueError(f"cannot embed text starting with {text[:20]!r}")
        return [self.vector_for(text) for text in texts]


class FakeIndexClient:
    """In-memory vector index. Exceptions queued in failures are raised by the next calls, one per call."""

    max_batch_size = 100

    def __init__(self):
        self.vectors: dict[str, VectorDocument] = {}
        self.upsert_calls: list[list[str]] = []
        self.delete_calls: list[list[str]] = []
        self.delete_all_calls = 0
        self.failures: list[Exception] = []
        self.ensured: tuple[int, str] | None = None
        self.unreachable = False

    def get_engine_name(self) -> str:
        return "fakeindex"

    def get_client_type(self) -> str:
        return "rag"

    async def boot(self, transport=None) -> None:
        return None

    async def close(self) -> None:
        return None

    async def do_healthcheck(self) -> None:
        if self.unreachable:
            raise ConnectionError("index down")

    async def do_describe_stats(self) -> dict:
        return {"vector_count": len(self.vectors)}

    async def do_ensure_collection(self, vector_size: int, distance: str = "Cosine") -> None:
        self.ensured = (vector_size, distance)

    async def do_upsert_documents(self, documents: list[VectorDocument]) -> None:
        self.upsert_calls.append([document.id for document in documents])
        if self.failures:
            raise self.failures.pop(0)
        for document in documents:
            self.vectors[document.id] = document

    async def do_delete_documents(self, document_ids: list[str]) -> None:
        self.delete_calls.append(list(document_ids))
        if self.failures:
            raise self.failures.pop(0)
        for document_id in document_ids:
            self.vectors.pop(document_id, None)

    async def do_delete_all(self) -> None:
        self.delete_all_calls += 1
        self.vectors.clear()


##########################################
############### FIXTURES #################
##########################################

@pytest.fixture
def make_order():
    return build_order


@pytest.fixture
def helper_config() -> HelperConfig:
    return HelperConfig(logger=logging.getLogger("vector_sync.tests"))


@pytest.fixture
def settings(tmp_path) -> SyncSettings:
    return SyncSettings(
        state_path=str(tmp_path / "state" / "vector-sync-state.json"),
        retry_base_delay=0.0,
        inter_batch_delay=0.0,
        batch_timeout=5.0,
        cycle_timeout=30.0,
    )


@pytest.fixture
def source() -> FakeSourceClient:
    return FakeSourceClient()


@pytest.fixture
def embed() -> FakeEmbedClient:
    return FakeEmbedClient()


@pytest.fixture
def index() -> FakeIndexClient:
    return FakeIndexClient()


@pytest.fixture
def tracker(helper_config, settings) -> ChangeTracker:
    return ChangeTracker(helper_config, settings.state_path, history_limit=settings.history_limit)


@pytest.fixture
def orchestrator(helper_config, settings, source, embed, index) -> SyncOrchestrator:
    return SyncOrchestrator(
        helper_config=helper_config,
        settings=settings,
        source_client=source,
        embed_client=embed,
        index_client=index,
    )
