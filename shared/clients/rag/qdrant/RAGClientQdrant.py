import uuid
from typing import Any

from shared.helper.HelperConfig import HelperConfig
from shared.clients.rag.RAGClientInterface import RAGClientInterface
from shared.models.config import EnvConfig
from shared.models.sync import VectorDocument


def make_point_id(document_id: str) -> str:
    """Build a deterministic UUID5 point ID for a Qdrant vector.

    Qdrant only accepts unsigned integers or UUIDs as point IDs. UUID5 maps the
    same document id to the same point ID so that re-syncing overwrites rather
    than duplicates.

    Args:
        document_id (str): VectorDocument id (e.g. "job-12345").

    Returns:
        str: UUID string usable as a Qdrant point ID.
    """
    return str(uuid.uuid5(uuid.NAMESPACE_OID, document_id))


class RAGClientQdrant(RAGClientInterface):
    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self._base_url = self.get_config_val("BASE_URL", default=None, val_type="string")
        self._api_key = self.get_config_val("API_KEY", default="", val_type="string")
        self._collection_name = self.get_config_val("COLLECTION", default="orders", val_type="string")

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_engine_name(self) -> str:
        return "Qdrant"

    ################ CONFIG ##################
    def _get_required_config(self) -> list[EnvConfig]:
        return [
            EnvConfig(env_key="BASE_URL", val_type="string", default=None),
            EnvConfig(env_key="API_KEY", val_type="string", default=""),
            EnvConfig(env_key="COLLECTION", val_type="string", default="orders")
        ]

    ################ AUTH ##################
    def _get_auth_header(self) -> dict:
        if self._api_key:
            return {"api-key": f"{self._api_key}"}
        else:
            return {}

    ################ ENDPOINTS ##################
    def _get_base_url(self) -> str:
        return self._base_url

    def _get_endpoint_healthcheck(self) -> str:
        return "/healthz"

    def _get_endpoint_upsert(self) -> str:
        # wait=true: the call returns only after the points are persisted
        return f"/collections/{self._collection_name}/points?wait=true"

    def _get_method_upsert(self) -> str:
        return "PUT"

    def _get_endpoint_delete(self) -> str:
        return f"/collections/{self._collection_name}/points/delete?wait=true"

    def _get_endpoint_stats(self) -> str:
        return f"/collections/{self._collection_name}"

    def _get_method_stats(self) -> str:
        return "GET"

    def _get_endpoint_check_collection_existence(self) -> str:
        return f"/collections/{self._collection_name}/exists"

    ##########################################
    ########### PAYLOAD BUILDER ##############
    ##########################################

    def get_upsert_payload(self, documents: list[VectorDocument]) -> dict:
        return {
            "points": [
                {
                    "id": make_point_id(document.id),
                    "vector": document.embedding,
                    # keep the readable id next to the UUID
                    "payload": {**document.metadata, "document_id": document.id},
                }
                for document in documents
            ]
        }

    def get_delete_payload(self, document_ids: list[str]) -> dict:
        return {"points": [make_point_id(document_id) for document_id in document_ids]}

    def get_delete_all_payload(self) -> dict:
        # an empty filter matches every point
        return {"filter": {"must": []}}

    ##########################################
    ########### RESPONSE PARSER ##############
    ##########################################

    def extract_stats(self, raw_response: dict) -> dict[str, Any]:
        result = raw_response.get("result", {})
        return {
            "vector_count": result.get("points_count") or 0,
            "status": result.get("status", "unknown"),
            "indexed_vectors_count": result.get("indexed_vectors_count"),
        }

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def do_ensure_collection(self, vector_size: int, distance: str = "Cosine") -> None:
        resp = await self.do_request(
            method="GET",
            endpoint=self._get_endpoint_check_collection_existence(),
            raise_on_error=True,
        )
        if resp.json().get("result", {}).get("exists"):
            self.logging.info("Qdrant collection %r already exists.", self._collection_name)
            return
        self.logging.info("Creating Qdrant collection %r (size=%d, distance=%s).", self._collection_name, vector_size, distance)
        await self.do_request(
            method="PUT",
            json={"vectors": {"size": vector_size, "distance": distance}},
            endpoint=f"/collections/{self._collection_name}",
            raise_on_error=True,
        )
