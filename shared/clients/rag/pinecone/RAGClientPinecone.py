from typing import Any

from shared.helper.HelperConfig import HelperConfig
from shared.clients.rag.RAGClientInterface import RAGClientInterface
from shared.models.config import EnvConfig
from shared.models.sync import VectorDocument


class RAGClientPinecone(RAGClientInterface):
    """Pinecone data plane client. BASE_URL is the index host, the index itself is provisioned in the Pinecone console."""

    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self._base_url = self.get_config_val("BASE_URL", default=None, val_type="string")
        self._api_key = self.get_config_val("API_KEY", default=None, val_type="string")
        self._namespace = self.get_config_val("NAMESPACE", default="", val_type="string")

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_engine_name(self) -> str:
        return "Pinecone"

    ################ CONFIG ##################
    def _get_required_config(self) -> list[EnvConfig]:
        return [
            EnvConfig(env_key="BASE_URL", val_type="string", default=None),
            EnvConfig(env_key="API_KEY", val_type="string", default=None),
            EnvConfig(env_key="NAMESPACE", val_type="string", default=""),
        ]

    ################ AUTH ##################
    def _get_auth_header(self) -> dict:
        return {"Api-Key": self._api_key}

    ################ ENDPOINTS ##################
    def _get_base_url(self) -> str:
        return self._base_url

    def _get_endpoint_healthcheck(self) -> str:
        return "/describe_index_stats"

    def _get_endpoint_upsert(self) -> str:
        return "/vectors/upsert"

    def _get_method_upsert(self) -> str:
        return "POST"

    def _get_endpoint_delete(self) -> str:
        return "/vectors/delete"

    def _get_endpoint_stats(self) -> str:
        return "/describe_index_stats"

    def _get_method_stats(self) -> str:
        return "POST"

    ##########################################
    ########### PAYLOAD BUILDER ##############
    ##########################################

    def _with_namespace(self, payload: dict) -> dict:
        if self._namespace:
            payload["namespace"] = self._namespace
        return payload

    def get_upsert_payload(self, documents: list[VectorDocument]) -> dict:
        return self._with_namespace({
            "vectors": [
                {"id": document.id, "values": document.embedding, "metadata": document.metadata}
                for document in documents
            ]
        })

    def get_delete_payload(self, document_ids: list[str]) -> dict:
        return self._with_namespace({"ids": list(document_ids)})

    def get_delete_all_payload(self) -> dict:
        return self._with_namespace({"deleteAll": True})

    ##########################################
    ########### RESPONSE PARSER ##############
    ##########################################

    def extract_stats(self, raw_response: dict) -> dict[str, Any]:
        return {
            "vector_count": raw_response.get("totalVectorCount", 0),
            "dimension": raw_response.get("dimension"),
            "index_fullness": raw_response.get("indexFullness"),
            "namespaces": raw_response.get("namespaces", {}),
        }
