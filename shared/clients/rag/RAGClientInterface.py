from abc import abstractmethod
from typing import Any

import httpx
from shared.clients.ClientInterface import ClientInterface
from shared.models.sync import VectorDocument

from shared.helper.HelperConfig import HelperConfig


class RAGClientInterface(ClientInterface):
    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self.max_batch_size = int(helper_config.get_number_val(f"{self.get_client_type().upper()}_MAX_BATCH_SIZE", default=100))

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_client_type(self) -> str:
        """
        Returns the type of the client. E.g. "rag"
        """
        return "rag"

    ################ ENDPOINTS ##################
    @abstractmethod
    def _get_endpoint_upsert(self) -> str:
        """
        Returns the endpoint path for upserting vectors.

        Returns:
            str: The endpoint path (e.g. "/collections/my_col/points")
        """
        pass

    @abstractmethod
    def _get_method_upsert(self) -> str:
        """
        Returns the HTTP method used for upsert requests (e.g. "PUT").
        """
        pass

    @abstractmethod
    def _get_endpoint_delete(self) -> str:
        """
        Returns the endpoint path for deleting vectors by id.

        Returns:
            str: The endpoint path (e.g. "/collections/my_col/points/delete")
        """
        pass

    @abstractmethod
    def _get_endpoint_stats(self) -> str:
        """
        Returns the endpoint path for index statistics.

        Returns:
            str: The endpoint path (e.g. "/collections/my_col")
        """
        pass

    @abstractmethod
    def _get_method_stats(self) -> str:
        """
        Returns the HTTP method used for statistics requests (e.g. "GET").
        """
        pass

    ################ PAYLOAD BUILDER ##################
    @abstractmethod
    def get_upsert_payload(self, documents: list[VectorDocument]) -> dict:
        """
        Builds the backend-specific request payload for an upsert.

        Args:
            documents (list[VectorDocument]): The vectors to write.

        Returns:
            dict: The payload for the upsert request.
        """
        pass

    @abstractmethod
    def get_delete_payload(self, document_ids: list[str]) -> dict:
        """
        Builds the backend-specific request payload for deleting vectors by id.

        Args:
            document_ids (list[str]): VectorDocument ids ("job-<identity>").

        Returns:
            dict: The payload for the delete request.
        """
        pass

    @abstractmethod
    def get_delete_all_payload(self) -> dict:
        """
        Builds the backend-specific request payload that removes every vector of the index.
        """
        pass

    ################ RESPONSE PARSER ##################
    @abstractmethod
    def extract_stats(self, raw_response: dict) -> dict[str, Any]:
        """
        Extracts index statistics from a raw statistics response.

        Args:
            raw_response (dict): The raw JSON response from the statistics endpoint.

        Returns:
            dict: At least {"vector_count": int}, plus backend specific details.
        """
        pass

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def do_ensure_collection(self, vector_size: int, distance: str = "Cosine") -> None:
        """Make sure the target collection / index exists.

        Backends whose indexes are provisioned outside of this service keep the default no-op.

        Args:
            vector_size (int): Dimension of the vectors.
            distance (str): Distance metric of the collection.
        """
        return None

    async def do_upsert_documents(self, documents: list[VectorDocument]) -> httpx.Response:
        """Upsert vectors into the index.
        Inserts new vectors or replaces existing ones with the same id.

        Args:
            documents (list[VectorDocument]): At most max_batch_size documents.

        Returns:
            httpx.Response: The response from the upsert request.

        Raises:
            ValueError: If more than max_batch_size documents are passed.
            ClientRequestError: If the backend rejects the request.
        """
        if len(documents) > self.max_batch_size:
            raise ValueError(f"Upsert batch of {len(documents)} exceeds the maximum of {self.max_batch_size}.")
        return await self.do_request(
            method=self._get_method_upsert(),
            json=self.get_upsert_payload(documents),
            endpoint=self._get_endpoint_upsert(),
            raise_on_error=True,
        )

    async def do_delete_documents(self, document_ids: list[str]) -> httpx.Response:
        """Delete vectors by id.

        Args:
            document_ids (list[str]): At most max_batch_size VectorDocument ids.

        Raises:
            ValueError: If more than max_batch_size ids are passed.
            ClientRequestError: If the backend rejects the request.
        """
        if len(document_ids) > self.max_batch_size:
            raise ValueError(f"Delete batch of {len(document_ids)} exceeds the maximum of {self.max_batch_size}.")
        return await self.do_request(
            method="POST",
            json=self.get_delete_payload(document_ids),
            endpoint=self._get_endpoint_delete(),
            raise_on_error=True,
        )

    async def do_delete_all(self) -> httpx.Response:
        """Remove every vector from the index. Used before a full rebuild when configured."""
        return await self.do_request(
            method="POST",
            json=self.get_delete_all_payload(),
            endpoint=self._get_endpoint_delete(),
            raise_on_error=True,
        )

    async def do_describe_stats(self) -> dict[str, Any]:
        """Fetch index statistics.

        Returns:
            dict: {"vector_count": int, ...}
        """
        resp = await self.do_request(
            method=self._get_method_stats(),
            endpoint=self._get_endpoint_stats(),
            json={} if self._get_method_stats() == "POST" else None,
            raise_on_error=True,
        )
        return self.extract_stats(resp.json())
