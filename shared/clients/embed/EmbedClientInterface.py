from abc import abstractmethod

from typing import Tuple
from shared.clients.ClientInterface import ClientInterface, ClientRequestError

from shared.helper.HelperConfig import HelperConfig


class EmbedClientInterface(ClientInterface):
    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)

        # model and embedding config
        self.embed_distance = helper_config.get_string_val(f"{self.get_client_type().upper()}_DISTANCE", default="Cosine")
        self.embed_model = helper_config.get_string_val(f"{self.get_client_type().upper()}_MODEL", default=self._get_default_model())

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_client_type(self) -> str:
        """
        Returns the type of the client. E.g. "embed"
        """
        return "embed"

    @abstractmethod
    def _get_default_model(self) -> str:
        """
        Returns the model used when EMBED_MODEL is not set.
        """
        pass

    ################ ENDPOINTS ##################
    @abstractmethod
    def get_endpoint_embedding(self) -> str:
        """
        Returns the endpoint path for embedding requests.

        Returns:
            str: The endpoint path for embedding requests (e.g. "/api/embed")
        """
        pass

    ################ PAYLOAD BUILDER ##################
    @abstractmethod
    def get_embed_payload(self, texts: list[str]) -> dict:
        """Build the backend-specific request body for an embedding request.

        Args:
            texts (list[str]): The texts to embed.

        Returns:
            dict: JSON-serialisable request body (e.g. {"model": "...", "input": [...]}).
        """
        pass

    ##########################################
    ################# OTHER ##################
    ##########################################

    @abstractmethod
    def extract_embeddings_from_response(self, response_data: dict) -> list[list[float]]:
        """Extract embedding vectors from a raw embedding API response.

        Response format differs by backend:
        - Ollama /api/embed: {"embeddings": [[...], [...]]}, already ordered
        - OpenAI-compatible: {"data": [{"embedding": [...], "index": 0}]}, needs sorting

        Args:
            response_data (dict): The parsed JSON response body.

        Returns:
            list[list[float]]: Embedding vectors in the same order as the input texts.

        Raises:
            ValueError: If the response format is invalid or embeddings are empty.
        """
        pass

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def do_fetch_embedding_vector_size(self) -> Tuple[int, str]:
        """
        Fetch the output vector dimension and distance metric of the configured embedding model.

        The default implementation embeds a short probe text and measures the result.

        Returns:
            Tuple[int, str]: The number of dimensions produced by the embedding model and the distance metric.
        """
        vectors = await self.do_embed("dimension probe")
        return len(vectors[0]), self.embed_distance

    async def do_embed(self, texts: list[str] | str) -> list[list[float]]:
        """Send an embedding request and return the extracted vectors.

        Normalises the input to a list, builds the backend-specific payload via
        get_embed_payload(), sends the request, validates the status, and extracts
        the vectors via extract_embeddings_from_response().

        Args:
            texts (list[str] | str): One or more texts to embed.

        Returns:
            list[list[float]]: Embedding vectors in the same order as the inputs.

        Raises:
            ClientRequestError: If the HTTP request fails (status != 200).
            ValueError: If the response does not contain one valid embedding per input.
        """
        texts = [texts] if isinstance(texts, str) else texts
        body = self.get_embed_payload(texts)
        response = await self.do_request(method="POST", endpoint=self.get_endpoint_embedding(), json=body)
        if response.status_code != 200:
            self.logging.error(
                "Embedding request failed: status %d, body: %s",
                response.status_code,
                response.text[:200],
            )
            raise ClientRequestError(
                "Embedding request failed with status %d." % response.status_code,
                status_code=response.status_code,
            )
        embeddings = self.extract_embeddings_from_response(response.json())
        if len(embeddings) != len(texts):
            raise ValueError(f"Embedding backend returned {len(embeddings)} vectors for {len(texts)} texts.")
        return embeddings
