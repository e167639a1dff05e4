from shared.clients.embed.EmbedClientInterface import EmbedClientInterface
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import EnvConfig


class EmbedClientOpenai(EmbedClientInterface):
    """Embedding client for OpenAI and OpenAI-compatible /embeddings endpoints."""

    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self._base_url = self.get_config_val("BASE_URL", default="https://api.openai.com/v1", val_type="string")
        self._api_key = self.get_config_val("API_KEY", default=None, val_type="string")
        # 0 → let the model decide
        self._dimensions = int(self.get_config_val("DIMENSIONS", default=0, val_type="number"))

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_engine_name(self) -> str:
        return "Openai"

    def _get_default_model(self) -> str:
        return "text-embedding-3-small"

    ################ CONFIG ##################
    def _get_required_config(self) -> list[EnvConfig]:
        return [
            EnvConfig(env_key="BASE_URL", val_type="string", default="https://api.openai.com/v1"),
            EnvConfig(env_key="API_KEY", val_type="string", default=None),
            EnvConfig(env_key="DIMENSIONS", val_type="number", default=0),
        ]

    ################ AUTH ##################
    def _get_auth_header(self) -> dict:
        return {"Authorization": f"Bearer {self._api_key}"}

    ################ ENDPOINTS ##################
    def _get_base_url(self) -> str:
        return self._base_url

    def _get_endpoint_healthcheck(self) -> str:
        return "/models"

    def get_endpoint_embedding(self) -> str:
        return "/embeddings"

    ################ PAYLOAD BUILDER ##################
    def get_embed_payload(self, texts: list[str]) -> dict:
        payload: dict = {"model": self.embed_model, "input": texts}
        if self._dimensions > 0:
            payload["dimensions"] = self._dimensions
        return payload

    ##########################################
    ################# OTHER ##################
    ##########################################

    def extract_embeddings_from_response(self, response_data: dict) -> list[list[float]]:
        """Extract embedding vectors from an OpenAI /embeddings response.

        The "data" entries carry their input position in "index" and are sorted by it.

        Raises:
            ValueError: If the response does not contain valid embeddings.
        """
        data = response_data.get("data")
        if not data:
            raise ValueError(
                "OpenAI response does not contain embedding data. "
                f"Response keys: {list(response_data.keys())}"
            )
        ordered = sorted(data, key=lambda item: item.get("index", 0))
        embeddings = [item.get("embedding") for item in ordered]
        if any(not embedding for embedding in embeddings):
            raise ValueError("OpenAI response contains an empty embedding.")
        return embeddings
