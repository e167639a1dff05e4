from shared.helper.HelperConfig import HelperConfig
from shared.clients.rag.RAGClientInterface import RAGClientInterface

class RAGClientManager:
    """
    Manager class to handle the vector index client based on configuration.
    """

    def __init__(self, helper_config: HelperConfig):
        self.helper_config = helper_config
        self.logging = helper_config.get_logger()
        self.client = self._initialize_client()

    def _get_engine_from_env(self) -> str:
        """
        Reads the RAG engine from ENV configuration.

        Returns:
            str: The name of the RAG engine, capitalized (e.g. "Qdrant").

        Raises:
            ValueError: If no RAG engine is specified in the configuration.
        """
        engine = self.helper_config.get_string_val("RAG_ENGINE")
        if not engine:
            raise ValueError("No RAG engine specified in configuration.")
        return engine.strip().lower().capitalize()

    def _initialize_client(self) -> RAGClientInterface:
        """
        Initializes the RAG client based on the engine specified in the configuration.

        Returns:
            RAGClientInterface: An instance of the RAG client that implements the RAGClientInterface.

        Raises:
            ValueError: If the engine is not supported.
        """
        engine = self._get_engine_from_env()
        className = f"RAGClient{engine}"
        try:
            module = __import__(
                f"shared.clients.rag.{engine.lower()}.{className}",
                fromlist=[className],
            )
            client_class = getattr(module, className)
        except (ImportError, AttributeError) as e:
            raise ValueError(f"Unsupported RAG engine specified: '{engine}'. Error: {e}")
        client = client_class(helper_config=self.helper_config)
        self.logging.debug(f"Instantiated RAG client for engine: {engine}")
        return client

    def get_client(self) -> RAGClientInterface:
        """
        Returns the instantiated RAG client.

        Returns:
            RAGClientInterface: The RAG client instance.
        """
        return self.client
