from shared.helper.HelperConfig import HelperConfig
from shared.clients.source.SourceClientInterface import SourceClientInterface

class SourceClientManager:
    """
    Manager class to handle the record source client based on configuration.
    """

    def __init__(self, helper_config: HelperConfig):
        self.helper_config = helper_config
        self.logging = helper_config.get_logger()
        self.client = self._initialize_client()

    def _get_engine_from_env(self) -> str:
        """
        Reads the source engine from ENV configuration.

        Returns:
            str: The name of the source engine, capitalized (e.g. "Oms").

        Raises:
            ValueError: If no source engine is specified in the configuration.
        """
        engine = self.helper_config.get_string_val("SOURCE_ENGINE", default="oms")
        if not engine:
            raise ValueError("No source engine specified in configuration.")
        return engine.strip().lower().capitalize()

    def _initialize_client(self) -> SourceClientInterface:
        """
        Initializes the source client based on the engine specified in the configuration.

        Raises:
            ValueError: If the engine is not supported.
        """
        engine = self._get_engine_from_env()
        className = f"SourceClient{engine}"
        try:
            module = __import__(
                f"shared.clients.source.{engine.lower()}.{className}",
                fromlist=[className],
            )
            client_class = getattr(module, className)
        except (ImportError, AttributeError) as e:
            raise ValueError(f"Unsupported source engine specified: '{engine}'. Error: {e}")
        client = client_class(helper_config=self.helper_config)
        self.logging.debug(f"Instantiated source client for engine: {engine}")
        return client

    def get_client(self) -> SourceClientInterface:
        return self.client
