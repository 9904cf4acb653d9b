from shared.helper.HelperConfig import HelperConfig
from shared.clients.auth.AuthClientInterface import AuthClientInterface


class AuthClientManager:
    """Manager class to instantiate the configured session/auth client."""

    def __init__(self, helper_config: HelperConfig):
        self.helper_config = helper_config
        self.logging = helper_config.get_logger()
        self.client = self._initialize_client()

    def _get_engine_from_env(self) -> str:
        engine = self.helper_config.get_string_val("AUTH_ENGINE", default="betterauth")
        return engine.strip().lower().capitalize()

    def _initialize_client(self) -> AuthClientInterface:
        """Instantiate the auth client for the configured engine.

        Raises:
            ValueError: If the engine is unsupported or cannot be imported.
        """
        engine = self._get_engine_from_env()
        class_name = f"AuthClient{engine}"
        try:
            module = __import__(
                f"shared.clients.auth.{engine.lower()}.{class_name}",
                fromlist=[class_name],
            )
            client_class = getattr(module, class_name)
        except (ImportError, AttributeError) as e:
            raise ValueError("Unsupported auth engine '%s'. Error: %s" % (engine, e))
        client = client_class(helper_config=self.helper_config)
        self.logging.debug("Instantiated auth client for engine: %s", engine)
        return client

    def get_client(self) -> AuthClientInterface:
        return self.client
