from shared.clients.auth.AuthClientInterface import AuthClientInterface
from shared.clients.auth.models.Session import SessionUser
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import EnvConfig


class AuthClientBetterauth(AuthClientInterface):
    """Resolves sessions against a Better Auth server (GET /api/auth/get-session)."""

    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self._base_url = self.get_config_val("BASE_URL", default=None, val_type="string")

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_engine_name(self) -> str:
        return "Betterauth"

    ################ CONFIG ##################
    def _get_required_config(self) -> list[EnvConfig]:
        return [
            EnvConfig(env_key="BASE_URL", val_type="string", default=None),
        ]

    ################ AUTH ##################
    def _get_auth_header(self) -> dict:
        # credentials are forwarded from the incoming request
        return {}

    ################ ENDPOINTS ##################
    def _get_base_url(self) -> str:
        return self._base_url

    def _get_endpoint_healthcheck(self) -> str:
        return "/api/auth/ok"

    def _get_endpoint_session(self) -> str:
        return "/api/auth/get-session"

    def get_forwarded_header_names(self) -> list[str]:
        return ["cookie", "authorization"]

    ##########################################
    ########### RESPONSE PARSER ##############
    ##########################################

    def extract_session_user(self, response_data: dict | None) -> SessionUser | None:
        # Better Auth answers 200 with a null body when there is no session
        if not isinstance(response_data, dict) or not response_data.get("session"):
            return None
        user = response_data.get("user") or {}
        if not user.get("id"):
            return None
        return SessionUser(id=str(user["id"]), email=user.get("email"), name=user.get("name"))
