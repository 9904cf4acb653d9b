from abc import abstractmethod

import httpx

from shared.clients.ClientInterface import ClientInterface
from shared.clients.auth.models.Session import SessionUser
from shared.helper.HelperConfig import HelperConfig


class AuthClientInterface(ClientInterface):
    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_client_type(self) -> str:
        return "auth"

    ################ ENDPOINTS ##################
    @abstractmethod
    def _get_endpoint_session(self) -> str:
        """Returns the endpoint path that resolves a session from request headers."""
        pass

    @abstractmethod
    def get_forwarded_header_names(self) -> list[str]:
        """Returns the lowercase names of request headers the auth backend needs (cookies, bearer token)."""
        pass

    ##########################################
    ########### RESPONSE PARSER ##############
    ##########################################

    @abstractmethod
    def extract_session_user(self, response_data: dict | None) -> SessionUser | None:
        pass

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def do_get_session(self, headers: dict[str, str]) -> SessionUser | None:
        """Resolve the user of an incoming request.

        Args:
            headers (dict[str, str]): Incoming request headers; only the forwarded ones are sent on.

        Returns:
            SessionUser | None: The user, or None if the request carries no valid session.
        """
        lowered = {name.lower(): value for name, value in headers.items()}
        forwarded = {name: lowered[name] for name in self.get_forwarded_header_names() if name in lowered}
        if not forwarded:
            return None
        try:
            response = await self.do_request(
                method="GET",
                endpoint=self._get_endpoint_session(),
                additional_headers=forwarded,
            )
        except httpx.HTTPError as exc:
            self.logging.warning("Session lookup failed: %s", exc)
            return None
        if response.status_code == 401:
            return None
        if response.status_code >= 300:
            self.logging.warning("Session lookup failed with status %d", response.status_code)
            return None
        try:
            data = response.json()
        except ValueError as exc:
            self.logging.warning("Session lookup returned an invalid body: %s", exc)
            return None
        return self.extract_session_user(data)
