from fastapi import Request

from shared.clients.auth.models.Session import SessionUser
from shared.models.errors import UnauthorizedError


async def get_current_user(request: Request) -> SessionUser:
    """Resolve the signed-in user from the request's session cookie or bearer token.

    Args:
        request (Request): The FastAPI request object (provides app.state.auth_client).

    Returns:
        SessionUser: The authenticated user.

    Raises:
        UnauthorizedError: 401 if the request carries no valid session.
    """
    auth_client = request.app.state.auth_client
    user = await auth_client.do_get_session(dict(request.headers))
    if user is None:
        raise UnauthorizedError()
    return user
