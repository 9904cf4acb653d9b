from pydantic import BaseModel


class SessionUser(BaseModel):
    """The authenticated user behind a request."""

    id: str
    email: str | None = None
    name: str | None = None
