from pydantic import BaseModel


class EnvConfig(BaseModel):
    """
    Describes one environment setting a client needs before it can boot.

    Attributes:
        env_key (str): Key without the client prefix, e.g. "BASE_URL" for RAG_QDRANT_BASE_URL.
        val_type (str): One of "string", "number", "bool" and "list".
        default (str | int | float | bool | list | None): Value used when the variable is unset. None marks the setting as required.
    """

    env_key: str
    val_type: str
    default: str | int | float | bool | list | None = None
