"""Central configuration helper for the docmind API server and document worker.

Every setting comes from an environment variable. Keys are upper-cased
before lookup and an empty value counts as unset, so ``FOO=`` in a compose
file falls back to the default like a missing ``FOO`` does.
"""

import logging
import os
from typing import Any


class HelperConfig:
    """Typed environment lookups plus the shared application logger."""

    def __init__(self, logger: logging.Logger) -> None:
        self._logger = logger

    def _read(self, key: str, default: Any) -> tuple[str, str | None]:
        """Return the upper-cased key and its stripped raw value, ``None`` when unset.

        Raises:
            ValueError: If the variable is unset and ``default`` is ``None``.
        """
        key = key.upper()
        raw = (os.getenv(key) or "").strip() or None
        if raw is None and default is None:
            raise ValueError(f"Environment variable '{key}' is not set.")
        return key, raw

    def get_string_val(self, key: str, default: str | None = None) -> str:
        """Read a string environment variable.

        Args:
            key (str): Environment variable name (case-insensitive).
            default (str | None): Fallback value if the variable is not set.

        Raises:
            ValueError: If the variable is not set and no default is provided.
        """
        _, raw = self._read(key, default)
        return raw if raw is not None else default

    def get_number_val(self, key: str, default: float | int | None = None) -> float | int:
        """Read an int, or a float when the value contains a dot.

        Raises:
            ValueError: If the variable is unset without default or not a number.
        """
        key, raw = self._read(key, default)
        if raw is None:
            return default
        try:
            return float(raw) if "." in raw else int(raw)
        except ValueError:
            raise ValueError(f"Environment variable '{key}' is not a valid number: '{raw}'.")

    def get_bool_val(self, key: str, default: bool | None = None) -> bool:
        """Read a flag. ``true``, ``1`` and ``yes`` are true, anything else is false."""
        _, raw = self._read(key, default)
        if raw is None:
            return default
        return raw.lower() in ("true", "1", "yes")

    def get_list_val(self, key: str, default: list[str] | None = None) -> list[str]:
        """Read a comma separated list, e.g. ``a,b`` or ``[a, b]``.

        Blank elements are dropped, so ``[]`` yields an empty list.

        Raises:
            ValueError: If the variable is not set and no default is provided.
        """
        _, raw = self._read(key, default)
        if raw is None:
            return default
        if raw.startswith("[") and raw.endswith("]"):
            raw = raw[1:-1]
        return [element.strip() for element in raw.split(",") if element.strip()]

    def get_choice_val(self, key: str, choices: list[str], default: str | None = None) -> str:
        """Read a string restricted to ``choices``; the value is lowercased before the check.

        Raises:
            ValueError: If the variable is not set and no default is provided, or the value is not allowed.
        """
        val = self.get_string_val(key, default=default).lower()
        if val not in choices:
            raise ValueError(f"Environment variable '{key.upper()}' must be one of {choices}. Got: '{val}'")
        return val

    def get_logger(self) -> logging.Logger:
        return self._logger
