"""Application error taxonomy shared by the API server and the document worker.

API handlers render every ``AppError`` as::

    {"error": {"code": "NOT_FOUND", "message": "...", "details": {...}}}

Inside the worker, ``UnrecoverableJobError`` marks a job as failed without
spending its remaining attempts.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel


class ErrorCode(str, Enum):
    """Error codes exposed to API clients."""

    BAD_REQUEST = "BAD_REQUEST"
    UNAUTHORIZED = "UNAUTHORIZED"
    NOT_FOUND = "NOT_FOUND"
    UNSUPPORTED_FILE_TYPE = "UNSUPPORTED_FILE_TYPE"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    EXTERNAL_SERVICE_ERROR = "EXTERNAL_SERVICE_ERROR"


class ErrorDetail(BaseModel):
    code: str
    message: str
    details: dict[str, Any] | None = None


class ErrorResponse(BaseModel):
    error: ErrorDetail


class AppError(Exception):
    """Base class for errors that map onto an HTTP status."""

    code: ErrorCode = ErrorCode.INTERNAL_ERROR
    status_code: int = 500

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_response(self) -> ErrorResponse:
        return ErrorResponse(error=ErrorDetail(code=self.code.value, message=self.message, details=self.details))


class BadRequestError(AppError):
    code = ErrorCode.BAD_REQUEST
    status_code = 400


class UnsupportedFileTypeError(BadRequestError):
    code = ErrorCode.UNSUPPORTED_FILE_TYPE

    def __init__(self, mime_type: str) -> None:
        super().__init__(f"Unsupported file type: {mime_type}", details={"mime_type": mime_type})
        self.mime_type = mime_type


class UnauthorizedError(AppError):
    code = ErrorCode.UNAUTHORIZED
    status_code = 401

    def __init__(self, message: str = "Authentication required", details: dict[str, Any] | None = None) -> None:
        super().__init__(message, details)


class NotFoundError(AppError):
    code = ErrorCode.NOT_FOUND
    status_code = 404

    def __init__(self, resource: str, resource_id: str | None = None) -> None:
        message = f"{resource} not found" if resource_id is None else f"{resource} '{resource_id}' not found"
        super().__init__(message, details={"resource": resource, "id": resource_id} if resource_id else None)
        self.resource = resource
        self.resource_id = resource_id


class ClientResponseError(Exception):
    """Raised by HTTP clients when a backend answers with a non-2xx status."""

    def __init__(self, url: str, status_code: int, body: str = "") -> None:
        super().__init__(f"Request to {url} failed with status {status_code}")
        self.url = url
        self.status_code = status_code
        self.body = body


class UnrecoverableJobError(Exception):
    """Raised by a job processor when retrying cannot possibly succeed."""
