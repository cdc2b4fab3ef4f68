"""Error taxonomy shared by the round tracker and the completion pipeline."""

from __future__ import annotations

import asyncio
import json
from enum import Enum

import httpx

__all__ = [
    "ErrorCategory",
    "RoundkeeperError",
    "NetworkError",
    "StorageError",
    "RemoteServiceError",
    "ValidationError",
    "PermissionDeniedError",
    "OperationTimeoutError",
    "ProcessingError",
    "classify_exception",
    "as_roundkeeper_error",
]


class ErrorCategory(str, Enum):
    NETWORK = "network"
    STORAGE = "storage"
    REMOTE_SERVICE = "remote_service"
    VALIDATION = "validation"
    PERMISSION = "permission"
    TIMEOUT = "timeout"
    PROCESSING = "processing"


class RoundkeeperError(Exception):
    """Base class for every error raised by a failure site in this package."""

    category: ErrorCategory = ErrorCategory.PROCESSING

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "category": self.category.value,
            "message": self.message,
        }
        if self.code:
            payload["code"] = self.code
        return payload


class NetworkError(RoundkeeperError):
    category = ErrorCategory.NETWORK


class StorageError(RoundkeeperError):
    """Local durable storage could not be read or written."""

    category = ErrorCategory.STORAGE


class RemoteServiceError(RoundkeeperError):
    """The backend rejected a read or a write."""

    category = ErrorCategory.REMOTE_SERVICE


class ValidationError(RoundkeeperError):
    category = ErrorCategory.VALIDATION


class PermissionDeniedError(RoundkeeperError):
    category = ErrorCategory.PERMISSION


class OperationTimeoutError(RoundkeeperError):
    category = ErrorCategory.TIMEOUT


class ProcessingError(RoundkeeperError):
    category = ErrorCategory.PROCESSING


_CATEGORY_TYPES: dict[ErrorCategory, type[RoundkeeperError]] = {
    ErrorCategory.NETWORK: NetworkError,
    ErrorCategory.STORAGE: StorageError,
    ErrorCategory.REMOTE_SERVICE: RemoteServiceError,
    ErrorCategory.VALIDATION: ValidationError,
    ErrorCategory.PERMISSION: PermissionDeniedError,
    ErrorCategory.TIMEOUT: OperationTimeoutError,
    ErrorCategory.PROCESSING: ProcessingError,
}


def classify_exception(exc: BaseException) -> ErrorCategory:
    """Map an exception onto the taxonomy by type and status code."""

    if isinstance(exc, RoundkeeperError):
        return exc.category
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError, httpx.TimeoutException)):
        return ErrorCategory.TIMEOUT
    if isinstance(exc, httpx.HTTPStatusError):
        if exc.response.status_code in (401, 403):
            return ErrorCategory.PERMISSION
        return ErrorCategory.REMOTE_SERVICE
    if isinstance(exc, httpx.TransportError):
        return ErrorCategory.NETWORK
    if isinstance(exc, PermissionError):
        return ErrorCategory.PERMISSION
    if isinstance(exc, (OSError, json.JSONDecodeError)):
        return ErrorCategory.STORAGE
    return ErrorCategory.PROCESSING


def as_roundkeeper_error(exc: BaseException) -> RoundkeeperError:
    """Return ``exc`` itself when already tagged, otherwise a tagged wrapper."""

    if isinstance(exc, RoundkeeperError):
        return exc
    category = classify_exception(exc)
    code: str | None = None
    if isinstance(exc, httpx.HTTPStatusError):
        code = str(exc.response.status_code)
    message = str(exc) or type(exc).__name__
    wrapped = _CATEGORY_TYPES[category](message, code=code)
    wrapped.__cause__ = exc
    return wrapped
