"""Typed stream errors.

A failed model request is reported as an ``LLMError`` value, never as an
exception crossing the streaming boundary.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class ErrorType(Enum):
    AUTHENTICATION = "authentication"
    RATE_LIMIT = "rate_limit"
    QUOTA_EXCEEDED = "quota_exceeded"
    INVALID_REQUEST = "invalid_request"
    SERVER_ERROR = "server_error"
    UNKNOWN = "unknown"


@dataclass(slots=True)
class LLMError:
    """A stream failure surfaced to the user as a dismissible message."""

    type: ErrorType
    message: str
    status_code: int | None = None
    original: Any = None

    def __str__(self) -> str:
        return self.message


def _status_code(exc: BaseException) -> int | None:
    for attr in ("status_code", "status", "code"):
        value = getattr(exc, attr, None)
        if isinstance(value, int):
            return value
        if isinstance(value, str) and value.isdigit():
            return int(value)
    return None


def classify_error(exc: BaseException) -> LLMError:
    """Map a transport exception to an ``LLMError``.

    Uses the HTTP status code when the exception carries one (litellm's
    exceptions do) and falls back to message heuristics.
    """
    message = str(exc) or exc.__class__.__name__
    lowered = message.lower()
    status = _status_code(exc)

    if status in (401, 403) or "api key" in lowered or "unauthorized" in lowered:
        error_type = ErrorType.AUTHENTICATION
    elif "quota" in lowered or "insufficient credits" in lowered:
        error_type = ErrorType.QUOTA_EXCEEDED
    elif status == 429 or "rate limit" in lowered:
        error_type = ErrorType.RATE_LIMIT
    elif status in (400, 404, 413, 422):
        error_type = ErrorType.INVALID_REQUEST
    elif (status is not None and status >= 500) or "unavailable" in lowered:
        error_type = ErrorType.SERVER_ERROR
    else:
        error_type = ErrorType.UNKNOWN

    return LLMError(type=error_type, message=message, status_code=status, original=exc)
