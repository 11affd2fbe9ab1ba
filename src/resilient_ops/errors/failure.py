"""
Failure normalization.

Raw failures arrive in many shapes (httpx exceptions, builtin OS errors,
exceptions carrying a status attribute, plain dicts from RPC layers, bare
strings). They are reduced once, here, to a ``FailureInfo`` with an explicit
``kind`` discriminant so the classifier never has to probe attributes again.
"""

from __future__ import annotations

import asyncio
import contextlib
import math
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from enum import Enum
from typing import Any

import httpx


class FailureKind(str, Enum):
    """Discriminant for normalized failures."""

    HTTP_STATUS = "http_status"
    TIMEOUT = "timeout"
    CONNECTION = "connection"
    EXCEPTION = "exception"
    MESSAGE = "message"


@dataclass(frozen=True)
class FailureInfo:
    """A raw failure reduced to the fields classification needs.

    Attributes:
        kind: How the failure was recognized
        message: Raw failure text (internal; never shown to end users)
        status_code: HTTP-like status code, if any
        retry_after_ms: Server-provided retry hint in milliseconds
        error_type: Name of the exception type, if the failure was one
    """

    kind: FailureKind
    message: str = ""
    status_code: int | None = None
    retry_after_ms: float | None = None
    error_type: str | None = None


def describe_failure(error: Any) -> FailureInfo:
    """Normalize a raw failure into a FailureInfo.

    Never raises: a failure whose text or attributes cannot be read is
    described by its type name alone.

    Args:
        error: Exception, mapping, string or any other failure value

    Returns:
        FailureInfo describing the failure
    """
    try:
        return _describe(error)
    except Exception:
        return FailureInfo(
            kind=FailureKind.EXCEPTION if isinstance(error, BaseException) else FailureKind.MESSAGE,
            message=type(error).__name__,
            error_type=type(error).__name__ if isinstance(error, BaseException) else None,
        )


def _describe(error: Any) -> FailureInfo:
    if isinstance(error, httpx.HTTPStatusError):
        response = error.response
        return FailureInfo(
            kind=FailureKind.HTTP_STATUS,
            message=str(error),
            status_code=response.status_code,
            retry_after_ms=parse_retry_after(response.headers.get("retry-after")),
            error_type=type(error).__name__,
        )

    if isinstance(error, (httpx.TimeoutException, asyncio.TimeoutError, TimeoutError)):
        return FailureInfo(
            kind=FailureKind.TIMEOUT,
            message=str(error),
            error_type=type(error).__name__,
        )

    if isinstance(error, (httpx.TransportError, ConnectionError)):
        return FailureInfo(
            kind=FailureKind.CONNECTION,
            message=str(error),
            error_type=type(error).__name__,
        )

    if isinstance(error, BaseException):
        status = _coerce_status(
            getattr(error, "status_code", None) or getattr(error, "status", None)
        )
        retry_after = getattr(error, "retry_after", None)
        return FailureInfo(
            kind=FailureKind.HTTP_STATUS if status is not None else FailureKind.EXCEPTION,
            message=str(error),
            status_code=status,
            retry_after_ms=_seconds_to_ms(retry_after),
            error_type=type(error).__name__,
        )

    if isinstance(error, Mapping):
        status = _coerce_status(error.get("status_code") or error.get("status"))
        message = error.get("message") or error.get("error") or ""
        return FailureInfo(
            kind=FailureKind.HTTP_STATUS if status is not None else FailureKind.MESSAGE,
            message=str(message),
            status_code=status,
            retry_after_ms=_seconds_to_ms(error.get("retry_after")),
        )

    return FailureInfo(
        kind=FailureKind.MESSAGE,
        message="" if error is None else str(error),
    )


def parse_retry_after(value: str | None) -> float | None:
    """Parse a Retry-After header value into milliseconds.

    Supports both delta-seconds and HTTP-date forms.
    """
    if not value:
        return None

    with contextlib.suppress(ValueError):
        seconds = float(value)
        if not math.isfinite(seconds):
            return None
        return max(0.0, seconds * 1000.0)

    with contextlib.suppress(TypeError, ValueError):
        retry_at = parsedate_to_datetime(value)
        delta = (retry_at - datetime.now(timezone.utc)).total_seconds()
        return max(0.0, delta * 1000.0)

    return None


def _coerce_status(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.isdigit():
        return int(value)
    return None


def _seconds_to_ms(value: Any) -> float | None:
    if (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
        and value > 0
    ):
        return float(value) * 1000.0
    return None
