# SPDX-FileCopyrightText: 2025 Theori Inc.
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Error taxonomy and exception helpers."""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Stable discriminator carried by every error raised from the pipeline."""

    USER_CANCELLED = "USER_CANCELLED"
    DEADLINE_EXCEEDED = "DEADLINE_EXCEEDED"
    BODY_NOT_REPLAYABLE = "BODY_NOT_REPLAYABLE"
    TRANSPORT_ERROR = "TRANSPORT_ERROR"
    STREAM_TRANSPORT_ERROR = "STREAM_TRANSPORT_ERROR"


class ErrorCategory(str, Enum):
    TIMEOUT = "TIMEOUT"
    SSL_ERROR = "SSL_ERROR"
    CONNECTION_ERROR = "CONNECTION_ERROR"
    DNS_ERROR = "DNS_ERROR"
    HTTP_ERROR = "HTTP_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class RequestFlowError(Exception):
    """Base class for pipeline errors."""

    kind: ErrorKind = ErrorKind.TRANSPORT_ERROR
    name: str = "Error"

    def __init__(self, message: str = "", **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details


class AbortedError(RequestFlowError):
    """
    Raw abort observed on a cancelled signal.

    Transports raise this when their cancel signal fires. The pipeline never lets it
    reach callers: the cancellation composer turns it into UserCancelledError or
    DeadlineExceededError.
    """

    name = "AbortError"

    def __init__(self, message: str = "The operation was aborted", reason: Any = None):
        super().__init__(message)
        self.reason = reason


class UserCancelledError(RequestFlowError):
    kind = ErrorKind.USER_CANCELLED
    name = "AbortError"


class DeadlineExceededError(RequestFlowError):
    kind = ErrorKind.DEADLINE_EXCEEDED
    name = "TimeoutError"


class BodyNotReplayableError(RequestFlowError):
    kind = ErrorKind.BODY_NOT_REPLAYABLE
    name = "BodyNotReplayableError"


class TransportError(RequestFlowError):
    """Network or protocol failure of a single transport call."""

    kind = ErrorKind.TRANSPORT_ERROR
    name = "NetworkError"

    def __init__(
        self,
        message: str = "",
        *,
        category: ErrorCategory = ErrorCategory.UNKNOWN_ERROR,
        status: int | None = None,
        **details: Any,
    ):
        super().__init__(message, **details)
        self.category = category
        self.status = status


class StreamTransportError(RequestFlowError):
    """Failure reported by the event-driven upload transport."""

    kind = ErrorKind.STREAM_TRANSPORT_ERROR

    def __init__(self, message: str = "", *, transport: Any = None, **details: Any):
        super().__init__(message, **details)
        self.transport = transport


class UploadTimeoutError(StreamTransportError):
    name = "TimeoutError"


class UploadAbortError(StreamTransportError):
    name = "AbortError"


class UploadNetworkError(StreamTransportError):
    name = "NetworkError"


def is_abort_error(exc: BaseException) -> bool:
    """True for abort-class errors that still need user/deadline classification."""
    if isinstance(exc, AbortedError):
        return True
    if isinstance(exc, RequestFlowError):
        return False
    return getattr(exc, "name", None) == "AbortError"


def error_kind(exc: BaseException) -> ErrorKind:
    """Discriminator for any exception; foreign exceptions count as transport errors."""
    kind = getattr(exc, "kind", None)
    if isinstance(kind, ErrorKind):
        return kind
    return ErrorKind.TRANSPORT_ERROR


def categorize_exception(exc: Exception) -> ErrorCategory:
    """
    Map Python/httpx exceptions to ErrorCategory.
    """
    import socket
    import ssl as ssl_module

    import httpx

    if isinstance(exc, TransportError):
        return exc.category

    if isinstance(exc, httpx.TimeoutException):
        return ErrorCategory.TIMEOUT

    if isinstance(exc, (httpx.ConnectError, httpx.RemoteProtocolError, httpx.NetworkError, httpx.ProxyError)):
        return ErrorCategory.CONNECTION_ERROR

    if isinstance(exc, httpx.HTTPStatusError):
        return ErrorCategory.HTTP_ERROR

    if isinstance(exc, (ssl_module.SSLError, ssl_module.CertificateError)):
        return ErrorCategory.SSL_ERROR

    if isinstance(exc, (socket.gaierror, socket.herror)):
        return ErrorCategory.DNS_ERROR

    if isinstance(exc, (ConnectionError, ConnectionRefusedError, ConnectionResetError)):
        return ErrorCategory.CONNECTION_ERROR

    if isinstance(exc, TimeoutError):
        return ErrorCategory.TIMEOUT

    return ErrorCategory.UNKNOWN_ERROR


def error_category_to_reason(category: ErrorCategory | None) -> str:
    """User-facing reason string."""
    mapping = {
        ErrorCategory.TIMEOUT: "Network timeout",
        ErrorCategory.SSL_ERROR: "TLS/certificate issue",
        ErrorCategory.CONNECTION_ERROR: "Network connectivity issue",
        ErrorCategory.DNS_ERROR: "DNS resolution failure",
        ErrorCategory.HTTP_ERROR: "Unexpected HTTP status",
        ErrorCategory.UNKNOWN_ERROR: "Network error",
        None: "",
    }
    return mapping.get(category, "Request failed due to network error")


__all__ = [
    "AbortedError",
    "BodyNotReplayableError",
    "DeadlineExceededError",
    "ErrorCategory",
    "ErrorKind",
    "RequestFlowError",
    "StreamTransportError",
    "TransportError",
    "UploadAbortError",
    "UploadNetworkError",
    "UploadTimeoutError",
    "UserCancelledError",
    "categorize_exception",
    "error_category_to_reason",
    "error_kind",
    "is_abort_error",
]
