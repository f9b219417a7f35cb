# SPDX-FileCopyrightText: 2025 Theori Inc.
# SPDX-License-Identifier: AGPL-3.0-or-later

"""
requestflow package entrypoint.

An asyncio request pipeline over a single-attempt HTTP transport: request and
response interceptors, deadlines, retry with body replay, and download/upload
progress. The transport is injectable; the default one is built on httpx.
"""

from .body import Blob, BodyKind, FormBody, MultipartForm
from .cancellation import CancelController, CancelSignal, compose
from .config import RequestSettings, load_request_settings
from .errors import (
    BodyNotReplayableError,
    DeadlineExceededError,
    ErrorKind,
    RequestFlowError,
    StreamTransportError,
    TransportError,
    UserCancelledError,
)
from .http import (
    HttpxTransport,
    ProgressEvent,
    RequestContext,
    RequestOptions,
    Response,
    StubTransport,
    Transport,
)
from .interceptors import InterceptorChain
from .log import setup_logging
from .pipeline import RequestFunction, RequestPipeline, create_request, request
from .version import __version__

__all__ = [
    "Blob",
    "BodyKind",
    "BodyNotReplayableError",
    "CancelController",
    "CancelSignal",
    "DeadlineExceededError",
    "ErrorKind",
    "FormBody",
    "HttpxTransport",
    "InterceptorChain",
    "MultipartForm",
    "ProgressEvent",
    "RequestContext",
    "RequestFlowError",
    "RequestFunction",
    "RequestOptions",
    "RequestPipeline",
    "RequestSettings",
    "Response",
    "StreamTransportError",
    "StubTransport",
    "Transport",
    "TransportError",
    "UserCancelledError",
    "compose",
    "create_request",
    "load_request_settings",
    "request",
    "setup_logging",
    "__version__",
]
