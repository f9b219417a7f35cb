# SPDX-FileCopyrightText: 2025 Theori Inc.
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Transport exports."""

from .adapters import FunctionTransport, StubTransport, as_transport
from .client import (
    Transport,
    UploadTransport,
    create_default_transport,
    create_default_upload_transport_factory,
)
from .headers import content_length, header_value, normalize_headers, parse_raw_headers
from .httpx_client import HttpxTransport, HttpxUploadTransport
from .models import Headers, ProgressEvent, RequestContext, RequestOptions, Response, RetryPolicy
from .url import build_url

__all__ = [
    "FunctionTransport",
    "Headers",
    "HttpxTransport",
    "HttpxUploadTransport",
    "ProgressEvent",
    "RequestContext",
    "RequestOptions",
    "Response",
    "RetryPolicy",
    "StubTransport",
    "Transport",
    "UploadTransport",
    "as_transport",
    "build_url",
    "content_length",
    "create_default_transport",
    "create_default_upload_transport_factory",
    "header_value",
    "normalize_headers",
    "parse_raw_headers",
]
