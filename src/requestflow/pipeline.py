# SPDX-FileCopyrightText: 2025 Theori Inc.
# SPDX-License-Identifier: AGPL-3.0-or-later

"""
Request pipeline: normalize, run request interceptors, dispatch, run response interceptors.

Dispatch picks one of three paths:

- download (`on_download_progress` set): one attempt, body teed for progress;
- upload (`on_upload_progress` set): one attempt through the event-driven upload
  transport. Its response is returned as-is, without response interceptors;
- direct: the retry executor with body replay.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import replace
from typing import Any

from .body import ReplayableBody, classify_body, detect_content_type, encode_body, is_replayable, snapshot
from .cancellation import CancelSignal, compose, run_cancellable
from .config import RequestSettings, load_request_settings
from .http.adapters import TransportFn, as_transport
from .http.client import (
    Transport,
    UploadTransportFactory,
    create_default_transport,
    create_default_upload_transport_factory,
)
from .http.headers import header_value, normalize_headers
from .http.models import RequestContext, RequestOptions, Response, RetryPolicy
from .http.url import build_url
from .interceptors import InterceptorChain, maybe_await
from .progress import download_with_progress, upload_with_progress
from .retry import execute

logger = logging.getLogger(__name__)

RequestInterceptor = Callable[[RequestContext], "Awaitable[RequestContext | Mapping[str, Any] | None] | RequestContext | Mapping[str, Any] | None"]
ResponseInterceptor = Callable[[Response], "Awaitable[Response | None] | Response | None"]


class Interceptors:
    """Request and response interceptor chains owned by one pipeline."""

    def __init__(self) -> None:
        self.request: InterceptorChain[RequestInterceptor] = InterceptorChain()
        self.response: InterceptorChain[ResponseInterceptor] = InterceptorChain()


def _merge_context(current: RequestContext, result: Any) -> RequestContext | None:
    if result is None:
        return None
    if isinstance(result, RequestContext):
        return result
    if isinstance(result, Mapping):
        url = result.get("url")
        options = result.get("options")
        if isinstance(options, Mapping):
            options = current.options.merged(options)
        return RequestContext(
            url=url if url is not None else current.url,
            options=options if options is not None else current.options,
        )
    raise TypeError(f"Request interceptor returned unsupported value {result!r}")


async def _apply_request_interceptor(interceptor: RequestInterceptor, ctx: RequestContext) -> RequestContext | None:
    return _merge_context(ctx, await maybe_await(interceptor(ctx)))


def _refresh_body(original_body: Any, options: RequestOptions) -> RequestOptions:
    """Re-derive the wire body and its replay copy when an interceptor swapped the body."""
    if options.body is original_body:
        return options
    kind = classify_body(options.body, options.request_type)
    body = encode_body(kind, options.body, header_value(options.headers, "content-type"))
    body_copy = snapshot(body) if body is not None and is_replayable(kind) else None
    return replace(options, body=body, body_copy=body_copy, body_kind=kind)


class RequestPipeline:
    """
    Configurable request pipeline over a single-attempt transport.

    Interceptor registries belong to this instance only. Durations are milliseconds.
    """

    def __init__(
        self,
        transport: Transport | TransportFn | None = None,
        *,
        upload_transport_factory: UploadTransportFactory | None = None,
        settings: RequestSettings | None = None,
        **defaults: Any,
    ):
        self.settings = settings or load_request_settings()
        self.defaults = RequestOptions.from_settings(self.settings).merged(defaults)
        self._timeout = self.defaults.timeout
        self._transport = as_transport(transport) if transport is not None else None
        self._owns_transport = transport is None
        self._upload_transport_factory = upload_transport_factory
        self.interceptors = Interceptors()

    @property
    def transport(self) -> Transport:
        if self._transport is None:
            self._transport = create_default_transport(self.settings)
        return self._transport

    @property
    def upload_transport_factory(self) -> UploadTransportFactory:
        if self._upload_transport_factory is None:
            self._upload_transport_factory = create_default_upload_transport_factory(self.settings)
        return self._upload_transport_factory

    @property
    def timeout(self) -> float:
        return self._timeout

    @timeout.setter
    def timeout(self, value: float) -> None:
        # Requests already normalized keep the timeout they resolved.
        self._timeout = value
        self.defaults = replace(self.defaults, timeout=value)

    def normalize(self, url: str, options: RequestOptions | Mapping[str, Any] | None = None, **overrides: Any) -> RequestContext:
        """Resolve defaults, query params, headers and the wire body for one request."""
        opts = self.defaults.merged(options).merged(overrides)
        method = (opts.method or "GET").upper()

        headers = normalize_headers(opts.headers)
        value = opts.data if opts.data is not None else opts.body
        kind = classify_body(value, opts.request_type)
        if not header_value(headers, "content-type"):
            detected = detect_content_type(kind, value)
            if detected:
                headers["content-type"] = detected
        body = encode_body(kind, value, header_value(headers, "content-type"))
        body_copy = snapshot(body) if body is not None and is_replayable(kind) else None

        timeout = opts.timeout if opts.timeout is not None else self.timeout
        normalized = replace(
            opts,
            method=method,
            headers=headers,
            timeout=timeout,
            retries=max(0, opts.retries or 0),
            signal=opts.signal or CancelSignal(),
            body=body,
            body_copy=body_copy,
            body_kind=kind,
        )
        return RequestContext(url=build_url(url, opts.params, method), options=normalized)

    async def apply_request_interceptors(self, ctx: RequestContext) -> RequestContext:
        if self.interceptors.request.size() <= 0:
            return ctx
        return await self.interceptors.request.run_forward(ctx, _apply_request_interceptor)

    async def apply_response_interceptors(self, response: Response) -> Response:
        if self.interceptors.response.size() <= 0:
            return response
        return await self.interceptors.response.run_reverse(response)

    async def request(self, url: str, options: RequestOptions | Mapping[str, Any] | None = None, **overrides: Any) -> Response:
        ctx = self.normalize(url, options, **overrides)
        original_body = ctx.options.body
        ctx = await self.apply_request_interceptors(ctx)
        url, options = ctx.url, _refresh_body(original_body, ctx.options)

        if options.on_download_progress:
            logger.debug("%s %s (download with progress)", options.method, url)
            response = await download_with_progress(self.transport, url, options, options.on_download_progress)
            return await self.apply_response_interceptors(response)

        if options.on_upload_progress:
            logger.debug("%s %s (upload with progress)", options.method, url)
            return await upload_with_progress(self.upload_transport_factory, url, options, options.on_upload_progress)

        logger.debug("%s %s", options.method, url)
        transport = self.transport

        async def attempt(body: Any) -> Response:
            attempt_options = replace(options, body=body)
            with compose(options.signal, options.timeout) as composed:
                try:
                    return await run_cancellable(transport.call(url, attempt_options, composed.signal), composed.signal)
                except Exception as exc:
                    classified = composed.classify(exc)
                    if classified is exc:
                        raise
                    raise classified from exc

        body = ReplayableBody(options.body_kind or classify_body(options.body), options.body, options.body_copy)
        response = await execute(attempt, RetryPolicy.from_options(options), body, signal=options.signal)
        return await self.apply_response_interceptors(response)

    async def aclose(self) -> None:
        if self._transport is not None and self._owns_transport:
            await self._transport.aclose()

    async def __aenter__(self) -> RequestPipeline:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:  # noqa: ANN001
        await self.aclose()


class RequestFunction:
    """
    Callable facade over a pipeline: `await request(url, options)`.

    Exposes `timeout` (read/write) and `interceptors.request` / `interceptors.response`.
    """

    def __init__(self, pipeline: RequestPipeline):
        self._pipeline = pipeline

    async def __call__(self, url: str, options: RequestOptions | Mapping[str, Any] | None = None, **overrides: Any) -> Response:
        return await self._pipeline.request(url, options, **overrides)

    @property
    def pipeline(self) -> RequestPipeline:
        return self._pipeline

    @property
    def timeout(self) -> float:
        return self._pipeline.timeout

    @timeout.setter
    def timeout(self, value: float) -> None:
        self._pipeline.timeout = value

    @property
    def interceptors(self) -> Interceptors:
        return self._pipeline.interceptors


def create_request(pipeline: RequestPipeline | None = None) -> RequestFunction:
    return RequestFunction(pipeline or RequestPipeline())


request = create_request()


__all__ = [
    "Interceptors",
    "RequestFunction",
    "RequestInterceptor",
    "RequestPipeline",
    "ResponseInterceptor",
    "create_request",
    "request",
]
