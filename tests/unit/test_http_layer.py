# SPDX-FileCopyrightText: 2025 Theori Inc.
# SPDX-License-Identifier: AGPL-3.0-or-later

import asyncio

import httpx
import pytest

from requestflow.body import MultipartForm
from requestflow.cancellation import CancelController, CancelSignal
from requestflow.config import RequestSettings
from requestflow.errors import AbortedError, ErrorCategory, TransportError, UploadNetworkError
from requestflow.http.adapters import FunctionTransport, StubTransport, as_transport
from requestflow.http.headers import content_length, header_value, normalize_headers, parse_raw_headers
from requestflow.http.httpx_client import HttpxTransport, HttpxUploadTransport
from requestflow.http.models import ProgressEvent, RequestOptions, Response, RetryPolicy
from requestflow.http.url import build_url
from requestflow.progress import upload_with_progress


def _options(**kwargs):
    defaults = {"method": "GET", "headers": {}, "response_type": "json"}
    defaults.update(kwargs)
    return RequestOptions(**defaults)


def test_normalize_headers_lowercases_and_skips_empty_names():
    headers = normalize_headers({"X-Test": 1, "": "ignored", "Accept": None})
    assert headers == {"x-test": "1", "accept": ""}
    assert normalize_headers(None) == {}


def test_header_value_is_case_insensitive():
    headers = {"Content-Type": " text/html "}
    assert header_value(headers, "content-type") == "text/html"
    assert header_value(headers, "CONTENT-TYPE") == "text/html"
    assert header_value(headers, "x-missing", "fallback") == "fallback"


def test_parse_raw_headers_keeps_colons_in_values():
    raw = "Content-Type: text/plain\r\nLocation: http://example.com:8080/x\r\n: orphan\r\n"
    assert parse_raw_headers(raw) == {"content-type": "text/plain", "location": "http://example.com:8080/x"}
    assert parse_raw_headers("") == {}


@pytest.mark.parametrize(
    ("value", "expected"),
    [("42", 42), ("0", 0), ("-1", None), ("abc", None), (None, None)],
)
def test_content_length_parsing(value, expected):
    headers = {} if value is None else {"Content-Length": value}
    assert content_length(headers) == expected


def test_build_url_appends_sorted_params():
    assert build_url("/search?q=x", {"z": 1, "a": None, "b": False}) == "/search?q=x&b=false&z=1"
    assert build_url("http://h/p", {"tag": ["b", "a"]}) == "http://h/p?tag=a&tag=b"
    assert build_url("/p", None) == "/p"
    assert build_url("/p", {"only": None}) == "/p"


def test_progress_event_build():
    event = ProgressEvent.build(25, 100)
    assert event.fraction == 0.25
    assert event.percent == 25
    unknown = ProgressEvent.build(10, None)
    assert unknown.fraction is None and unknown.percent is None


def test_retry_policy_from_options():
    policy = RetryPolicy.from_options(_options(retries=-3, retry_delay=None))
    assert policy.attempts == 1
    assert policy.retry_delay == 2000
    backoff = RetryPolicy(retries=2, backoff=lambda n: 100 * n)
    assert backoff.delay_for(2) == 200


@pytest.mark.asyncio
async def test_response_buffers_body_once():
    response = Response.from_text('{"a": [1, 2]}', status=201)
    assert response.ok
    assert not response.body_used
    assert await response.json() == {"a": [1, 2]}
    assert response.body_used
    assert await response.text() == '{"a": [1, 2]}'
    assert not Response(status=404).ok


@pytest.mark.asyncio
async def test_httpx_transport_streams_response_body():
    seen = {}

    def handler(request):
        seen["method"] = request.method
        seen["headers"] = dict(request.headers)
        seen["body"] = request.content
        return httpx.Response(200, headers={"X-Reply": "yes"}, content=b'{"ok": true}')

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    transport = HttpxTransport(RequestSettings(user_agent="flow-test/1.0"), client=client)
    try:
        response = await transport.call(
            "http://example.com/api",
            _options(method="POST", headers={"content-type": "text/plain"}, body="hello"),
            CancelSignal(),
        )
        assert response.status == 200
        assert response.headers["x-reply"] == "yes"
        assert await response.json() == {"ok": True}
    finally:
        await client.aclose()

    assert seen["method"] == "POST"
    assert seen["body"] == b"hello"
    assert seen["headers"]["user-agent"] == "flow-test/1.0"
    assert seen["headers"]["content-type"] == "text/plain"


@pytest.mark.asyncio
async def test_httpx_transport_maps_connect_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        transport = HttpxTransport(RequestSettings(), client=client)
        with pytest.raises(TransportError) as excinfo:
            await transport.call("http://example.com", _options(), CancelSignal())
    assert excinfo.value.category is ErrorCategory.CONNECTION_ERROR
    assert isinstance(excinfo.value.__cause__, httpx.ConnectError)


@pytest.mark.asyncio
async def test_httpx_transport_raises_abort_when_signal_fires():
    async def handler(request):
        await asyncio.sleep(10)
        return httpx.Response(200)

    controller = CancelController()
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        transport = HttpxTransport(RequestSettings(), client=client)
        asyncio.get_running_loop().call_later(0.02, controller.cancel, "stop")
        with pytest.raises(AbortedError) as excinfo:
            await transport.call("http://example.com", _options(), controller.signal)
    assert excinfo.value.reason == "stop"


@pytest.mark.asyncio
async def test_httpx_transport_sends_multipart_with_boundary():
    seen = {}

    def handler(request):
        seen["content_type"] = request.headers["content-type"]
        seen["body"] = request.content
        return httpx.Response(204)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        transport = HttpxTransport(RequestSettings(), client=client)
        form = MultipartForm(fields={"name": "demo"}, files={"file": ("a.txt", b"payload")})
        response = await transport.call(
            "http://example.com/upload",
            _options(method="POST", headers={"content-type": "multipart/form-data"}, body=form),
            CancelSignal(),
        )
    assert response.status == 204
    assert seen["content_type"].startswith("multipart/form-data; boundary=")
    assert b"payload" in seen["body"]
    assert b'name="name"' in seen["body"]


@pytest.mark.asyncio
async def test_httpx_upload_transport_reports_chunk_progress():
    async def handler(request):
        body = await request.aread()
        return httpx.Response(201, headers={"X-Size": str(len(body))}, text="stored")

    settings = RequestSettings(upload_chunk_bytes=4)
    loop = asyncio.get_running_loop()
    done = loop.create_future()
    progress = []

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        upload = HttpxUploadTransport(settings, client=client)
        upload.on_upload_progress = lambda loaded, total: progress.append((loaded, total))
        upload.on_load = lambda: done.set_result("load")
        upload.on_error = lambda exc: done.set_result(("error", exc))
        upload.open("PUT", "http://example.com/blob")
        upload.set_request_header("content-type", "application/octet-stream")
        upload.send(b"0123456789")
        assert await asyncio.wait_for(done, 1) == "load"

    assert progress == [(4, 10), (8, 10), (10, 10)]
    assert upload.status == 201
    assert upload.response_text == "stored"
    assert parse_raw_headers(upload.raw_headers)["x-size"] == "10"


@pytest.mark.asyncio
async def test_httpx_upload_transport_timeout_fires_on_timeout():
    async def handler(request):
        await asyncio.sleep(10)
        return httpx.Response(200)

    done = asyncio.get_running_loop().create_future()
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        upload = HttpxUploadTransport(RequestSettings(), client=client)
        upload.timeout = 20
        upload.on_timeout = lambda: done.set_result("timeout")
        upload.on_abort = lambda: done.set_result("abort")
        upload.open("POST", "http://example.com")
        upload.send("x")
        assert await asyncio.wait_for(done, 1) == "timeout"


@pytest.mark.asyncio
async def test_httpx_upload_transport_abort_fires_on_abort():
    async def handler(request):
        await asyncio.sleep(10)
        return httpx.Response(200)

    done = asyncio.get_running_loop().create_future()
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        upload = HttpxUploadTransport(RequestSettings(), client=client)
        upload.on_timeout = lambda: done.set_result("timeout")
        upload.on_abort = lambda: done.set_result("abort")
        upload.open("POST", "http://example.com")
        upload.send("x")
        await asyncio.sleep(0.01)
        upload.abort()
        assert await asyncio.wait_for(done, 1) == "abort"
        with pytest.raises(RuntimeError):
            upload.send("again")


@pytest.mark.asyncio
async def test_stub_transport_records_calls_and_raises():
    stub = StubTransport({"/ok": Response(status=200)})
    stub.add("/fail", TransportError("down", category=ErrorCategory.CONNECTION_ERROR))
    stub.add("/dynamic", lambda url, options, signal: Response(status=202, url=url))
    signal = CancelSignal()

    assert (await stub.call("/ok", _options(), signal)).status == 200
    assert (await stub.call("/dynamic", _options(), signal)).url == "/dynamic"
    with pytest.raises(TransportError, match="down"):
        await stub.call("/fail", _options(), signal)
    with pytest.raises(TransportError, match="No stubbed response"):
        await stub.call("/missing", _options(), signal)
    assert [call.url for call in stub.requests] == ["/ok", "/dynamic", "/fail", "/missing"]
    assert stub.requests[0].signal is signal


@pytest.mark.asyncio
async def test_function_transport_accepts_sync_and_async_functions():
    def sync_fn(url, options, signal):
        return Response(status=200, url=url)

    async def async_fn(url, options, signal):
        return Response(status=201, url=url)

    assert isinstance(as_transport(sync_fn), FunctionTransport)
    stub = StubTransport()
    assert as_transport(stub) is stub
    assert (await as_transport(sync_fn).call("/a", _options(), CancelSignal())).status == 200
    assert (await as_transport(async_fn).call("/b", _options(), CancelSignal())).status == 201
    with pytest.raises(TypeError):
        as_transport(42)


def test_build_url_ignores_params_for_other_methods():
    assert build_url("/items", {"page": 2}, "POST") == "/items"
    assert build_url("/items", {"page": 2}, "get") == "/items?page=2"


def test_header_helpers_accept_pairs_and_httpx_headers():
    assert normalize_headers([("X-A", "1"), ("X-B", "2")]) == {"x-a": "1", "x-b": "2"}
    assert header_value(httpx.Headers({"ETag": "abc"}), "etag") == "abc"
    assert header_value([("Accept", "text/html")], "ACCEPT") == "text/html"
    assert header_value({"a": "1"}, "") == ""


@pytest.mark.asyncio
async def test_httpx_upload_transport_reports_failing_progress_handler_as_error():
    async def handler(request):
        await request.aread()
        return httpx.Response(200)

    def explode(loaded, total):
        raise ValueError("progress handler failed")

    done = asyncio.get_running_loop().create_future()
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        upload = HttpxUploadTransport(RequestSettings(upload_chunk_bytes=4), client=client)
        upload.timeout = 200
        upload.on_upload_progress = explode
        upload.on_load = lambda: done.set_result(("load", None))
        upload.on_timeout = lambda: done.set_result(("timeout", None))
        upload.on_error = lambda exc: done.set_result(("error", exc))
        upload.open("POST", "http://example.com")
        upload.send(b"0123456789")
        event, exc = await asyncio.wait_for(done, 2)

    assert event == "error"
    assert isinstance(exc, ValueError)


@pytest.mark.asyncio
async def test_upload_with_progress_settles_when_progress_callback_raises():
    async def handler(request):
        await request.aread()
        return httpx.Response(200, text="ok")

    def explode(event):
        raise ValueError("callback failed")

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        settings = RequestSettings(upload_chunk_bytes=4)
        options = _options(method="POST", body="0123456789", timeout=500, signal=CancelSignal())
        with pytest.raises(UploadNetworkError) as excinfo:
            await asyncio.wait_for(
                upload_with_progress(lambda: HttpxUploadTransport(settings, client=client), "http://example.com", options, explode),
                2,
            )
    assert isinstance(excinfo.value.__cause__, ValueError)
