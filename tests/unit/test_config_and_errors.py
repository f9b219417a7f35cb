# SPDX-FileCopyrightText: 2025 Theori Inc.
# SPDX-License-Identifier: AGPL-3.0-or-later

import importlib
import logging
import socket
import ssl

import httpx
import pytest

from requestflow import config, log
from requestflow.config import DEFAULT_USER_AGENT
from requestflow.errors import (
    AbortedError,
    BodyNotReplayableError,
    DeadlineExceededError,
    ErrorCategory,
    ErrorKind,
    TransportError,
    UploadAbortError,
    UploadNetworkError,
    UploadTimeoutError,
    UserCancelledError,
    categorize_exception,
    error_category_to_reason,
    error_kind,
    is_abort_error,
)


def test_request_settings_env_overrides(monkeypatch):
    monkeypatch.setenv("REQUESTFLOW_TIMEOUT_MS", "750")
    monkeypatch.setenv("REQUESTFLOW_RETRIES", "3")
    monkeypatch.setenv("REQUESTFLOW_RETRY_DELAY_MS", "125.5")
    monkeypatch.setenv("REQUESTFLOW_USER_AGENT", "CustomAgent/1.0")
    monkeypatch.setenv("REQUESTFLOW_FOLLOW_REDIRECTS", "false")
    monkeypatch.setenv("REQUESTFLOW_VERIFY_SSL", "0")
    monkeypatch.setenv("REQUESTFLOW_UPLOAD_CHUNK_BYTES", "1024")

    settings = config.load_request_settings()

    assert settings.timeout == 750
    assert settings.retries == 3
    assert settings.retry_delay == 125.5
    assert settings.user_agent == "CustomAgent/1.0"
    assert settings.follow_redirects is False
    assert settings.verify_ssl is False
    assert settings.upload_chunk_bytes == 1024


def test_request_settings_invalid_env_fall_back(monkeypatch):
    monkeypatch.setenv("REQUESTFLOW_TIMEOUT_MS", "not-a-number")
    monkeypatch.setenv("REQUESTFLOW_RETRIES", "-2")
    monkeypatch.setenv("REQUESTFLOW_RETRY_DELAY_MS", "")
    monkeypatch.setenv("REQUESTFLOW_UPLOAD_CHUNK_BYTES", "0")
    monkeypatch.delenv("REQUESTFLOW_USER_AGENT", raising=False)

    settings = config.load_request_settings()

    assert settings.timeout == config.RequestSettings.timeout
    assert settings.retries == config.RequestSettings.retries
    assert settings.retry_delay == config.RequestSettings.retry_delay
    assert settings.upload_chunk_bytes == config.RequestSettings.upload_chunk_bytes
    assert DEFAULT_USER_AGENT in settings.user_agent


def test_request_settings_bool_truthy_variants(monkeypatch):
    for value in ("1", "true", "YES", "on"):
        monkeypatch.setenv("REQUESTFLOW_FOLLOW_REDIRECTS", value)
        assert config.load_request_settings().follow_redirects is True
    monkeypatch.setenv("REQUESTFLOW_FOLLOW_REDIRECTS", "off")
    assert config.load_request_settings().follow_redirects is False


def test_setup_logging_reads_env_level(monkeypatch):
    calls = []
    monkeypatch.setenv("REQUESTFLOW_LOG_LEVEL", "debug")
    importlib.reload(log)
    monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: calls.append(kwargs))
    log.setup_logging()
    log.setup_logging("error")
    log.setup_logging("nonsense")
    assert [call["level"] for call in calls] == [logging.DEBUG, logging.ERROR, logging.WARNING]
    monkeypatch.delenv("REQUESTFLOW_LOG_LEVEL")
    importlib.reload(log)


@pytest.mark.parametrize(
    ("exc", "kind", "name"),
    [
        (UserCancelledError("stop"), ErrorKind.USER_CANCELLED, "AbortError"),
        (DeadlineExceededError("late"), ErrorKind.DEADLINE_EXCEEDED, "TimeoutError"),
        (BodyNotReplayableError("gone"), ErrorKind.BODY_NOT_REPLAYABLE, "BodyNotReplayableError"),
        (TransportError("down"), ErrorKind.TRANSPORT_ERROR, "NetworkError"),
        (UploadTimeoutError("late"), ErrorKind.STREAM_TRANSPORT_ERROR, "TimeoutError"),
        (UploadAbortError("stop"), ErrorKind.STREAM_TRANSPORT_ERROR, "AbortError"),
        (UploadNetworkError("down"), ErrorKind.STREAM_TRANSPORT_ERROR, "NetworkError"),
    ],
)
def test_error_kinds_and_names(exc, kind, name):
    assert exc.kind is kind
    assert error_kind(exc) is kind
    assert exc.name == name


def test_foreign_exceptions_count_as_transport_errors():
    assert error_kind(ValueError("x")) is ErrorKind.TRANSPORT_ERROR
    assert error_kind(ConnectionResetError()) is ErrorKind.TRANSPORT_ERROR


def test_is_abort_error():
    class ForeignAbort(Exception):
        name = "AbortError"

    assert is_abort_error(AbortedError(reason="x"))
    assert is_abort_error(ForeignAbort())
    assert not is_abort_error(UserCancelledError())
    assert not is_abort_error(UploadAbortError())
    assert not is_abort_error(RuntimeError())


def test_error_details_are_kept():
    exc = TransportError("boom", category=ErrorCategory.HTTP_ERROR, status=503, url="http://x")
    assert exc.status == 503
    assert exc.category is ErrorCategory.HTTP_ERROR
    assert exc.details == {"url": "http://x"}
    assert str(exc) == "boom"


def test_categorize_exception_variants():
    request = httpx.Request("GET", "http://example.com")
    assert categorize_exception(httpx.ReadTimeout("t", request=request)) is ErrorCategory.TIMEOUT
    assert categorize_exception(httpx.ConnectError("c", request=request)) is ErrorCategory.CONNECTION_ERROR
    assert categorize_exception(ssl.SSLError("bad cert")) is ErrorCategory.SSL_ERROR
    assert categorize_exception(socket.gaierror("dns")) is ErrorCategory.DNS_ERROR
    assert categorize_exception(ConnectionRefusedError()) is ErrorCategory.CONNECTION_ERROR
    assert categorize_exception(TimeoutError()) is ErrorCategory.TIMEOUT
    assert categorize_exception(ValueError()) is ErrorCategory.UNKNOWN_ERROR
    wrapped = TransportError("x", category=ErrorCategory.DNS_ERROR)
    assert categorize_exception(wrapped) is ErrorCategory.DNS_ERROR


def test_error_category_to_reason():
    assert error_category_to_reason(ErrorCategory.TIMEOUT) == "Network timeout"
    assert error_category_to_reason(None) == ""
